"""Derived cell counts and ratios."""

from flowclean.metrics.formulas import Formula, FormulaKind, FormulaFamily, DEFAULT_FORMULAS
from flowclean.metrics.calculator import DerivedMetricsCalculator, DerivedResult, clean_non_finite

__all__ = [
    "Formula",
    "FormulaKind",
    "FormulaFamily",
    "DEFAULT_FORMULAS",
    "DerivedMetricsCalculator",
    "DerivedResult",
    "clean_non_finite",
]
