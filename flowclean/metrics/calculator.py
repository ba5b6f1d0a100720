"""Derived cell counts and ratios.

Runs every declared formula family in order over a merged release table,
then replaces non-finite values with null. Formulas only append (or
recompute) columns; rows are never removed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd

from flowclean.metrics.formulas import DEFAULT_FORMULAS, Formula, FormulaFamily
from flowclean.table import FlowTable
from flowclean.types import IssueKind, StageReport, ValidationIssue

logger = logging.getLogger(__name__)

DERIVED_METRICS = "derived metrics"


def clean_non_finite(table: FlowTable, columns: Optional[list[str]] = None) -> FlowTable:
    """Replace inf, -inf and NaN with null in numeric columns.

    Args:
        table: Table to clean
        columns: Columns to scan (default: every numeric column)

    Returns:
        Cleaned copy; cleaning an already clean table changes nothing
    """
    frame = table.frame
    if columns is None:
        columns = [
            c for c in frame.columns
            if pd.api.types.is_numeric_dtype(frame[c]) and not pd.api.types.is_bool_dtype(frame[c])
        ]
    replaced = 0
    for name in columns:
        values = pd.to_numeric(frame[name], errors="coerce").astype(float)
        infinite = np.isinf(values.to_numpy())
        replaced += int(infinite.sum())
        frame[name] = values.mask(infinite, np.nan)
    if replaced:
        logger.debug(f"Replaced {replaced} infinite value(s) with null")
    return FlowTable(frame)


@dataclass
class DerivedResult:
    """Output of the calculator.

    Attributes:
        table: Input table with derived columns appended
        computed: Output columns that were evaluated
        skipped: Output columns left null because an input was absent
        issues: One MISSING_FORMULA_INPUT issue per skipped formula
    """
    table: FlowTable
    computed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)


class DerivedMetricsCalculator:
    """Evaluate formula families over a release table.

    Args:
        formulas: Formulas to evaluate; run grouped by family in
            FormulaFamily.ordered() order, declaration order within a family
    """

    def __init__(self, formulas: Optional[list[Formula]] = None):
        formulas = list(DEFAULT_FORMULAS if formulas is None else formulas)
        order = {family: i for i, family in enumerate(FormulaFamily.ordered())}
        self.formulas = sorted(formulas, key=lambda f: order[f.family])

        outputs = [f.output for f in self.formulas]
        repeated = sorted({o for o in outputs if outputs.count(o) > 1})
        if repeated:
            raise ValueError(f"Formulas declare the same output more than once: {repeated}")

    @property
    def outputs(self) -> list[str]:
        return [f.output for f in self.formulas]

    def compute(self, table: FlowTable) -> DerivedResult:
        """Append every derived column to `table`, then clean non-finite values."""
        report = StageReport()
        frame = table.frame
        computed = []
        skipped = []

        for formula in self.formulas:
            absent = [name for name in formula.inputs if name not in frame.columns]
            if absent:
                frame[formula.output] = pd.Series(np.nan, index=frame.index, dtype=float)
                skipped.append(formula.output)
                report.add(
                    IssueKind.MISSING_FORMULA_INPUT,
                    f"'{formula.output}' skipped, input column(s) absent",
                    source=DERIVED_METRICS,
                    columns=absent,
                )
                logger.debug(f"Skipping {formula.output}: missing {absent}")
                continue
            frame[formula.output] = formula.evaluate(frame)
            computed.append(formula.output)

        if skipped:
            logger.warning(f"{len(skipped)} derived column(s) left null for missing inputs")
        logger.info(f"Computed {len(computed)} derived column(s) over {len(frame)} rows")

        cleaned = clean_non_finite(FlowTable(frame))
        return DerivedResult(table=cleaned, computed=computed, skipped=skipped, issues=report.issues)
