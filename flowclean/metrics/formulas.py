"""Declared derived-metric formulas.

Formulas are grouped into families that run in a fixed order; a later family
may read columns produced by an earlier one (ICS count ratios read ICS
counts). Each formula names its inputs, so one whose input column is absent
from the table can be skipped instead of failing the release.
"""

from dataclasses import dataclass
from enum import Enum

import numpy as np
import pandas as pd

from flowclean.dictionary import TOTAL_CELLS


class FormulaKind(Enum):
    """Arithmetic applied to a formula's inputs."""
    COUNT = "count"         # percent / 100 * parent_total
    RATIO = "ratio"         # numerator / denominator
    PRODUCT = "product"     # a * b * ...
    SUM = "sum"             # a + b + ...


class FormulaFamily(Enum):
    """Formula families in evaluation order."""
    TREG_COUNTS = "treg_counts"
    TCELL_COUNTS = "tcell_counts"
    ICS_COUNTS = "ics_counts"
    ICS_PERCENT_RATIOS = "ics_percent_ratios"
    ICS_COUNT_RATIOS = "ics_count_ratios"

    @classmethod
    def ordered(cls) -> list["FormulaFamily"]:
        return [
            cls.TREG_COUNTS,
            cls.TCELL_COUNTS,
            cls.ICS_COUNTS,
            cls.ICS_PERCENT_RATIOS,
            cls.ICS_COUNT_RATIOS,
        ]


@dataclass(frozen=True)
class Formula:
    """One derived column.

    Attributes:
        output: Name of the derived column
        kind: Arithmetic to apply
        inputs: Input column names; COUNT is (percent, parent_total),
            RATIO is (numerator, denominator)
        family: Family the formula belongs to
    """
    output: str
    kind: FormulaKind
    inputs: tuple[str, ...]
    family: FormulaFamily

    def __post_init__(self):
        if self.kind in (FormulaKind.COUNT, FormulaKind.RATIO) and len(self.inputs) != 2:
            raise ValueError(f"{self.kind.value} formula '{self.output}' needs 2 inputs, got {len(self.inputs)}")
        if not self.inputs:
            raise ValueError(f"Formula '{self.output}' has no inputs")

    def evaluate(self, frame: pd.DataFrame) -> pd.Series:
        """Compute the output column. Null inputs give null output.

        Division by zero yields inf or NaN here; the calculator's final
        cleanup turns those into null.
        """
        cols = [pd.to_numeric(frame[name], errors="coerce").astype(float) for name in self.inputs]
        with np.errstate(divide="ignore", invalid="ignore"):
            if self.kind == FormulaKind.COUNT:
                result = cols[0] / 100.0 * cols[1]
            elif self.kind == FormulaKind.RATIO:
                result = cols[0] / cols[1]
            elif self.kind == FormulaKind.PRODUCT:
                result = cols[0].copy()
                for col in cols[1:]:
                    result = result * col
            else:
                result = cols[0].copy()
                for col in cols[1:]:
                    result = result + col
        return result.astype(float)


def count(output: str, percent: str, parent: str, family: FormulaFamily) -> Formula:
    return Formula(output, FormulaKind.COUNT, (percent, parent), family)


def ratio(output: str, numerator: str, denominator: str, family: FormulaFamily) -> Formula:
    return Formula(output, FormulaKind.RATIO, (numerator, denominator), family)


# Treg panel: CD4 from total cells, Treg subsets from CD4 / Foxp3+
TREG_COUNTS = [
    count("CD4_Count", "CD4_Percent", TOTAL_CELLS, FormulaFamily.TREG_COUNTS),
    count("Foxp3_CD4_Count", "Foxp3_CD4_Percent", "CD4_Count", FormulaFamily.TREG_COUNTS),
    count("CD25_Foxp3_CD4_Count", "CD25_Foxp3_CD4_Percent", "CD4_Count", FormulaFamily.TREG_COUNTS),
    count("Helios_Foxp3_Count", "Helios_Foxp3_Percent", "Foxp3_CD4_Count", FormulaFamily.TREG_COUNTS),
]

# CD8 panels: CD8 from total cells, activated and virus-specific from CD8
TCELL_COUNTS = [
    count("CD8_Count", "CD8_Percent", TOTAL_CELLS, FormulaFamily.TCELL_COUNTS),
    count("CD44hi_CD62Llo_CD8_Count", "CD44hi_CD62Llo_CD8_Percent", "CD8_Count", FormulaFamily.TCELL_COUNTS),
    count("NS4B_Tetramer_CD8_Count", "NS4B_Tetramer_CD8_Percent", "CD8_Count", FormulaFamily.TCELL_COUNTS),
]

# ICS panel: T cells are restimulated (CD8 with NS4B peptide, CD4 with WNV)
# next to an unstimulated well of the same sample
ICS_CYTOKINES = ("IFNg", "TNFa", "IFNg_TNFa", "IL2")
ICS_STIMULI = {"CD8": "NS4B", "CD4": "WNV"}
ICS_BACKGROUND = "Unstim"


def _ics_percent(subset: str, cytokine: str, condition: str) -> str:
    return f"{subset}_{cytokine}_{condition}_Percent"


def _ics_count(subset: str, cytokine: str, condition: str) -> str:
    return f"{subset}_{cytokine}_{condition}_Count"


def _ics_formulas():
    counts = [
        count("ICS_CD8_Count", "ICS_CD8_Percent", TOTAL_CELLS, FormulaFamily.ICS_COUNTS),
        count("ICS_CD4_Count", "ICS_CD4_Percent", TOTAL_CELLS, FormulaFamily.ICS_COUNTS),
    ]
    percent_ratios = []
    count_ratios = []
    for subset, stimulus in ICS_STIMULI.items():
        parent = f"ICS_{subset}_Count"
        for cytokine in ICS_CYTOKINES:
            for condition in (stimulus, ICS_BACKGROUND):
                counts.append(count(
                    _ics_count(subset, cytokine, condition),
                    _ics_percent(subset, cytokine, condition),
                    parent,
                    FormulaFamily.ICS_COUNTS,
                ))
            percent_ratios.append(ratio(
                f"{subset}_{cytokine}_{stimulus}_{ICS_BACKGROUND}_Percent_Ratio",
                _ics_percent(subset, cytokine, stimulus),
                _ics_percent(subset, cytokine, ICS_BACKGROUND),
                FormulaFamily.ICS_PERCENT_RATIOS,
            ))
            count_ratios.append(ratio(
                f"{subset}_{cytokine}_{stimulus}_{ICS_BACKGROUND}_Count_Ratio",
                _ics_count(subset, cytokine, stimulus),
                _ics_count(subset, cytokine, ICS_BACKGROUND),
                FormulaFamily.ICS_COUNT_RATIOS,
            ))
    return counts, percent_ratios, count_ratios


ICS_COUNTS, ICS_PERCENT_RATIOS, ICS_COUNT_RATIOS = _ics_formulas()

DEFAULT_FORMULAS = TREG_COUNTS + TCELL_COUNTS + ICS_COUNTS + ICS_PERCENT_RATIOS + ICS_COUNT_RATIOS
