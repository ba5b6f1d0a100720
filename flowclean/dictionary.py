"""Canonical column dictionary.

The dictionary is the ordered list of column names every release row must
conform to. It only ever grows: parsing a workbook that carries a new
measurement returns an extended copy, which the release builder threads into
the next workbook.
"""

import math
from dataclasses import dataclass
from typing import Iterable

from flowclean.types import ColumnType

# Identity columns, in release order. Everything after these is a measurement.
ID = "ID"
LAB = "Lab"
UW_LINE = "UW_Line"
MATING = "Mating"
RIX_ID = "RIX_ID"
VIRUS = "Virus"
TIMEPOINT = "Timepoint"
TISSUE = "Tissue"
DATE = "Date"
TOTAL_CELLS = "Total_Cell_Number"

IDENTITY_COLUMNS = (ID, LAB, UW_LINE, MATING, RIX_ID, VIRUS, TIMEPOINT, TISSUE, DATE, TOTAL_CELLS)

# A workbook without any of these cannot be merged
MANDATORY_COLUMNS = (UW_LINE, MATING, RIX_ID, TIMEPOINT, TISSUE, TOTAL_CELLS)

# Columns used to line up panel sheets of the same workbook
JOIN_KEY = (MATING, RIX_ID, TIMEPOINT, TISSUE)

# Release identity of a row
RELEASE_KEY = (ID, TISSUE)

TEXT_COLUMNS = frozenset({ID, LAB, MATING, RIX_ID, VIRUS, TISSUE, DATE})


def column_type(name: str, text_columns: Iterable[str] = ()) -> ColumnType:
    """Return the declared type of a column.

    Identity text columns and `text_columns` are TEXT; all others are numeric.
    """
    return ColumnType.TEXT if name in TEXT_COLUMNS or name in text_columns else ColumnType.NUMBER


def clean_identifier(value):
    """Canonical spelling of a cross or animal identifier.

    Spaces are removed and the cross separator is lower-case:
    '16012 X 3415' -> '16012x3415'. None and NaN become None.
    """
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    return str(value).replace(" ", "").replace("X", "x")


@dataclass(frozen=True)
class ColumnDictionary:
    """Ordered, duplicate-free set of canonical column names.

    Names are case- and whitespace-sensitive. Instances are immutable;
    `extend` returns a new dictionary with unseen names appended in
    first-seen order.

    Attributes:
        names: Column names in release order
        text_columns: Non-identity columns holding free text (e.g. a
            workbook's 'Comments'); every other non-identity column is numeric

    Example:
        >>> d = ColumnDictionary.from_names(["ID", "Tissue"])
        >>> d.extend(["Tissue", "CD4_Percent"]).names
        ('ID', 'Tissue', 'CD4_Percent')
    """
    names: tuple[str, ...] = ()
    text_columns: frozenset = frozenset()

    def __post_init__(self):
        seen = set()
        for name in self.names:
            if not isinstance(name, str) or name == "":
                raise ValueError(f"Column names must be non-empty strings, got {name!r}")
            if name in seen:
                raise ValueError(f"Duplicate column name in dictionary: {name!r}")
            seen.add(name)
        unknown = sorted(set(self.text_columns) - seen)
        if unknown:
            raise ValueError(f"Text columns not in dictionary: {unknown}")

    @classmethod
    def from_names(cls, names: Iterable[str]) -> "ColumnDictionary":
        """Build a dictionary, dropping repeated names after their first use."""
        ordered = []
        seen = set()
        for name in names:
            if name not in seen:
                seen.add(name)
                ordered.append(name)
        return cls(tuple(ordered))

    @classmethod
    def default(cls) -> "ColumnDictionary":
        """Dictionary holding only the identity columns."""
        return cls(IDENTITY_COLUMNS)

    def __len__(self) -> int:
        return len(self.names)

    def __iter__(self):
        return iter(self.names)

    def __contains__(self, name) -> bool:
        return name in self._index

    @property
    def _index(self) -> frozenset:
        return frozenset(self.names)

    def missing(self, names: Iterable[str]) -> list[str]:
        """Names not in the dictionary, first-seen order, no repeats."""
        known = self._index
        out = []
        for name in names:
            if name not in known and name not in out:
                out.append(name)
        return out

    def extend(self, names: Iterable[str], text_columns: Iterable[str] = ()) -> "ColumnDictionary":
        """Return a dictionary with unseen `names` appended.

        Names in `text_columns` are typed as text only if they are new here;
        a column the dictionary already holds keeps its type.
        """
        new = self.missing(names)
        if not new:
            return self
        text = self.text_columns | {n for n in text_columns if n in new}
        return ColumnDictionary(self.names + tuple(new), frozenset(text))
