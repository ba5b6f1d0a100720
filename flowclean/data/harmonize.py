"""Header harmonization.

Panel sheets written over several years use different labels for the same
column. Harmonization rewrites the known variants to their canonical name
and flags anything else the dictionary has not seen.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

import pandas as pd

from flowclean.dictionary import (
    ColumnDictionary,
    ID,
    DATE,
    MATING,
    RIX_ID,
    TIMEPOINT,
    TISSUE,
    TOTAL_CELLS,
    UW_LINE,
    VIRUS,
)

logger = logging.getLogger(__name__)

# Historical header variants -> canonical column
COLUMN_ALIASES = {
    "Organ": TISSUE,
    "organ": TISSUE,
    "tissue": TISSUE,
    "Mouse #": RIX_ID,
    "Mouse#": RIX_ID,
    "Mouse": RIX_ID,
    "Mouse ID": RIX_ID,
    "RIX ID": RIX_ID,
    "Line": UW_LINE,
    "UW Line": UW_LINE,
    "UW line": UW_LINE,
    "Cross": MATING,
    "RIX": MATING,
    "Day": TIMEPOINT,
    "Time point": TIMEPOINT,
    "Time Point": TIMEPOINT,
    "Timepoint (dpi)": TIMEPOINT,
    "Total Cell #": TOTAL_CELLS,
    "Total cell #": TOTAL_CELLS,
    "Total Cells": TOTAL_CELLS,
    "Total cell number": TOTAL_CELLS,
    "Total Cell Number": TOTAL_CELLS,
    "Animal ID": ID,
    "Infection": VIRUS,
    "Harvest date": DATE,
    "Harvest Date": DATE,
}


@dataclass
class HarmonizedColumns:
    """Result of harmonizing one list of headers.

    Attributes:
        columns: Harmonized names, same length and order as the input
        renamed: Mapping of input name -> canonical name for aliased headers
        unexpected: Harmonized names absent from the dictionary, first-seen order
    """
    columns: list[str]
    renamed: dict[str, str] = field(default_factory=dict)
    unexpected: list[str] = field(default_factory=list)


class ColumnHarmonizer:
    """Map header variants onto canonical column names.

    Args:
        aliases: Extra variant -> canonical mappings, applied over the
            built-in COLUMN_ALIASES
    """

    def __init__(self, aliases: Optional[dict[str, str]] = None):
        self.aliases = dict(COLUMN_ALIASES)
        if aliases:
            self.aliases.update(aliases)

    def canonical(self, name: str) -> str:
        """Canonical name for a single header (unchanged if not aliased)."""
        seen = {name}
        while name in self.aliases:
            name = self.aliases[name]
            if name in seen:
                break
            seen.add(name)
        return name

    def is_known(self, name: str, dictionary: ColumnDictionary) -> bool:
        """True when `name` is canonical or a known alias."""
        return name in self.aliases or name in dictionary

    def harmonize(self, names: Iterable[str], dictionary: ColumnDictionary) -> HarmonizedColumns:
        """Harmonize `names` against `dictionary`.

        Canonical names pass through, so harmonizing twice is the same as
        harmonizing once. Unknown names pass through too and are listed as
        unexpected; they are never dropped.
        """
        columns = []
        renamed = {}
        for name in names:
            target = name if name in dictionary else self.canonical(name)
            if target != name:
                renamed[name] = target
            columns.append(target)
        unexpected = dictionary.missing(columns)
        if renamed:
            logger.debug(f"Renamed headers: {renamed}")
        return HarmonizedColumns(columns=columns, renamed=renamed, unexpected=unexpected)

    def harmonize_frame(self, df: pd.DataFrame, dictionary: ColumnDictionary) -> tuple[pd.DataFrame, HarmonizedColumns]:
        """Return a renamed copy of `df` and the harmonization result."""
        result = self.harmonize([str(c) for c in df.columns], dictionary)
        out = df.copy()
        out.columns = result.columns
        return out, result
