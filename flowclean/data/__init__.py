"""Workbook parsing, header harmonization and release I/O."""

from .harmonize import ColumnHarmonizer, HarmonizedColumns, COLUMN_ALIASES
from .panels import PanelRule, DEFAULT_PANELS, match_panel
from .workbook import WorkbookParser, ParsedWorkbook, DEFAULT_SENTINELS
from .io import load_column_dictionary, read_table, write_table

__all__ = [
    "ColumnHarmonizer",
    "HarmonizedColumns",
    "COLUMN_ALIASES",
    "PanelRule",
    "DEFAULT_PANELS",
    "match_panel",
    "WorkbookParser",
    "ParsedWorkbook",
    "DEFAULT_SENTINELS",
    "load_column_dictionary",
    "read_table",
    "write_table",
]
