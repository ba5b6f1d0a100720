"""Reading and writing release tables.

Release tables are tab-delimited text with a header row, null rendered as an
empty field and no index column. Previous releases may also be workbooks;
they are read with the legacy null markers in RELEASE_NA_VALUES.
"""

import csv
import logging
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from flowclean.dictionary import ColumnDictionary, TEXT_COLUMNS
from flowclean.table import FlowTable, infer_text_columns
from flowclean.types import MalformedPolicy

logger = logging.getLogger(__name__)

# Legacy null markers found in previous releases
RELEASE_NA_VALUES = ["", " ", "NA", "#DIV/0!"]

EXCEL_SUFFIXES = {".xlsx", ".xlsm", ".xls"}


def load_column_dictionary(path: Union[str, Path], sheet: str = "Flow Data") -> ColumnDictionary:
    """Load canonical column names.

    Workbooks are read from the first column of `sheet` (the first row is
    its header). Text files hold one name per line; blank lines are skipped.

    Args:
        path: Data dictionary workbook or text file
        sheet: Sheet holding the flow column names

    Returns:
        ColumnDictionary in file order
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Column dictionary not found: {path}")

    if path.suffix.lower() in EXCEL_SUFFIXES:
        df = pd.read_excel(path, sheet_name=sheet, dtype=str)
        names = df.iloc[:, 0].dropna().tolist()
    else:
        names = path.read_text(encoding="utf-8").splitlines()

    names = [n.strip() for n in names if n and n.strip()]
    dictionary = ColumnDictionary.from_names(names)
    if len(dictionary) != len(names):
        logger.warning(f"Column dictionary {path.name} repeats {len(names) - len(dictionary)} name(s)")
    logger.info(f"Loaded column dictionary with {len(dictionary)} columns from {path.name}")
    return dictionary


def _text_dtypes(columns) -> dict:
    return {c: str for c in columns if c in TEXT_COLUMNS}


def read_table(
    path: Union[str, Path],
    na_values: Optional[list[str]] = None,
    sheet: Union[str, int] = 0,
    policy: MalformedPolicy = MalformedPolicy.NULL,
    dictionary: Optional[ColumnDictionary] = None,
) -> FlowTable:
    """Read a release table (delimited text or workbook) as a typed table.

    Text columns stay strings (so '007' keeps its zeros). A column is text
    when it is an identity column, a text column of `dictionary`, or an
    undeclared column holding a non-numeric cell. Everything else is coerced
    to float.

    Args:
        path: Release table to read
        na_values: Cells read as null; only the empty field by default
        sheet: Sheet to read from a workbook
        policy: Handling of malformed numbers
        dictionary: Dictionary whose text columns stay text
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Release table not found: {path}")
    na_values = [""] if na_values is None else na_values

    if path.suffix.lower() in EXCEL_SUFFIXES:
        header = pd.read_excel(path, sheet_name=sheet, nrows=0).columns
        df = pd.read_excel(
            path,
            sheet_name=sheet,
            dtype=_text_dtypes(header),
            keep_default_na=False,
            na_values=na_values,
        )
    else:
        sep = "," if path.suffix.lower() == ".csv" else "\t"
        header = pd.read_csv(path, sep=sep, nrows=0).columns
        df = pd.read_csv(
            path,
            sep=sep,
            dtype=_text_dtypes(header),
            keep_default_na=False,
            na_values=na_values,
        )

    if dictionary is None:
        declared, undeclared = frozenset(), list(df.columns)
    else:
        declared, undeclared = dictionary.text_columns, dictionary.missing(df.columns)
    text = declared | frozenset(infer_text_columns(df, undeclared))
    table = FlowTable(df).coerce(policy, text)
    logger.info(f"Read {len(table)} rows, {len(table.columns)} columns from {path.name}")
    return table


def write_table(table: FlowTable, path: Union[str, Path]) -> Path:
    """Write `table` as tab-delimited text. Returns the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    table.frame.to_csv(
        path,
        sep="\t",
        index=False,
        na_rep="",
        quoting=csv.QUOTE_MINIMAL,
        lineterminator="\n",
    )
    logger.info(f"Wrote {len(table)} rows to {path}")
    return path
