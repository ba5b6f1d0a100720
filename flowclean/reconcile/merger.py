"""Union of parsed batches into one wide table."""

import logging
from typing import Iterable

import pandas as pd

from flowclean.dictionary import ColumnDictionary
from flowclean.table import FlowTable, infer_text_columns

logger = logging.getLogger(__name__)


def merge_tables(
    tables: Iterable[FlowTable],
    dictionary: ColumnDictionary,
) -> tuple[FlowTable, ColumnDictionary]:
    """Stack `tables` row-wise under one column order.

    Columns are the dictionary's, followed by any column the dictionary does
    not know yet (first-seen order across inputs), which is also appended to
    the returned dictionary. Cells a table has no column for are null. Rows
    keep input order.

    Args:
        tables: Harmonized tables, in batch order
        dictionary: Current column dictionary

    Returns:
        (merged table, dictionary possibly extended)
    """
    tables = list(tables)
    for table in tables:
        new = dictionary.missing(table.columns)
        dictionary = dictionary.extend(new, text_columns=infer_text_columns(table.frame, new))

    if not tables:
        return FlowTable.empty(dictionary.names), dictionary

    frames = [t.conform(dictionary).frame for t in tables]
    nonempty = [f for f in frames if len(f)]
    if not nonempty:
        return FlowTable.empty(dictionary.names), dictionary

    merged = pd.concat(nonempty, ignore_index=True, sort=False)
    merged = merged[list(dictionary.names)]
    logger.info(f"Merged {len(tables)} table(s): {len(merged)} rows, {len(dictionary)} columns")
    return FlowTable(merged), dictionary
