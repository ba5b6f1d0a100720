"""Typed table used between pipeline stages.

A FlowTable is a pandas DataFrame whose column list is treated as a schema:
columns are unique, their order is part of the value, and every operation
returns a new table instead of editing the frame in place.
"""

import logging
from typing import Iterable, Union

import numpy as np
import pandas as pd

from flowclean.dictionary import ColumnDictionary, column_type
from flowclean.types import ColumnType, MalformedPolicy, MalformedValueError

logger = logging.getLogger(__name__)


def is_blank(value) -> bool:
    """True for None, NaN and strings that are empty after trimming."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


class FlowTable:
    """Ordered column schema over a DataFrame.

    Null is NaN in numeric columns and None in text columns.

    Args:
        frame: Row data. Column labels must be unique strings.
    """

    def __init__(self, frame: pd.DataFrame):
        columns = list(frame.columns)
        if len(set(columns)) != len(columns):
            dupes = sorted({c for c in columns if columns.count(c) > 1})
            raise ValueError(f"Table has duplicate columns: {dupes}")
        self._frame = frame.reset_index(drop=True)

    @classmethod
    def empty(cls, columns: Iterable[str]) -> "FlowTable":
        """Zero-row table with the given columns."""
        return cls(pd.DataFrame({name: pd.Series([], dtype=object) for name in columns}))

    @property
    def frame(self) -> pd.DataFrame:
        """A copy of the underlying DataFrame."""
        return self._frame.copy()

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self._frame.columns)

    def __len__(self) -> int:
        return len(self._frame)

    def __contains__(self, name) -> bool:
        return name in self._frame.columns

    def __getitem__(self, name: str) -> pd.Series:
        return self._frame[name].copy()

    def __repr__(self) -> str:
        return f"FlowTable(rows={len(self)}, columns={len(self.columns)})"

    def drop_rows(self, mask: pd.Series) -> "FlowTable":
        """Return a table without the rows where `mask` is True."""
        keep = ~mask.reset_index(drop=True).astype(bool)
        return FlowTable(self._frame[keep.values])

    def conform(self, dictionary: Union[ColumnDictionary, Iterable[str]]) -> "FlowTable":
        """Return a table with exactly the dictionary's columns, in its order.

        Columns the table lacks are added as null. A column the dictionary
        does not know is an error; extend the dictionary first.
        """
        names = list(dictionary.names if isinstance(dictionary, ColumnDictionary) else dictionary)
        extra = [c for c in self.columns if c not in set(names)]
        if extra:
            raise ValueError(f"Columns not in dictionary: {extra}")
        frame = self._frame.reindex(columns=names)
        return FlowTable(frame)

    def coerce(
        self,
        policy: MalformedPolicy = MalformedPolicy.NULL,
        text_columns: Iterable[str] = (),
    ) -> "FlowTable":
        """Return a table whose columns hold their declared types.

        TEXT columns (identity text plus `text_columns`) become trimmed
        strings, blank becoming None. NUMBER columns become float;
        unparsable cells follow `policy`.

        Raises:
            MalformedValueError: If policy is RAISE and a cell is malformed
        """
        text_columns = frozenset(text_columns)
        frame = self._frame.copy()
        for name in frame.columns:
            if column_type(name, text_columns) == ColumnType.TEXT:
                frame[name] = coerce_text(frame[name])
            else:
                frame[name] = coerce_number(frame[name], name, policy)
        return FlowTable(frame)

    def equals(self, other: "FlowTable") -> bool:
        return self.columns == other.columns and self._frame.equals(other._frame)


def coerce_text(series: pd.Series) -> pd.Series:
    """Trimmed strings, with blanks as None. Whole floats lose their '.0'."""
    def _to_text(value):
        if is_blank(value):
            return None
        if isinstance(value, float) and value.is_integer():
            return str(int(value))
        return str(value).strip()

    return pd.Series([_to_text(v) for v in series], index=series.index, dtype=object)


def coerce_number(series: pd.Series, name: str = "", policy: MalformedPolicy = MalformedPolicy.NULL) -> pd.Series:
    """Floats, with blanks as NaN and malformed cells handled by `policy`."""
    cleaned = pd.Series(
        [np.nan if is_blank(v) else (v.strip() if isinstance(v, str) else v) for v in series],
        index=series.index,
        dtype=object,
    )
    numeric = pd.to_numeric(cleaned, errors="coerce").astype(float)
    malformed = numeric.isna() & cleaned.notna()
    if malformed.any():
        bad = cleaned[malformed].tolist()
        if policy == MalformedPolicy.RAISE:
            raise MalformedValueError(name, bad)
        logger.warning(f"Column '{name}': {len(bad)} malformed value(s) set to null, e.g. {bad[:3]}")
    return numeric


def infer_text_columns(frame: pd.DataFrame, names: Iterable[str]) -> list[str]:
    """Columns of `names` holding a non-blank cell that is not a number.

    Used for columns the dictionary does not declare: a free-text column
    such as 'Comments' is kept as text instead of being coerced to null.
    Identity text columns are skipped; they are always text.
    """
    text = []
    for name in names:
        if column_type(name) == ColumnType.TEXT:
            continue
        filled = [v.strip() if isinstance(v, str) else v for v in frame[name] if not is_blank(v)]
        if not filled:
            continue
        parsed = pd.to_numeric(pd.Series(filled, dtype=object), errors="coerce")
        if parsed.isna().any():
            text.append(name)
    return text
