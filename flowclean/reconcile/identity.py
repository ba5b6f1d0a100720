"""Subject identity, duplicate detection and cross-release reconciliation.

A release row is identified by (ID, Tissue). Mock animals have no RIX_ID and
therefore no ID; they never take part in key comparisons.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from flowclean.dictionary import ID, LAB, MATING, RIX_ID, TISSUE, ColumnDictionary, clean_identifier
from flowclean.table import FlowTable, coerce_text, infer_text_columns, is_blank
from flowclean.types import DuplicateKeyError, DuplicateKeyReport, IssueKind, StageReport, ValidationIssue

logger = logging.getLogger(__name__)

PREVIOUS_RELEASE = "previous release"


def normalize_identity(table: FlowTable, lab: Optional[str] = None) -> FlowTable:
    """Return `table` with canonical identity fields.

    - ID and Mating: spaces removed, 'X' -> 'x'
    - Tissue: trimmed, lower-case
    - Lab: set to `lab` when given
    - ID: null wherever RIX_ID is null (mock animals)
    """
    frame = table.frame
    for col in (ID, MATING):
        if col in frame.columns:
            frame[col] = coerce_text(coerce_text(frame[col]).map(clean_identifier))
    if TISSUE in frame.columns:
        frame[TISSUE] = coerce_text(frame[TISSUE].map(lambda v: v.lower() if isinstance(v, str) else v))
    if lab is not None:
        frame[LAB] = lab
    if ID in frame.columns and RIX_ID in frame.columns:
        mock = coerce_text(frame[RIX_ID]).isna()
        if mock.any():
            frame[ID] = coerce_text(frame[ID].mask(mock.values))
            logger.debug(f"Cleared ID on {int(mock.sum())} mock row(s)")
    return FlowTable(frame)


def release_keys(table: FlowTable) -> pd.Series:
    """(ID, Tissue) tuple per row; None where ID is null."""
    ids = coerce_text(table[ID])
    tissues = coerce_text(table[TISSUE]) if TISSUE in table else pd.Series([None] * len(table), dtype=object)
    return pd.Series(
        [None if is_blank(i) else (i, None if is_blank(t) else t) for i, t in zip(ids, tissues)],
        dtype=object,
    )


def find_duplicate_keys(table: FlowTable) -> DuplicateKeyReport:
    """Report rows sharing an (ID, Tissue) key with an earlier row."""
    if ID not in table or len(table) == 0:
        return DuplicateKeyReport()
    keys = release_keys(table)
    keyed = keys[keys.notna()]
    dup_mask = keyed.duplicated(keep="first")
    if not dup_mask.any():
        return DuplicateKeyReport()
    offending = sorted(set(keyed[dup_mask]), key=lambda k: (k[0], k[1] or ""))
    return DuplicateKeyReport(count=int(dup_mask.sum()), keys=tuple(offending))


def check_unique_keys(table: FlowTable, source: str = "") -> DuplicateKeyReport:
    """Like `find_duplicate_keys`, but duplicates are an error.

    Raises:
        DuplicateKeyError: If any key repeats
    """
    report = find_duplicate_keys(table)
    if report.has_duplicates:
        raise DuplicateKeyError(report, source=source)
    return report


@dataclass
class ReleaseMerge:
    """Outcome of reconciling a new batch with a previous release.

    Attributes:
        table: Retained previous rows followed by all new rows
        dictionary: Dictionary extended with previous-only columns
        replaced: Keys whose previous row was discarded
        retained: Number of previous rows kept
        duplicates: Keys repeated among retained previous rows
        issues: Unexpected-column issues from the previous release
    """
    table: FlowTable
    dictionary: ColumnDictionary
    replaced: list = field(default_factory=list)
    retained: int = 0
    duplicates: DuplicateKeyReport = field(default_factory=DuplicateKeyReport)
    issues: list[ValidationIssue] = field(default_factory=list)


def merge_with_previous(
    new: FlowTable,
    previous: Optional[FlowTable],
    dictionary: ColumnDictionary,
) -> ReleaseMerge:
    """Reconcile `new` against `previous`; new rows win on key collision.

    Previous rows whose (ID, Tissue) also appears in `new` are discarded.
    Other previous rows, including all null-ID rows, are kept unchanged.

    Args:
        new: Merged, identity-normalized batch
        previous: Earlier release, or None
        dictionary: Current column dictionary

    Returns:
        ReleaseMerge with a table conformed to the (possibly extended) dictionary
    """
    report = StageReport()
    unseen = dictionary.missing(new.columns)
    dictionary = dictionary.extend(unseen, text_columns=infer_text_columns(new.frame, unseen))
    if previous is None:
        table = new.conform(dictionary)
        return ReleaseMerge(table=table, dictionary=dictionary)

    extra = dictionary.missing(previous.columns)
    if extra:
        report.add(
            IssueKind.UNEXPECTED_COLUMN,
            f"{len(extra)} column(s) not in the dictionary",
            source=PREVIOUS_RELEASE,
            columns=extra,
        )
        logger.warning(f"Previous release has unexpected columns: {extra}")
        dictionary = dictionary.extend(extra, text_columns=infer_text_columns(previous.frame, extra))

    new_keys = set(k for k in release_keys(new) if isinstance(k, tuple))
    prev_keys = release_keys(previous) if ID in previous else pd.Series([None] * len(previous), dtype=object)
    collide = pd.Series([isinstance(k, tuple) and k in new_keys for k in prev_keys], dtype=bool)
    replaced = sorted(set(prev_keys[collide]), key=lambda k: (k[0], k[1] or ""))

    kept = previous.drop_rows(collide)
    logger.info(
        f"Previous release: {len(previous)} rows, {int(collide.sum())} replaced by new data, "
        f"{len(kept)} retained"
    )

    frames = [t.conform(dictionary).frame for t in (kept, new) if len(t)]
    if frames:
        merged = FlowTable(pd.concat(frames, ignore_index=True, sort=False))
    else:
        merged = FlowTable.empty(dictionary.names)

    return ReleaseMerge(
        table=merged,
        dictionary=dictionary,
        replaced=replaced,
        retained=len(kept),
        duplicates=find_duplicate_keys(kept),
        issues=report.issues,
    )
