"""Merging parsed batches and reconciling them with earlier releases.

This package implements:
- Column-union merge of parsed workbooks
- Identity normalization and (ID, Tissue) duplicate detection
- Cross-release merge where new rows replace colliding previous rows
"""

from flowclean.reconcile.merger import merge_tables
from flowclean.reconcile.identity import (
    normalize_identity,
    release_keys,
    find_duplicate_keys,
    check_unique_keys,
    merge_with_previous,
    ReleaseMerge,
)

__all__ = [
    "merge_tables",
    "normalize_identity",
    "release_keys",
    "find_duplicate_keys",
    "check_unique_keys",
    "merge_with_previous",
    "ReleaseMerge",
]
