"""flowclean: flow-cytometry release builder.

Parses per-experiment panel workbooks, harmonizes their columns against a
canonical dictionary, reconciles them with the previous data release and
computes derived cell counts and ratios.
"""

__version__ = "0.1.0"
__author__ = "flowclean Team"

from flowclean.dictionary import ColumnDictionary
from flowclean.table import FlowTable
from flowclean.types import (
    IssueKind,
    ValidationIssue,
    DuplicateKeyReport,
    FlowCleanError,
    SchemaViolation,
    DuplicateKeyError,
    MalformedValueError,
    ConfigError,
)

__all__ = [
    "ColumnDictionary",
    "FlowTable",
    "IssueKind",
    "ValidationIssue",
    "DuplicateKeyReport",
    "FlowCleanError",
    "SchemaViolation",
    "DuplicateKeyError",
    "MalformedValueError",
    "ConfigError",
]
