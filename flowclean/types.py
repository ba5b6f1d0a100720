"""Core type definitions for flowclean.

This module defines the enums, dataclasses and exceptions shared by the
parsing, reconciliation and derived-metric stages of a release build.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ColumnType(Enum):
    """Declared storage type of a release column."""
    TEXT = "text"
    NUMBER = "number"


class MalformedPolicy(Enum):
    """What coercion does with a cell that cannot be parsed to its type."""
    NULL = "null"       # Malformed cell becomes null
    RAISE = "raise"     # Whole batch fails


class IssueKind(Enum):
    """Categories of problems reported during a release build.

    Only SCHEMA_VIOLATION stops work, and only for a single workbook.
    The others are recorded for human review before the release is
    finalized.
    """
    SCHEMA_VIOLATION = "schema_violation"
    UNEXPECTED_COLUMN = "unexpected_column"
    DUPLICATE_KEY = "duplicate_key"
    MISSING_FORMULA_INPUT = "missing_formula_input"


@dataclass(frozen=True)
class ValidationIssue:
    """A single reportable problem.

    Attributes:
        kind: Issue category
        message: Human-readable description
        source: Workbook name (or "previous release", "derived metrics")
        columns: Column names involved, in first-seen order
    """
    kind: IssueKind
    message: str
    source: str = ""
    columns: tuple[str, ...] = ()

    def __str__(self) -> str:
        where = f"[{self.source}] " if self.source else ""
        return f"{self.kind.value}: {where}{self.message}"


@dataclass(frozen=True)
class DuplicateKeyReport:
    """Duplicate (ID, Tissue) keys found in one table.

    Attributes:
        count: Number of rows beyond the first occurrence of each key
        keys: Sorted offending (ID, Tissue) pairs
    """
    count: int = 0
    keys: tuple[tuple[str, str], ...] = ()

    @property
    def has_duplicates(self) -> bool:
        return self.count > 0

    def summary(self, limit: int = 10) -> str:
        """Return a short description listing up to `limit` keys."""
        shown = ", ".join(f"{i}/{t}" for i, t in self.keys[:limit])
        suffix = "..." if len(self.keys) > limit else ""
        return f"{self.count} duplicate row(s) over {len(self.keys)} key(s): {shown}{suffix}"


class FlowCleanError(Exception):
    """Base class for all flowclean errors."""


class ConfigError(FlowCleanError):
    """Invalid release configuration."""


class SchemaViolation(FlowCleanError):
    """A workbook cannot be parsed into release rows.

    Raised when mandatory identity columns are missing, when the identity
    panel is absent or ambiguous, or when a sheet's header is malformed.
    """

    def __init__(self, workbook: str, message: str, missing: Optional[list[str]] = None):
        self.workbook = workbook
        self.missing = list(missing or [])
        detail = f"{message}: {self.missing}" if self.missing else message
        super().__init__(f"{workbook}: {detail}")


class DuplicateKeyError(FlowCleanError):
    """More than one row shares an (ID, Tissue) key."""

    def __init__(self, report: DuplicateKeyReport, source: str = ""):
        self.report = report
        self.source = source
        where = f"{source}: " if source else ""
        super().__init__(f"{where}{report.summary()}")


class MalformedValueError(FlowCleanError):
    """A cell could not be coerced to its column's declared type."""

    def __init__(self, column: str, values: list):
        self.column = column
        self.values = list(values)
        preview = ", ".join(repr(v) for v in self.values[:5])
        super().__init__(f"Column '{column}' has {len(self.values)} malformed value(s): {preview}")


@dataclass
class StageReport:
    """Issues collected while running one stage over one input."""
    issues: list[ValidationIssue] = field(default_factory=list)

    def add(self, kind: IssueKind, message: str, source: str = "", columns=()) -> ValidationIssue:
        issue = ValidationIssue(kind=kind, message=message, source=source, columns=tuple(columns))
        self.issues.append(issue)
        return issue
