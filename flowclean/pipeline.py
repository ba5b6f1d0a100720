"""Release builder.

Runs the cleaning stages in order over one release's inputs:
1. Parse each workbook, threading the column dictionary through the batch
2. Merge the parsed workbooks into one wide table
3. Normalize identity fields and check (ID, Tissue) uniqueness
4. Reconcile with the previous release, new rows winning on collision
5. Compute derived counts and ratios

Each stage returns new tables; a failing stage leaves its inputs untouched.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Union

import yaml

from flowclean.data.harmonize import ColumnHarmonizer
from flowclean.data.io import RELEASE_NA_VALUES, read_table
from flowclean.data.panels import DEFAULT_PANELS, PanelRule
from flowclean.data.workbook import DEFAULT_SENTINELS, ParsedWorkbook, WorkbookParser
from flowclean.dictionary import ColumnDictionary
from flowclean.metrics.calculator import DerivedMetricsCalculator
from flowclean.reconcile.identity import (
    PREVIOUS_RELEASE,
    check_unique_keys,
    find_duplicate_keys,
    merge_with_previous,
    normalize_identity,
)
from flowclean.reconcile.merger import merge_tables
from flowclean.table import FlowTable
from flowclean.types import (
    ConfigError,
    DuplicateKeyError,
    DuplicateKeyReport,
    FlowCleanError,
    IssueKind,
    MalformedPolicy,
    SchemaViolation,
    StageReport,
    ValidationIssue,
)

logger = logging.getLogger(__name__)

NEW_BATCH = "new batch"


@dataclass
class ReleaseConfig:
    """Configuration for a release build.

    Attributes:
        lab: Value written to the Lab column (None leaves it as parsed)
        sentinels: Cell glyphs meaning "undefined, zero parent population"
        malformed_values: "null" or "raise" for cells that fail type coercion
        allow_duplicate_keys: Warn instead of failing on duplicate keys in
            the new batch
        strict_release_keys: Fail when keys still repeat after merging with
            the previous release
        previous_na_values: Cells read as null from a previous release
        dictionary_sheet: Data dictionary sheet holding flow column names
        extra_aliases: Header variant -> canonical name, added to built-ins
    """
    lab: Optional[str] = "Lund"
    sentinels: tuple[str, ...] = DEFAULT_SENTINELS
    malformed_values: str = "null"
    allow_duplicate_keys: bool = False
    strict_release_keys: bool = False
    previous_na_values: list[str] = field(default_factory=lambda: list(RELEASE_NA_VALUES))
    dictionary_sheet: str = "Flow Data"
    extra_aliases: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.malformed_values not in {p.value for p in MalformedPolicy}:
            raise ConfigError(
                f"malformed_values must be one of {[p.value for p in MalformedPolicy]}, "
                f"got {self.malformed_values!r}"
            )
        if isinstance(self.sentinels, str):
            self.sentinels = (self.sentinels,)
        self.sentinels = tuple(self.sentinels)
        if not all(isinstance(s, str) and s.strip() for s in self.sentinels):
            raise ConfigError(f"sentinels must be non-blank strings, got {self.sentinels!r}")
        if not isinstance(self.extra_aliases, dict):
            raise ConfigError(f"extra_aliases must be a mapping, got {type(self.extra_aliases).__name__}")

    @property
    def policy(self) -> MalformedPolicy:
        return MalformedPolicy(self.malformed_values)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ReleaseConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to YAML config file

        Returns:
            ReleaseConfig instance
        """
        with open(path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}

        kwargs = {}

        if "lab" in config_dict:
            kwargs["lab"] = config_dict["lab"]

        # Parsing section
        if "parsing" in config_dict:
            pc = config_dict["parsing"] or {}
            if "sentinels" in pc:
                kwargs["sentinels"] = pc["sentinels"]
            if "malformed_values" in pc:
                kwargs["malformed_values"] = pc["malformed_values"]
            if "aliases" in pc:
                kwargs["extra_aliases"] = pc["aliases"] or {}

        # Key checks
        if "keys" in config_dict:
            kc = config_dict["keys"] or {}
            if "allow_duplicates" in kc:
                kwargs["allow_duplicate_keys"] = bool(kc["allow_duplicates"])
            if "strict_release" in kc:
                kwargs["strict_release_keys"] = bool(kc["strict_release"])

        # Inputs
        if "inputs" in config_dict:
            ic = config_dict["inputs"] or {}
            if "previous_na_values" in ic:
                kwargs["previous_na_values"] = [str(v) for v in ic["previous_na_values"]]
            if "dictionary_sheet" in ic:
                kwargs["dictionary_sheet"] = ic["dictionary_sheet"]

        return cls(**kwargs)


@dataclass
class ReleaseResult:
    """Everything a release build produced.

    Attributes:
        raw: Merged, deduplicated table (no derived columns)
        full: `raw` with every derived column appended
        dictionary: Final column dictionary
        workbooks: Names of workbooks merged into the release
        failed: Workbook name -> SchemaViolation for workbooks left out
        replaced: (ID, Tissue) keys whose previous-release row was replaced
        duplicates: Keys repeated in the final table (only when tolerated)
        issues: All issues, in the order they were found
    """
    raw: FlowTable
    full: FlowTable
    dictionary: ColumnDictionary
    workbooks: list[str] = field(default_factory=list)
    failed: dict[str, SchemaViolation] = field(default_factory=dict)
    replaced: list = field(default_factory=list)
    duplicates: DuplicateKeyReport = field(default_factory=DuplicateKeyReport)
    issues: list[ValidationIssue] = field(default_factory=list)

    def summary(self) -> str:
        """Return a human-readable summary of the build."""
        lines = [
            f"Workbooks merged: {len(self.workbooks)}",
            f"Workbooks failed: {len(self.failed)}",
            f"Rows: {len(self.raw)}",
            f"Columns (raw/full): {len(self.raw.columns)}/{len(self.full.columns)}",
            f"Previous rows replaced: {len(self.replaced)}",
        ]
        for kind in IssueKind:
            n = sum(1 for i in self.issues if i.kind == kind)
            if n:
                lines.append(f"  {kind.value:22s}: {n}")
        for name, err in self.failed.items():
            lines.append(f"  FAILED {name}: {err}")
        return "\n".join(lines)


class ReleaseBuilder:
    """Build a release table from experiment workbooks.

    Example:
        >>> builder = ReleaseBuilder(ReleaseConfig(lab="Lund"))
        >>> result = builder.run(paths, dictionary, previous=prev_table)
        >>> print(result.summary())
    """

    def __init__(
        self,
        config: Optional[ReleaseConfig] = None,
        panels: tuple[PanelRule, ...] = DEFAULT_PANELS,
        calculator: Optional[DerivedMetricsCalculator] = None,
    ):
        """Initialize the builder.

        Args:
            config: ReleaseConfig (defaults when None)
            panels: Panel rules handed to the workbook parser
            calculator: Derived-metric calculator (default formulas when None)
        """
        self.config = config or ReleaseConfig()
        self.parser = WorkbookParser(
            panels=panels,
            harmonizer=ColumnHarmonizer(self.config.extra_aliases),
            sentinels=self.config.sentinels,
            policy=self.config.policy,
        )
        self.calculator = calculator or DerivedMetricsCalculator()

        logger.info(f"ReleaseBuilder initialized with config: {self.config}")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ReleaseBuilder":
        return cls(ReleaseConfig.from_yaml(path))

    def read_previous(self, path: Union[str, Path], dictionary: Optional[ColumnDictionary] = None) -> FlowTable:
        """Read a previous release with the configured legacy null markers."""
        return read_table(
            path,
            na_values=self.config.previous_na_values,
            policy=self.config.policy,
            dictionary=dictionary,
        )

    def parse_all(
        self,
        workbooks: Iterable[Union[str, Path]],
        dictionary: ColumnDictionary,
    ) -> tuple[list[ParsedWorkbook], ColumnDictionary, dict[str, SchemaViolation]]:
        """Parse workbooks in order, folding the dictionary through them.

        A workbook that raises SchemaViolation is left out; the others go on.
        """
        parsed = []
        failed = {}
        for path in workbooks:
            path = Path(path)
            try:
                result = self.parser.parse(path, dictionary)
            except SchemaViolation as e:
                logger.error(f"Skipping workbook: {e}")
                failed[path.name] = e
                continue
            dictionary = result.dictionary
            parsed.append(result)
        return parsed, dictionary, failed

    def run(
        self,
        workbooks: Iterable[Union[str, Path]],
        dictionary: ColumnDictionary,
        previous: Optional[FlowTable] = None,
    ) -> ReleaseResult:
        """Execute the full release build.

        Args:
            workbooks: Workbook paths, in merge order
            dictionary: Canonical column dictionary
            previous: Previously released raw table, if any

        Returns:
            ReleaseResult with raw and derived-metric tables

        Raises:
            FlowCleanError: If no workbook could be parsed
            DuplicateKeyError: On duplicate keys in the new batch (unless
                allow_duplicate_keys) or after the merge (if strict_release_keys)
        """
        config = self.config
        report = StageReport()
        workbooks = list(workbooks)

        # Step 1: Parse
        parsed, dictionary, failed = self.parse_all(workbooks, dictionary)
        for name, err in failed.items():
            report.add(IssueKind.SCHEMA_VIOLATION, str(err), source=name, columns=err.missing)
        for p in parsed:
            report.issues.extend(p.issues)
        if workbooks and not parsed:
            raise FlowCleanError(f"None of {len(workbooks)} workbook(s) could be parsed")

        # Step 2: Merge
        batch, dictionary = merge_tables([p.table for p in parsed], dictionary)

        # Step 3: Identity and within-batch keys
        batch = normalize_identity(batch, lab=config.lab).coerce(config.policy, dictionary.text_columns)
        try:
            check_unique_keys(batch, source=NEW_BATCH)
        except DuplicateKeyError as e:
            if not config.allow_duplicate_keys:
                raise
            logger.warning(f"Tolerating duplicate keys: {e}")
            report.add(IssueKind.DUPLICATE_KEY, e.report.summary(), source=NEW_BATCH,
                       columns=[f"{i}/{t}" for i, t in e.report.keys])

        # Step 4: Previous release
        merged = merge_with_previous(batch, previous, dictionary)
        report.issues.extend(merged.issues)
        dictionary = merged.dictionary
        raw = merged.table.coerce(config.policy, dictionary.text_columns)
        if merged.duplicates.has_duplicates:
            if config.strict_release_keys:
                raise DuplicateKeyError(merged.duplicates, source=PREVIOUS_RELEASE)
            logger.warning(f"Keys repeated among retained previous rows: {merged.duplicates.summary()}")
            report.add(IssueKind.DUPLICATE_KEY, merged.duplicates.summary(), source=PREVIOUS_RELEASE,
                       columns=[f"{i}/{t}" for i, t in merged.duplicates.keys])

        # Step 5: Derived metrics
        derived = self.calculator.compute(raw)
        report.issues.extend(derived.issues)

        logger.info(f"Release built: {len(raw)} rows, {len(derived.table.columns)} columns")

        return ReleaseResult(
            raw=raw,
            full=derived.table,
            dictionary=dictionary,
            workbooks=[p.workbook for p in parsed],
            failed=failed,
            replaced=merged.replaced,
            duplicates=find_duplicate_keys(raw),
            issues=report.issues,
        )


def create_builder_from_dict(config_dict: dict) -> ReleaseBuilder:
    """Create a builder from a flat configuration dictionary.

    Args:
        config_dict: Dictionary with ReleaseConfig field names as keys

    Returns:
        Configured ReleaseBuilder
    """
    config = ReleaseConfig(
        lab=config_dict.get("lab", "Lund"),
        sentinels=config_dict.get("sentinels", DEFAULT_SENTINELS),
        malformed_values=config_dict.get("malformed_values", "null"),
        allow_duplicate_keys=config_dict.get("allow_duplicate_keys", False),
        strict_release_keys=config_dict.get("strict_release_keys", False),
        previous_na_values=list(config_dict.get("previous_na_values", RELEASE_NA_VALUES)),
        dictionary_sheet=config_dict.get("dictionary_sheet", "Flow Data"),
        extra_aliases=dict(config_dict.get("extra_aliases", {})),
    )
    return ReleaseBuilder(config)
