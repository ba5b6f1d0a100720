"""Experiment workbook parser.

Reads one flow-cytometry workbook and returns a single table with one row per
animal, tissue and timepoint:

1. Every sheet is matched to a panel rule by name; unknown sheets are skipped
2. Each sheet's header row is located and its block cut out, dropping rows
   and columns that are blank after trimming
3. Sentinel glyphs (zero parent population) become null
4. Headers get the panel's fixes, then global harmonization
5. Measurement panels are joined onto the identity panel by
   (Mating, RIX_ID, Timepoint, Tissue)
6. The subject ID is synthesized, identity fields are normalized and
   columns are coerced to their types
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

import pandas as pd

from flowclean.data.harmonize import ColumnHarmonizer
from flowclean.data.panels import DEFAULT_PANELS, PanelRule, match_panel
from flowclean.dictionary import (
    ColumnDictionary,
    ID,
    JOIN_KEY,
    MANDATORY_COLUMNS,
    MATING,
    RIX_ID,
    TIMEPOINT,
    TISSUE,
    clean_identifier,
)
from flowclean.reconcile.identity import normalize_identity
from flowclean.table import FlowTable, coerce_text, infer_text_columns, is_blank
from flowclean.types import IssueKind, MalformedPolicy, SchemaViolation, StageReport, ValidationIssue

logger = logging.getLogger(__name__)

# Marks a percentage whose parent population had zero cells
DEFAULT_SENTINELS = ("¥",)

_ORDINAL = "__ordinal__"
_DUP_SUFFIX = "__from_panel__"


@dataclass
class SheetBlock:
    """Harmonized data block of one panel sheet."""
    sheet: str
    panel: PanelRule
    frame: pd.DataFrame
    renamed: dict = field(default_factory=dict)


@dataclass
class ParsedWorkbook:
    """Everything the parser learned from one workbook.

    Attributes:
        workbook: Workbook file name
        table: One row per observation, conformed to `dictionary`
        dictionary: Input dictionary extended with unexpected columns
        unexpected: Columns added to the dictionary, first-seen order
        sheets: Names of the sheets that were parsed
        issues: Non-fatal problems (unexpected columns)
    """
    workbook: str
    table: FlowTable
    dictionary: ColumnDictionary
    unexpected: list[str] = field(default_factory=list)
    sheets: list[str] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)


def _key_value(column: str, value) -> str:
    """Normalized join-key text for one cell. Null becomes ''."""
    if is_blank(value):
        return ""
    if column == TIMEPOINT:
        try:
            return f"{float(value):g}"
        except (TypeError, ValueError):
            return str(value).strip().lower()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    if column == TISSUE:
        return text.lower()
    if column == MATING:
        return clean_identifier(text)
    return text


def _with_join_key(df: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    """Copy of `df` with normalized key columns and an occurrence ordinal.

    The ordinal pairs up rows that share a key (e.g. several mock animals
    with no RIX_ID) in the order they appear.
    """
    out = df.copy()
    key_cols = []
    for col in JOIN_KEY:
        name = f"__key_{col}__"
        out[name] = out[col].map(lambda v, c=col: _key_value(c, v))
        key_cols.append(name)
    out[_ORDINAL] = out.groupby(key_cols, sort=False).cumcount()
    return out, key_cols + [_ORDINAL]


class WorkbookParser:
    """Parse experiment workbooks into release rows.

    Args:
        panels: Panel rules, tried in order against each sheet name
        harmonizer: Header harmonizer (default: built-in aliases)
        sentinels: Cell values meaning "undefined, zero parent population"
        policy: What to do with cells that do not parse as their column type

    Example:
        >>> parser = WorkbookParser()
        >>> parsed = parser.parse("Expt12_Lund.xlsx", ColumnDictionary.default())
        >>> parsed.table.columns[:3]
        ('ID', 'Lab', 'UW_Line')
    """

    def __init__(
        self,
        panels: tuple[PanelRule, ...] = DEFAULT_PANELS,
        harmonizer: Optional[ColumnHarmonizer] = None,
        sentinels: tuple[str, ...] = DEFAULT_SENTINELS,
        policy: MalformedPolicy = MalformedPolicy.NULL,
    ):
        self.panels = tuple(panels)
        self.harmonizer = harmonizer or ColumnHarmonizer()
        self.sentinels = frozenset(s.strip() for s in sentinels)
        self.policy = policy

    def read_sheets(self, path: Union[str, Path]) -> dict[str, pd.DataFrame]:
        """Read every sheet as a raw grid (no header), in file order."""
        with pd.ExcelFile(path) as xls:
            return {
                sheet: xls.parse(sheet, header=None, dtype=object)
                for sheet in xls.sheet_names
            }

    def parse(self, path: Union[str, Path], dictionary: ColumnDictionary) -> ParsedWorkbook:
        """Parse one workbook.

        Args:
            path: Workbook path (.xlsx, or .xls with xlrd installed)
            dictionary: Current column dictionary

        Returns:
            ParsedWorkbook whose dictionary includes any new columns

        Raises:
            SchemaViolation: If the workbook cannot yield identity-complete rows
        """
        path = Path(path)
        workbook = path.name
        return self.parse_sheets(workbook, self.read_sheets(path), dictionary)

    def parse_sheets(
        self,
        workbook: str,
        sheets: dict[str, pd.DataFrame],
        dictionary: ColumnDictionary,
    ) -> ParsedWorkbook:
        """Parse already-loaded raw sheet grids. See `parse`."""
        report = StageReport()
        blocks = []
        unexpected = []
        for sheet_name, grid in sheets.items():
            panel = match_panel(sheet_name, self.panels)
            if panel is None:
                logger.warning(f"{workbook}: sheet '{sheet_name}' matches no panel, skipped")
                continue
            block = self.extract_block(workbook, sheet_name, grid, panel, dictionary)
            if block is None:
                logger.warning(f"{workbook}: sheet '{sheet_name}' is empty, skipped")
                continue
            new = dictionary.missing(block.frame.columns)
            if new:
                report.add(
                    IssueKind.UNEXPECTED_COLUMN,
                    f"sheet '{sheet_name}' has {len(new)} column(s) not in the dictionary",
                    source=workbook,
                    columns=new,
                )
                logger.warning(f"{workbook}: unexpected columns in '{sheet_name}': {new}")
                unexpected.extend(new)
                text = infer_text_columns(block.frame, new)
                if text:
                    report.add(
                        IssueKind.UNEXPECTED_COLUMN,
                        f"sheet '{sheet_name}' has {len(text)} non-numeric column(s), kept as text",
                        source=workbook,
                        columns=text,
                    )
                    logger.warning(f"{workbook}: columns kept as text in '{sheet_name}': {text}")
                dictionary = dictionary.extend(new, text_columns=text)
            blocks.append(block)

        joined = self._join(workbook, blocks)
        joined = self._synthesize_id(joined)
        synthesized = dictionary.missing(joined.columns)
        if synthesized:
            report.add(
                IssueKind.UNEXPECTED_COLUMN,
                "synthesized column(s) not in the dictionary",
                source=workbook,
                columns=synthesized,
            )
            unexpected.extend(synthesized)
            dictionary = dictionary.extend(synthesized)
        table = normalize_identity(FlowTable(joined).conform(dictionary))
        table = table.coerce(self.policy, dictionary.text_columns)

        logger.info(f"{workbook}: parsed {len(table)} rows from {len(blocks)} panel sheet(s)")
        return ParsedWorkbook(
            workbook=workbook,
            table=table,
            dictionary=dictionary,
            unexpected=unexpected,
            sheets=[b.sheet for b in blocks],
            issues=report.issues,
        )

    def _null_sentinels(self, grid: pd.DataFrame) -> pd.DataFrame:
        sentinels = self.sentinels

        def _cell(value):
            if isinstance(value, str):
                if value.strip() in sentinels:
                    return None
                return value.strip()
            return value

        return grid.map(_cell)

    def _find_header_row(self, grid: pd.DataFrame, panel: PanelRule, dictionary: ColumnDictionary) -> int:
        """Position of the first row carrying a recognizable column label."""
        for pos in range(len(grid)):
            for value in grid.iloc[pos]:
                if is_blank(value):
                    continue
                label = panel.fix_header(str(value).strip())
                if self.harmonizer.is_known(label, dictionary):
                    return pos
        return 0

    def extract_block(
        self,
        workbook: str,
        sheet_name: str,
        grid: pd.DataFrame,
        panel: PanelRule,
        dictionary: ColumnDictionary,
    ) -> Optional[SheetBlock]:
        """Cut the header and data block out of one raw sheet grid.

        Returns None when the sheet holds no data rows.

        Raises:
            SchemaViolation: On a blank header over data or a repeated header
        """
        grid = self._null_sentinels(grid)
        blank = grid.map(is_blank)
        grid = grid.loc[~blank.all(axis=1), ~blank.all(axis=0)]
        if grid.empty:
            return None

        header_pos = self._find_header_row(grid, panel, dictionary)
        header = grid.iloc[header_pos]
        data = grid.iloc[header_pos + 1:]
        data_blank = data.map(is_blank)
        data = data.loc[~data_blank.all(axis=1)]
        if data.empty:
            return None

        labels = []
        keep = []
        for i, value in enumerate(header):
            column_blank = data.iloc[:, i].map(is_blank).all()
            if is_blank(value):
                if column_blank:
                    continue
                raise SchemaViolation(workbook, f"sheet '{sheet_name}' has data under a blank header (column {i + 1})")
            if isinstance(value, float) and value.is_integer():
                value = int(value)
            labels.append(panel.fix_header(str(value).strip()))
            keep.append(i)

        frame = data.iloc[:, keep].copy()
        frame.columns = labels
        frame, result = self.harmonizer.harmonize_frame(frame, dictionary)

        columns = list(frame.columns)
        repeated = sorted({c for c in columns if columns.count(c) > 1})
        if repeated:
            raise SchemaViolation(workbook, f"sheet '{sheet_name}' repeats column(s)", repeated)

        if TIMEPOINT not in frame.columns:
            timepoint = panel.timepoint_from_name(sheet_name)
            if timepoint is not None:
                frame[TIMEPOINT] = timepoint

        frame = frame.reset_index(drop=True)
        logger.debug(f"{workbook}: '{sheet_name}' as {panel.name} panel, {len(frame)} rows, {len(columns)} columns")
        return SheetBlock(sheet=sheet_name, panel=panel, frame=frame, renamed=result.renamed)

    def _join(self, workbook: str, blocks: list[SheetBlock]) -> pd.DataFrame:
        """Join measurement panels onto the identity panel."""
        identity = [b for b in blocks if b.panel.identity]
        if len(identity) != 1:
            names = [b.sheet for b in identity]
            raise SchemaViolation(workbook, f"expected exactly one identity panel sheet, found {len(identity)} {names}")
        base_block = identity[0]

        missing = [c for c in MANDATORY_COLUMNS if c not in base_block.frame.columns]
        if missing:
            raise SchemaViolation(workbook, "missing mandatory identity columns", missing)

        base, key = _with_join_key(base_block.frame)
        base_index = pd.MultiIndex.from_frame(base[key])

        for block in blocks:
            if block is base_block:
                continue
            absent = [c for c in JOIN_KEY if c not in block.frame.columns]
            if absent:
                raise SchemaViolation(workbook, f"sheet '{block.sheet}' lacks join key columns", absent)
            other, _ = _with_join_key(block.frame)

            matched = pd.MultiIndex.from_frame(other[key]).isin(base_index)
            if not matched.all():
                logger.warning(
                    f"{workbook}: {int((~matched).sum())} row(s) in '{block.sheet}' "
                    f"have no matching row in '{base_block.sheet}' and were dropped"
                )

            base = base.merge(other, on=key, how="left", suffixes=("", _DUP_SUFFIX), sort=False)
            for col in list(base.columns):
                if not col.endswith(_DUP_SUFFIX):
                    continue
                target = col[: -len(_DUP_SUFFIX)]
                base[target] = base[target].where(~base[target].map(is_blank), base[col])
                base = base.drop(columns=[col])

        return base.drop(columns=key)

    def _synthesize_id(self, df: pd.DataFrame) -> pd.DataFrame:
        """Fill ID as '<Mating>_<RIX_ID>' where the identity panel gave none."""
        out = df.copy()
        mating = coerce_text(coerce_text(out[MATING]).map(clean_identifier))
        rix = coerce_text(out[RIX_ID])
        derived = pd.Series(
            [f"{m}_{r}" if not is_blank(m) and not is_blank(r) else None for m, r in zip(mating, rix)],
            index=out.index,
            dtype=object,
        )
        if ID in out.columns:
            existing = coerce_text(out[ID])
            out[ID] = existing.where(existing.notna(), derived)
        else:
            out[ID] = derived
        return out
