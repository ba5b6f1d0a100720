"""Panel sheet rules.

Each experiment workbook holds one sheet per staining panel. A PanelRule says
how to recognise a panel by sheet name and which sheet-specific header fixes
to apply before global harmonization.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from flowclean.types import ConfigError


@dataclass(frozen=True)
class PanelRule:
    """How to read one kind of panel sheet.

    Attributes:
        name: Panel name used in logs and issues
        pattern: Case-insensitive regex matched against the sheet name
        identity: True for the panel that grants subject identity
        header_fixes: Raw header -> replacement, applied before harmonization
        timepoint_pattern: Regex with one group extracting the timepoint from
            the sheet name, used when the sheet has no timepoint column
    """
    name: str
    pattern: str
    identity: bool = False
    header_fixes: dict = field(default_factory=dict)
    timepoint_pattern: Optional[str] = None

    def __post_init__(self):
        for label, expr in [("pattern", self.pattern), ("timepoint_pattern", self.timepoint_pattern)]:
            if expr is None:
                continue
            try:
                re.compile(expr)
            except re.error as e:
                raise ConfigError(f"Panel '{self.name}' has invalid {label} {expr!r}: {e}")

    def matches(self, sheet_name: str) -> bool:
        return re.search(self.pattern, sheet_name, flags=re.IGNORECASE) is not None

    def fix_header(self, header: str) -> str:
        return self.header_fixes.get(header, header)

    def timepoint_from_name(self, sheet_name: str) -> Optional[float]:
        """Timepoint encoded in the sheet name, e.g. 'CD8 d12' -> 12.0."""
        if not self.timepoint_pattern:
            return None
        m = re.search(self.timepoint_pattern, sheet_name, flags=re.IGNORECASE)
        if not m:
            return None
        return float(m.group(1))


TREG_PANEL = PanelRule(
    name="treg",
    pattern=r"treg",
    identity=True,
    header_fixes={
        "% CD4": "CD4_Percent",
        "% Foxp3+ of CD4": "Foxp3_CD4_Percent",
        "% CD25+ Foxp3+ of CD4": "CD25_Foxp3_CD4_Percent",
        "% Helios+ of Foxp3+": "Helios_Foxp3_Percent",
    },
)

CD8_PANEL = PanelRule(
    name="cd8",
    pattern=r"cd8",
    header_fixes={
        "% CD8": "CD8_Percent",
        "% CD44hi CD62Llo of CD8": "CD44hi_CD62Llo_CD8_Percent",
        "% NS4B Tet+ of CD8": "NS4B_Tetramer_CD8_Percent",
    },
    timepoint_pattern=r"\bd(?:ay)?\s*(\d+)",
)

ICS_PANEL = PanelRule(
    name="ics",
    pattern=r"\bics\b",
    header_fixes={
        "% CD8": "ICS_CD8_Percent",
        "% CD4": "ICS_CD4_Percent",
    },
)

# ICS before CD8: ICS sheets are often named "ICS CD8"
DEFAULT_PANELS = (TREG_PANEL, ICS_PANEL, CD8_PANEL)


def match_panel(sheet_name: str, rules=DEFAULT_PANELS) -> Optional[PanelRule]:
    """First rule matching `sheet_name`, or None."""
    for rule in rules:
        if rule.matches(sheet_name):
            return rule
    return None
