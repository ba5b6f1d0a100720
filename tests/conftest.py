"""Shared fixtures: small experiment workbooks written with openpyxl."""

import pytest
from openpyxl import Workbook

from flowclean.dictionary import ColumnDictionary


def write_workbook(path, sheets: dict) -> str:
    """Write `sheets` (name -> list of rows) to an .xlsx file."""
    wb = Workbook()
    wb.remove(wb.active)
    for name, rows in sheets.items():
        ws = wb.create_sheet(title=name)
        for row in rows:
            ws.append(list(row))
    wb.save(path)
    return str(path)


TREG_ROWS = [
    ["Expt 12 Treg panel", None, None, None, None, None, None, None, None, None],
    ["  ", None, None, None, None, None, None, None, None, None],
    ["Line", "Cross", "Mouse #", "Virus", "Day", "Organ", "Total Cell #", "% CD4", "% Foxp3+ of CD4", "  "],
    [16012, "16012 X 3415", 1, "WNV", 7, "Brain", 1000, 50.0, 10.0, "   "],
    [16012, "16012x3415", 2, "WNV", 7, "spleen", 2000, "¥", 5.0, None],
    [16012, "16012x3415", None, "Mock", 7, "brain", 500, 40.0, 8.0, None],
]

CD8_ROWS = [
    ["Cross", "Mouse #", "Organ", "% CD8", "% NS4B Tet+ of CD8"],
    ["16012x3415", 1, "brain", 20.0, "1.5"],
    ["16012x3415", 2, "Spleen", 30.0, 2.0],
    ["16012x3415", None, "brain", 10.0, 0.1],
    ["16012x3415", 99, "brain", 11.0, 0.2],
]

ICS_ROWS = [
    ["Cross", "Mouse #", "Day", "Organ", "% CD8", "CD8_IFNg_NS4B_Percent", "CD8_IFNg_Unstim_Percent"],
    ["16012x3415", 1, 7, "brain", 25.0, 2.0, 0.5],
    ["16012x3415", 2, 7, "spleen", 20.0, 1.0, 0.0],
    ["16012x3415", None, 7, "brain", 22.0, 0.1, 0.1],
]

NOTES_ROWS = [
    ["Stained by", "AB"],
    ["Acquired", "LSR II"],
]


@pytest.fixture
def dictionary():
    """Identity columns plus a few known Treg/CD8 measurements."""
    return ColumnDictionary.default().extend(["CD4_Percent", "Foxp3_CD4_Percent", "CD8_Percent"])


@pytest.fixture
def experiment_workbook(tmp_path):
    """Workbook with Treg, CD8 d7, ICS and a non-panel notes sheet."""
    return write_workbook(
        tmp_path / "Expt12_Lund.xlsx",
        {
            "Treg panel": TREG_ROWS,
            "CD8 d7": CD8_ROWS,
            "ICS panel": ICS_ROWS,
            "Notes": NOTES_ROWS,
        },
    )


@pytest.fixture
def second_workbook(tmp_path):
    """Workbook for another cross, carrying a column the first one lacks."""
    treg = [
        ["Line", "Cross", "Mouse #", "Virus", "Day", "Organ", "Total Cell #", "% CD4", "% Helios+ of Foxp3+"],
        [3609, "3609x16211", 4, "WNV", 12, "brain", 800, 30.0, 60.0],
    ]
    return write_workbook(tmp_path / "Expt13_Lund.xlsx", {"Treg panel": treg})


@pytest.fixture
def broken_workbook(tmp_path):
    """Identity panel without a total cell count column."""
    treg = [
        ["Line", "Cross", "Mouse #", "Day", "Organ", "% CD4"],
        [16012, "16012x3415", 5, 7, "brain", 50.0],
    ]
    return write_workbook(tmp_path / "Expt14_Lund.xlsx", {"Treg panel": treg})


@pytest.fixture
def commented_workbook(tmp_path):
    """Workbook whose identity panel carries a free-text comments column."""
    treg = [
        ["Line", "Cross", "Mouse #", "Virus", "Day", "Organ", "Total Cell #", "% CD4", "Comments"],
        [3609, "3609x16211", 5, "WNV", 12, "brain", 800, 30.0, "hemolyzed sample"],
        [3609, "3609x16211", 6, "WNV", 12, "brain", 900, 35.0, None],
    ]
    return write_workbook(tmp_path / "Expt15_Lund.xlsx", {"Treg panel": treg})
