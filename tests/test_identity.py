"""Tests for identity normalization and cross-release reconciliation."""

import numpy as np
import pandas as pd
import pytest

from flowclean.data.io import read_table, write_table
from flowclean.dictionary import ColumnDictionary
from flowclean.reconcile.identity import (
    PREVIOUS_RELEASE,
    check_unique_keys,
    find_duplicate_keys,
    merge_with_previous,
    normalize_identity,
)
from flowclean.table import FlowTable
from flowclean.types import DuplicateKeyError, IssueKind


def _table(ids, tissues, **values):
    data = {"ID": ids, "Tissue": tissues}
    data.update(values)
    return FlowTable(pd.DataFrame(data))


class TestNormalizeIdentity:
    """Tests for normalize_identity."""

    def test_cleans_identity_fields(self):
        table = FlowTable(pd.DataFrame({
            "ID": ["16012 X 3415_1"],
            "Mating": ["16012 X 3415"],
            "RIX_ID": ["1"],
            "Tissue": [" Brain "],
            "Lab": [None],
        }))
        out = normalize_identity(table, lab="Lund")

        assert out["ID"].iloc[0] == "16012x3415_1"
        assert out["Mating"].iloc[0] == "16012x3415"
        assert out["Tissue"].iloc[0] == "brain"
        assert out["Lab"].iloc[0] == "Lund"

    def test_mock_rows_lose_their_id(self):
        """A row without RIX_ID never carries an ID."""
        table = FlowTable(pd.DataFrame({
            "ID": ["16012x3415_NA", "16012x3415_2"],
            "RIX_ID": [None, "2"],
            "Tissue": ["brain", "brain"],
        }))
        out = normalize_identity(table)
        assert pd.isna(out["ID"].iloc[0])
        assert out["ID"].iloc[1] == "16012x3415_2"

    def test_lab_untouched_when_not_given(self):
        table = FlowTable(pd.DataFrame({"ID": ["a_1"], "Lab": ["Heise"]}))
        assert normalize_identity(table)["Lab"].iloc[0] == "Heise"


class TestDuplicateKeys:
    """Tests for (ID, Tissue) duplicate detection."""

    def test_counts_extra_rows(self):
        table = _table(["a_1", "a_1", "a_1", "b_1"], ["brain", "brain", "brain", "brain"])
        report = find_duplicate_keys(table)
        assert report.count == 2
        assert report.keys == (("a_1", "brain"),)

    def test_same_id_other_tissue_is_not_duplicate(self):
        table = _table(["a_1", "a_1"], ["brain", "spleen"])
        assert not find_duplicate_keys(table).has_duplicates

    def test_null_ids_are_exempt(self):
        """Mock rows never collide, however many there are."""
        table = _table([None, None, None], ["brain", "brain", "brain"])
        assert not find_duplicate_keys(table).has_duplicates

    def test_null_ids_beside_a_keyed_row(self):
        """Null IDs are skipped even when a keyed row shares their tissue."""
        table = _table(["a", None, None], ["brain", "brain", "brain"])
        assert not find_duplicate_keys(table).has_duplicates

    def test_string_dtype_ids(self):
        """Missing values of a pandas string column are null IDs, not keys."""
        table = FlowTable(pd.DataFrame({
            "ID": pd.Series(["a", None, None, "a"], dtype="string"),
            "Tissue": pd.Series(["brain"] * 4, dtype="string"),
        }))
        report = find_duplicate_keys(table)
        assert report.count == 1
        assert report.keys == (("a", "brain"),)

    def test_check_unique_keys_raises(self):
        table = _table(["a_1", "a_1"], ["brain", "brain"])
        with pytest.raises(DuplicateKeyError) as exc:
            check_unique_keys(table, source="new batch")
        assert exc.value.report.keys == (("a_1", "brain"),)
        assert "new batch" in str(exc.value)


class TestMergeWithPrevious:
    """Tests for cross-release reconciliation."""

    def setup_method(self):
        self.dictionary = ColumnDictionary.from_names(["ID", "Tissue", "CD4_Count"])

    def test_new_row_replaces_previous(self):
        """Previous X/brain=100 and new X/brain=200 leave one row with 200."""
        previous = _table(["X"], ["brain"], CD4_Count=[100.0])
        new = _table(["X"], ["brain"], CD4_Count=[200.0])

        merged = merge_with_previous(new, previous, self.dictionary)

        assert len(merged.table) == 1
        assert merged.table["CD4_Count"].iloc[0] == 200.0
        assert merged.replaced == [("X", "brain")]
        assert merged.retained == 0

    def test_non_colliding_rows_kept_first(self):
        """Retained previous rows come before the new batch."""
        previous = _table(["X", "Y"], ["brain", "brain"], CD4_Count=[100.0, 50.0])
        new = _table(["X", "Z"], ["brain", "spleen"], CD4_Count=[200.0, 10.0])

        merged = merge_with_previous(new, previous, self.dictionary)

        assert merged.table["ID"].tolist() == ["Y", "X", "Z"]
        assert merged.table["CD4_Count"].tolist() == [50.0, 200.0, 10.0]
        assert merged.retained == 1
        assert not merged.duplicates.has_duplicates

    def test_same_id_other_tissue_kept(self):
        previous = _table(["X"], ["spleen"], CD4_Count=[100.0])
        new = _table(["X"], ["brain"], CD4_Count=[200.0])
        merged = merge_with_previous(new, previous, self.dictionary)
        assert len(merged.table) == 2

    def test_null_id_rows_always_kept(self):
        """Mock rows from both releases survive."""
        previous = _table([None], ["brain"], CD4_Count=[1.0])
        new = _table([None], ["brain"], CD4_Count=[2.0])
        merged = merge_with_previous(new, previous, self.dictionary)
        assert merged.table["CD4_Count"].tolist() == [1.0, 2.0]
        assert merged.replaced == []

    def test_previous_only_columns_reported(self):
        """Columns only the previous release has are kept and reported."""
        previous = _table(["Y"], ["brain"], CD4_Count=[1.0], Old_Marker=[3.0])
        new = _table(["X"], ["brain"], CD4_Count=[2.0])

        merged = merge_with_previous(new, previous, self.dictionary)

        assert merged.table.columns == ("ID", "Tissue", "CD4_Count", "Old_Marker")
        assert merged.table["Old_Marker"].iloc[0] == 3.0
        assert np.isnan(merged.table["Old_Marker"].iloc[1])
        assert merged.issues[0].kind == IssueKind.UNEXPECTED_COLUMN
        assert merged.issues[0].source == PREVIOUS_RELEASE
        assert merged.issues[0].columns == ("Old_Marker",)

    def test_no_previous_release(self):
        new = _table(["X"], ["brain"])
        merged = merge_with_previous(new, None, self.dictionary)
        assert merged.table.columns == ("ID", "Tissue", "CD4_Count")
        assert merged.replaced == []

    def test_inputs_not_mutated(self):
        previous = _table(["X"], ["brain"], CD4_Count=[100.0])
        new = _table(["X"], ["brain"], CD4_Count=[200.0])
        merge_with_previous(new, previous, self.dictionary)
        assert len(previous) == 1
        assert previous["CD4_Count"].iloc[0] == 100.0

    def test_no_previous_release_reports_no_duplicates(self):
        """Without a previous release there are no retained rows to repeat."""
        new = _table(["X", "X"], ["brain", "brain"])
        merged = merge_with_previous(new, None, self.dictionary)
        assert not merged.duplicates.has_duplicates

    def test_duplicates_only_among_retained_rows(self):
        """Keys repeated in the new batch are not counted again here."""
        previous = _table(["Y"], ["brain"], CD4_Count=[1.0])
        new = _table(["X", "X"], ["brain", "brain"], CD4_Count=[2.0, 3.0])
        merged = merge_with_previous(new, previous, self.dictionary)
        assert len(merged.table) == 3
        assert not merged.duplicates.has_duplicates

    def test_previous_read_from_file(self, tmp_path):
        """A keyed row and a mock row read back from disk merge cleanly."""
        written = _table(["Y", None], ["brain", "brain"], CD4_Count=[1.0, 2.0])
        previous = read_table(write_table(written, tmp_path / "previous.txt"))
        new = normalize_identity(_table(["X"], ["brain"], CD4_Count=[3.0]))

        merged = merge_with_previous(new, previous, self.dictionary)

        assert merged.retained == 2
        assert merged.replaced == []
        assert merged.table["CD4_Count"].tolist() == [1.0, 2.0, 3.0]
        assert pd.isna(merged.table["ID"].iloc[1])

    def test_previous_only_text_column(self):
        """A previous-only column of free text is typed as text."""
        previous = _table(["Y"], ["brain"], Notes=["hemolyzed sample"])
        new = _table(["X"], ["brain"])
        merged = merge_with_previous(new, previous, self.dictionary)
        assert "Notes" in merged.dictionary.text_columns
        assert merged.table.coerce(text_columns=merged.dictionary.text_columns)["Notes"].iloc[0] == "hemolyzed sample"
