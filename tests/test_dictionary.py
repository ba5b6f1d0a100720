"""Unit tests for the column dictionary."""

import pytest

from flowclean.dictionary import (
    ColumnDictionary,
    IDENTITY_COLUMNS,
    clean_identifier,
    column_type,
)
from flowclean.types import ColumnType


class TestColumnDictionary:
    """Tests for ColumnDictionary."""

    def test_default_holds_identity_columns(self):
        """Default dictionary is the identity columns in release order."""
        d = ColumnDictionary.default()
        assert d.names == IDENTITY_COLUMNS
        assert d.names[0] == "ID"

    def test_from_names_drops_repeats(self):
        """Repeated names keep their first position."""
        d = ColumnDictionary.from_names(["ID", "Tissue", "ID", "CD4_Percent"])
        assert d.names == ("ID", "Tissue", "CD4_Percent")

    def test_constructor_rejects_duplicates(self):
        """Direct construction with duplicates is an error."""
        with pytest.raises(ValueError, match="Duplicate"):
            ColumnDictionary(("ID", "ID"))

    def test_constructor_rejects_empty_name(self):
        """Empty names are not column names."""
        with pytest.raises(ValueError):
            ColumnDictionary(("ID", ""))

    def test_extend_appends_in_first_seen_order(self):
        """New names are appended in the order they are first seen."""
        d = ColumnDictionary.from_names(["ID", "Tissue"])
        extended = d.extend(["B", "Tissue", "A", "B"])
        assert extended.names == ("ID", "Tissue", "B", "A")

    def test_extend_does_not_mutate(self):
        """Extending returns a new dictionary; the original never shrinks or grows."""
        d = ColumnDictionary.from_names(["ID"])
        d.extend(["X"])
        assert d.names == ("ID",)

    def test_extend_with_nothing_new_returns_same(self):
        """No new names, no new object."""
        d = ColumnDictionary.from_names(["ID", "Tissue"])
        assert d.extend(["Tissue"]) is d

    def test_names_are_case_and_whitespace_sensitive(self):
        """'tissue' and 'Tissue ' are different columns from 'Tissue'."""
        d = ColumnDictionary.from_names(["Tissue"])
        assert d.missing(["tissue", "Tissue ", "Tissue"]) == ["tissue", "Tissue "]

    def test_contains_and_len(self):
        d = ColumnDictionary.from_names(["ID", "Tissue"])
        assert "ID" in d
        assert "Lab" not in d
        assert len(d) == 2


class TestColumnHelpers:
    """Tests for column typing and identifier cleanup."""

    def test_column_types(self):
        """Identity text columns are TEXT, everything else NUMBER."""
        assert column_type("ID") == ColumnType.TEXT
        assert column_type("Tissue") == ColumnType.TEXT
        assert column_type("UW_Line") == ColumnType.NUMBER
        assert column_type("Timepoint") == ColumnType.NUMBER
        assert column_type("CD4_Percent") == ColumnType.NUMBER

    def test_clean_identifier(self):
        """Spaces are removed and the cross separator lower-cased."""
        assert clean_identifier("16012 X 3415") == "16012x3415"
        assert clean_identifier("16012x3415_1") == "16012x3415_1"
        assert clean_identifier(None) is None

    def test_column_type_with_text_columns(self):
        """Extra text columns are TEXT; others keep their type."""
        assert column_type("Comments", {"Comments"}) == ColumnType.TEXT
        assert column_type("CD4_Percent", {"Comments"}) == ColumnType.NUMBER


class TestDictionaryTextColumns:
    """Tests for text columns recorded on the dictionary."""

    def setup_method(self):
        self.dictionary = ColumnDictionary.from_names(["ID", "CD4_Percent"])

    def test_extend_records_new_text_columns(self):
        d = self.dictionary.extend(["Comments", "CD8_Percent"], text_columns=["Comments"])
        assert d.text_columns == frozenset({"Comments"})
        assert self.dictionary.text_columns == frozenset()

    def test_existing_column_keeps_its_type(self):
        """A column already in the dictionary is not retyped by extend."""
        d = self.dictionary.extend(["CD4_Percent", "Comments"], text_columns=["CD4_Percent"])
        assert d.text_columns == frozenset()

    def test_text_columns_must_be_names(self):
        with pytest.raises(ValueError, match="Text columns"):
            ColumnDictionary(("ID",), text_columns=frozenset({"Comments"}))
