"""
Unit Tests for Invoice Reference Extraction

Run with: pytest tests/test_reference_extractor.py -v
"""

import pytest

from reconciliation.matching_rules.reference import extract_reference, references_match


class TestExtractReference:
    """Marker pattern first, prefixed-code fallback second."""

    @pytest.mark.parametrize("text,expected", [
        ("Invoice INV-1042 payment", "INV-1042"),
        ("Payment for invoice #A1234", "A1234"),
        ("Receipt: 2024-0042", "2024-0042"),
        ("rcpt 88812 card", "88812"),
        ("INVOICE inv-2001", "inv-2001"),
    ])
    def test_marker_followed_by_code(self, text, expected):
        assert extract_reference(text) == expected

    def test_code_before_marker_uses_fallback(self):
        """The marker must precede the code; a leading PO-style code is still found."""
        assert extract_reference("INV-1042 supplier invoice") == "INV-1042"

    def test_prefixed_code_fallback(self):
        assert extract_reference("PO-12345 widgets") == "PO-12345"
        assert extract_reference("ref po-123 thanks") == "po-123"

    def test_marker_pattern_wins_over_fallback(self):
        assert extract_reference("PO-5555 invoice A9999") == "A9999"

    def test_marker_word_alone_is_not_a_reference(self):
        """The code after a marker must contain a digit."""
        assert extract_reference("invoice payment") is None

    def test_code_shorter_than_four_characters(self):
        assert extract_reference("inv 12") is None

    def test_fallback_needs_three_digits(self):
        assert extract_reference("AB-12") is None

    @pytest.mark.parametrize("text", [None, "", "card payment tesco"])
    def test_no_reference(self, text):
        assert extract_reference(text) is None

    def test_deterministic(self):
        text = "Invoice INV-1042 payment"
        assert extract_reference(text) == extract_reference(text)


class TestReferencesMatch:

    def test_case_insensitive(self):
        assert references_match("inv-1042", "INV-1042") is True

    def test_different_references(self):
        assert references_match("INV-1042", "INV-1043") is False

    @pytest.mark.parametrize("left,right", [(None, "INV-1042"), ("INV-1042", None), (None, None), ("", "")])
    def test_missing_side_never_matches(self, left, right):
        assert references_match(left, right) is False
