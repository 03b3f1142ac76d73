import pytest

from codes.normalization import normalize_code_key, sanitize_code_display


def test_sanitize_trims_and_uppercases():
    assert sanitize_code_display("  abc123 ") == "ABC123"
    assert sanitize_code_display("sub-2025!!") == "SUB-2025!!"


@pytest.mark.parametrize("raw", [None, "", "   ", 123, ["ABC"]])
def test_sanitize_rejects_empty_and_non_strings(raw):
    assert sanitize_code_display(raw) is None


def test_formatting_variants_share_a_key():
    assert normalize_code_key("sub-2025!!") == "SUB2025"
    assert normalize_code_key("SUB2025") == "SUB2025"
    assert normalize_code_key(" sub 2025 ") == "SUB2025"


def test_punctuation_only_code_has_display_but_no_key():
    assert sanitize_code_display("---") == "---"
    assert normalize_code_key("---") is None
    assert normalize_code_key(None) is None
