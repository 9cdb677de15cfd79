"""Unit tests for callsign_notes.normalize."""

import pytest

from callsign_notes.normalize import (
    is_silent_key,
    is_valid_callsign,
    normalize_callsign,
    normalize_header,
    split_portable_suffix,
    trim,
)


# ---------------------------------------------------------------------------
# trim
# ---------------------------------------------------------------------------

class TestTrim:
    def test_strips_whitespace(self):
        assert trim("  hello  ") == "hello"

    def test_empty_string_returns_none(self):
        assert trim("") is None

    def test_whitespace_only_returns_none(self):
        assert trim("   ") is None

    def test_none_returns_none(self):
        assert trim(None) is None


# ---------------------------------------------------------------------------
# normalize_header
# ---------------------------------------------------------------------------

class TestNormalizeHeader:
    def test_lowercases_and_trims(self):
        assert normalize_header("  Callsign ") == "callsign"

    def test_none_is_empty(self):
        assert normalize_header(None) == ""


# ---------------------------------------------------------------------------
# normalize_callsign / is_valid_callsign
# ---------------------------------------------------------------------------

class TestNormalizeCallsign:
    def test_uppercases_and_trims(self):
        assert normalize_callsign("  w6jsv ") == "W6JSV"

    def test_empty_returns_none(self):
        assert normalize_callsign("  ") is None


class TestIsValidCallsign:
    @pytest.mark.parametrize("value", ["K4MW", "W6JSV", "N6WK", "VE3ABC", "KA1B", "W1AAAA"])
    def test_valid(self, value):
        assert is_valid_callsign(value)

    @pytest.mark.parametrize(
        "value",
        ["", None, "INVALID", "k4mw", "ABC1DEFGH", "1ABC", "W1", "W1AW/P", "W1AAAAA"],
    )
    def test_invalid(self, value):
        assert not is_valid_callsign(value)


# ---------------------------------------------------------------------------
# split_portable_suffix / is_silent_key
# ---------------------------------------------------------------------------

class TestSplitPortableSuffix:
    def test_no_suffix(self):
        assert split_portable_suffix("W1AW") == ("W1AW", None)

    def test_portable_suffix(self):
        assert split_portable_suffix("W1AW/P") == ("W1AW", "P")

    def test_splits_at_first_slash(self):
        assert split_portable_suffix("W1AW/P/SK") == ("W1AW", "P/SK")


class TestIsSilentKey:
    def test_sk_suffix(self):
        assert is_silent_key("N6WK/SK")

    def test_lowercase_sk_suffix(self):
        assert is_silent_key(" n6wk/sk ")

    def test_portable_is_not_silent_key(self):
        assert not is_silent_key("W1AW/P")

    def test_plain_callsign(self):
        assert not is_silent_key("N6WK")

    def test_none(self):
        assert not is_silent_key(None)
