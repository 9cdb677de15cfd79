"""Normalization functions for roster ingestion.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re

CALLSIGN_RE = re.compile(r"^[A-Z]{1,2}\d[A-Z]{1,4}$")

SILENT_KEY_SUFFIX = "SK"


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_header  (for column lookup by name)
# ---------------------------------------------------------------------------

def normalize_header(value: str | None) -> str:
    """Lowercase and trim a header cell; None becomes the empty string."""
    return (trim(value) or "").lower()


# ---------------------------------------------------------------------------
# Rule 3: normalize_callsign
# ---------------------------------------------------------------------------

def normalize_callsign(value: str | None) -> str | None:
    """Trim and uppercase a callsign; empty input returns None."""
    v = trim(value)
    if v is None:
        return None
    return v.upper()


def is_valid_callsign(value: str | None) -> bool:
    """True when value matches the amateur-radio callsign grammar.

    1-2 letter prefix, one digit, 1-4 letter suffix. The caller is expected to
    have normalized the value already; lowercase input does not match.
    """
    if not value:
        return False
    return CALLSIGN_RE.match(value) is not None


# ---------------------------------------------------------------------------
# Rule 4: split_portable_suffix
# ---------------------------------------------------------------------------

def split_portable_suffix(value: str) -> tuple[str, str | None]:
    """Split 'N6WK/SK' into ('N6WK', 'SK').

    Everything after the first '/' is the suffix. Both halves are trimmed.
    Returns (value, None) when there is no '/'.
    """
    if "/" not in value:
        return value.strip(), None
    base, _, suffix = value.partition("/")
    return base.strip(), suffix.strip()


def is_silent_key(value: str | None) -> bool:
    """True for roster callsigns marked as Silent Key ('N6WK/SK')."""
    v = normalize_callsign(value)
    return v is not None and v.endswith("/" + SILENT_KEY_SUFFIX)
