"""callsign_notes.roster_sources

Roster adapters: turn raw CSV or HTML-table bytes into a validated,
de-duplicated, callsign-sorted list of Member records.

Row rules (both formats):
  - callsign trimmed + uppercased; empty → skipped
  - must match the callsign grammar (1-2 letters, digit, 1-4 letters)
  - first occurrence of a callsign wins; later duplicates are rejected
  - CSV member numbers must be non-negative integers; HTML member ids are
    opaque non-empty strings (e.g. '2C', '3S')
  - HTML only: callsigns ending in '/SK' (Silent Key) are dropped; any other
    '/' suffix is stripped before validation

Rejected rows (including rows the csv module cannot read) are counted and
logged at DEBUG; only a missing header row or an unresolvable column aborts
the parse.
"""

from __future__ import annotations

import csv
import io
import logging
import re
from typing import TYPE_CHECKING

import requests
from bs4 import BeautifulSoup

from callsign_notes.normalize import (
    is_silent_key,
    is_valid_callsign,
    normalize_callsign,
    normalize_header,
    split_portable_suffix,
    trim,
)
from callsign_notes.shared import (
    Backoff,
    Member,
    OrgCounters,
    RosterParseError,
    fetch_with_retry,
    sort_members,
)

if TYPE_CHECKING:
    from callsign_notes.config import Organization

log = logging.getLogger(__name__)

SOURCE_CSV = "csv"
SOURCE_HTML_TABLE = "html_table"
SOURCE_TYPES = (SOURCE_CSV, SOURCE_HTML_TABLE)

DEFAULT_TABLE_SELECTOR = "table.skcc_table tr"

CSV_TIMEOUT = 30
HTML_TIMEOUT = 60

_MEMBER_NUMBER_RE = re.compile(r"^[0-9]+$")


def _decode(raw: bytes | str) -> str:
    if isinstance(raw, str):
        return raw
    return raw.decode("utf-8-sig", errors="replace")


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

def find_column(headers: list[str], name: str) -> int | None:
    """Index of the header matching name (case-insensitive, trimmed), else None."""
    target = normalize_header(name)
    for idx, header in enumerate(headers):
        if normalize_header(header) == target:
            return idx
    return None


def parse_member_number(value: str | None) -> int | None:
    """Parse a CSV member number; None unless it is a plain non-negative integer."""
    v = trim(value)
    if v is None or not _MEMBER_NUMBER_RE.match(v):
        return None
    return int(v)


def parse_csv_roster(
    raw: bytes | str,
    callsign_column: str,
    number_column: str,
    skip_rows: int = 0,
    counters: OrgCounters | None = None,
) -> list[Member]:
    """Parse a CSV roster.

    The first skip_rows rows are metadata; the next row is the header.
    Raises RosterParseError if the header is missing or a column is not found.
    """
    counters = counters or OrgCounters(name="csv")
    reader = csv.reader(io.StringIO(_decode(raw)))

    try:
        for _ in range(skip_rows):
            if next(reader, None) is None:
                break
        headers = next(reader, None)
    except csv.Error as exc:
        raise RosterParseError(f"Malformed CSV header: {exc}") from exc
    if headers is None:
        raise RosterParseError("CSV has no header row after skipping metadata")
    log.debug("[%s] Header row: %s", counters.name, headers)

    callsign_idx = find_column(headers, callsign_column)
    if callsign_idx is None:
        raise RosterParseError(f"Could not find callsign column {callsign_column!r} in CSV")
    number_idx = find_column(headers, number_column)
    if number_idx is None:
        raise RosterParseError(f"Could not find number column {number_column!r} in CSV")

    seen: set[str] = set()
    members: list[Member] = []
    row_num = skip_rows + 1  # 1-indexed header row

    while True:
        row_num += 1
        try:
            row = next(reader)
        except StopIteration:
            break
        except csv.Error as exc:
            counters.rows_read += 1
            counters.reject(row_num, f"malformed CSV row: {exc}")
            continue

        counters.rows_read += 1
        if callsign_idx >= len(row):
            continue

        callsign = normalize_callsign(row[callsign_idx])
        if callsign is None:
            continue
        if not is_valid_callsign(callsign):
            counters.reject(row_num, f"invalid callsign pattern: {callsign}")
            continue
        if callsign in seen:
            counters.reject(row_num, f"duplicate callsign: {callsign}")
            continue

        raw_number = row[number_idx] if number_idx < len(row) else None
        if raw_number is None:
            counters.reject(row_num, f"missing member number for {callsign}")
            continue
        number = parse_member_number(raw_number)
        if number is None:
            counters.reject(row_num, f"invalid member number {raw_number!r} for {callsign}")
            continue

        seen.add(callsign)
        members.append(Member(callsign=callsign, member_id=str(number)))

    members = sort_members(members)
    counters.members_parsed = len(members)
    return members


# ---------------------------------------------------------------------------
# HTML table
# ---------------------------------------------------------------------------

def parse_html_roster(
    raw: bytes | str,
    callsign_index: int,
    number_index: int,
    table_selector: str = DEFAULT_TABLE_SELECTOR,
    counters: OrgCounters | None = None,
) -> list[Member]:
    """Parse an HTML roster table.

    Rows without <td> cells (header rows using <th>) are skipped, as are rows
    too short to contain both configured columns.
    """
    counters = counters or OrgCounters(name="html")
    soup = BeautifulSoup(_decode(raw), "html.parser")

    seen: set[str] = set()
    members: list[Member] = []

    for row_num, row in enumerate(soup.select(table_selector)):
        cells = row.find_all("td")
        if not cells:
            continue
        counters.rows_read += 1

        if len(cells) <= callsign_index or len(cells) <= number_index:
            counters.reject(row_num, f"not enough columns ({len(cells)})")
            continue

        callsign_raw = normalize_callsign(cells[callsign_index].get_text())
        if callsign_raw is None:
            continue
        if is_silent_key(callsign_raw):
            counters.reject(row_num, f"silent key: {callsign_raw}")
            continue

        callsign, _suffix = split_portable_suffix(callsign_raw)
        if not callsign:
            continue
        if not is_valid_callsign(callsign):
            counters.reject(row_num, f"invalid callsign pattern: {callsign}")
            continue
        if callsign in seen:
            counters.reject(row_num, f"duplicate callsign: {callsign}")
            continue

        member_id = trim(cells[number_index].get_text())
        if member_id is None:
            counters.reject(row_num, f"empty member id for {callsign}")
            continue

        seen.add(callsign)
        members.append(Member(callsign=callsign, member_id=member_id))

    members = sort_members(members)
    counters.members_parsed = len(members)
    return members


# ---------------------------------------------------------------------------
# Fetch + parse
# ---------------------------------------------------------------------------

def parse_roster(
    raw: bytes | str,
    org: Organization,
    counters: OrgCounters | None = None,
) -> list[Member]:
    """Dispatch to the parser matching org.source_type."""
    if org.source_type == SOURCE_HTML_TABLE:
        return parse_html_roster(
            raw,
            org.callsign_column_index,
            org.number_column_index,
            table_selector=org.table_selector,
            counters=counters,
        )
    return parse_csv_roster(
        raw,
        org.callsign_column,
        org.number_column,
        skip_rows=org.skip_rows,
        counters=counters,
    )


def fetch_roster(
    session: requests.Session,
    org: Organization,
    backoff: Backoff | None = None,
    counters: OrgCounters | None = None,
) -> list[Member]:
    """Download org's roster (with retry) and parse it.

    Raises FetchError when the download keeps failing and RosterParseError when
    the document has no usable header/columns.
    """
    timeout = HTML_TIMEOUT if org.source_type == SOURCE_HTML_TABLE else CSV_TIMEOUT
    raw = fetch_with_retry(session, org.roster_url, backoff=backoff, timeout=timeout)
    return parse_roster(raw, org, counters=counters)
