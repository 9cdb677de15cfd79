"""callsign_notes.shared

Shared building blocks used by every pipeline stage.
Includes the Member record, run counters, the exception taxonomy, and the
retrying HTTP request helper.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator
from urllib.parse import urlsplit, urlunsplit

import requests

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
USER_AGENT = "callsign-notes/1.0"

# Query strings can carry QRZ credentials
_QUERY_RE = re.compile(r"\?[^\s'\")]*")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CallsignNotesError(Exception):
    """Base class for pipeline errors."""


class FetchError(CallsignNotesError):
    """Raised when an HTTP request still fails after all retry attempts."""


class RosterParseError(CallsignNotesError):
    """Raised when a roster document cannot be interpreted (missing header or column)."""


class NicknameLookupError(CallsignNotesError):
    """Raised when a nickname lookup cannot produce an answer."""


class QrzAuthError(NicknameLookupError):
    """Raised when the lookup service rejects the configured credentials."""


class QrzSessionError(NicknameLookupError):
    """Raised when the session is reported expired again right after re-login."""


class PublishError(CallsignNotesError):
    """Raised when a step of the batch commit sequence fails."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class CacheError(CallsignNotesError):
    """Raised when the nickname cache file cannot be read or written."""


# ---------------------------------------------------------------------------
# Member
# ---------------------------------------------------------------------------

@dataclass
class Member:
    callsign: str
    member_id: str
    nickname: str | None = None


def sort_members(members: Iterable[Member]) -> list[Member]:
    """Return members ordered by callsign (plain string comparison)."""
    return sorted(members, key=lambda m: m.callsign)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------

@dataclass
class OrgCounters:
    name: str
    rows_read: int = 0
    rows_rejected: int = 0
    members_parsed: int = 0
    cache_hits: int = 0
    lookups: int = 0
    lookup_failures: int = 0
    nicknames_found: int = 0
    status: str = "pending"
    error: str | None = None
    warnings: list[str] = field(default_factory=list)

    def reject(self, row_num: int, reason: str) -> None:
        self.rows_rejected += 1
        log.debug("[%s] Row %d: %s", self.name, row_num, reason)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in self.__dict__.items() if k != "warnings"}
        d["warnings"] = self.warnings[:50]
        return d


@dataclass
class DestinationResult:
    destination: str
    files: int = 0
    committed: bool = False
    commit_sha: str | None = None
    error: str | None = None


@dataclass
class PassCounters:
    orgs_processed: int = 0
    orgs_failed: int = 0
    orgs_skipped_empty: int = 0
    orgs_unchanged: int = 0
    files_pending: int = 0
    destinations_committed: int = 0
    destinations_failed: int = 0
    orgs: list[OrgCounters] = field(default_factory=list)
    destinations: list[DestinationResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            k: v for k, v in self.__dict__.items() if k not in ("orgs", "destinations")
        }
        d["orgs"] = [o.to_dict() for o in self.orgs]
        d["destinations"] = [dict(r.__dict__) for r in self.destinations]
        return d


# ---------------------------------------------------------------------------
# Retry with backoff
# ---------------------------------------------------------------------------

@dataclass
class Backoff:
    """Exponential backoff: base_delay, doubling, for max_attempts tries."""

    base_delay: float = 0.5
    max_attempts: int = 3

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        return self.base_delay * (2 ** (attempt - 1))

    def sleep(self, attempt: int) -> None:
        delay = self.delay_for(attempt)
        if delay > 0:
            time.sleep(delay)


def redact_url(url: str) -> str:
    """Drop the query string and fragment from url."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def redact_query(text: str) -> str:
    """Replace every ?query in free text (e.g. an exception message) with ?<redacted>."""
    return _QUERY_RE.sub("?<redacted>", text)


def new_session() -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": USER_AGENT})
    return session


def request_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    backoff: Backoff | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    accept_statuses: Iterable[int] = (),
    **kwargs: Any,
) -> requests.Response:
    """Issue an HTTP request, retrying transport errors and non-2xx responses.

    Statuses listed in accept_statuses are returned to the caller as-is
    (e.g. 404 for "file does not exist yet"). Raises FetchError once
    backoff.max_attempts attempts have failed.
    """
    backoff = backoff or Backoff()
    accepted = set(accept_statuses)
    safe_url = redact_url(url)
    last_error = "no attempts made"

    for attempt in range(1, backoff.max_attempts + 1):
        try:
            resp = session.request(method, url, timeout=timeout, **kwargs)
        except requests.RequestException as exc:
            last_error = f"request failed: {exc.__class__.__name__}: {redact_query(str(exc))}"
        else:
            if resp.ok or resp.status_code in accepted:
                return resp
            last_error = f"HTTP error: {resp.status_code}"

        if attempt < backoff.max_attempts:
            log.warning(
                "%s %s attempt %d failed (%s), retrying in %.1fs",
                method, safe_url, attempt, last_error, backoff.delay_for(attempt),
            )
            backoff.sleep(attempt)

    raise FetchError(f"{method} {safe_url} failed after {backoff.max_attempts} attempts: {last_error}")


def fetch_with_retry(
    session: requests.Session,
    url: str,
    backoff: Backoff | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> bytes:
    """GET url and return the response body bytes."""
    resp = request_with_retry(session, "GET", url, backoff=backoff, timeout=timeout)
    return resp.content


# ---------------------------------------------------------------------------
# Read/write lock
# ---------------------------------------------------------------------------

class RWLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
