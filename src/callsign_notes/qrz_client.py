"""callsign_notes.qrz_client

QRZ XML data client for nickname (first name) lookups.

Session handling:
  - One session key per client, shared by every lookup worker.
  - Obtained lazily with a single login round-trip.
  - A lookup answered with "Session Timeout" / "Invalid session key" clears the
    key, logs in again, and retries that lookup exactly once. A second expiry
    in a row raises QrzSessionError for that callsign only.
  - Rejected credentials raise QrzAuthError and are never retried.
"""

from __future__ import annotations

import logging

import requests
from bs4 import BeautifulSoup

from callsign_notes.normalize import trim
from callsign_notes.shared import (
    Backoff,
    NicknameLookupError,
    QrzAuthError,
    QrzSessionError,
    RWLock,
    new_session,
    request_with_retry,
)

log = logging.getLogger(__name__)

QRZ_XML_URL = "https://xmldata.qrz.com/xml/current/"
QRZ_AGENT = "callsign-notes"
QRZ_TIMEOUT = 30

_SESSION_EXPIRED_MARKERS = ("Session Timeout", "Invalid session key")
_NOT_FOUND_PREFIX = "Not found"


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _soup(xml: str) -> BeautifulSoup:
    # html.parser lowercases tag names: <Key> → key, <fname> → fname
    return BeautifulSoup(xml, "html.parser")


def extract_session_key(xml: str) -> str:
    """Return the <Key> from a login response.

    Raises QrzAuthError when the service answered with an <Error> instead,
    NicknameLookupError when neither element is present.
    """
    soup = _soup(xml)
    key = soup.find("key")
    if key is not None and trim(key.get_text()):
        return key.get_text().strip()
    error = soup.find("error")
    if error is not None:
        raise QrzAuthError(f"QRZ error: {error.get_text().strip()}")
    raise NicknameLookupError("Could not parse QRZ session key")


def extract_error(xml: str) -> str | None:
    error = _soup(xml).find("error")
    if error is None:
        return None
    return trim(error.get_text())


def extract_fname(xml: str) -> str | None:
    """First name from a callsign lookup response; None when absent or empty."""
    fname = _soup(xml).find("fname")
    if fname is None:
        return None
    return trim(fname.get_text())


def is_session_expired(xml: str) -> bool:
    return any(marker in xml for marker in _SESSION_EXPIRED_MARKERS)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class QrzClient:
    """Thread-safe QRZ lookup client with a cached session key."""

    def __init__(
        self,
        username: str,
        password: str,
        session: requests.Session | None = None,
        base_url: str = QRZ_XML_URL,
        backoff: Backoff | None = None,
        timeout: float = QRZ_TIMEOUT,
    ) -> None:
        self.username = username
        self.password = password
        self.http = session or new_session()
        self.base_url = base_url
        self.backoff = backoff or Backoff()
        self.timeout = timeout
        self._session_key: str | None = None
        self._key_lock = RWLock()
        self.logins = 0

    def _get(self, params: dict[str, str]) -> str:
        resp = request_with_retry(
            self.http, "GET", self.base_url,
            backoff=self.backoff, timeout=self.timeout, params=params,
        )
        return resp.text

    def login(self) -> str:
        """Authenticate and return a fresh session key."""
        self.logins += 1
        text = self._get(
            {"username": self.username, "password": self.password, "agent": QRZ_AGENT}
        )
        return extract_session_key(text)

    def get_session_key(self) -> str:
        with self._key_lock.read():
            if self._session_key is not None:
                return self._session_key
        with self._key_lock.write():
            # Another worker may have logged in while we waited for the lock
            if self._session_key is None:
                self._session_key = self.login()
                log.debug("QRZ session established")
            return self._session_key

    def clear_session(self, stale_key: str | None = None) -> None:
        """Forget the cached key (only if it is still stale_key, when given)."""
        with self._key_lock.write():
            if stale_key is None or self._session_key == stale_key:
                self._session_key = None

    def lookup_nickname(self, callsign: str) -> str | None:
        """Return the first name registered for callsign, or None if not found.

        Raises QrzAuthError, QrzSessionError, or FetchError.
        """
        for attempt in range(2):
            session_key = self.get_session_key()
            text = self._get({"s": session_key, "callsign": callsign})

            if is_session_expired(text):
                log.debug("QRZ session expired (attempt %d), refreshing", attempt + 1)
                self.clear_session(session_key)
                continue

            error = extract_error(text)
            if error is not None and error.startswith(_NOT_FOUND_PREFIX):
                log.debug("Callsign %s not found in QRZ", callsign)
                return None
            if error is not None:
                log.debug("QRZ returned error for %s: %s", callsign, error)

            return extract_fname(text)

        raise QrzSessionError(f"QRZ session expired twice looking up {callsign}")
