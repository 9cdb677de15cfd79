"""callsign_notes.nickname_cache

Persistent file-based cache for nickname lookups.

Stores callsign → nickname mappings with a 30-day TTL. A cached None means
"looked up, no nickname" so unknown callsigns are not queried again until
the entry expires.

File format (JSON, human-inspectable):

    {"entries": {"W6JSV": {"nickname": "Jay", "cached_at": "2026-01-01T00:00:00+00:00"}}}

A bare {callsign: entry} mapping is accepted on load as well.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from callsign_notes.shared import CacheError, RWLock

log = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(days=30)

# chrono-style timestamps may carry nanoseconds; fromisoformat takes at most 6 digits
_FRACTION_RE = re.compile(r"\.(\d{6})\d+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp ('Z' suffix and >6 fraction digits allowed)."""
    if not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(r".\1", text)
    try:
        ts = datetime.fromisoformat(text)
    except ValueError:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------

@dataclass
class CacheEntry:
    nickname: str | None
    cached_at: datetime

    def is_expired(self, ttl: timedelta, now: datetime) -> bool:
        return now - self.cached_at > ttl

    def to_json(self) -> dict[str, Any]:
        return {"nickname": self.nickname, "cached_at": self.cached_at.isoformat()}


class NicknameCache:
    """TTL-expiring callsign → nickname cache with dirty tracking and atomic save.

    All public methods are safe to call from concurrent lookup workers:
    reads share the lock, inserts and saves take it exclusively.
    """

    def __init__(
        self,
        path: Path | str,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.path = Path(path)
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._dirty = False
        self.lock = RWLock()

    # ------------------------------------------------------------------ #
    # Load                                                                 #
    # ------------------------------------------------------------------ #
    @classmethod
    def load(
        cls,
        path: Path | str,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> NicknameCache:
        """Load the cache file, pruning expired entries.

        A missing, empty, or unreadable file yields an empty cache.
        """
        cache = cls(path, ttl=ttl, clock=clock)
        if not cache.path.exists():
            log.debug("No existing cache file at %s, starting fresh", cache.path)
            return cache

        try:
            content = cache.path.read_text(encoding="utf-8")
        except OSError as exc:
            log.warning("Failed to read nickname cache %s (%s); starting fresh.", cache.path, exc)
            return cache

        if not content.strip():
            log.debug("Cache file is empty, starting fresh")
            return cache

        try:
            data = json.loads(content)
        except json.JSONDecodeError as exc:
            log.warning("Failed to parse nickname cache %s (%s); starting fresh.", cache.path, exc)
            return cache

        raw_entries = data.get("entries", data) if isinstance(data, dict) else {}
        now = cache._clock()
        loaded = 0
        pruned = 0
        for callsign, raw in (raw_entries or {}).items():
            if not isinstance(raw, dict):
                pruned += 1
                continue
            cached_at = _parse_timestamp(raw.get("cached_at"))
            nickname = raw.get("nickname")
            if cached_at is None or (nickname is not None and not isinstance(nickname, str)):
                pruned += 1
                continue
            entry = CacheEntry(nickname=nickname, cached_at=cached_at)
            if entry.is_expired(ttl, now):
                pruned += 1
                continue
            cache._entries[str(callsign).upper()] = entry
            loaded += 1

        if pruned:
            log.info("Loaded nickname cache with %d entries (%d expired, pruned)", loaded, pruned)
        else:
            log.info("Loaded nickname cache with %d entries", loaded)
        return cache

    # ------------------------------------------------------------------ #
    # Reads                                                                #
    # ------------------------------------------------------------------ #
    def _get_unlocked(self, callsign: str) -> tuple[str | None] | None:
        entry = self._entries.get(callsign.upper())
        if entry is None or entry.is_expired(self.ttl, self._clock()):
            return None
        return (entry.nickname,)

    def get(self, callsign: str) -> tuple[str | None] | None:
        """Look up a callsign.

        Returns None on a miss (or expired entry), otherwise a 1-tuple holding
        the cached nickname, which is itself None for "no nickname".
        """
        with self.lock.read():
            return self._get_unlocked(callsign)

    def snapshot(self, callsigns: Iterable[str]) -> dict[str, str | None]:
        """Cached nicknames for every hit among callsigns, under one read lock."""
        hits: dict[str, str | None] = {}
        with self.lock.read():
            for callsign in callsigns:
                cached = self._get_unlocked(callsign)
                if cached is not None:
                    hits[callsign.upper()] = cached[0]
        return hits

    def filter_uncached(self, callsigns: Iterable[str]) -> list[str]:
        """Callsigns with no live cache entry, in input order."""
        with self.lock.read():
            return [cs for cs in callsigns if self._get_unlocked(cs) is None]

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------ #
    # Writes                                                               #
    # ------------------------------------------------------------------ #
    def insert(self, callsign: str, nickname: str | None) -> None:
        with self.lock.write():
            self._entries[callsign.upper()] = CacheEntry(nickname=nickname, cached_at=self._clock())
            self._dirty = True

    def update(self, results: dict[str, str | None]) -> None:
        """Insert many lookup results under a single write lock."""
        if not results:
            return
        now = self._clock()
        with self.lock.write():
            for callsign, nickname in results.items():
                self._entries[callsign.upper()] = CacheEntry(nickname=nickname, cached_at=now)
            self._dirty = True

    def save(self) -> None:
        """Persist to disk if dirty (temp file + rename). Raises CacheError on I/O failure."""
        with self.lock.write():
            if not self._dirty:
                return
            payload = {
                "entries": {
                    callsign: entry.to_json()
                    for callsign, entry in sorted(self._entries.items())
                }
            }
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                fd, tmp_name = tempfile.mkstemp(
                    dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
                )
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        json.dump(payload, fh, indent=2, ensure_ascii=False)
                    os.replace(tmp_name, self.path)
                except BaseException:
                    Path(tmp_name).unlink(missing_ok=True)
                    raise
            except OSError as exc:
                raise CacheError(f"Failed to write cache file {self.path}: {exc}") from exc
            self._dirty = False
            log.debug("Saved nickname cache (%d entries)", len(self._entries))

    def flush(self) -> bool:
        """Best-effort save for shutdown paths. Returns False (and logs) on failure."""
        try:
            self.save()
        except CacheError as exc:
            log.warning("Failed to save nickname cache: %s", exc)
            return False
        return True
