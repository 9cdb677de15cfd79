"""callsign_notes.enrichment

Fill Member.nickname from the nickname cache first, then from bounded-concurrency
lookups for the cache misses.

Order of operations per organization:
  1. One read-locked snapshot of the cache for all callsigns.
  2. Lookups for misses on a worker pool; each worker holds a permit from a
     counting semaphore (max_concurrent) and waits request_delay before its
     request so the service is not hit in bursts.
  3. Results are collected in completion order and applied to members by
     callsign, then written to the cache in one write-locked update and saved.

A failed lookup leaves that member without a nickname and is not cached, so
it is retried on the next pass.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Protocol

from callsign_notes.nickname_cache import NicknameCache
from callsign_notes.shared import (
    CallsignNotesError,
    Member,
    OrgCounters,
)

log = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_LOOKUPS = 10
DEFAULT_REQUEST_DELAY = 0.05


class NicknameLookup(Protocol):
    def lookup_nickname(self, callsign: str) -> str | None:
        ...


_FAILED = object()


def _lookup_one(
    lookup: NicknameLookup,
    callsign: str,
    permits: threading.Semaphore,
    request_delay: float,
    org_name: str,
) -> tuple[str, object]:
    with permits:
        if request_delay > 0:
            time.sleep(request_delay)
        try:
            nickname = lookup.lookup_nickname(callsign)
        except CallsignNotesError as exc:
            log.warning("[%s] QRZ lookup failed for %s: %s", org_name, callsign, exc)
            return callsign, _FAILED
        except Exception:  # noqa: BLE001
            log.exception("[%s] Unexpected error looking up %s", org_name, callsign)
            return callsign, _FAILED
    if nickname is not None:
        log.debug("[%s] Found nickname for %s: %s", org_name, callsign, nickname)
    return callsign, nickname


def enrich_with_nicknames(
    members: list[Member],
    lookup: NicknameLookup,
    cache: NicknameCache,
    org_name: str = "",
    max_concurrent: int = DEFAULT_MAX_CONCURRENT_LOOKUPS,
    request_delay: float = DEFAULT_REQUEST_DELAY,
    counters: OrgCounters | None = None,
) -> OrgCounters:
    """Set nickname on every member the cache or the lookup service knows."""
    counters = counters or OrgCounters(name=org_name)
    if max_concurrent < 1:
        raise ValueError("max_concurrent must be at least 1")

    cached = cache.snapshot(m.callsign for m in members)
    uncached: list[str] = []
    for member in members:
        key = member.callsign.upper()
        if key in cached:
            member.nickname = cached[key]
            counters.cache_hits += 1
            if member.nickname is not None:
                counters.nicknames_found += 1
        else:
            uncached.append(member.callsign)

    if not uncached:
        log.info(
            "[%s] QRZ enrichment: %d cache hits, 0 lookups needed, %d nicknames found",
            org_name, counters.cache_hits, counters.nicknames_found,
        )
        return counters

    log.info(
        "[%s] QRZ enrichment: %d cache hits, %d lookups needed (max %d concurrent)",
        org_name, counters.cache_hits, len(uncached), max_concurrent,
    )

    permits = threading.Semaphore(max_concurrent)
    results: dict[str, str | None] = {}
    with ThreadPoolExecutor(max_workers=max_concurrent) as executor:
        futures = [
            executor.submit(_lookup_one, lookup, cs, permits, request_delay, org_name)
            for cs in uncached
        ]
        for future in as_completed(futures):
            callsign, outcome = future.result()
            counters.lookups += 1
            if outcome is _FAILED:
                counters.lookup_failures += 1
                continue
            results[callsign.upper()] = outcome  # type: ignore[assignment]

    new_found = 0
    for member in members:
        key = member.callsign.upper()
        if key in results:
            member.nickname = results[key]
            if member.nickname is not None:
                new_found += 1
    counters.nicknames_found += new_found

    cache.update(results)
    if not cache.flush():
        counters.warnings.append("nickname cache save failed")

    log.info(
        "[%s] QRZ enrichment complete: %d cache hits, %d lookups (%d failed), %d new nicknames found",
        org_name, counters.cache_hits, counters.lookups, counters.lookup_failures, new_found,
    )
    return counters
