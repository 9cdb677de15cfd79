"""callsign_notes.sync

Sync orchestrator: one pass over every enabled organization, then one batch
commit per destination repository.

Per organization (sequential, isolated):
  fetch -> parse -> (empty: skip) -> enrich -> render -> resolve destination
  -> compare with remote -> PendingFile when changed

A failure in one organization is logged and counted; the remaining
organizations still run. Pending files are grouped by Destination and each
group is published with a single GitHubClient.batch_commit call. A failing
destination does not affect the others. Dry run stops before the commit step.

Usage:
    ctx = build_context(config, dry_run=False)
    counters = run_pass(ctx)
    run_daemon(ctx, run_once=True)
"""

from __future__ import annotations

import logging
import socket
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Sequence
from urllib.parse import urlsplit

import requests

from callsign_notes.config import Config, Organization
from callsign_notes.enrichment import enrich_with_nicknames
from callsign_notes.github_publisher import (
    Destination,
    GitHubClient,
    PendingFile,
    resolve_destination,
)
from callsign_notes.nickname_cache import NicknameCache
from callsign_notes.notes import build_commit_message, content_changed, render_org_notes
from callsign_notes.qrz_client import QRZ_XML_URL, QrzClient
from callsign_notes.roster_sources import fetch_roster
from callsign_notes.shared import (
    Backoff,
    CallsignNotesError,
    DestinationResult,
    OrgCounters,
    PassCounters,
    new_session,
)

log = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10


@dataclass
class SyncContext:
    config: Config
    http: requests.Session
    github: GitHubClient
    cache: NicknameCache
    qrz: QrzClient | None = None
    dry_run: bool = False
    backoff: Backoff | None = None


def build_context(config: Config, dry_run: bool = False) -> SyncContext:
    """Wire up HTTP sessions, the nickname cache, and the optional QRZ client."""
    qrz = None
    if config.qrz is None:
        log.info("QRZ not configured, nicknames will not be fetched")
    elif not config.qrz.enabled:
        log.info("QRZ lookups disabled in config")
    else:
        log.info("QRZ lookups enabled")
        qrz = QrzClient(config.qrz.username, config.qrz.password)

    return SyncContext(
        config=config,
        http=new_session(),
        github=GitHubClient.from_config(config.github),
        cache=NicknameCache.load(config.cache_path),
        qrz=qrz,
        dry_run=dry_run,
    )


# ---------------------------------------------------------------------------
# Per-organization pipeline
# ---------------------------------------------------------------------------

def prepare_org_update(
    ctx: SyncContext,
    org: Organization,
    counters: OrgCounters,
) -> PendingFile | None:
    """Run one organization through fetch .. diff.

    Returns a PendingFile when the rendered notes differ from the remote file,
    None when the roster is empty or nothing changed. Fetch, parse, and remote
    read failures propagate to the caller.
    """
    log.info("[%s] Fetching roster from %s", org.name, org.roster_url)
    members = fetch_roster(ctx.http, org, backoff=ctx.backoff, counters=counters)
    log.info("[%s] Parsed %d members", org.name, len(members))

    if not members:
        log.warning("[%s] No members found, skipping", org.name)
        counters.status = "skipped_empty"
        return None

    if ctx.qrz is not None:
        qrz_cfg = ctx.config.qrz
        enrich_with_nicknames(
            members,
            ctx.qrz,
            ctx.cache,
            org_name=org.name,
            max_concurrent=qrz_cfg.max_concurrent_lookups if qrz_cfg else 10,
            request_delay=qrz_cfg.request_delay if qrz_cfg else 0.05,
            counters=counters,
        )

    content = render_org_notes(org, members)
    destination = resolve_destination(org.github, ctx.config.github)

    remote = ctx.github.get_file_content(destination, org.output_file)
    if not content_changed(remote, content):
        log.info("[%s] No changes detected in %s", org.name, org.output_file)
        counters.status = "unchanged"
        return None

    counters.status = "changed"
    log.info(
        "[%s] Prepared update for %s (%d members) -> %s",
        org.name, org.output_file, len(members), destination,
    )
    return PendingFile(
        path=org.output_file,
        content=content,
        org_label=org.label,
        member_count=len(members),
        destination=destination,
    )


def group_by_destination(files: Sequence[PendingFile]) -> OrderedDict[Destination, list[PendingFile]]:
    """Group pending files by destination, keeping first-seen order."""
    groups: OrderedDict[Destination, list[PendingFile]] = OrderedDict()
    for f in files:
        groups.setdefault(f.destination, []).append(f)
    return groups


def commit_batches(
    github: GitHubClient,
    pending: Sequence[PendingFile],
    counters: PassCounters,
    dry_run: bool = False,
) -> None:
    """Issue one batch commit per destination; failures are recorded per destination."""
    for dest, files in group_by_destination(pending).items():
        result = DestinationResult(destination=str(dest), files=len(files))
        counters.destinations.append(result)

        if dry_run:
            for f in files:
                log.info("[dry-run] Would commit %s to %s (%d members)", f.path, dest, f.member_count)
                log.debug("[dry-run] %s content:\n%s", f.path, f.content)
            continue

        message = build_commit_message(files)
        try:
            result.commit_sha = github.batch_commit(dest, files, message)
        except CallsignNotesError as exc:
            result.error = str(exc)
            counters.destinations_failed += 1
            log.error("Batch commit to %s failed: %s", dest, exc)
            continue
        except Exception as exc:  # noqa: BLE001
            result.error = f"unexpected error: {exc}"
            counters.destinations_failed += 1
            log.exception("Batch commit to %s failed unexpectedly", dest)
            continue

        result.committed = True
        counters.destinations_committed += 1


def run_pass(ctx: SyncContext) -> PassCounters:
    """Process every enabled organization and publish the changed files."""
    counters = PassCounters()
    pending: list[PendingFile] = []

    for org in ctx.config.enabled_organizations:
        org_counters = OrgCounters(name=org.name)
        counters.orgs.append(org_counters)
        log.info("[%s] Starting sync", org.name)
        try:
            pending_file = prepare_org_update(ctx, org, org_counters)
        except CallsignNotesError as exc:
            org_counters.status = "failed"
            org_counters.error = str(exc)
            counters.orgs_failed += 1
            log.error("[%s] Sync failed: %s", org.name, exc)
            continue
        except Exception as exc:  # noqa: BLE001
            org_counters.status = "failed"
            org_counters.error = f"unexpected error: {exc}"
            counters.orgs_failed += 1
            log.exception("[%s] Sync failed unexpectedly", org.name)
            continue

        counters.orgs_processed += 1
        if org_counters.status == "skipped_empty":
            counters.orgs_skipped_empty += 1
        elif pending_file is None:
            counters.orgs_unchanged += 1
        else:
            pending.append(pending_file)

    counters.files_pending = len(pending)
    if pending:
        commit_batches(ctx.github, pending, counters, dry_run=ctx.dry_run)
    else:
        log.info("No files to commit")
    return counters


# ---------------------------------------------------------------------------
# Connectivity diagnostics
# ---------------------------------------------------------------------------

def connectivity_targets(config: Config) -> list[tuple[str, str, int]]:
    """(name, host, port) for every remote service the pass will talk to."""
    targets: list[tuple[str, str, int]] = []
    seen: set[tuple[str, int]] = set()

    def add(name: str, url: str) -> None:
        parts = urlsplit(url)
        if not parts.hostname:
            return
        port = parts.port or (80 if parts.scheme == "http" else 443)
        if (parts.hostname, port) in seen:
            return
        seen.add((parts.hostname, port))
        targets.append((name, parts.hostname, port))

    for org in config.enabled_organizations:
        add(f"{org.name} roster", org.roster_url)
    if config.qrz is not None and config.qrz.enabled:
        add("QRZ", QRZ_XML_URL)
    add("GitHub API", config.github.api_url)
    return targets


def check_connectivity(
    targets: Sequence[tuple[str, str, int]],
    timeout: float = CONNECT_TIMEOUT,
) -> dict[str, bool]:
    """TCP-connect to each target and log the outcome. Never raises."""
    log.info("Running connectivity check...")
    results: dict[str, bool] = {}
    for name, host, port in targets:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                pass
        except socket.timeout:
            log.warning("[connectivity] %s (%s:%d) - TIMEOUT after %ss", name, host, port, timeout)
            results[name] = False
        except OSError as exc:
            log.warning("[connectivity] %s (%s:%d) - FAILED: %s", name, host, port, exc)
            results[name] = False
        else:
            log.debug("[connectivity] %s (%s:%d) - OK", name, host, port)
            results[name] = True
    return results


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def build_pass_report(counters: PassCounters, dry_run: bool) -> str:
    lines = [
        "=== Callsign Notes Sync Report ===",
        f"dry_run               : {dry_run}",
        f"orgs_processed        : {counters.orgs_processed}",
        f"orgs_failed           : {counters.orgs_failed}",
        f"orgs_skipped_empty    : {counters.orgs_skipped_empty}",
        f"orgs_unchanged        : {counters.orgs_unchanged}",
        f"files_pending         : {counters.files_pending}",
        f"destinations_committed: {counters.destinations_committed}",
        f"destinations_failed   : {counters.destinations_failed}",
    ]
    if counters.orgs:
        lines += ["", "--- Organizations ---"]
        for org in counters.orgs:
            line = (
                f"{org.name}: {org.status} members={org.members_parsed} "
                f"rejected={org.rows_rejected} cache_hits={org.cache_hits} "
                f"lookups={org.lookups} lookup_failures={org.lookup_failures} "
                f"nicknames={org.nicknames_found}"
            )
            if org.error:
                line += f" error={org.error}"
            lines.append(line)
    if counters.destinations:
        lines += ["", "--- Destinations ---"]
        for dest in counters.destinations:
            if dest.committed:
                state = f"committed {dest.commit_sha}"
            elif dest.error:
                state = f"failed: {dest.error}"
            else:
                state = "not committed"
            lines.append(f"{dest.destination}: {dest.files} file(s) {state}")
    warnings = [w for org in counters.orgs for w in org.warnings]
    if warnings:
        lines += ["", f"--- Warnings ({len(warnings)}) ---"]
        lines += [f"  {w}" for w in warnings[:20]]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Daemon loop
# ---------------------------------------------------------------------------

def run_daemon(
    ctx: SyncContext,
    run_once: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> list[PassCounters]:
    """Run passes until run_once completes one (or the process is interrupted).

    The nickname cache is flushed on every exit path.
    """
    config = ctx.config
    passes: list[PassCounters] = []
    log.info(
        "Starting callsign notes daemon with %d enabled organization(s)",
        len(config.enabled_organizations),
    )
    try:
        while True:
            if config.daemon.connectivity_check:
                check_connectivity(connectivity_targets(config))

            counters = run_pass(ctx)
            passes.append(counters)
            log.info("\n%s", build_pass_report(counters, ctx.dry_run))

            if run_once:
                log.info("Run-once mode, exiting")
                break

            log.info("Sleeping for %d seconds", config.daemon.sync_interval_secs)
            sleep(config.daemon.sync_interval_secs)
    finally:
        if ctx.cache.dirty:
            log.info("Flushing nickname cache (%d entries)", len(ctx.cache))
        ctx.cache.flush()
    return passes
