"""callsign_notes.notes

Ham2K PoLo callsign notes rendering and change detection.

File layout:

    # <label> Callsign Notes for Ham2K PoLo
    # Generated: 2026-01-01 12:00:00 UTC
    # <url>                                   (only when configured)
    # Do not edit manually - this file is auto-generated

    K4MW ⚓ QRQ Crew #1
    W6JSV ⚓ QRQ Crew #10
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Sequence

from callsign_notes.shared import Member, sort_members

if TYPE_CHECKING:
    from callsign_notes.config import Organization
    from callsign_notes.github_publisher import PendingFile

GENERATED_PREFIX = "# Generated:"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S UTC"
EDIT_WARNING = "# Do not edit manually - this file is auto-generated"
COMMIT_SIGNATURE = "Generated by callsign-notes"


def render_notes(
    label: str,
    emoji: str,
    members: Sequence[Member],
    url: str | None = None,
    generated_at: datetime | None = None,
) -> str:
    """Render the notes file; output depends only on the inputs and generated_at."""
    generated_at = generated_at or datetime.now(timezone.utc)
    lines = [
        f"# {label} Callsign Notes for Ham2K PoLo",
        f"{GENERATED_PREFIX} {generated_at.strftime(TIMESTAMP_FORMAT)}",
    ]
    if url:
        lines.append(f"# {url}")
    lines.append(EDIT_WARNING)
    lines.append("")

    for member in sort_members(members):
        lines.append(f"{member.callsign} {emoji} {label} #{member.member_id}")

    return "\n".join(lines) + "\n"


def render_org_notes(
    org: Organization,
    members: Sequence[Member],
    generated_at: datetime | None = None,
) -> str:
    return render_notes(org.label, org.emoji, members, url=org.url, generated_at=generated_at)


def _comparable_lines(content: str) -> list[str]:
    return [line for line in content.splitlines() if not line.startswith(GENERATED_PREFIX)]


def content_changed(remote_content: str | None, new_content: str) -> bool:
    """True unless both sides match line-for-line, ignoring the Generated: line.

    A missing remote file (None) always counts as changed.
    """
    if remote_content is None:
        return True
    return _comparable_lines(remote_content) != _comparable_lines(new_content)


def build_commit_message(files: Sequence[PendingFile]) -> str:
    if len(files) == 1:
        f = files[0]
        return (
            f"Update {f.org_label} callsign notes ({f.member_count} members)\n\n"
            f"{COMMIT_SIGNATURE}"
        )
    lines = ["Update callsign notes", ""]
    lines += [f"- {f.org_label}: {f.member_count} members" for f in files]
    lines += ["", COMMIT_SIGNATURE]
    return "\n".join(lines)
