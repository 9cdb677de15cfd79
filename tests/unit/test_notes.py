"""Unit tests for callsign_notes.notes."""

from __future__ import annotations

from datetime import datetime, timezone

from callsign_notes.github_publisher import Destination, PendingFile
from callsign_notes.notes import build_commit_message, content_changed, render_notes
from callsign_notes.shared import Member

T1 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
T2 = datetime(2026, 1, 2, 8, 30, 0, tzinfo=timezone.utc)
DEST = Destination("qrqcrew", "notes", "main")


class TestRenderNotes:
    def test_scenario_single_member(self):
        out = render_notes("QRQ Crew", "⚓", [Member("K4MW", "1")], generated_at=T1)
        assert out == (
            "# QRQ Crew Callsign Notes for Ham2K PoLo\n"
            "# Generated: 2026-01-01 12:00:00 UTC\n"
            "# Do not edit manually - this file is auto-generated\n"
            "\n"
            "K4MW ⚓ QRQ Crew #1\n"
        )

    def test_url_line(self):
        out = render_notes("SKCC", "🔑", [], url="https://www.skccgroup.com", generated_at=T1)
        assert "# https://www.skccgroup.com\n" in out

    def test_members_sorted(self):
        members = [Member("W6JSV", "10"), Member("K4MW", "1"), Member("AA1A", "7")]
        lines = render_notes("QRQ Crew", "⚓", members, generated_at=T1).splitlines()
        assert lines[-3:] == ["AA1A ⚓ QRQ Crew #7", "K4MW ⚓ QRQ Crew #1", "W6JSV ⚓ QRQ Crew #10"]

    def test_deterministic(self):
        members = [Member("K4MW", "1"), Member("W6JSV", "10")]
        assert render_notes("X", "*", members, generated_at=T1) == render_notes(
            "X", "*", list(reversed(members)), generated_at=T1
        )


class TestContentChanged:
    def test_missing_remote_is_changed(self):
        assert content_changed(None, "anything")

    def test_timestamp_only_difference_is_unchanged(self):
        members = [Member("K4MW", "1")]
        old = render_notes("QRQ Crew", "⚓", members, generated_at=T1)
        new = render_notes("QRQ Crew", "⚓", members, generated_at=T2)
        assert old != new
        assert not content_changed(old, new)

    def test_member_change_detected(self):
        old = render_notes("QRQ Crew", "⚓", [Member("K4MW", "1")], generated_at=T1)
        new = render_notes("QRQ Crew", "⚓", [Member("K4MW", "1"), Member("W6JSV", "10")], generated_at=T2)
        assert content_changed(old, new)


class TestBuildCommitMessage:
    def test_single_file(self):
        files = [PendingFile("qrq.txt", "", "QRQ Crew", 42, DEST)]
        assert build_commit_message(files) == (
            "Update QRQ Crew callsign notes (42 members)\n\nGenerated by callsign-notes"
        )

    def test_multiple_files(self):
        files = [
            PendingFile("qrq.txt", "", "QRQ Crew", 42, DEST),
            PendingFile("skcc.txt", "", "SKCC", 3, DEST),
        ]
        assert build_commit_message(files) == (
            "Update callsign notes\n\n"
            "- QRQ Crew: 42 members\n"
            "- SKCC: 3 members\n\n"
            "Generated by callsign-notes"
        )
