"""Unit tests for callsign_notes.github_publisher.

The GitHub API is mocked at the requests.Session level.
"""

from __future__ import annotations

import base64
from unittest.mock import MagicMock

import pytest
import requests

from callsign_notes.config import DestinationOverride, GitHubConfig
from callsign_notes.github_publisher import (
    Destination,
    GitHubClient,
    PendingFile,
    resolve_destination,
)
from callsign_notes.shared import Backoff, PublishError

API = "https://api.github.test"
GITHUB = GitHubConfig(
    token="t0k", owner="qrqcrew", repo="notes", branch="main",
    commit_author_name="Bot", commit_author_email="bot@example.com",
)
DEST = Destination("qrqcrew", "notes", "main")


def _resp(status: int = 200, payload: dict | None = None) -> MagicMock:
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 300
    r.json.return_value = payload or {}
    return r


def _client(session: MagicMock) -> GitHubClient:
    session.headers = {}
    return GitHubClient(
        token="t0k", author_name="Bot", author_email="bot@example.com",
        api_url=API, session=session, backoff=Backoff(base_delay=0),
    )


def _files() -> list[PendingFile]:
    return [
        PendingFile("qrq.txt", "K4MW ⚓ QRQ Crew #1\n", "QRQ Crew", 1, DEST),
        PendingFile("skcc.txt", "N6WK 🔑 SKCC #2C\n", "SKCC", 1, DEST),
    ]


# ---------------------------------------------------------------------------
# Destination resolution
# ---------------------------------------------------------------------------

class TestResolveDestination:
    def test_no_override(self):
        assert resolve_destination(None, GITHUB) == Destination("qrqcrew", "notes", "main")

    def test_override_wins_field_by_field(self):
        override = DestinationOverride(repo="skcc-notes")
        assert resolve_destination(override, GITHUB) == Destination("qrqcrew", "skcc-notes", "main")

    def test_full_override(self):
        override = DestinationOverride(owner="other", repo="r", branch="dev")
        assert resolve_destination(override, GITHUB) == Destination("other", "r", "dev")

    def test_equal_destinations_hash_equal(self):
        a = resolve_destination(None, GITHUB)
        b = resolve_destination(DestinationOverride(owner="qrqcrew"), GITHUB)
        assert {a: 1}[b] == 1


# ---------------------------------------------------------------------------
# get_file_content
# ---------------------------------------------------------------------------

class TestGetFileContent:
    def test_decodes_wrapped_base64(self):
        text = "# header\nK4MW ⚓ QRQ Crew #1\n"
        encoded = base64.b64encode(text.encode()).decode()
        wrapped = "\n".join(encoded[i:i + 20] for i in range(0, len(encoded), 20))
        session = MagicMock()
        session.request.return_value = _resp(200, {"content": wrapped, "encoding": "base64"})

        assert _client(session).get_file_content(DEST, "qrq.txt") == text
        args, kwargs = session.request.call_args
        assert args == ("GET", f"{API}/repos/qrqcrew/notes/contents/qrq.txt")
        assert kwargs["params"] == {"ref": "main"}

    def test_large_file_read_through_blob(self):
        text = "K4MW ⚓ QRQ Crew #1\n" * 3
        encoded = base64.b64encode(text.encode()).decode()
        session = MagicMock()
        session.request.side_effect = [
            _resp(200, {"content": "", "encoding": "none", "sha": "bigsha", "size": 2_000_000}),
            _resp(200, {"content": encoded, "encoding": "base64", "sha": "bigsha"}),
        ]

        assert _client(session).get_file_content(DEST, "qrq.txt") == text
        args, _ = session.request.call_args
        assert args == ("GET", f"{API}/repos/qrqcrew/notes/git/blobs/bigsha")

    def test_not_found_returns_none_without_retry(self):
        session = MagicMock()
        session.request.return_value = _resp(404)
        assert _client(session).get_file_content(DEST, "qrq.txt") is None
        assert session.request.call_count == 1

    def test_sets_auth_header(self):
        session = MagicMock()
        client = _client(session)
        assert client.http.headers["Authorization"] == "Bearer t0k"


# ---------------------------------------------------------------------------
# batch_commit
# ---------------------------------------------------------------------------

def _happy_responses() -> list[MagicMock]:
    return [
        _resp(200, {"object": {"sha": "head1"}}),
        _resp(200, {"tree": {"sha": "tree0"}}),
        _resp(201, {"sha": "blob1"}),
        _resp(201, {"sha": "blob2"}),
        _resp(201, {"sha": "tree1"}),
        _resp(201, {"sha": "commit1"}),
        _resp(200, {"object": {"sha": "commit1"}}),
    ]


class TestBatchCommit:
    def test_happy_path_sequence(self):
        session = MagicMock()
        session.request.side_effect = _happy_responses()

        sha = _client(session).batch_commit(DEST, _files(), "Update callsign notes")

        assert sha == "commit1"
        calls = [(c.args[0], c.args[1].removeprefix(f"{API}/repos/qrqcrew/notes/"))
                 for c in session.request.call_args_list]
        assert calls == [
            ("GET", "git/ref/heads/main"),
            ("GET", "git/commits/head1"),
            ("POST", "git/blobs"),
            ("POST", "git/blobs"),
            ("POST", "git/trees"),
            ("POST", "git/commits"),
            ("PATCH", "git/refs/heads/main"),
        ]
        tree_body = session.request.call_args_list[4].kwargs["json"]
        assert tree_body["base_tree"] == "tree0"
        assert [i["path"] for i in tree_body["tree"]] == ["qrq.txt", "skcc.txt"]
        assert [i["sha"] for i in tree_body["tree"]] == ["blob1", "blob2"]
        commit_body = session.request.call_args_list[5].kwargs["json"]
        assert commit_body["parents"] == ["head1"]
        assert commit_body["author"] == {"name": "Bot", "email": "bot@example.com"}
        assert session.request.call_args_list[6].kwargs["json"] == {"sha": "commit1", "force": False}

    def test_blob_failure_aborts_without_ref_update(self):
        session = MagicMock()
        session.request.side_effect = [
            _resp(200, {"object": {"sha": "head1"}}),
            _resp(200, {"tree": {"sha": "tree0"}}),
            _resp(201, {"sha": "blob1"}),
            _resp(500), _resp(500), _resp(500),
        ]
        with pytest.raises(PublishError) as exc_info:
            _client(session).batch_commit(DEST, _files(), "msg")

        assert exc_info.value.step == "create_blob"
        methods = [c.args[0] for c in session.request.call_args_list]
        assert "PATCH" not in methods

    def test_ref_lookup_transport_failure(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("offline")
        with pytest.raises(PublishError) as exc_info:
            _client(session).batch_commit(DEST, _files(), "msg")
        assert exc_info.value.step == "get_ref"
        assert session.request.call_count == 3

    def test_update_ref_failure_reported(self):
        session = MagicMock()
        session.request.side_effect = _happy_responses()[:-1] + [_resp(422)] * 3
        with pytest.raises(PublishError) as exc_info:
            _client(session).batch_commit(DEST, _files(), "msg")
        assert exc_info.value.step == "update_ref"

    def test_empty_batch_rejected(self):
        with pytest.raises(ValueError):
            _client(MagicMock()).batch_commit(DEST, [], "msg")
