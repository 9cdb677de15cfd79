"""callsign_notes.github_publisher

Read notes files from GitHub and publish changed files in one commit per destination.

Batch commit sequence (Git Data API):
  1. GET   /repos/{owner}/{repo}/git/ref/heads/{branch}     -> head commit sha
  2. GET   /repos/{owner}/{repo}/git/commits/{sha}          -> base tree sha
  3. POST  /repos/{owner}/{repo}/git/blobs                  -> one blob per file
  4. POST  /repos/{owner}/{repo}/git/trees                  -> new tree on base tree
  5. POST  /repos/{owner}/{repo}/git/commits                -> new commit
  6. PATCH /repos/{owner}/{repo}/git/refs/heads/{branch}    -> move the branch

The sequence stops at the first failing step and raises PublishError naming
that step. The branch reference is only touched in step 6, so a failure
earlier leaves the branch unchanged. Blobs and trees created before the
failure stay behind as unreferenced objects.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Sequence

import requests

from callsign_notes.shared import (
    Backoff,
    FetchError,
    PublishError,
    new_session,
    request_with_retry,
)

if TYPE_CHECKING:
    from callsign_notes.config import DestinationOverride, GitHubConfig

log = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"
GITHUB_TIMEOUT = 30
FILE_MODE = "100644"


@dataclass(frozen=True)
class Destination:
    owner: str
    repo: str
    branch: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}@{self.branch}"


def resolve_destination(
    override: DestinationOverride | None,
    github: GitHubConfig,
) -> Destination:
    """Merge a per-organization override over the global repository, field by field."""
    if override is None:
        return Destination(github.owner, github.repo, github.branch)
    return Destination(
        owner=override.owner or github.owner,
        repo=override.repo or github.repo,
        branch=override.branch or github.branch,
    )


@dataclass
class PendingFile:
    path: str
    content: str
    org_label: str
    member_count: int
    destination: Destination


class GitHubClient:
    """Minimal GitHub REST client for reading and batch-committing text files."""

    def __init__(
        self,
        token: str,
        author_name: str,
        author_email: str,
        api_url: str = GITHUB_API_URL,
        session: requests.Session | None = None,
        backoff: Backoff | None = None,
        timeout: float = GITHUB_TIMEOUT,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.author_name = author_name
        self.author_email = author_email
        self.http = session or new_session()
        self.http.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        })
        self.backoff = backoff or Backoff()
        self.timeout = timeout

    @classmethod
    def from_config(cls, github: GitHubConfig, session: requests.Session | None = None) -> GitHubClient:
        return cls(
            token=github.token,
            author_name=github.commit_author_name,
            author_email=github.commit_author_email,
            api_url=github.api_url,
            session=session,
        )

    def _repo_url(self, dest: Destination, suffix: str) -> str:
        return f"{self.api_url}/repos/{dest.owner}/{dest.repo}/{suffix}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return request_with_retry(
            self.http, method, url, backoff=self.backoff, timeout=self.timeout, **kwargs
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_file_content(self, dest: Destination, path: str) -> str | None:
        """Return the decoded file at path on dest.branch, or None if it does not exist."""
        resp = self._request(
            "GET", self._repo_url(dest, f"contents/{path}"),
            params={"ref": dest.branch}, accept_statuses=(404,),
        )
        if resp.status_code == 404:
            log.debug("File %s does not exist on %s yet", path, dest)
            return None
        data = resp.json()
        if data.get("encoding") != "base64" and data.get("sha"):
            # Files over 1 MB come back with encoding "none" and empty content
            log.debug("%s on %s is too large for the contents API, reading blob", path, dest)
            blob = self._request("GET", self._repo_url(dest, f"git/blobs/{data['sha']}")).json()
            data = blob
        encoded = data.get("content")
        if encoded is None:
            return None
        # GitHub wraps base64 content at 60 characters
        raw = base64.b64decode("".join(encoded.split()))
        return raw.decode("utf-8")

    # ------------------------------------------------------------------
    # Batch commit
    # ------------------------------------------------------------------

    def _step(self, step: str, dest: Destination, method: str, suffix: str, **kwargs: Any) -> dict[str, Any]:
        try:
            resp = self._request(method, self._repo_url(dest, suffix), **kwargs)
            return resp.json()
        except (FetchError, ValueError) as exc:
            raise PublishError(step, f"{dest}: {exc}") from exc

    def batch_commit(self, dest: Destination, files: Sequence[PendingFile], message: str) -> str:
        """Commit every file to dest in one commit and return the new commit sha.

        Raises PublishError on the first failing step; the branch ref is left unchanged.
        """
        if not files:
            raise ValueError("batch_commit requires at least one file")

        ref = self._step("get_ref", dest, "GET", f"git/ref/heads/{dest.branch}")
        head_sha = ref["object"]["sha"]

        head_commit = self._step("get_commit", dest, "GET", f"git/commits/{head_sha}")
        base_tree_sha = head_commit["tree"]["sha"]

        tree_items = []
        for f in files:
            blob = self._step(
                "create_blob", dest, "POST", "git/blobs",
                json={"content": f.content, "encoding": "utf-8"},
            )
            tree_items.append({
                "path": f.path, "mode": FILE_MODE, "type": "blob", "sha": blob["sha"],
            })

        tree = self._step(
            "create_tree", dest, "POST", "git/trees",
            json={"base_tree": base_tree_sha, "tree": tree_items},
        )

        identity = {"name": self.author_name, "email": self.author_email}
        commit = self._step(
            "create_commit", dest, "POST", "git/commits",
            json={
                "message": message,
                "tree": tree["sha"],
                "parents": [head_sha],
                "author": identity,
                "committer": identity,
            },
        )

        self._step(
            "update_ref", dest, "PATCH", f"git/refs/heads/{dest.branch}",
            json={"sha": commit["sha"], "force": False},
        )

        log.info(
            "Committed %d file(s) to %s: %s", len(files), dest, commit["sha"][:12],
        )
        return commit["sha"]
