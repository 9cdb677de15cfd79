"""callsign_notes.config

YAML configuration loader.

Responsibilities:
  - Load config.yml and expand ${ENV_VAR} placeholders (secrets stay out of the file)
  - Validate required keys, source types, and numeric limits
  - Build immutable Config / Organization / GitHubConfig / QrzConfig values

Usage:
    from pathlib import Path
    from callsign_notes.config import load_config

    config = load_config(Path("config.yml"))
    for org in config.enabled_organizations:
        ...

Example:

    github:
      token: ${GITHUB_TOKEN}
      owner: qrqcrew
      repo: callsign-notes
      branch: main
      commit_author_name: Notes Bot
      commit_author_email: bot@example.com
    daemon:
      sync_interval_secs: 3600
    qrz:
      username: ${QRZ_USERNAME}
      password: ${QRZ_PASSWORD}
      cache_path: /data/nickname_cache.json
    organizations:
      - name: qrqcrew
        roster_url: https://docs.google.com/.../export?format=csv
        callsign_column: Call
        number_column: "QC #"
        emoji: "⚓"
        label: QRQ Crew
        output_file: qrqcrew-notes.txt
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from callsign_notes.roster_sources import (
    DEFAULT_TABLE_SELECTOR,
    SOURCE_CSV,
    SOURCE_TYPES,
)

DEFAULT_CONFIG_PATH = Path("config.yml")
DEFAULT_CACHE_PATH = "nickname_cache.json"
DEFAULT_GITHUB_API_URL = "https://api.github.com"

REQUIRED_TOP_LEVEL_KEYS = frozenset({"github", "organizations"})
REQUIRED_GITHUB_KEYS = frozenset({
    "token", "owner", "repo", "commit_author_name", "commit_author_email",
})
REQUIRED_ORG_KEYS = frozenset({"name", "roster_url", "emoji", "label", "output_file"})

_ENV_PLACEHOLDER_RE = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when the configuration file fails schema validation."""


# ---------------------------------------------------------------------------
# Config dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GitHubConfig:
    token: str
    owner: str
    repo: str
    commit_author_name: str
    commit_author_email: str
    branch: str = "main"
    api_url: str = DEFAULT_GITHUB_API_URL


@dataclass(frozen=True)
class DestinationOverride:
    """Per-organization repository override; unset fields fall back to the global config."""

    owner: str | None = None
    repo: str | None = None
    branch: str | None = None


@dataclass(frozen=True)
class Organization:
    name: str
    roster_url: str
    emoji: str
    label: str
    output_file: str
    enabled: bool = True
    source_type: str = SOURCE_CSV
    callsign_column: str = "Callsign"
    number_column: str = "Number"
    callsign_column_index: int = 1
    number_column_index: int = 0
    skip_rows: int = 0
    url: str | None = None
    table_selector: str = DEFAULT_TABLE_SELECTOR
    github: DestinationOverride | None = None


@dataclass(frozen=True)
class QrzConfig:
    username: str
    password: str
    enabled: bool = True
    cache_path: str = DEFAULT_CACHE_PATH
    max_concurrent_lookups: int = 10
    request_delay_ms: int = 50

    @property
    def request_delay(self) -> float:
        return self.request_delay_ms / 1000.0


@dataclass(frozen=True)
class DaemonConfig:
    sync_interval_secs: int = 3600
    run_once: bool = False
    connectivity_check: bool = True


@dataclass(frozen=True)
class Config:
    github: GitHubConfig
    organizations: tuple[Organization, ...]
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    qrz: QrzConfig | None = None

    @property
    def enabled_organizations(self) -> list[Organization]:
        return [org for org in self.organizations if org.enabled]

    @property
    def cache_path(self) -> str:
        return self.qrz.cache_path if self.qrz else DEFAULT_CACHE_PATH


# ---------------------------------------------------------------------------
# Environment placeholders
# ---------------------------------------------------------------------------

def expand_env(value: Any, environ: dict[str, str] | None = None) -> Any:
    """Recursively replace '${NAME}' string values with os.environ['NAME']."""
    environ = os.environ if environ is None else environ
    if isinstance(value, dict):
        return {k: expand_env(v, environ) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v, environ) for v in value]
    if isinstance(value, str):
        m = _ENV_PLACEHOLDER_RE.match(value.strip())
        if m:
            name = m.group(1)
            if name not in environ:
                raise ConfigValidationError(f"Environment variable {name} not set")
            return environ[name]
    return value


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_config(path: Path | str = DEFAULT_CONFIG_PATH, environ: dict[str, str] | None = None) -> Config:
    """Load, validate, and return the configuration.

    Raises:
        ConfigValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the config file does not exist.
    """
    raw = Path(path).read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigValidationError("Config file must contain a mapping")
    data = expand_env(data, environ)
    validate_config(data)
    return build_config(data)


def _require_int(section: str, key: str, value: Any, minimum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"{section}.{key} must be an integer, got {value!r}")
    if value < minimum:
        raise ConfigValidationError(f"{section}.{key} must be >= {minimum}, got {value}")


def validate_config(data: dict[str, Any]) -> None:
    """Raise ConfigValidationError if data does not match the required schema.

    Validates:
      - Required top-level, github, and organization keys present
      - source_type is one of the supported roster formats
      - organization names are unique
      - numeric limits (skip_rows, column indices, concurrency, interval)
      - qrz credentials present when lookups are enabled
    """
    missing = REQUIRED_TOP_LEVEL_KEYS - data.keys()
    if missing:
        raise ConfigValidationError(f"Missing required keys: {sorted(missing)}")

    github = data["github"]
    if not isinstance(github, dict):
        raise ConfigValidationError("github must be a mapping")
    missing = {k for k in REQUIRED_GITHUB_KEYS if not github.get(k)}
    if missing:
        raise ConfigValidationError(f"github: missing required keys: {sorted(missing)}")

    orgs = data["organizations"]
    if not isinstance(orgs, list) or not orgs:
        raise ConfigValidationError("organizations must be a non-empty list")

    seen_names: set[str] = set()
    for idx, org in enumerate(orgs):
        if not isinstance(org, dict):
            raise ConfigValidationError(f"organizations[{idx}] must be a mapping")
        section = f"organizations[{org.get('name', idx)}]"
        missing = {k for k in REQUIRED_ORG_KEYS if not org.get(k)}
        if missing:
            raise ConfigValidationError(f"{section}: missing required keys: {sorted(missing)}")
        if org["name"] in seen_names:
            raise ConfigValidationError(f"Duplicate organization name: {org['name']!r}")
        seen_names.add(org["name"])

        source_type = org.get("source_type", SOURCE_CSV)
        if source_type not in SOURCE_TYPES:
            raise ConfigValidationError(
                f"{section}.source_type must be one of {list(SOURCE_TYPES)}, got {source_type!r}"
            )
        for key in ("skip_rows", "callsign_column_index", "number_column_index"):
            if key in org:
                _require_int(section, key, org[key], 0)
        override = org.get("github")
        if override is not None and not isinstance(override, dict):
            raise ConfigValidationError(f"{section}.github must be a mapping")

    daemon = data.get("daemon") or {}
    if not isinstance(daemon, dict):
        raise ConfigValidationError("daemon must be a mapping")
    if "sync_interval_secs" in daemon:
        _require_int("daemon", "sync_interval_secs", daemon["sync_interval_secs"], 1)

    qrz = data.get("qrz")
    if qrz is not None:
        if not isinstance(qrz, dict):
            raise ConfigValidationError("qrz must be a mapping")
        if qrz.get("enabled", True):
            missing = {k for k in ("username", "password") if not qrz.get(k)}
            if missing:
                raise ConfigValidationError(f"qrz: missing required keys: {sorted(missing)}")
        if "max_concurrent_lookups" in qrz:
            _require_int("qrz", "max_concurrent_lookups", qrz["max_concurrent_lookups"], 1)
        if "request_delay_ms" in qrz:
            _require_int("qrz", "request_delay_ms", qrz["request_delay_ms"], 0)


def _build_org(org: dict[str, Any]) -> Organization:
    override = org.get("github")
    return Organization(
        name=str(org["name"]),
        roster_url=str(org["roster_url"]),
        emoji=str(org["emoji"]),
        label=str(org["label"]),
        output_file=str(org["output_file"]),
        enabled=bool(org.get("enabled", True)),
        source_type=org.get("source_type", SOURCE_CSV),
        callsign_column=str(org.get("callsign_column", "Callsign")),
        number_column=str(org.get("number_column", "Number")),
        callsign_column_index=int(org.get("callsign_column_index", 1)),
        number_column_index=int(org.get("number_column_index", 0)),
        skip_rows=int(org.get("skip_rows", 0)),
        url=org.get("url") or None,
        table_selector=org.get("table_selector") or DEFAULT_TABLE_SELECTOR,
        github=DestinationOverride(
            owner=override.get("owner") or None,
            repo=override.get("repo") or None,
            branch=override.get("branch") or None,
        ) if override else None,
    )


def build_config(data: dict[str, Any]) -> Config:
    github = data["github"]
    daemon = data.get("daemon") or {}
    qrz = data.get("qrz")
    return Config(
        github=GitHubConfig(
            token=str(github["token"]),
            owner=str(github["owner"]),
            repo=str(github["repo"]),
            branch=str(github.get("branch") or "main"),
            commit_author_name=str(github["commit_author_name"]),
            commit_author_email=str(github["commit_author_email"]),
            api_url=str(github.get("api_url") or DEFAULT_GITHUB_API_URL).rstrip("/"),
        ),
        organizations=tuple(_build_org(org) for org in data["organizations"]),
        daemon=DaemonConfig(
            sync_interval_secs=int(daemon.get("sync_interval_secs", 3600)),
            run_once=bool(daemon.get("run_once", False)),
            connectivity_check=bool(daemon.get("connectivity_check", True)),
        ),
        qrz=QrzConfig(
            username=str(qrz.get("username") or ""),
            password=str(qrz.get("password") or ""),
            enabled=bool(qrz.get("enabled", True)),
            cache_path=str(qrz.get("cache_path") or DEFAULT_CACHE_PATH),
            max_concurrent_lookups=int(qrz.get("max_concurrent_lookups", 10)),
            request_delay_ms=int(qrz.get("request_delay_ms", 50)),
        ) if qrz else None,
    )
