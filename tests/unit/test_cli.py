"""Unit tests for the callsign-notes CLI entry point."""

from __future__ import annotations

import textwrap
from pathlib import Path
from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from callsign_notes.cli import main

CONFIG = textwrap.dedent("""\
    github:
      token: t0k
      owner: qrqcrew
      repo: notes
      commit_author_name: Bot
      commit_author_email: bot@example.com
    daemon:
      run_once: {run_once}
    organizations:
      - name: qrqcrew
        enabled: {enabled}
        roster_url: https://example.org/qrq.csv
        emoji: "⚓"
        label: QRQ Crew
        output_file: qrqcrew-notes.txt
""")


def _config(tmp_path: Path, run_once: bool = False, enabled: bool = True) -> str:
    path = tmp_path / "config.yml"
    path.write_text(
        CONFIG.format(run_once=str(run_once).lower(), enabled=str(enabled).lower()),
        encoding="utf-8",
    )
    return str(path)


class TestCli:
    def test_missing_config_exits_1(self, tmp_path: Path):
        result = CliRunner().invoke(main, ["--config", str(tmp_path / "nope.yml")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_config_exits_1(self, tmp_path: Path):
        path = tmp_path / "config.yml"
        path.write_text("github: {}\n", encoding="utf-8")
        result = CliRunner().invoke(main, ["--config", str(path)])
        assert result.exit_code == 1
        assert "invalid config" in result.output

    def test_once_flag(self, tmp_path: Path):
        with patch("callsign_notes.cli.build_context") as build, \
                patch("callsign_notes.cli.run_daemon") as run:
            build.return_value = MagicMock()
            result = CliRunner().invoke(main, ["--config", _config(tmp_path), "--once", "--dry-run"])

        assert result.exit_code == 0, result.output
        assert build.call_args.kwargs["dry_run"] is True
        assert run.call_args.kwargs["run_once"] is True

    def test_run_once_from_config(self, tmp_path: Path):
        with patch("callsign_notes.cli.build_context"), \
                patch("callsign_notes.cli.run_daemon") as run:
            result = CliRunner().invoke(main, ["--config", _config(tmp_path, run_once=True)])

        assert result.exit_code == 0, result.output
        assert run.call_args.kwargs["run_once"] is True

    def test_no_enabled_orgs_exits_cleanly(self, tmp_path: Path):
        with patch("callsign_notes.cli.run_daemon") as run:
            result = CliRunner().invoke(main, ["--config", _config(tmp_path, enabled=False)])
        assert result.exit_code == 0
        run.assert_not_called()

    def test_daemon_list_exits_1(self, tmp_path: Path):
        path = Path(_config(tmp_path))
        path.write_text(
            path.read_text(encoding="utf-8").replace("daemon:\n  run_once: false\n", "daemon: [1]\n"),
            encoding="utf-8",
        )
        result = CliRunner().invoke(main, ["--config", str(path)])
        assert result.exit_code == 1
        assert "daemon must be a mapping" in result.output
