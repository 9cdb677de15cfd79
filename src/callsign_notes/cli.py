"""callsign_notes.cli

Command-line entry point.

Usage:
    callsign-notes --config config.yml            # daemon: sync every sync_interval_secs
    callsign-notes --config config.yml --once     # single pass, then exit
    callsign-notes --config config.yml --once --dry-run
"""

from __future__ import annotations

import logging
import sys

import click

from callsign_notes.config import DEFAULT_CONFIG_PATH, ConfigValidationError, load_config
from callsign_notes.sync import build_context, run_daemon

log = logging.getLogger(__name__)

LOG_ENV_VAR = "CALLSIGN_NOTES_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


@click.command()
@click.option(
    "--config", "-c", "config_path",
    default=str(DEFAULT_CONFIG_PATH),
    show_default=True,
    type=click.Path(dir_okay=False),
    help="Path to the YAML config file",
)
@click.option("--once", is_flag=True, default=False, help="Run a single sync pass and exit")
@click.option("--dry-run", is_flag=True, default=False, help="Compute changes but do not commit")
@click.option(
    "--log-level",
    default="INFO",
    show_default=True,
    envvar=LOG_ENV_VAR,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help=f"Log level (also read from ${LOG_ENV_VAR})",
)
def main(config_path: str, once: bool, dry_run: bool, log_level: str) -> None:
    """Sync organization rosters into Ham2K PoLo callsign notes on GitHub."""
    configure_logging(log_level)

    try:
        config = load_config(config_path)
    except FileNotFoundError:
        click.echo(f"FATAL: config file not found: {config_path}", err=True)
        sys.exit(1)
    except ConfigValidationError as exc:
        click.echo(f"FATAL: invalid config {config_path}: {exc}", err=True)
        sys.exit(1)

    if not config.enabled_organizations:
        log.warning("No organizations enabled in config")
        return

    ctx = build_context(config, dry_run=dry_run)
    try:
        run_daemon(ctx, run_once=once or config.daemon.run_once)
    except KeyboardInterrupt:
        click.echo("Interrupted, exiting", err=True)


if __name__ == "__main__":
    main()
