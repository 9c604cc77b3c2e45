"""Shared options and helpers for SftpRelay CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from sftprelay.core.config import ConfigError, RelayConfig, get_config_file

config_option = click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Path to config.json (default: ~/.sftprelay/config.json).",
)


def load_validated_config(config_path: Path | None) -> RelayConfig:
    """Load and validate the configuration, exiting with code 1 on error."""
    path = config_path or get_config_file()
    try:
        config = RelayConfig.load(path)
        config.validate()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    return config
