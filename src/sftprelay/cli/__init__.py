"""Command-line interface for SftpRelay.

This module provides the main CLI entry point and assembles all commands.

Commands:
- run: Watch the configured folders and relay stable files over SFTP
- check-config: Validate the configuration and list folder mappings
"""

from __future__ import annotations

import click

from sftprelay.cli.check import check_config
from sftprelay.cli.runner import run, setup_logging


@click.group()
@click.version_option(package_name="sftprelay")
def cli() -> None:
    """SftpRelay - Relay drop-folder files to an SFTP server."""


cli.add_command(run)
cli.add_command(check_config)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "setup_logging",
]
