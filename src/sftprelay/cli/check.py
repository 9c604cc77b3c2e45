"""Check-config command for SftpRelay CLI.

Commands:
- check-config: Validate the configuration and list folder mappings
"""

from __future__ import annotations

from pathlib import Path

import click

from sftprelay.cli.options import config_option, load_validated_config


@click.command("check-config")
@config_option
def check_config(config_path: Path | None) -> None:
    """Validate the configuration and list folder mappings."""
    config = load_validated_config(config_path)
    sftp = config.sftp

    click.echo(f"Server: {sftp.username}@{sftp.host}:{sftp.port} ({sftp.auth_method.value})")
    click.echo(f"Root: {config.monitor.root or '(none)'}")
    click.echo("Folders:")

    usable = 0
    for mapping in config.monitor.folders:
        if not mapping.is_valid:
            click.echo(click.style("  ! invalid mapping (empty local or remote folder)", fg="yellow"))
            continue

        local_dir = config.monitor.resolve(mapping)
        if local_dir.is_dir():
            usable += 1
            click.echo(f"  ✓ {local_dir} -> {mapping.remote_folder}")
        else:
            click.echo(click.style(f"  ✗ {local_dir} (missing) -> {mapping.remote_folder}", fg="red"))

    click.echo(f"\n{usable} of {len(config.monitor.folders)} folders can be watched.")
