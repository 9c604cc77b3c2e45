"""Run command for SftpRelay CLI.

Commands:
- run: Watch the configured folders and relay stable files over SFTP
"""

from __future__ import annotations

import logging
import signal
import sys
import threading
from pathlib import Path
from types import FrameType

import click

from sftprelay.cli.options import config_option, load_validated_config
from sftprelay.core.cancellation import CancellationToken
from sftprelay.relay import DispatchPipeline, TransportSessionManager

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool = False) -> None:
    """Configure the sftprelay logger to write to stdout.

    Args:
        verbose: Log at DEBUG instead of INFO.
    """
    relay_logger = logging.getLogger("sftprelay")
    relay_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # Replace handlers so repeated invocations do not duplicate output
    for handler in relay_logger.handlers[:]:
        relay_logger.removeHandler(handler)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    relay_logger.addHandler(stdout_handler)
    relay_logger.propagate = False

    # paramiko logs every packet negotiation at INFO
    logging.getLogger("paramiko").setLevel(logging.WARNING)


@click.command()
@config_option
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def run(config_path: Path | None, verbose: bool) -> None:
    """Watch the configured folders and relay stable files over SFTP.

    Runs until interrupted with Ctrl+C or SIGTERM.
    """
    config = load_validated_config(config_path)
    setup_logging(verbose)
    logger = logging.getLogger("sftprelay.cli")

    shutdown = CancellationToken()
    transport = TransportSessionManager(config.sftp)
    pipeline = DispatchPipeline.from_config(config.monitor)
    pipeline.set_on_file_ready(transport.upload)

    def handle_sigterm(signum: int, frame: FrameType | None) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown.cancel()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, handle_sigterm)

    watched = pipeline.start(config.monitor.folders, config.monitor.root, shutdown)
    if not watched:
        pipeline.stop()
        transport.close()
        click.echo("Error: none of the configured folders can be watched.", err=True)
        sys.exit(1)

    click.echo(f"Relaying {len(watched)} folders to {config.sftp.host}... (Ctrl+C to stop)")

    try:
        while not shutdown.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        shutdown.cancel()
        pipeline.stop()
        transport.close()

    stats = pipeline.stats
    click.echo(
        f"Stopped: {stats.dispatched} uploaded, {stats.failed} failed, "
        f"{stats.dropped} dropped"
    )
