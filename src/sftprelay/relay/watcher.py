"""Filesystem event routing for watched drop folders.

This module provides:
- IgnorePatterns: File name patterns that are never relayed
- FolderEventHandler: watchdog handler forwarding file events to the
  debounce coordinator
"""

from __future__ import annotations

import fnmatch
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    FileCreatedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)

if TYPE_CHECKING:
    from sftprelay.core.cancellation import CancellationToken
    from sftprelay.relay.types import NotifyCallback

logger = logging.getLogger(__name__)

# Every file is relayed unless monitor.ignore_patterns says otherwise
DEFAULT_IGNORE_PATTERNS: list[str] = []


class IgnorePatterns:
    """Matches file names against glob patterns."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: Glob patterns of file names to skip.
        """
        self._patterns = list(DEFAULT_IGNORE_PATTERNS)
        if patterns:
            self._patterns.extend(patterns)

    @property
    def patterns(self) -> list[str]:
        """Get the active patterns."""
        return list(self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """Add an ignore pattern."""
        self._patterns.append(pattern)

    def should_ignore(self, path: Path) -> bool:
        """Check if a file should never be relayed."""
        return any(fnmatch.fnmatch(path.name, pattern) for pattern in self._patterns)


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return path.decode("utf-8", errors="replace")
    return path


class FolderEventHandler(FileSystemEventHandler):
    """Routes create, change and rename events of one folder.

    Every relevant event becomes a notify(path, remote_folder, shutdown)
    call; deduplication is left to the debounce coordinator.
    """

    def __init__(
        self,
        watch_path: Path,
        remote_folder: str,
        notify: NotifyCallback,
        shutdown: CancellationToken,
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        """Initialize the handler.

        Args:
            watch_path: Directory being watched.
            remote_folder: Destination folder for files of this watch.
            notify: Notification sink (DebounceCoordinator.notify).
            shutdown: Process shutdown token passed along with each event.
            ignore_patterns: Patterns for files to skip.
        """
        super().__init__()
        self._watch_path = watch_path
        self._watch_key = os.path.normcase(os.path.normpath(str(watch_path)))
        self._remote_folder = remote_folder
        self._notify = notify
        self._shutdown = shutdown
        self._ignore = ignore_patterns or IgnorePatterns()

    @property
    def watch_path(self) -> Path:
        """Get the watched directory."""
        return self._watch_path

    @property
    def remote_folder(self) -> str:
        """Get the destination folder."""
        return self._remote_folder

    def _handle_path(self, raw_path: str | bytes) -> None:
        path = _decode(raw_path)
        if self._ignore.should_ignore(Path(path)):
            logger.debug("Ignoring %s", path)
            return
        self._notify(path, self._remote_folder, self._shutdown)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        if isinstance(event, FileCreatedEvent):
            self._handle_path(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event."""
        if isinstance(event, FileModifiedEvent):
            self._handle_path(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event (the renamed file is the destination)."""
        if isinstance(event, FileMovedEvent):
            dest = _decode(event.dest_path)
            # Moved out of the watched folder
            if os.path.normcase(os.path.normpath(os.path.dirname(dest))) != self._watch_key:
                return
            self._handle_path(dest)
