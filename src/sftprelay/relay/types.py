"""Shared types and dataclasses for the relay pipeline.

This module provides:
- RelayError, TransportError: Exception classes
- SessionState: Transport session lifecycle states
- ProbeOutcome: Result of a readiness probe
- UploadRequest, PendingWait: Pipeline records
- DispatchStats: Pipeline counters
- build_remote_path: Remote target path for a local file
- Type aliases for callbacks
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import PureWindowsPath

from sftprelay.core.cancellation import CancellationToken, OperationCancelledError

__all__ = [
    "DispatchStats",
    "DropCallback",
    "FileReadyCallback",
    "NotifyCallback",
    "OperationCancelledError",
    "PendingWait",
    "ProbeOutcome",
    "RelayError",
    "SessionState",
    "TransportError",
    "UploadRequest",
    "build_remote_path",
]


class RelayError(Exception):
    """Base exception for relay errors."""


class TransportError(RelayError):
    """Connect, authentication or I/O failure during an upload.

    Attributes:
        local_path: File that was being uploaded.
        remote_folder: Destination folder on the server.
    """

    def __init__(self, local_path: str, remote_folder: str, message: str) -> None:
        self.local_path = local_path
        self.remote_folder = remote_folder
        super().__init__(f"Failed to upload {local_path} to {remote_folder}: {message}")


class SessionState(Enum):
    """State of the shared transport session."""

    DISCONNECTED = auto()
    CONNECTING = auto()
    CONNECTED = auto()


class ProbeOutcome(Enum):
    """Result of a readiness probe."""

    READY = auto()
    LOCKED = auto()  # Attempt budget exhausted
    MISSING = auto()  # File vanished (e.g. temp file renamed away)
    CANCELLED = auto()


def build_remote_path(remote_folder: str, local_path: str) -> str:
    """Build the remote target path for a local file.

    Always joins with a forward slash, whatever separator style either
    side uses.

    Args:
        remote_folder: Destination folder (may use backslashes).
        local_path: Local file path (POSIX or Windows style).

    Returns:
        remote_folder + "/" + basename(local_path).
    """
    # PureWindowsPath splits on both "/" and "\"
    name = PureWindowsPath(local_path).name
    folder = remote_folder.replace("\\", "/")
    stripped = folder.rstrip("/")
    if not stripped and folder.startswith("/"):
        return f"/{name}"
    return f"{stripped}/{name}"


@dataclass(frozen=True)
class UploadRequest:
    """A stable file waiting to be uploaded."""

    local_path: str
    remote_folder: str

    @property
    def remote_path(self) -> str:
        """Get the remote target path."""
        return build_remote_path(self.remote_folder, self.local_path)


@dataclass
class PendingWait:
    """The current quiet-window wait for one file.

    Attributes:
        path: File path from the latest notification.
        remote_folder: Destination from the latest notification.
        generation: Monotonic number identifying this wait.
        token: Cancelled when the wait is superseded or on shutdown.
        timer: Timer firing when the quiet window elapses.
    """

    path: str
    remote_folder: str
    generation: int
    token: CancellationToken
    timer: threading.Timer | None = None

    def cancel(self) -> None:
        """Invalidate the wait so it never dispatches."""
        self.token.cancel()
        if self.timer is not None:
            self.timer.cancel()


@dataclass
class DispatchStats:
    """Counters for the dispatch pipeline."""

    notifications: int = 0
    dispatched: int = 0
    dropped: int = 0
    failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def increment(self, counter: str) -> None:
        """Increment a counter by name."""
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)


# Subscriber invoked for each stable file: (local_path, remote_folder, token)
FileReadyCallback = Callable[[str, str, CancellationToken], object]

# Raw notification sink: (path, remote_folder, shutdown_token)
NotifyCallback = Callable[[str, str, CancellationToken], None]

# Called for a file that settled but was not dispatched: (path, outcome)
DropCallback = Callable[[str, ProbeOutcome], None]
