"""Relay pipeline: debounce, readiness, dispatch and SFTP transport.

Architecture:
    FolderEventHandler → DebounceCoordinator → ReadinessProber
        → DispatchPipeline → TransportSessionManager

Components:
- **FolderEventHandler**: watchdog handler routing create/change/rename events
- **DebounceCoordinator**: One quiet-window wait per file, last event wins
- **ReadinessProber**: Bounded retries until no writer holds the file
- **DispatchPipeline**: Start/stop lifecycle, contains subscriber failures
- **TransportSessionManager**: One reused SFTP session behind an admission gate
"""

from sftprelay.relay.debounce import DebounceCoordinator, normalize_path
from sftprelay.relay.pipeline import DispatchPipeline
from sftprelay.relay.readiness import ReadinessProber
from sftprelay.relay.transport import TransportSessionManager
from sftprelay.relay.types import (
    DispatchStats,
    DropCallback,
    FileReadyCallback,
    NotifyCallback,
    OperationCancelledError,
    PendingWait,
    ProbeOutcome,
    RelayError,
    SessionState,
    TransportError,
    UploadRequest,
    build_remote_path,
)
from sftprelay.relay.watcher import (
    DEFAULT_IGNORE_PATTERNS,
    FolderEventHandler,
    IgnorePatterns,
)

__all__ = [
    # Types
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
    # Components
    "DebounceCoordinator",
    "DispatchPipeline",
    "ReadinessProber",
    "TransportSessionManager",
    "normalize_path",
    # Watcher
    "DEFAULT_IGNORE_PATTERNS",
    "FolderEventHandler",
    "IgnorePatterns",
]
