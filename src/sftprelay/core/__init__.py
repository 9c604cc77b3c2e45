"""Core module - Configuration and cancellation."""

from sftprelay.core.cancellation import CancellationToken, OperationCancelledError
from sftprelay.core.config import (
    DEFAULT_PROBE_ATTEMPTS,
    DEFAULT_PROBE_DELAY,
    DEFAULT_QUIET_WINDOW,
    AuthMethod,
    ConfigError,
    FolderMapping,
    MonitorConfig,
    RelayConfig,
    SftpConfig,
    get_config_dir,
    get_config_file,
    resolve_local_path,
)

__all__ = [
    # Cancellation
    "CancellationToken",
    "OperationCancelledError",
    # Config
    "DEFAULT_PROBE_ATTEMPTS",
    "DEFAULT_PROBE_DELAY",
    "DEFAULT_QUIET_WINDOW",
    "AuthMethod",
    "ConfigError",
    "FolderMapping",
    "MonitorConfig",
    "RelayConfig",
    "SftpConfig",
    "get_config_dir",
    "get_config_file",
    "resolve_local_path",
]
