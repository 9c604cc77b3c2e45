"""Configuration classes for sftprelay.

This module defines the SFTP connection settings, the folder mapping table
and the JSON loader used by the CLI.

Example config.json:
    {
        "sftp": {
            "host": "sftp.example.com",
            "port": 22,
            "username": "relay",
            "authentication_method": "privatekey",
            "ssh_key_path": "~/.ssh/id_ed25519"
        },
        "monitor": {
            "root": "/data/",
            "folders": {"incoming": "remote/dropzone"}
        }
    }
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

DEFAULT_QUIET_WINDOW = 0.75  # seconds
DEFAULT_PROBE_ATTEMPTS = 10
DEFAULT_PROBE_DELAY = 0.2  # seconds


class ConfigError(Exception):
    """Invalid or unreadable configuration."""


class AuthMethod(str, Enum):
    """SSH authentication method."""

    PASSWORD = "password"
    PRIVATE_KEY = "privatekey"

    @classmethod
    def parse(cls, value: str) -> AuthMethod:
        """Parse a method name case-insensitively.

        Raises:
            ConfigError: If the method is not supported.
        """
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ConfigError(f"Unsupported authentication method: {value}") from None


@dataclass
class SftpConfig:
    """Connection settings for the remote SFTP server.

    Attributes:
        host: Server hostname.
        username: Login name.
        port: SSH port.
        password: Password, required for password authentication.
        ssh_key_path: Private key file, required for key authentication.
        ssh_key_passphrase: Optional passphrase for the private key.
        authentication_method: "password" or "privatekey".
        known_hosts_path: Optional known_hosts file; unknown hosts are
            rejected when set, auto-added otherwise.
        timeout: Connect/authentication timeout in seconds.
        keepalive_interval: Seconds between SSH keep-alives (0 disables).
    """

    host: str
    username: str
    port: int = 22
    password: str | None = None
    ssh_key_path: str | None = None
    ssh_key_passphrase: str | None = None
    authentication_method: str = AuthMethod.PASSWORD.value
    known_hosts_path: str | None = None
    timeout: float = 30.0
    keepalive_interval: int = 30

    @property
    def auth_method(self) -> AuthMethod:
        """Get the parsed authentication method."""
        return AuthMethod.parse(self.authentication_method)

    def validate(self) -> None:
        """Check the settings required by the selected method.

        Raises:
            ConfigError: If a required field is missing or invalid.
        """
        if not self.host or not self.host.strip():
            raise ConfigError("SFTP host is required")

        if not self.username or not self.username.strip():
            raise ConfigError("SFTP username is required")

        if not 1 <= self.port <= 65535:
            raise ConfigError(f"SFTP port out of range: {self.port}")

        method = self.auth_method
        if method is AuthMethod.PASSWORD:
            if not self.password:
                raise ConfigError("Password is required for password authentication")
        elif method is AuthMethod.PRIVATE_KEY:
            if not self.ssh_key_path or not self.ssh_key_path.strip():
                raise ConfigError("SSH key path is required for private key authentication")
            if not Path(self.ssh_key_path).expanduser().is_file():
                raise ConfigError(f"SSH key file not found: {self.ssh_key_path}")


@dataclass
class FolderMapping:
    """A watched local subfolder and its remote destination."""

    local_subpath: str
    remote_folder: str

    @property
    def is_valid(self) -> bool:
        """Check that both sides of the mapping are non-blank."""
        return bool(self.local_subpath and self.local_subpath.strip()) and bool(
            self.remote_folder and self.remote_folder.strip()
        )


@dataclass
class MonitorConfig:
    """Watched folders and timing of the event pipeline.

    Attributes:
        root: Prefix joined with every local subpath.
        folders: Folder mappings, in configuration order.
        quiet_window: Idle seconds after the last event before a file is checked.
        probe_attempts: Readiness attempts before a file is dropped.
        probe_delay: Seconds between readiness attempts.
        ignore_patterns: Extra file name patterns never relayed.
    """

    root: str = ""
    folders: list[FolderMapping] = field(default_factory=list)
    quiet_window: float = DEFAULT_QUIET_WINDOW
    probe_attempts: int = DEFAULT_PROBE_ATTEMPTS
    probe_delay: float = DEFAULT_PROBE_DELAY
    ignore_patterns: list[str] = field(default_factory=list)

    def resolve(self, mapping: FolderMapping) -> Path:
        """Get the local directory watched for a mapping."""
        return resolve_local_path(self.root, mapping.local_subpath)


@dataclass
class RelayConfig:
    """Complete relay configuration."""

    sftp: SftpConfig
    monitor: MonitorConfig

    def validate(self) -> None:
        """Validate the whole configuration.

        Individual folder mappings are not validated here: a broken mapping
        is skipped at start-up without affecting the others.

        Raises:
            ConfigError: If the configuration cannot be used.
        """
        self.sftp.validate()
        if not self.monitor.folders:
            raise ConfigError("No folder mappings configured")
        if self.monitor.quiet_window < 0:
            raise ConfigError("quiet_window must not be negative")
        if self.monitor.probe_attempts < 1:
            raise ConfigError("probe_attempts must be at least 1")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelayConfig:
        """Build a configuration from a parsed JSON document.

        Raises:
            ConfigError: If a section is missing or has the wrong shape.
        """
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object")

        sftp_data = data.get("sftp")
        if not isinstance(sftp_data, dict):
            raise ConfigError("Missing 'sftp' section")

        monitor_data = data.get("monitor") or {}
        if not isinstance(monitor_data, dict):
            raise ConfigError("'monitor' section must be an object")

        folders_data = monitor_data.get("folders") or {}
        if not isinstance(folders_data, dict):
            raise ConfigError("'monitor.folders' must map local folders to remote folders")

        try:
            sftp = SftpConfig(
                host=str(sftp_data.get("host") or ""),
                username=str(sftp_data.get("username") or ""),
                port=int(sftp_data.get("port", 22)),
                password=sftp_data.get("password"),
                ssh_key_path=sftp_data.get("ssh_key_path"),
                ssh_key_passphrase=sftp_data.get("ssh_key_passphrase"),
                authentication_method=str(
                    sftp_data.get("authentication_method", AuthMethod.PASSWORD.value)
                ),
                known_hosts_path=sftp_data.get("known_hosts_path"),
                timeout=float(sftp_data.get("timeout", 30.0)),
                keepalive_interval=int(sftp_data.get("keepalive_interval", 30)),
            )
            monitor = MonitorConfig(
                root=str(monitor_data.get("root") or ""),
                folders=[
                    FolderMapping(str(local or ""), str(remote or ""))
                    for local, remote in folders_data.items()
                ],
                quiet_window=float(monitor_data.get("quiet_window", DEFAULT_QUIET_WINDOW)),
                probe_attempts=int(monitor_data.get("probe_attempts", DEFAULT_PROBE_ATTEMPTS)),
                probe_delay=float(monitor_data.get("probe_delay", DEFAULT_PROBE_DELAY)),
                ignore_patterns=[str(p) for p in monitor_data.get("ignore_patterns", [])],
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid configuration value: {e}") from e

        return cls(sftp=sftp, monitor=monitor)

    @classmethod
    def load(cls, path: Path) -> RelayConfig:
        """Load a configuration file.

        Raises:
            ConfigError: If the file is missing or not valid JSON.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise ConfigError(f"Config file not found: {path}") from None
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        return cls.from_dict(data)


def resolve_local_path(root: str, local_subpath: str) -> Path:
    """Join the root prefix and a local subpath.

    The subpath is appended to the root even when it starts with a
    separator, so "/data" + "/incoming" gives "/data/incoming".
    """
    if not root:
        return Path(local_subpath).expanduser()
    return Path(root).expanduser() / local_subpath.lstrip("/\\")


def get_config_dir() -> Path:
    """Get the configuration directory for sftprelay.

    Returns:
        Path to $SFTPRELAY_HOME or ~/.sftprelay.
    """
    env = os.environ.get("SFTPRELAY_HOME")
    if env:
        return Path(env).expanduser()
    return Path.home() / ".sftprelay"


def get_config_file() -> Path:
    """Get the path to the default config file."""
    return get_config_dir() / "config.json"
