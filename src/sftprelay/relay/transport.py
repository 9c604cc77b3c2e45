"""SFTP transport with one shared, lazily (re)connected session.

This module provides:
- TransportSessionManager: Serializes connect, reconnect and upload
  through a single admission gate

Session lifecycle:
    DISCONNECTED --upload--> CONNECTING --ok--> CONNECTED
         ^                        |                 |
         +------- failure --------+--- inactive ----+

The session and its state are only read or written while holding the
gate. Uploads are serialized end to end: paramiko does not guarantee
concurrent transfers over one SFTP channel.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import paramiko

from sftprelay.core.cancellation import CancellationToken, OperationCancelledError
from sftprelay.core.config import AuthMethod
from sftprelay.relay.types import SessionState, TransportError, build_remote_path

if TYPE_CHECKING:
    from sftprelay.core.config import SftpConfig

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while waiting for the gate
GATE_POLL_INTERVAL = 0.1


class TransportSessionManager:
    """Owns the SSH/SFTP session shared by all uploads.

    Usage:
        transport = TransportSessionManager(sftp_config)
        transport.upload("/data/incoming/report.csv", "remote/dropzone", token)
        transport.close()
    """

    def __init__(
        self,
        config: SftpConfig,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the manager. No connection is made until the first upload.

        Args:
            config: Connection settings (validated by the caller).
            client_factory: Creates SSH clients (overridable for tests).
            logger: Logger to use (defaults to the module logger).
        """
        self._config = config
        self._client_factory = client_factory
        self._logger = logger or logging.getLogger(__name__)

        self._gate = threading.BoundedSemaphore(1)
        self._closed = False

        # Guarded by _gate
        self._state = SessionState.DISCONNECTED
        self._ssh: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    # ── public API ─────────────────────────────────────────────────────────

    def upload(self, local_path: str, remote_folder: str, token: CancellationToken) -> str:
        """Upload a file, overwriting any remote file with the same name.

        Args:
            local_path: Local file to send.
            remote_folder: Destination folder on the server.
            token: Cancels waiting for the gate, connecting and the transfer.

        Returns:
            The remote path written.

        Raises:
            OperationCancelledError: If the token was cancelled.
            TransportError: If connecting, authenticating or the transfer failed.
        """
        remote_path = build_remote_path(remote_folder, local_path)

        try:
            self._acquire(token)
        except OperationCancelledError:
            self._logger.info(
                "Upload of %s to %s cancelled before start", local_path, remote_folder
            )
            raise

        try:
            if self._closed:
                raise RuntimeError("Transport is closed")

            sftp = self._ensure_session(token)
            token.raise_if_cancelled()
            self._logger.info(
                "Transferring %s to %s:%s", local_path, self._config.host, remote_path
            )
            self._transfer(sftp, local_path, remote_path, token)

        except OperationCancelledError:
            self._logger.info("Upload of %s to %s cancelled", local_path, remote_folder)
            raise
        except Exception as e:
            self._logger.exception("Failed to upload %s to %s", local_path, remote_folder)
            raise TransportError(local_path, remote_folder, str(e)) from e
        finally:
            self._gate.release()

        self._logger.info("Successfully uploaded %s to %s", local_path, remote_path)
        return remote_path

    def close(self) -> None:
        """Tear down the session. Further uploads fail."""
        with self._gate:
            if self._closed:
                return
            self._closed = True
            had_session = self._ssh is not None
            self._close_session()

        if had_session:
            self._logger.info("Disconnected from %s", self._config.host)

    def __enter__(self) -> TransportSessionManager:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    # ── gate ───────────────────────────────────────────────────────────────

    def _acquire(self, token: CancellationToken) -> None:
        """Wait for the admission gate, giving up if the token fires."""
        while not self._gate.acquire(timeout=GATE_POLL_INTERVAL):
            token.raise_if_cancelled()
        if token.is_cancelled:
            self._gate.release()
            token.raise_if_cancelled()

    # ── session (caller holds the gate) ────────────────────────────────────

    def _is_active(self) -> bool:
        if self._state is not SessionState.CONNECTED or self._ssh is None:
            return False
        transport = self._ssh.get_transport()
        return transport is not None and transport.is_active()

    def _ensure_session(self, token: CancellationToken) -> paramiko.SFTPClient:
        """Reuse the live session or establish a new one."""
        if self._is_active() and self._sftp is not None:
            return self._sftp

        if self._ssh is not None:
            self._logger.info("Session to %s is no longer active, reconnecting", self._config.host)
        self._close_session()
        self._state = SessionState.CONNECTING

        client = self._client_factory()
        # Closing the client interrupts a blocking connect
        unregister = token.register(client.close)
        try:
            self._connect(client)
            token.raise_if_cancelled()
            sftp = client.open_sftp()
        except BaseException:
            self._state = SessionState.DISCONNECTED
            _close_quietly(client)
            if token.is_cancelled:
                raise OperationCancelledError("Connect cancelled") from None
            raise
        finally:
            unregister()

        self._ssh = client
        self._sftp = sftp
        self._state = SessionState.CONNECTED
        self._logger.info("Connected to %s:%d", self._config.host, self._config.port)
        return sftp

    def _connect(self, client: paramiko.SSHClient) -> None:
        config = self._config
        self._logger.info(
            "Connecting to %s@%s:%d", config.username, config.host, config.port
        )

        if config.known_hosts_path:
            client.load_host_keys(str(Path(config.known_hosts_path).expanduser()))
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        else:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

        kw: dict[str, Any] = dict(
            hostname=config.host,
            port=config.port,
            username=config.username,
            timeout=config.timeout,
            banner_timeout=config.timeout,
            auth_timeout=config.timeout,
            allow_agent=False,
            look_for_keys=False,
        )
        if config.auth_method is AuthMethod.PRIVATE_KEY:
            kw["key_filename"] = str(Path(config.ssh_key_path or "").expanduser())
            if config.ssh_key_passphrase:
                kw["passphrase"] = config.ssh_key_passphrase
        else:
            kw["password"] = config.password

        client.connect(**kw)

        transport = client.get_transport()
        if transport is not None and config.keepalive_interval > 0:
            transport.set_keepalive(config.keepalive_interval)

    def _transfer(
        self,
        sftp: paramiko.SFTPClient,
        local_path: str,
        remote_path: str,
        token: CancellationToken,
    ) -> None:
        def check_cancelled(transferred: int, total: int) -> None:
            token.raise_if_cancelled()

        with open(local_path, "rb") as fl:
            sftp.putfo(fl, remote_path, callback=check_cancelled)

    def _close_session(self) -> None:
        if self._sftp is not None:
            _close_quietly(self._sftp)
        if self._ssh is not None:
            _close_quietly(self._ssh)
        self._sftp = None
        self._ssh = None
        self._state = SessionState.DISCONNECTED


def _close_quietly(closable: paramiko.SSHClient | paramiko.SFTPClient) -> None:
    try:
        closable.close()
    except Exception:
        logger.debug("Error while closing session", exc_info=True)
