"""Tests for the SFTP transport session manager (SSH client mocked)."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

import paramiko
import pytest

from sftprelay.core.cancellation import CancellationToken, OperationCancelledError
from sftprelay.core.config import SftpConfig
from sftprelay.relay.transport import TransportSessionManager
from sftprelay.relay.types import TransportError


class ClientFactory:
    """Creates mock SSH clients and remembers them."""

    def __init__(self) -> None:
        self.clients: list[MagicMock] = []
        self.configure = None

    def __call__(self) -> MagicMock:
        client = MagicMock(spec=paramiko.SSHClient)
        client.get_transport.return_value.is_active.return_value = True
        if self.configure is not None:
            self.configure(client)
        self.clients.append(client)
        return client

    @property
    def last_sftp(self) -> MagicMock:
        return self.clients[-1].open_sftp.return_value


@pytest.fixture
def config() -> SftpConfig:
    return SftpConfig(host="sftp.example.com", username="relay", password="secret")


@pytest.fixture
def factory() -> ClientFactory:
    return ClientFactory()


@pytest.fixture
def transport(config: SftpConfig, factory: ClientFactory) -> TransportSessionManager:
    manager = TransportSessionManager(config, client_factory=factory)
    yield manager
    manager.close()


@pytest.fixture
def report(tmp_path: Path) -> Path:
    path = tmp_path / "report.csv"
    path.write_text("a,b\n1,2\n")
    return path


class TestUpload:
    """Tests for the upload path."""

    def test_uploads_to_remote_path(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """Should put the file at remote_folder/name."""
        remote = transport.upload(str(report), "remote/dropzone", CancellationToken())

        assert remote == "remote/dropzone/report.csv"
        args, kwargs = factory.last_sftp.putfo.call_args
        assert args[1] == "remote/dropzone/report.csv"
        assert callable(kwargs["callback"])

    def test_session_reused(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """Consecutive uploads share one connection."""
        token = CancellationToken()
        transport.upload(str(report), "out", token)
        transport.upload(str(report), "out", token)

        assert len(factory.clients) == 1
        factory.clients[0].connect.assert_called_once()
        assert factory.last_sftp.putfo.call_count == 2

    def test_reconnects_when_inactive(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """A dropped session is replaced on the next upload."""
        token = CancellationToken()
        transport.upload(str(report), "out", token)
        first = factory.clients[0]
        first.get_transport.return_value.is_active.return_value = False

        transport.upload(str(report), "out", token)

        assert len(factory.clients) == 2
        first.close.assert_called()
        factory.clients[1].connect.assert_called_once()

    def test_missing_local_file(
        self, transport: TransportSessionManager, tmp_path: Path
    ) -> None:
        """A vanished local file surfaces as a transport error."""
        with pytest.raises(TransportError) as exc_info:
            transport.upload(str(tmp_path / "gone.csv"), "out", CancellationToken())
        assert exc_info.value.local_path == str(tmp_path / "gone.csv")

    def test_transfer_failure_keeps_session(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """A failed put does not force a reconnect if the session is alive."""
        token = CancellationToken()
        transport.upload(str(report), "out", token)
        factory.last_sftp.putfo.side_effect = [OSError("Permission denied"), None]

        with pytest.raises(TransportError, match="Permission denied"):
            transport.upload(str(report), "out", token)
        transport.upload(str(report), "out", token)

        assert len(factory.clients) == 1


class TestConnect:
    """Tests for connection settings and failures."""

    def test_password_auth(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """Password authentication passes the password only."""
        transport.upload(str(report), "out", CancellationToken())

        client = factory.clients[0]
        kwargs = client.connect.call_args.kwargs
        assert kwargs["hostname"] == "sftp.example.com"
        assert kwargs["port"] == 22
        assert kwargs["username"] == "relay"
        assert kwargs["password"] == "secret"
        assert "key_filename" not in kwargs
        client.get_transport.return_value.set_keepalive.assert_called_once_with(30)

    def test_private_key_auth(
        self, factory: ClientFactory, report: Path, tmp_path: Path
    ) -> None:
        """Key authentication passes the key file and passphrase."""
        key = tmp_path / "id_ed25519"
        key.write_text("key")
        config = SftpConfig(
            host="sftp.example.com",
            username="relay",
            authentication_method="privatekey",
            ssh_key_path=str(key),
            ssh_key_passphrase="hunter2",
        )

        with TransportSessionManager(config, client_factory=factory) as transport:
            transport.upload(str(report), "out", CancellationToken())

        kwargs = factory.clients[0].connect.call_args.kwargs
        assert kwargs["key_filename"] == str(key)
        assert kwargs["passphrase"] == "hunter2"
        assert "password" not in kwargs

    def test_known_hosts_rejects_unknown(
        self, factory: ClientFactory, report: Path, tmp_path: Path
    ) -> None:
        """A configured known_hosts file switches to strict host checking."""
        known_hosts = tmp_path / "known_hosts"
        known_hosts.write_text("")
        config = SftpConfig(
            host="sftp.example.com",
            username="relay",
            password="secret",
            known_hosts_path=str(known_hosts),
        )

        with TransportSessionManager(config, client_factory=factory) as transport:
            transport.upload(str(report), "out", CancellationToken())

        client = factory.clients[0]
        client.load_host_keys.assert_called_once_with(str(known_hosts))
        policy = client.set_missing_host_key_policy.call_args.args[0]
        assert isinstance(policy, paramiko.RejectPolicy)

    def test_default_host_policy(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """Without known_hosts, new host keys are accepted."""
        transport.upload(str(report), "out", CancellationToken())

        policy = factory.clients[0].set_missing_host_key_policy.call_args.args[0]
        assert isinstance(policy, paramiko.AutoAddPolicy)

    def test_connect_failure(
        self,
        transport: TransportSessionManager,
        factory: ClientFactory,
        report: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Authentication errors become TransportError and are logged."""
        factory.configure = lambda client: setattr(
            client.connect, "side_effect", paramiko.AuthenticationException("denied")
        )

        with caplog.at_level("ERROR", logger="sftprelay"):
            with pytest.raises(TransportError, match="denied"):
                transport.upload(str(report), "out", CancellationToken())

        factory.clients[0].close.assert_called()
        assert any("Failed to upload" in r.getMessage() for r in caplog.records)

    def test_retry_after_connect_failure(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """The next upload after a failed connect tries a fresh client."""
        factory.configure = lambda client: setattr(
            client.connect, "side_effect", OSError("Connection refused")
        )
        with pytest.raises(TransportError):
            transport.upload(str(report), "out", CancellationToken())

        factory.configure = None
        transport.upload(str(report), "out", CancellationToken())

        assert len(factory.clients) == 2


class TestSerialization:
    """Tests for the admission gate."""

    def test_uploads_do_not_overlap(
        self, transport: TransportSessionManager, factory: ClientFactory, tmp_path: Path
    ) -> None:
        """A second upload waits until the first transfer finishes."""
        first_started = threading.Event()
        release_first = threading.Event()
        active = []
        overlaps = []
        lock = threading.Lock()

        def putfo(fl, remote_path, callback=None):
            with lock:
                if active:
                    overlaps.append(remote_path)
                active.append(remote_path)
            if remote_path.endswith("a.csv"):
                first_started.set()
                release_first.wait(timeout=5)
            with lock:
                active.remove(remote_path)

        def configure(client: MagicMock) -> None:
            client.open_sftp.return_value.putfo.side_effect = putfo

        factory.configure = configure
        for name in ("a.csv", "b.csv"):
            (tmp_path / name).write_text(name)

        token = CancellationToken()
        t1 = threading.Thread(
            target=transport.upload, args=(str(tmp_path / "a.csv"), "out", token)
        )
        t1.start()
        assert first_started.wait(timeout=5)

        t2 = threading.Thread(
            target=transport.upload, args=(str(tmp_path / "b.csv"), "out", token)
        )
        t2.start()
        time.sleep(0.3)
        assert factory.last_sftp.putfo.call_count == 1

        release_first.set()
        t1.join(timeout=5)
        t2.join(timeout=5)

        assert overlaps == []
        assert factory.last_sftp.putfo.call_count == 2
        assert len(factory.clients) == 1


class TestCancellation:
    """Tests for cancellation at each stage."""

    def test_cancelled_before_start(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """A cancelled token never opens a session."""
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            transport.upload(str(report), "out", token)
        assert factory.clients == []

    def test_cancelled_while_waiting_for_gate(
        self, transport: TransportSessionManager, factory: ClientFactory, tmp_path: Path
    ) -> None:
        """A waiting upload gives up when its token fires."""
        started = threading.Event()
        release = threading.Event()

        def putfo(fl, remote_path, callback=None):
            started.set()
            release.wait(timeout=5)

        factory.configure = lambda client: setattr(
            client.open_sftp.return_value.putfo, "side_effect", putfo
        )
        (tmp_path / "a.csv").write_text("a")
        (tmp_path / "b.csv").write_text("b")

        holder = threading.Thread(
            target=transport.upload,
            args=(str(tmp_path / "a.csv"), "out", CancellationToken()),
        )
        holder.start()
        assert started.wait(timeout=5)

        waiter_token = CancellationToken()
        errors: list[BaseException] = []

        def wait_upload() -> None:
            try:
                transport.upload(str(tmp_path / "b.csv"), "out", waiter_token)
            except BaseException as e:
                errors.append(e)

        waiter = threading.Thread(target=wait_upload)
        waiter.start()
        time.sleep(0.2)
        waiter_token.cancel()
        waiter.join(timeout=5)

        release.set()
        holder.join(timeout=5)

        assert len(errors) == 1
        assert isinstance(errors[0], OperationCancelledError)
        assert factory.last_sftp.putfo.call_count == 1

    def test_cancelled_during_transfer(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """The progress callback aborts an in-flight transfer."""
        token = CancellationToken()

        def putfo(fl, remote_path, callback=None):
            token.cancel()
            callback(1024, 4096)

        factory.configure = lambda client: setattr(
            client.open_sftp.return_value.putfo, "side_effect", putfo
        )

        with pytest.raises(OperationCancelledError):
            transport.upload(str(report), "out", token)

    def test_cancelled_during_connect(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """Cancelling while connecting closes the client and reports cancellation."""
        token = CancellationToken()

        def connect(**kwargs):
            token.cancel()
            raise OSError("Socket closed")

        factory.configure = lambda client: setattr(client.connect, "side_effect", connect)

        with pytest.raises(OperationCancelledError):
            transport.upload(str(report), "out", token)
        factory.clients[0].close.assert_called()


class TestClose:
    """Tests for shutdown."""

    def test_close_idempotent(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """Closing twice closes the session once."""
        transport.upload(str(report), "out", CancellationToken())
        transport.close()
        transport.close()

        assert factory.clients[0].close.call_count == 1
        factory.last_sftp.close.assert_called_once()

    def test_upload_after_close(
        self, transport: TransportSessionManager, factory: ClientFactory, report: Path
    ) -> None:
        """A closed transport refuses uploads."""
        transport.close()

        with pytest.raises(TransportError, match="closed"):
            transport.upload(str(report), "out", CancellationToken())
        assert factory.clients == []
