"""Dispatch pipeline gluing the relay components together.

Architecture:
    watchdog Observer → FolderEventHandler → DebounceCoordinator
        → ReadinessProber → DispatchPipeline → on_file_ready subscriber
        (typically TransportSessionManager.upload)

Each file travels on its own timer thread, so a slow or failing upload of
one file never delays the debouncing of another. Subscriber failures are
contained here.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.observers import Observer

from sftprelay.core.cancellation import OperationCancelledError
from sftprelay.core.config import (
    DEFAULT_QUIET_WINDOW,
    resolve_local_path,
)
from sftprelay.relay.debounce import DebounceCoordinator
from sftprelay.relay.readiness import ReadinessProber
from sftprelay.relay.types import DispatchStats, ProbeOutcome
from sftprelay.relay.watcher import FolderEventHandler, IgnorePatterns

if TYPE_CHECKING:
    from watchdog.observers.api import BaseObserver, ObservedWatch

    from sftprelay.core.cancellation import CancellationToken
    from sftprelay.core.config import FolderMapping, MonitorConfig
    from sftprelay.relay.types import FileReadyCallback


class DispatchPipeline:
    """Watches drop folders and hands stable files to a subscriber.

    Usage:
        pipeline = DispatchPipeline()
        pipeline.set_on_file_ready(transport.upload)

        shutdown = CancellationToken()
        pipeline.start(mappings, "/data", shutdown)

        # ... files are relayed automatically ...

        shutdown.cancel()
        pipeline.stop()
    """

    def __init__(
        self,
        prober: ReadinessProber | None = None,
        quiet_window: float = DEFAULT_QUIET_WINDOW,
        ignore_patterns: list[str] | None = None,
        observer_factory: Callable[[], BaseObserver] = Observer,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            prober: Readiness prober (default budget when omitted).
            quiet_window: Debounce quiet window in seconds.
            ignore_patterns: Extra file name patterns never relayed.
            observer_factory: Creates the watchdog observer.
            logger: Logger to use (defaults to the module logger).
        """
        self._logger = logger or logging.getLogger(__name__)
        self._prober = prober or ReadinessProber(logger=self._logger)
        self._coordinator = DebounceCoordinator(
            prober=self._prober,
            on_ready=self._dispatch,
            quiet_window=quiet_window,
            on_dropped=self._on_dropped,
            logger=self._logger,
        )
        self._ignore = IgnorePatterns(ignore_patterns)
        self._observer_factory = observer_factory

        self._lock = threading.Lock()
        self._observer: BaseObserver | None = None
        self._watches: list[ObservedWatch] = []
        self._on_file_ready: FileReadyCallback | None = None
        self._stats = DispatchStats()

    @classmethod
    def from_config(
        cls,
        config: MonitorConfig,
        logger: logging.Logger | None = None,
    ) -> DispatchPipeline:
        """Create a pipeline with the timing settings of a monitor config."""
        return cls(
            prober=ReadinessProber(
                attempts=config.probe_attempts,
                delay=config.probe_delay,
                logger=logger,
            ),
            quiet_window=config.quiet_window,
            ignore_patterns=config.ignore_patterns,
            logger=logger,
        )

    @property
    def coordinator(self) -> DebounceCoordinator:
        """Get the debounce coordinator."""
        return self._coordinator

    @property
    def stats(self) -> DispatchStats:
        """Get pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if folders are being watched."""
        return self._observer is not None

    def set_on_file_ready(self, callback: FileReadyCallback) -> None:
        """Set the subscriber called with (local_path, remote_folder, token)."""
        self._on_file_ready = callback

    def start(
        self,
        mappings: Iterable[FolderMapping],
        root_path: str,
        token: CancellationToken,
    ) -> list[Path]:
        """Start watching every usable mapping.

        Mappings with blank fields or a missing local directory are logged
        and skipped; the others are still watched.

        Args:
            mappings: Local subfolder to remote folder mappings.
            root_path: Prefix joined with every local subfolder.
            token: Shutdown token threaded through every wait and upload.

        Returns:
            The directories now being watched.
        """
        with self._lock:
            if self._observer is not None:
                self._logger.warning("Pipeline already running")
                return [Path(w.path) for w in self._watches]

            observer = self._observer_factory()
            watched: list[Path] = []

            for mapping in mappings:
                if not mapping.is_valid:
                    self._logger.warning(
                        "Invalid folder mapping: local folder or remote folder is empty"
                    )
                    continue

                local_dir = resolve_local_path(root_path, mapping.local_subpath)
                if not local_dir.is_dir():
                    self._logger.warning("Local folder does not exist: %s", local_dir)
                    continue

                handler = FolderEventHandler(
                    watch_path=local_dir,
                    remote_folder=mapping.remote_folder,
                    notify=self._notify,
                    shutdown=token,
                    ignore_patterns=self._ignore,
                )
                self._watches.append(observer.schedule(handler, str(local_dir), recursive=False))
                watched.append(local_dir)
                self._logger.info("Monitoring %s -> %s", local_dir, mapping.remote_folder)

            observer.start()
            self._observer = observer

        return watched

    def stop(self, timeout: float = 5.0) -> None:
        """Stop watching and cancel every pending wait.

        Does not wait for uploads already in progress; cancel the shutdown
        token to abort them.

        Args:
            timeout: Maximum time to wait for the observer thread.
        """
        with self._lock:
            observer = self._observer
            self._observer = None
            watches = self._watches
            self._watches = []

        if observer is not None:
            observer.unschedule_all()
            observer.stop()
            observer.join(timeout=timeout)
            self._logger.info("Stopped monitoring %d folders", len(watches))

        self._coordinator.cancel_all()

    def _notify(self, path: str, remote_folder: str, token: CancellationToken) -> None:
        self._stats.increment("notifications")
        self._coordinator.notify(path, remote_folder, token)

    def _on_dropped(self, path: str, outcome: ProbeOutcome) -> None:
        self._stats.increment("dropped")

    def _dispatch(self, path: str, remote_folder: str, token: CancellationToken) -> None:
        """Hand a stable file to the subscriber (runs on the timer thread)."""
        callback = self._on_file_ready
        if callback is None:
            self._logger.warning("No file-ready subscriber, %s was not relayed", path)
            self._stats.increment("dropped")
            return

        self._logger.debug("File ready: %s -> %s", path, remote_folder)
        try:
            callback(path, remote_folder, token)
        except OperationCancelledError:
            self._logger.debug("Relay of %s cancelled", path)
            self._stats.increment("dropped")
        except Exception:
            self._logger.exception("Error relaying %s", path)
            self._stats.increment("failed")
        else:
            self._stats.increment("dispatched")
