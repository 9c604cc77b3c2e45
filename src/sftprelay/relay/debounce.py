"""Per-file debouncing of filesystem notifications.

This module provides:
- DebounceCoordinator: Collapses bursts of events for one file into a
  single readiness check and at most one dispatch
- normalize_path: Key used to identify a file across notifications

Each notification cancels the file's previous wait and arms a new timer
for the quiet window. Waits are identified by a monotonic generation
number, so a wait that fires after being replaced can never remove or
dispatch on behalf of its successor.
"""

from __future__ import annotations

import functools
import itertools
import logging
import os
import threading
from typing import TYPE_CHECKING

from sftprelay.core.config import DEFAULT_QUIET_WINDOW
from sftprelay.relay.types import PendingWait, ProbeOutcome

if TYPE_CHECKING:
    from sftprelay.core.cancellation import CancellationToken
    from sftprelay.relay.readiness import ReadinessProber
    from sftprelay.relay.types import DropCallback, NotifyCallback


def normalize_path(path: str) -> str:
    """Get the comparison key for a file path.

    Keys are absolute, normalized and case-insensitive so the same file
    reported with different casing or separators shares one wait.
    """
    return os.path.normpath(os.path.abspath(path)).casefold()


class DebounceCoordinator:
    """Owns one pending wait per file path.

    Usage:
        coordinator = DebounceCoordinator(prober, on_ready=pipeline_dispatch)
        coordinator.notify("/data/incoming/report.csv", "remote/dropzone", shutdown)
        ...
        coordinator.cancel_all()
    """

    def __init__(
        self,
        prober: ReadinessProber,
        on_ready: NotifyCallback,
        quiet_window: float = DEFAULT_QUIET_WINDOW,
        on_dropped: DropCallback | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            prober: Readiness prober run once the quiet window elapses.
            on_ready: Called with (path, remote_folder, shutdown) for each
                file that settled and passed the readiness probe.
            quiet_window: Seconds without events before a file is checked.
            on_dropped: Called with (path, outcome) for each file that settled
                but was skipped because it stayed locked or disappeared.
            logger: Logger to use (defaults to the module logger).
        """
        self._prober = prober
        self._on_ready = on_ready
        self._quiet_window = quiet_window
        self._on_dropped = on_dropped
        self._logger = logger or logging.getLogger(__name__)

        # Reentrant: cancelling a wait under the lock runs its discard callback
        self._lock = threading.RLock()
        self._pending: dict[str, PendingWait] = {}
        self._generations = itertools.count(1)

    @property
    def quiet_window(self) -> float:
        """Get the quiet window in seconds."""
        return self._quiet_window

    @property
    def pending_count(self) -> int:
        """Get the number of files currently waiting."""
        with self._lock:
            return len(self._pending)

    def notify(self, path: str, remote_folder: str, shutdown: CancellationToken) -> None:
        """Record a notification for a file and restart its quiet window.

        The remote folder of the latest notification wins.

        Args:
            path: Absolute path of the file that changed.
            remote_folder: Destination folder for the file.
            shutdown: Process shutdown token; cancels the wait when fired.
        """
        if shutdown.is_cancelled:
            return

        key = normalize_path(path)
        token = shutdown.linked()

        with self._lock:
            wait = PendingWait(
                path=path,
                remote_folder=remote_folder,
                generation=next(self._generations),
                token=token,
            )
            previous = self._pending.get(key)
            self._pending[key] = wait

            # Invalidate before the new timer can possibly fire
            if previous is not None:
                previous.cancel()
                previous.token.detach()

            timer = threading.Timer(
                self._quiet_window,
                self._on_quiet_window_elapsed,
                args=(key, wait, shutdown),
            )
            timer.name = f"debounce-{wait.generation}"
            timer.daemon = True
            wait.timer = timer
            token.register(timer.cancel)
            token.register(functools.partial(self._discard, key, wait.generation))
            timer.start()

        if token.is_cancelled:
            # Shutdown raced with this notification; already discarded
            return

        self._logger.debug(
            "Scheduled check #%d for %s in %.3fs",
            wait.generation,
            path,
            self._quiet_window,
        )

    def cancel_all(self) -> None:
        """Cancel every outstanding wait without waiting for cleanup."""
        with self._lock:
            waits = list(self._pending.values())
            self._pending.clear()

        for wait in waits:
            wait.cancel()
            wait.token.detach()

        if waits:
            self._logger.debug("Cancelled %d pending waits", len(waits))

    def _discard(self, key: str, generation: int) -> None:
        """Remove the wait for key if it is still the given generation."""
        with self._lock:
            current = self._pending.get(key)
            if current is not None and current.generation == generation:
                del self._pending[key]

    def _on_quiet_window_elapsed(
        self,
        key: str,
        wait: PendingWait,
        shutdown: CancellationToken,
    ) -> None:
        """Probe the file and dispatch it (runs on the timer thread)."""
        if wait.token.is_cancelled:
            return

        try:
            outcome = self._prober.probe(wait.path, wait.token)
        finally:
            self._discard(key, wait.generation)
            wait.token.detach()

        if outcome is ProbeOutcome.READY:
            self._on_ready(wait.path, wait.remote_folder, shutdown)
        elif outcome is ProbeOutcome.LOCKED:
            self._logger.warning(
                "File %s still locked after %d attempts, skipping",
                wait.path,
                self._prober.attempts,
            )
            self._dropped(wait.path, outcome)
        elif outcome is ProbeOutcome.MISSING:
            self._logger.debug("File %s no longer exists, skipping", wait.path)
            self._dropped(wait.path, outcome)

    def _dropped(self, path: str, outcome: ProbeOutcome) -> None:
        if self._on_dropped is not None:
            self._on_dropped(path, outcome)
