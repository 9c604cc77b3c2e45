"""Readiness probe for files still being written.

A file is ready once it can be opened and locked exclusively. Writers that
keep the file open (direct writes) block the lock; writers that rename a
finished temp file into place release it at once, so both patterns are
handled without knowing which one produced the file.
"""

from __future__ import annotations

import logging
import os
from typing import IO, TYPE_CHECKING

from sftprelay.core.config import DEFAULT_PROBE_ATTEMPTS, DEFAULT_PROBE_DELAY
from sftprelay.relay.types import ProbeOutcome

if TYPE_CHECKING:
    from sftprelay.core.cancellation import CancellationToken

if os.name == "nt":
    import msvcrt
else:
    import fcntl


def _lock_exclusive(handle: IO[bytes]) -> None:
    """Take and release a non-blocking exclusive lock.

    Raises:
        OSError: If another process holds a conflicting lock.
    """
    fd = handle.fileno()
    if os.name == "nt":
        # Locks the first byte; fails with PermissionError while a writer holds it
        msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        fcntl.flock(fd, fcntl.LOCK_UN)


class ReadinessProber:
    """Checks with bounded retries that no writer holds a file.

    On Windows the lock is mandatory and a writer that has the file open
    blocks every attempt. On POSIX ``flock`` is advisory: only writers that
    lock the file themselves are detected. A writer that keeps the file
    open without locking it passes the probe, so there the quiet window is
    the only guard against relaying a half-written file. Writers that
    pause longer than the quiet window should write to a temp name and
    rename when done.
    """

    def __init__(
        self,
        attempts: int = DEFAULT_PROBE_ATTEMPTS,
        delay: float = DEFAULT_PROBE_DELAY,
        logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the prober.

        Args:
            attempts: Maximum number of exclusive-open attempts.
            delay: Seconds to wait between attempts.
            logger: Logger to use (defaults to the module logger).
        """
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._attempts = attempts
        self._delay = delay
        self._logger = logger or logging.getLogger(__name__)

    @property
    def attempts(self) -> int:
        """Get the attempt budget."""
        return self._attempts

    @property
    def delay(self) -> float:
        """Get the delay between attempts."""
        return self._delay

    def probe(self, path: str, token: CancellationToken) -> ProbeOutcome:
        """Wait until the file can be opened exclusively.

        Args:
            path: File to check.
            token: Cancels the wait between attempts.

        Returns:
            READY on the first successful attempt, MISSING if the file does
            not exist, CANCELLED if the token fired, LOCKED once the attempt
            budget is exhausted.
        """
        for attempt in range(1, self._attempts + 1):
            if token.is_cancelled:
                return ProbeOutcome.CANCELLED

            try:
                with open(path, "rb") as handle:
                    _lock_exclusive(handle)
                return ProbeOutcome.READY
            except FileNotFoundError:
                self._logger.debug("File vanished before it became ready: %s", path)
                return ProbeOutcome.MISSING
            except OSError as e:
                # Sharing violation or lock held: still being written
                self._logger.debug(
                    "File %s not ready (attempt %d/%d): %s",
                    path,
                    attempt,
                    self._attempts,
                    e,
                )

            if attempt < self._attempts and token.wait(self._delay):
                return ProbeOutcome.CANCELLED

        return ProbeOutcome.LOCKED

    def is_ready(self, path: str, token: CancellationToken) -> bool:
        """Check whether the file is safe to read.

        Returns:
            True only if the probe outcome is READY.
        """
        return self.probe(path, token) is ProbeOutcome.READY
