"""Cancellation tokens shared by every blocking step of the relay.

This module provides:
- OperationCancelledError: Raised when a token is cancelled mid-operation
- CancellationToken: Thread-safe cancellation signal with linked children

A single shutdown token is created by the process and threaded through the
debounce wait, the readiness delay and the upload. Per-file waits use
linked children so superseding one file never cancels the others.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class OperationCancelledError(Exception):
    """Operation aborted because its cancellation token was cancelled."""


class CancellationToken:
    """Thread-safe cancellation signal.

    Usage:
        shutdown = CancellationToken()
        child = shutdown.linked()

        unregister = child.register(timer.cancel)
        ...
        shutdown.cancel()  # cancels child, runs timer.cancel()
    """

    def __init__(self, parent: CancellationToken | None = None) -> None:
        """Initialize the token.

        Args:
            parent: Optional token whose cancellation also cancels this one.
        """
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()
        self._unlink: Callable[[], None] | None = None

        if parent is not None:
            self._unlink = parent.register(self.cancel)

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation was requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Cancel the token and run registered callbacks once."""
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        # Run callbacks outside lock
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cancellation callback failed")

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to run on cancellation.

        The callback runs immediately if the token is already cancelled.

        Args:
            callback: Function to call (no arguments).

        Returns:
            Function that unregisters the callback.
        """
        with self._lock:
            if not self._event.is_set():
                callback_id = next(self._ids)
                self._callbacks[callback_id] = callback

                def unregister() -> None:
                    with self._lock:
                        self._callbacks.pop(callback_id, None)

                return unregister

        callback()
        return lambda: None

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancelled or the timeout elapses.

        Args:
            timeout: Seconds to wait (None waits forever).

        Returns:
            True if the token was cancelled.
        """
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError("Operation cancelled")

    def linked(self) -> CancellationToken:
        """Create a child token cancelled together with this one."""
        return CancellationToken(parent=self)

    def detach(self) -> None:
        """Drop the link to the parent token, if any."""
        if self._unlink is not None:
            self._unlink()
            self._unlink = None
