"""Cooperative cancellation shared by fetch cycles and the archiver."""

from __future__ import annotations

import threading

from labcache.errors import OperationCancelled


class CancellationToken:
    """Thread-safe abort flag whose waits return early once cancelled."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Block for up to `seconds`; return True if cancellation cut the wait short."""
        if seconds <= 0:
            return self.is_cancelled
        return self._event.wait(timeout=seconds)

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled:
            raise OperationCancelled("The operation was cancelled")


__all__ = ["CancellationToken"]
