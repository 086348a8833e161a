"""Exception hierarchy shared across the cache pipeline."""

from __future__ import annotations

from datetime import datetime, timedelta


class LabCacheError(RuntimeError):
    """Base class for structural and data errors raised by the cache."""


class CacheStructureError(LabCacheError):
    """Raised when the on-disk cache layout does not match the known categories."""


class DuplicateRecordError(LabCacheError):
    """Raised when two records resolve to the same file or a target already exists."""


class AlreadyCachedError(LabCacheError):
    """Raised when a refill bundle covers a date that is already archived."""


class PartitionMismatchError(LabCacheError):
    """Raised when a chunk is routed to a destination for another partition."""


class RecordFormatError(LabCacheError):
    """Raised when a record cannot be deserialized or lacks identifying fields."""


class TransportError(RuntimeError):
    """Recoverable failure reported by a transport; eligible for retry."""


class NonRecoverableTransportError(TransportError):
    """Transport failure that retrying cannot fix (e.g. a rejected search)."""


class OperationCancelled(RuntimeError):
    """Raised when a cooperative cancellation request is observed."""


class TransferFailed(RuntimeError):
    """Raised once every retry for a fetch window has been used up."""

    def __init__(self, window_start: datetime, period: timedelta, error: BaseException | None = None) -> None:
        super().__init__(f"Failed to download data requested for {window_start.isoformat()} (interval {period})")
        self.window_start = window_start
        self.period = period
        self.error = error
        if error is not None:
            self.__cause__ = error


def describe_exception(exc: BaseException) -> str:
    """Return the messages of `exc` and every chained cause, one per line."""

    lines: list[str] = []
    current: BaseException | None = exc
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        lines.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return "\n".join(lines)


__all__ = [
    "AlreadyCachedError",
    "CacheStructureError",
    "DuplicateRecordError",
    "LabCacheError",
    "NonRecoverableTransportError",
    "OperationCancelled",
    "PartitionMismatchError",
    "RecordFormatError",
    "TransferFailed",
    "TransportError",
    "describe_exception",
]
