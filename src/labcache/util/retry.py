"""Retry strategies wrapping transport calls for a single fetch window."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Protocol

from labcache.errors import NonRecoverableTransportError, OperationCancelled, TransferFailed
from labcache.io.transport import Transport
from labcache.models import FetchResult
from labcache.util.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)


class RetryStrategy(Protocol):
    """Fetches one window, retrying transient failures, or raises `TransferFailed`."""

    def fetch(self, start: datetime, period: timedelta, token: CancellationToken | None = None) -> FetchResult:
        ...


class LimitedRetryStrategy:
    """Retry up to `max_retries` times, waiting per a fixed schedule between attempts.

    The wait before retry ``i`` is ``wait_seconds[min(i, len(wait_seconds) - 1)]``
    so the last configured wait repeats for every later attempt. ``max_retries``
    of 0 means a single attempt.
    """

    def __init__(self, transport: Transport, *, max_retries: int, wait_seconds: Sequence[float]) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if not wait_seconds:
            raise ValueError("wait_seconds must contain at least one entry")
        if any(wait < 0 for wait in wait_seconds):
            raise ValueError("wait_seconds entries must be >= 0")
        self.transport = transport
        self.max_retries = max_retries
        self.wait_seconds = tuple(float(wait) for wait in wait_seconds)

    def wait_for_attempt(self, attempt_index: int) -> float:
        return self.wait_seconds[min(attempt_index, len(self.wait_seconds) - 1)]

    def fetch(self, start: datetime, period: timedelta, token: CancellationToken | None = None) -> FetchResult:
        token = token or CancellationToken()

        for attempt in range(self.max_retries + 1):
            token.raise_if_cancelled()
            try:
                return self.transport.fetch_records_for_window(start, period)
            except OperationCancelled:
                LOGGER.info("The fetch has been cancelled, nothing more to do here.")
                raise
            except NonRecoverableTransportError as exc:
                LOGGER.warning("Non-recoverable transport failure for %s: %s", start.isoformat(), exc)
                raise TransferFailed(start, period, exc) from exc
            except Exception as exc:  # noqa: BLE001
                if attempt == self.max_retries:
                    raise TransferFailed(start, period, exc) from exc
                delay = self.wait_for_attempt(attempt)
                LOGGER.warning("%s: %s", type(exc).__name__, exc)
                LOGGER.info("Sleeping for %s seconds...", delay)
                if token.wait(delay):
                    raise OperationCancelled("Cancelled while waiting to retry") from exc
                LOGGER.info("Retrying (%d attempts remaining)...", self.max_retries - attempt)

        raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["LimitedRetryStrategy", "RetryStrategy"]
