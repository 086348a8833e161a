"""Fetch source driving one fetch cycle for a partition."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Callable

from labcache.errors import PartitionMismatchError, TransferFailed, describe_exception
from labcache.io.audit import AuditStore
from labcache.models import CacheChunk, FetchOutcome, PartitionKey
from labcache.pipeline.request import FetchRequest
from labcache.services.permission import PermissionWindow
from labcache.util.cancellation import CancellationToken
from labcache.util.retry import RetryStrategy

LOGGER = logging.getLogger(__name__)


class FetchState(str, Enum):
    IDLE = "idle"
    CHECK_GATE = "check_gate"
    BLOCKED = "blocked"
    FETCHING = "fetching"
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"
    AUDITED_FAILED = "audited_failed"
    HARD_FAILED = "hard_failed"


class FetchSource:
    """Consult the permission window, fetch through the retry strategy and build a chunk.

    `get_chunk` returns ``None`` when blocked (outside the window, caught up or
    cancelled) and when the transport aborted mid-window; :attr:`state` tells
    the two apart. An aborted window is never partially archived and the
    watermark is not advanced, so the same window is fetched again next time.
    """

    def __init__(
        self,
        partition: PartitionKey,
        retry_strategy: RetryStrategy,
        *,
        permission_window: PermissionWindow,
        audit_failure_and_move_on: bool = False,
        audit_store: AuditStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if audit_failure_and_move_on and audit_store is None:
            raise ValueError("An audit store is required when audit_failure_and_move_on is set")
        self.partition = partition
        self.retry_strategy = retry_strategy
        self.permission_window = permission_window
        self.audit_failure_and_move_on = audit_failure_and_move_on
        self.audit_store = audit_store
        self.clock = clock
        self.state = FetchState.IDLE

    def get_chunk(self, request: FetchRequest, token: CancellationToken | None = None) -> CacheChunk | None:
        token = token or CancellationToken()

        if request.partition != self.partition:
            raise PartitionMismatchError(
                f"Fetch request for {request.partition} does not match this source's partition {self.partition}"
            )

        LOGGER.info("About to request chunk for %s on %s", self.partition, request.start.isoformat())
        if request.is_retry:
            LOGGER.info("(this is a retry attempt)")

        self.state = FetchState.CHECK_GATE
        if not self._should_begin_fetch(request, token):
            self.state = FetchState.BLOCKED
            LOGGER.info("Fetch not required for %s (see previous messages)", self.partition)
            return None

        self.state = FetchState.FETCHING
        try:
            result = self.retry_strategy.fetch(request.start, request.chunk_period, token)
        except TransferFailed as exc:
            LOGGER.warning("Chunk download failed for %s: %s", self.partition, exc)
            if not self.audit_failure_and_move_on:
                self.state = FetchState.HARD_FAILED
                raise
            assert self.audit_store is not None
            self.audit_store.record_failure(self.partition, request.start, describe_exception(exc))
            request.request_failed(exc)
            self.state = FetchState.AUDITED_FAILED
            return CacheChunk(self.partition, (), request.start, request=request, failure=exc)

        if result.outcome is FetchOutcome.ABORTED:
            self.state = FetchState.ABORTED
            LOGGER.info(
                "Fetch for %s at %s aborted (%s); the window will be fetched again later",
                self.partition,
                request.start.isoformat(),
                result.reason,
            )
            return None

        self.state = FetchState.SUCCEEDED
        return CacheChunk(self.partition, result.records, request.start, request=request)

    def _should_begin_fetch(self, request: FetchRequest, token: CancellationToken) -> bool:
        now = self.clock()
        if request.permission_window is not None and not request.permission_window.within_window(now):
            LOGGER.info("Now outside the permission window so stopping retrieval for %s", self.partition)
            return False

        if request.exceeds_end:
            LOGGER.info(
                "Reached the end of the fetch request for %s: chunk from %s (%s) would pass %s",
                self.partition,
                request.start.isoformat(),
                request.chunk_period,
                request.end.isoformat(),
            )
            return False

        if not self.permission_window.within_window(now):
            LOGGER.info(
                "No longer within the permission window (%s), cannot download anything further for now",
                self.permission_window.name,
            )
            return False

        return not token.is_cancelled


__all__ = ["FetchSource", "FetchState"]
