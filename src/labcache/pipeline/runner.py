"""Sequential per-partition fetch loops, fanned out across partitions."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

from labcache.config.models import LabCacheConfig
from labcache.io.audit import AuditStore
from labcache.io.layout import CacheLayout
from labcache.io.transport import HttpReportTransport, Transport
from labcache.models import PartitionKey
from labcache.pipeline.destination import CacheDestination
from labcache.pipeline.request import CacheProgress
from labcache.pipeline.source import FetchSource, FetchState
from labcache.util.cancellation import CancellationToken
from labcache.util.retry import LimitedRetryStrategy

LOGGER = logging.getLogger(__name__)

TransportFactory = Callable[[PartitionKey], Transport]


@dataclass
class PartitionRunSummary:
    partition: PartitionKey
    chunks_written: int = 0
    records_written: int = 0
    failures_audited: int = 0
    final_state: FetchState = FetchState.IDLE
    watermark: datetime | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "partition": str(self.partition),
            "chunks_written": self.chunks_written,
            "records_written": self.records_written,
            "failures_audited": self.failures_audited,
            "final_state": self.final_state.value,
            "watermark": self.watermark.isoformat() if self.watermark else None,
        }


def run_partition(
    source: FetchSource,
    destination: CacheDestination,
    progress: CacheProgress,
    *,
    config: LabCacheConfig,
    end: datetime,
    token: CancellationToken | None = None,
) -> PartitionRunSummary:
    """Fetch and archive chunks for one partition until blocked, aborted or cancelled."""

    token = token or CancellationToken()
    summary = PartitionRunSummary(partition=source.partition)

    while not token.is_cancelled:
        request = progress.next_request(
            chunk_period=config.fetch.chunk_period,
            end=end,
            permission_window=config.permission_window,
        )
        chunk = source.get_chunk(request, token)
        summary.final_state = source.state
        if chunk is None:
            break

        destination.write(chunk, token)
        if chunk.is_failure:
            summary.failures_audited += 1
        else:
            summary.chunks_written += 1
            summary.records_written += len(chunk.records)

    summary.watermark = progress.last_fetched
    LOGGER.info(
        "Finished %s: %d chunks, %d reports, %d audited failures (state=%s)",
        summary.partition,
        summary.chunks_written,
        summary.records_written,
        summary.failures_audited,
        summary.final_state.value,
    )
    return summary


def http_transport_factory(config: LabCacheConfig) -> TransportFactory:
    if not config.fetch.endpoint:
        raise ValueError("fetch.endpoint must be configured to use the HTTP transport")

    def factory(partition: PartitionKey) -> Transport:
        return HttpReportTransport(
            config.fetch.endpoint or "",
            partition,
            permission_window=config.permission_window,
            timeout_seconds=config.fetch.timeout_seconds,
            rate_limit_seconds=config.fetch.rate_limit_seconds,
        )

    return factory


def run_partitions(
    partitions: Sequence[PartitionKey],
    *,
    config: LabCacheConfig,
    layout: CacheLayout,
    audit_store: AuditStore,
    transport_factory: TransportFactory,
    end: datetime,
    token: CancellationToken | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> list[PartitionRunSummary]:
    """Run every partition, in parallel across partitions and sequentially within each."""

    token = token or CancellationToken()
    for partition in partitions:
        layout.resolve(partition)

    def _run(partition: PartitionKey) -> PartitionRunSummary:
        strategy = LimitedRetryStrategy(
            transport_factory(partition),
            max_retries=config.fetch.retries,
            wait_seconds=config.fetch.wait_seconds,
        )
        source = FetchSource(
            partition,
            strategy,
            permission_window=config.permission_window,
            audit_failure_and_move_on=config.fetch.audit_failure_and_move_on,
            audit_store=audit_store,
            clock=clock,
        )
        progress = CacheProgress.from_layout(partition, layout, default_start=config.fetch.default_start)
        destination = CacheDestination(layout, partition)
        return run_partition(source, destination, progress, config=config, end=end, token=token)

    workers = max(1, min(config.runtime.parallelism, len(partitions)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="labcache") as pool:
        return list(pool.map(_run, partitions))


__all__ = [
    "PartitionRunSummary",
    "http_transport_factory",
    "run_partition",
    "run_partitions",
]
