"""Fetch requests and the per-partition watermark that produces them."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from labcache.io.cache import read_watermark, write_watermark
from labcache.models import PartitionKey
from labcache.services.permission import PermissionWindow

if TYPE_CHECKING:
    from labcache.io.layout import CacheLayout

LOGGER = logging.getLogger(__name__)


@dataclass
class FetchRequest:
    """Ask for every record in ``[start, start + chunk_period)``."""

    partition: PartitionKey
    start: datetime
    chunk_period: timedelta
    end: datetime
    permission_window: PermissionWindow | None = None
    is_retry: bool = False
    progress: "CacheProgress | None" = field(default=None, repr=False)

    @property
    def window_end(self) -> datetime:
        return self.start + self.chunk_period

    @property
    def exceeds_end(self) -> bool:
        return self.window_end > self.end

    def request_succeeded(self) -> None:
        if self.progress is not None:
            self.progress.request_succeeded(self)

    def request_failed(self, error: BaseException) -> None:
        if self.progress is not None:
            self.progress.request_failed(self, error)


class CacheProgress:
    """Tracks the last successfully fetched instant for one partition.

    Audited failures also move the watermark on: the failed window is left
    as a hole for an operator to re-fetch by hand. When `watermark_path` is
    set every advance is written there so the next run resumes mid-day.
    """

    def __init__(
        self,
        partition: PartitionKey,
        *,
        last_fetched: datetime | None = None,
        watermark_path: Path | None = None,
    ) -> None:
        self.partition = partition
        self.last_fetched = last_fetched
        self.watermark_path = watermark_path
        self.failures: list[tuple[datetime, BaseException]] = []
        self._lock = threading.Lock()

    @classmethod
    def from_layout(cls, partition: PartitionKey, layout: "CacheLayout", *, default_start: date) -> "CacheProgress":
        """Seed from the saved watermark, else the day after the newest archive, else `default_start`."""

        watermark_path = layout.watermark_path_for(partition)
        saved = read_watermark(watermark_path)
        if saved is not None:
            return cls(partition, last_fetched=saved, watermark_path=watermark_path)

        latest = layout.most_recent_archived_date(partition)
        start_day = latest + timedelta(days=1) if latest is not None else default_start
        return cls(partition, last_fetched=datetime.combine(start_day, time.min), watermark_path=watermark_path)

    def next_request(
        self,
        *,
        chunk_period: timedelta,
        end: datetime,
        permission_window: PermissionWindow | None = None,
        is_retry: bool = False,
    ) -> FetchRequest:
        if self.last_fetched is None:
            raise ValueError(f"No watermark for {self.partition}; seed it before requesting chunks")
        return FetchRequest(
            partition=self.partition,
            start=self.last_fetched,
            chunk_period=chunk_period,
            end=end,
            permission_window=permission_window,
            is_retry=is_retry,
            progress=self,
        )

    def request_succeeded(self, request: FetchRequest) -> None:
        self._advance(request.window_end)
        LOGGER.debug("Watermark for %s advanced to %s", self.partition, self.last_fetched)

    def request_failed(self, request: FetchRequest, error: BaseException) -> None:
        with self._lock:
            self.failures.append((request.start, error))
        self._advance(request.window_end)

    def _advance(self, instant: datetime) -> None:
        with self._lock:
            if self.last_fetched is None or instant > self.last_fetched:
                self.last_fetched = instant
                if self.watermark_path is not None:
                    write_watermark(self.watermark_path, instant)


__all__ = ["CacheProgress", "FetchRequest"]
