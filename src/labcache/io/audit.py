"""Append-only stores for audited fetch failures."""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Protocol

from labcache.models import AuditFailureRecord, PartitionKey

LOGGER = logging.getLogger(__name__)


class AuditStore(Protocol):
    def record_failure(self, partition: PartitionKey, window_start: datetime, error_detail: str) -> AuditFailureRecord:
        ...


class InMemoryAuditStore:
    """Keeps failures in a list; useful when nothing needs to survive the run."""

    def __init__(self) -> None:
        self.records: list[AuditFailureRecord] = []

    def record_failure(self, partition: PartitionKey, window_start: datetime, error_detail: str) -> AuditFailureRecord:
        record = AuditFailureRecord(partition, window_start, error_detail)
        self.records.append(record)
        return record

    def failures(self) -> list[AuditFailureRecord]:
        return list(self.records)


class JsonlAuditStore:
    """Appends one JSON line per failure to `path`."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def record_failure(self, partition: PartitionKey, window_start: datetime, error_detail: str) -> AuditFailureRecord:
        record = AuditFailureRecord(partition, window_start, error_detail)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record.to_dict()) + "\n")
        LOGGER.warning("Recorded fetch failure for %s at %s", partition, window_start.isoformat())
        return record

    def failures(self) -> list[AuditFailureRecord]:
        if not self.path.exists():
            return []
        lines = self.path.read_text(encoding="utf-8").splitlines()
        return [AuditFailureRecord.from_dict(json.loads(line)) for line in lines if line.strip()]


__all__ = ["AuditStore", "InMemoryAuditStore", "JsonlAuditStore"]
