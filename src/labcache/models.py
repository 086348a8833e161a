"""Domain types for cached laboratory reports."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from labcache.errors import CacheStructureError, RecordFormatError

if TYPE_CHECKING:
    from labcache.errors import TransferFailed
    from labcache.pipeline.request import FetchRequest


class HealthBoard(str, Enum):
    """Health boards whose reports are cached (top-level category)."""

    T = "T"
    F = "F"


class Discipline(str, Enum):
    """Laboratory disciplines (second-level category)."""

    BIOCHEMISTRY = "Biochemistry"
    HAEMATOLOGY = "Haematology"
    IMMUNOLOGY = "Immunology"
    MICROBIOLOGY = "Microbiology"
    VIROLOGY = "Virology"


def parse_health_board(name: str) -> HealthBoard:
    """Return the `HealthBoard` called `name`, raising on unknown names."""

    try:
        return HealthBoard(name)
    except ValueError as exc:
        raise CacheStructureError(f"Did not recognise '{name}' as a valid health board") from exc


def parse_discipline(name: str) -> Discipline:
    """Return the `Discipline` called `name`, raising on unknown names."""

    try:
        return Discipline(name)
    except ValueError as exc:
        raise CacheStructureError(f"Did not recognise '{name}' as a valid discipline") from exc


@dataclass(frozen=True)
class PartitionKey:
    """Categorical pair identifying one cache subtree."""

    health_board: HealthBoard
    discipline: Discipline

    @classmethod
    def parse(cls, health_board: str, discipline: str) -> "PartitionKey":
        return cls(parse_health_board(health_board), parse_discipline(discipline))

    @property
    def relative_path(self) -> Path:
        return Path(self.health_board.value, self.discipline.value)

    def __str__(self) -> str:
        return f"{self.health_board.value}/{self.discipline.value}"


class LabReport(BaseModel):
    """A single investigation report as returned by the reporting service."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    hb_extract: HealthBoard
    discipline: Discipline
    lab_number: str = Field(min_length=1)
    test_report_id: str = Field(min_length=1)
    report_date: date
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def partition(self) -> PartitionKey:
        return PartitionKey(self.hb_extract, self.discipline)

    @property
    def filename(self) -> str:
        """Entry name used for staging files and archive members."""

        lab_number = self.lab_number.strip()
        test_report_id = self.test_report_id.strip()
        if not lab_number:
            raise RecordFormatError("This report has no lab_number (check construction)")
        if not test_report_id:
            raise RecordFormatError("This report has no test_report_id (check construction)")
        return f"report-{lab_number}-{test_report_id}.json"

    def to_json_bytes(self) -> bytes:
        return self.model_dump_json(indent=2).encode("utf-8")

    @classmethod
    def from_json_bytes(cls, raw: bytes, *, source: str = "<bytes>") -> "LabReport":
        try:
            return cls.model_validate(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValidationError) as exc:
            raise RecordFormatError(f"Could not deserialise report from {source}: {exc}") from exc


class FetchOutcome(str, Enum):
    """How a transport call ended."""

    DATA = "data"
    EMPTY = "empty"
    ABORTED = "aborted"


@dataclass(frozen=True)
class FetchResult:
    """Tagged transport result separating empty windows from aborted ones."""

    outcome: FetchOutcome
    records: tuple[LabReport, ...] = ()
    reason: str | None = None

    @classmethod
    def data(cls, records: Sequence[LabReport]) -> "FetchResult":
        if not records:
            return cls.empty()
        return cls(FetchOutcome.DATA, tuple(records))

    @classmethod
    def empty(cls) -> "FetchResult":
        return cls(FetchOutcome.EMPTY)

    @classmethod
    def aborted(cls, reason: str) -> "FetchResult":
        return cls(FetchOutcome.ABORTED, reason=reason)

    @property
    def is_aborted(self) -> bool:
        return self.outcome is FetchOutcome.ABORTED


@dataclass
class CacheChunk:
    """One batch of records for a single partition and fetch window."""

    partition: PartitionKey
    records: tuple[LabReport, ...]
    fetch_date: datetime
    request: "FetchRequest | None" = None
    failure: "TransferFailed | None" = None

    @property
    def is_failure(self) -> bool:
        return self.failure is not None


@dataclass(frozen=True)
class AuditFailureRecord:
    """A fetch window that was skipped after exhausting retries."""

    partition: PartitionKey
    fetch_request_start: datetime
    error_detail: str
    recorded_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "health_board": self.partition.health_board.value,
            "discipline": self.partition.discipline.value,
            "fetch_request_start": self.fetch_request_start.isoformat(),
            "error_detail": self.error_detail,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "AuditFailureRecord":
        return cls(
            partition=PartitionKey.parse(payload["health_board"], payload["discipline"]),
            fetch_request_start=datetime.fromisoformat(payload["fetch_request_start"]),
            error_detail=payload["error_detail"],
            recorded_at=datetime.fromisoformat(payload["recorded_at"]),
        )


__all__ = [
    "AuditFailureRecord",
    "CacheChunk",
    "Discipline",
    "FetchOutcome",
    "FetchResult",
    "HealthBoard",
    "LabReport",
    "PartitionKey",
    "parse_discipline",
    "parse_health_board",
]
