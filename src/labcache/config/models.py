"""Pydantic models describing labcache configuration."""

from __future__ import annotations

from datetime import date, timedelta
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from labcache.models import Discipline, HealthBoard, PartitionKey
from labcache.services.permission import PermissionWindow


class CacheConfig(BaseModel):
    """Where the cache lives and how its files are named."""

    model_config = ConfigDict(extra="allow")

    root: Path = Path("./data/cache")
    archive_extension: str = ".zip"
    record_extension: str = ".json"
    date_format: str = "%Y-%m-%d"


class FetchConfig(BaseModel):
    """Transport, retry and failure policy for fetch cycles."""

    model_config = ConfigDict(extra="allow")

    endpoint: Optional[str] = None
    timeout_seconds: float = Field(default=60, gt=0)
    rate_limit_seconds: Optional[float] = Field(default=None, ge=0)
    retries: int = Field(default=10, ge=0)
    wait_seconds: List[float] = Field(default_factory=lambda: [3, 10, 30, 60, 120, 300], min_length=1)
    audit_failure_and_move_on: bool = False
    chunk_period_hours: float = Field(default=24, gt=0)
    default_start: date = date(2015, 1, 1)

    @field_validator("wait_seconds", mode="before")
    @classmethod
    def _split_wait_seconds(cls, value: object) -> object:
        """Accept the comma-separated form, e.g. ``"3,10,60"``."""

        if isinstance(value, str):
            parts = [part.strip() for part in value.split(",") if part.strip()]
            try:
                return [float(part) for part in parts]
            except ValueError as exc:
                raise ValueError(
                    f"wait_seconds contained a value in '{value}' which is not a number of seconds"
                ) from exc
        return value

    @field_validator("wait_seconds")
    @classmethod
    def _non_negative_waits(cls, value: List[float]) -> List[float]:
        if any(item < 0 for item in value):
            raise ValueError("wait_seconds entries must be >= 0")
        return value

    @property
    def chunk_period(self) -> timedelta:
        return timedelta(hours=self.chunk_period_hours)


class PartitionConfig(BaseModel):
    """One (health board, discipline) pair to keep cached."""

    model_config = ConfigDict(extra="forbid")

    health_board: HealthBoard
    discipline: Discipline

    @property
    def key(self) -> PartitionKey:
        return PartitionKey(self.health_board, self.discipline)


class RuntimeConfig(BaseModel):
    """Execution-time configuration."""

    model_config = ConfigDict(extra="allow")

    parallelism: int = Field(default=1, ge=1)
    log_path: Optional[Path] = None


class LabCacheConfig(BaseModel):
    """Root configuration object."""

    model_config = ConfigDict(extra="allow")

    cache: CacheConfig = Field(default_factory=CacheConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    permission_window: PermissionWindow = Field(default_factory=PermissionWindow.always_open)
    partitions: List[PartitionConfig] = Field(default_factory=list)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)

    def partition_keys(self) -> list[PartitionKey]:
        return [partition.key for partition in self.partitions]


__all__ = [
    "CacheConfig",
    "FetchConfig",
    "LabCacheConfig",
    "PartitionConfig",
    "RuntimeConfig",
]
