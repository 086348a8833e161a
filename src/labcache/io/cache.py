"""Path conventions for the partitioned report cache."""

from __future__ import annotations

import os
from datetime import date, datetime
from pathlib import Path

from labcache.errors import CacheStructureError
from labcache.models import PartitionKey

ERRORS_DIRNAME = "Errors"
DEFAULT_DATE_FORMAT = "%Y-%m-%d"
ERROR_TIMESTAMP_FORMAT = "%Y-%m-%d %H%M%S"
WATERMARK_FILENAME = ".watermark"


def partition_path_for(partition: PartitionKey, *, root: Path) -> Path:
    """Return ``root/<health board>/<discipline>``."""
    return root / partition.relative_path


def archive_path_for(
    partition: PartitionKey,
    day: date,
    *,
    root: Path,
    extension: str = ".zip",
    date_format: str = DEFAULT_DATE_FORMAT,
) -> Path:
    """Return the archive path for one partition and calendar day. Nothing is created."""
    return partition_path_for(partition, root=root) / f"{day.strftime(date_format)}{extension}"


def error_path_for(partition: PartitionKey, fetch_date: datetime, *, root: Path) -> Path:
    """Return the diagnostic file path for an audited fetch failure."""
    return root / ERRORS_DIRNAME / partition.relative_path / f"{fetch_date.strftime(ERROR_TIMESTAMP_FORMAT)}.txt"


def parse_archive_date(
    path: Path,
    *,
    extension: str = ".zip",
    date_format: str = DEFAULT_DATE_FORMAT,
) -> date:
    """Parse the date portion of an archive filename, raising on anything else."""

    name = path.name
    if not name.endswith(extension):
        raise CacheStructureError(f"'{path}' is not a {extension} archive")
    stem = name[: -len(extension)]
    try:
        return datetime.strptime(stem, date_format).date()
    except ValueError as exc:
        raise CacheStructureError(
            f"Archive '{path}' is not named by a {date_format} date; the directory contains dirty files"
        ) from exc


def watermark_path_for(partition: PartitionKey, *, root: Path) -> Path:
    """Return the hidden file holding the last fetched instant for a partition."""
    return partition_path_for(partition, root=root) / WATERMARK_FILENAME


def read_watermark(path: Path) -> datetime | None:
    if not path.exists():
        return None
    text = path.read_text(encoding="utf-8").strip()
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise CacheStructureError(f"Watermark file '{path}' does not hold an ISO timestamp: {text!r}") from exc


def write_watermark(path: Path, instant: datetime) -> None:
    """Atomically replace the watermark file with `instant`."""

    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f"{path.name}.partial")
    temp_path.write_text(instant.isoformat(), encoding="utf-8")
    os.replace(temp_path, path)


__all__ = [
    "DEFAULT_DATE_FORMAT",
    "ERRORS_DIRNAME",
    "WATERMARK_FILENAME",
    "archive_path_for",
    "error_path_for",
    "parse_archive_date",
    "partition_path_for",
    "read_watermark",
    "watermark_path_for",
    "write_watermark",
]
