"""In-memory index of the cache directory tree and the path resolver built on it."""

from __future__ import annotations

import logging
import shutil
import time
from datetime import date, datetime
from pathlib import Path

from labcache.errors import CacheStructureError
from labcache.io.cache import (
    DEFAULT_DATE_FORMAT,
    ERRORS_DIRNAME,
    archive_path_for,
    error_path_for,
    parse_archive_date,
    watermark_path_for,
)
from labcache.models import (
    Discipline,
    HealthBoard,
    PartitionKey,
    parse_discipline,
    parse_health_board,
)
from labcache.util.paths import is_hidden

LOGGER = logging.getLogger(__name__)

_DELETE_ATTEMPTS = 10
_DELETE_PAUSE_SECONDS = 0.1


class DirectoryIndex:
    """Two-level map of health board -> discipline -> directory.

    Built by scanning `root` on construction; any directory whose name is not
    a known category raises :class:`CacheStructureError`. The index only grows
    through :meth:`create_if_missing` and never deletes directories.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self._directories: dict[HealthBoard, dict[Discipline, Path]] = {}

        if not root.exists():
            return
        for board_dir in _subdirectories(root):
            if board_dir.name == ERRORS_DIRNAME:
                continue
            board = parse_health_board(board_dir.name)
            disciplines: dict[Discipline, Path] = {}
            for discipline_dir in _subdirectories(board_dir):
                disciplines[parse_discipline(discipline_dir.name)] = discipline_dir
            self._directories[board] = disciplines

    @property
    def error_directory(self) -> Path:
        path = self.root / ERRORS_DIRNAME
        path.mkdir(parents=True, exist_ok=True)
        return path

    def contains(self, partition: PartitionKey) -> bool:
        return partition.discipline in self._directories.get(partition.health_board, {})

    def get(self, partition: PartitionKey) -> Path:
        try:
            return self._directories[partition.health_board][partition.discipline]
        except KeyError as exc:
            raise KeyError(f"No cache directory for {partition} under {self.root}") from exc

    def create_if_missing(self, partition: PartitionKey) -> Path:
        if self.contains(partition):
            return self.get(partition)
        path = self.root / partition.relative_path
        path.mkdir(parents=True, exist_ok=True)
        self._directories.setdefault(partition.health_board, {})[partition.discipline] = path
        return path

    def partitions(self) -> list[PartitionKey]:
        return [
            PartitionKey(board, discipline)
            for board, disciplines in sorted(self._directories.items(), key=lambda item: item[0].value)
            for discipline in sorted(disciplines, key=lambda item: item.value)
        ]

    def validate(self) -> None:
        """Re-walk the tree and raise on any directory that is not a known category."""

        if not self.root.exists():
            return
        for board_dir in _subdirectories(self.root):
            if board_dir.name == ERRORS_DIRNAME:
                continue
            try:
                parse_health_board(board_dir.name)
            except CacheStructureError as exc:
                raise CacheStructureError(f"Unknown health board subdirectory: {board_dir}") from exc
            for discipline_dir in _subdirectories(board_dir):
                try:
                    parse_discipline(discipline_dir.name)
                except CacheStructureError as exc:
                    raise CacheStructureError(f"Unrecognised discipline directory: {discipline_dir}") from exc


class CacheLayout:
    """Resolves partition directories, archive paths and staged files under a cache root."""

    def __init__(
        self,
        root: Path,
        *,
        archive_extension: str = ".zip",
        record_extension: str = ".json",
        date_format: str = DEFAULT_DATE_FORMAT,
    ) -> None:
        self.root = root
        self.archive_extension = archive_extension
        self.record_extension = record_extension
        self.date_format = date_format
        self.index = DirectoryIndex(root)

    def resolve(self, partition: PartitionKey) -> Path:
        """Return the partition directory, creating it when missing."""
        return self.index.create_if_missing(partition)

    def archive_path_for(self, partition: PartitionKey, day: date) -> Path:
        return archive_path_for(
            partition,
            day,
            root=self.root,
            extension=self.archive_extension,
            date_format=self.date_format,
        )

    def error_path_for(self, partition: PartitionKey, fetch_date: datetime) -> Path:
        return error_path_for(partition, fetch_date, root=self.root)

    def watermark_path_for(self, partition: PartitionKey) -> Path:
        return watermark_path_for(partition, root=self.root)

    def archive_exists(self, partition: PartitionKey, day: date) -> bool:
        if not self.index.contains(partition):
            return False
        return self.archive_path_for(partition, day).exists()

    def staged_files(self, partition: PartitionKey) -> list[Path]:
        directory = self.resolve(partition)
        return [
            path
            for path in directory.glob(f"*{self.record_extension}")
            if path.is_file() and not is_hidden(path)
        ]

    def archived_dates(self, partition: PartitionKey) -> list[date]:
        """Return the dates of every archive in the partition, oldest first.

        Staged record files, hidden in-flight files and refill date directories
        are tolerated; any other file means the directory is dirty.
        """

        directory = self.resolve(partition)
        dates: list[date] = []
        for path in directory.iterdir():
            if is_hidden(path) or path.is_dir() or path.name.endswith(self.record_extension):
                continue
            if not path.name.endswith(self.archive_extension):
                raise CacheStructureError(f"Directory contains dirty files ({path})")
            dates.append(
                parse_archive_date(path, extension=self.archive_extension, date_format=self.date_format)
            )
        return sorted(dates)

    def most_recent_archived_date(self, partition: PartitionKey) -> date | None:
        dates = self.archived_dates(partition)
        return dates[-1] if dates else None

    def leftover_date_directories(self, partition: PartitionKey) -> list[Path]:
        """Date-named directories under the partition, as created by an unfinished refill."""

        found: list[Path] = []
        for directory in _subdirectories(self.resolve(partition)):
            try:
                datetime.strptime(directory.name, self.date_format)
            except ValueError:
                continue
            found.append(directory)
        return found

    def validate_structure(self) -> None:
        self.index.validate()

    def cleanup_lingering_staging(self, partition: PartitionKey | None = None) -> int:
        """Delete staged files and refill date directories left by an interrupted run.

        Returns the number of entries removed.
        """

        partitions = [partition] if partition is not None else self.index.partitions()
        removed = 0
        for key in partitions:
            if not self.index.contains(key):
                continue
            for path in self.staged_files(key):
                _delete_with_retry(path)
                removed += 1
            for directory in self.leftover_date_directories(key):
                LOGGER.warning("Removing leftover refill directory %s", directory)
                shutil.rmtree(directory)
                removed += 1
        if removed:
            LOGGER.info("Removed %d lingering staging entries under %s", removed, self.root)
        return removed


def _subdirectories(path: Path) -> list[Path]:
    return sorted(child for child in path.iterdir() if child.is_dir() and not is_hidden(child))


def _delete_with_retry(path: Path) -> None:
    for attempt in range(_DELETE_ATTEMPTS):
        try:
            path.unlink(missing_ok=True)
            return
        except OSError:
            if attempt == _DELETE_ATTEMPTS - 1:
                raise
            time.sleep(_DELETE_PAUSE_SECONDS)


__all__ = ["CacheLayout", "DirectoryIndex"]
