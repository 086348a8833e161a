"""Cache destination staging fetched reports and folding them into daily archives."""

from __future__ import annotations

import logging
import time
from collections import Counter
from pathlib import Path

from labcache.errors import DuplicateRecordError, PartitionMismatchError, describe_exception
from labcache.io.archive import FoldResult, fold_into_archive, staged_order
from labcache.io.layout import CacheLayout
from labcache.models import CacheChunk, LabReport, PartitionKey
from labcache.util.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)


class CacheDestination:
    """Writes chunks for a single partition.

    Not safe to call concurrently for the same partition; run one destination
    per partition and feed it chunks sequentially.
    """

    def __init__(self, layout: CacheLayout, partition: PartitionKey) -> None:
        self.layout = layout
        self.partition = partition
        self.entries_written: Counter[Path] = Counter()

    def write(self, chunk: CacheChunk, token: CancellationToken | None = None) -> FoldResult | Path | None:
        """Persist `chunk`.

        Returns the diagnostic file for a failed chunk, the fold result for a
        data chunk, or ``None`` when cancelled part way. Cancellation after
        staging leaves the staged files in place for the next run.
        """

        token = token or CancellationToken()

        if chunk.request is None:
            raise ValueError("The chunk has no fetch request; cannot tell which fetch it belongs to.")
        if chunk.partition != self.partition:
            raise PartitionMismatchError(
                f"Chunk partition {chunk.partition} did not match this destination's partition {self.partition}"
            )

        if chunk.failure is not None:
            return self._write_failure(chunk)

        if token.is_cancelled:
            return None
        staged = self.stage(chunk.records)

        if token.is_cancelled:
            return None
        started = time.monotonic()
        archive_path = self.layout.archive_path_for(self.partition, chunk.fetch_date.date())
        fresh = set(staged)
        leftovers = [path for path in self.layout.staged_files(self.partition) if path not in fresh]
        files = staged_order(leftovers) + staged
        staged_count = len(files)
        result = fold_into_archive(files, archive_path)

        if token.is_cancelled:
            return None
        self._clear_staging()

        self.entries_written[archive_path] += staged_count
        LOGGER.info(
            "%s: %d entries written to %s this run (%.2fs)",
            self.partition,
            self.entries_written[archive_path],
            archive_path,
            time.monotonic() - started,
        )

        if token.is_cancelled:
            return None
        chunk.request.request_succeeded()
        return result

    def stage(self, records: tuple[LabReport, ...] | list[LabReport]) -> list[Path]:
        """Write each record to its own file in the partition's staging directory."""

        foreign = [record.filename for record in records if record.partition != self.partition]
        if foreign:
            raise PartitionMismatchError(f"Reports {foreign} do not belong to partition {self.partition}")

        names = [record.filename for record in records]
        duplicates = sorted(name for name, count in Counter(names).items() if count > 1)
        if duplicates:
            raise DuplicateRecordError(f"Chunk for {self.partition} contains colliding report files: {duplicates}")

        staging_dir = self.layout.resolve(self.partition)
        written: list[Path] = []
        for record, name in zip(records, names):
            path = staging_dir / name
            path.write_bytes(record.to_json_bytes())
            written.append(path)
        LOGGER.debug("Staged %d reports in %s", len(written), staging_dir)
        return written

    def _clear_staging(self) -> None:
        for path in self.layout.staged_files(self.partition):
            path.unlink(missing_ok=True)

    def _write_failure(self, chunk: CacheChunk) -> Path:
        assert chunk.failure is not None
        error_path = self.layout.error_path_for(self.partition, chunk.fetch_date)
        error_path.parent.mkdir(parents=True, exist_ok=True)
        error_path.write_text(describe_exception(chunk.failure), encoding="utf-8")
        LOGGER.warning("Recorded failed fetch for %s in %s", self.partition, error_path)
        return error_path


__all__ = ["CacheDestination"]
