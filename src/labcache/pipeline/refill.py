"""Rebuild cache archives from a backup bundle of reports."""

from __future__ import annotations

import logging
import shutil
import zipfile
from collections.abc import Iterator
from datetime import date
from pathlib import Path

from labcache.errors import AlreadyCachedError, DuplicateRecordError
from labcache.io.archive import FoldResult, fold_directory
from labcache.io.layout import CacheLayout
from labcache.models import LabReport, PartitionKey
from labcache.util.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)

PROGRESS_EVERY = 1000


class CacheRefiller:
    """Replay a bundle of reports into the partitioned cache.

    Each report is placed by its own content (health board, discipline and
    report date), never by its name inside the bundle. Archives are produced
    with the same fold used by live caching.
    """

    def __init__(self, layout: CacheLayout) -> None:
        self.layout = layout

    def check_not_already_cached(self, bundle: Path) -> None:
        """Raise if any report in `bundle` falls on a day that already has an archive."""

        _require_bundle(bundle)
        LOGGER.info("Checking the reports from %s are not already present in the cache", bundle)
        checked: set[tuple[PartitionKey, date]] = set()
        for _, _, report in _iter_reports(bundle):
            identifiers = (report.partition, report.report_date)
            if identifiers in checked:
                continue
            archive_path = self.layout.archive_path_for(*identifiers)
            if archive_path.exists():
                raise AlreadyCachedError(
                    f"Bundle {bundle} contains a report from a day already present in the cache "
                    f"({report.partition} {report.report_date.isoformat()}: {archive_path}). "
                    "It will need to be investigated and refilled manually."
                )
            checked.add(identifiers)

    def refill(
        self,
        bundle: Path,
        *,
        check: bool = True,
        token: CancellationToken | None = None,
    ) -> list[FoldResult]:
        token = token or CancellationToken()
        if check:
            self.check_not_already_cached(bundle)
        else:
            _require_bundle(bundle)

        LOGGER.info("Opening bundle %s", bundle)
        date_dirs: dict[Path, tuple[PartitionKey, date]] = {}
        try:
            processed = 0
            for _, raw, report in _iter_reports(bundle):
                token.raise_if_cancelled()
                self._extract(raw, report, date_dirs)
                processed += 1
                if processed % PROGRESS_EVERY == 0:
                    LOGGER.info("Processed %d reports from %s", processed, bundle)

            LOGGER.info(
                "Extracted %d reports into %d date directories; now creating the cache archives",
                processed,
                len(date_dirs),
            )
            results: list[FoldResult] = []
            for date_dir, (partition, day) in list(date_dirs.items()):
                token.raise_if_cancelled()
                results.append(fold_directory(date_dir, self.layout.archive_path_for(partition, day)))
                shutil.rmtree(date_dir)
                del date_dirs[date_dir]
        except BaseException:
            for date_dir in date_dirs:
                LOGGER.warning("Removing partially extracted %s", date_dir)
                shutil.rmtree(date_dir, ignore_errors=True)
            raise
        return results

    def _extract(
        self,
        raw: bytes,
        report: LabReport,
        date_dirs: dict[Path, tuple[PartitionKey, date]],
    ) -> Path:
        partition_dir = self.layout.resolve(report.partition)
        date_dir = partition_dir / report.report_date.strftime(self.layout.date_format)
        date_dir.mkdir(exist_ok=True)
        date_dirs.setdefault(date_dir, (report.partition, report.report_date))

        dest = date_dir / report.filename
        if dest.exists():
            raise DuplicateRecordError(f"The file '{report.filename}' already exists in destination directory '{date_dir}'")
        dest.write_bytes(raw)
        return dest


def _require_bundle(bundle: Path) -> None:
    if not bundle.exists():
        raise FileNotFoundError(f"The backup bundle {bundle} was not found")


def _iter_reports(bundle: Path) -> Iterator[tuple[str, bytes, LabReport]]:
    with zipfile.ZipFile(bundle, mode="r") as zf:
        entries = [info for info in zf.infolist() if not info.is_dir()]
        LOGGER.info("%d reports in %s", len(entries), bundle)
        for info in entries:
            raw = zf.read(info)
            yield info.filename, raw, LabReport.from_json_bytes(raw, source=f"{bundle}:{info.filename}")


__all__ = ["CacheRefiller"]
