"""Append-only zip archives holding one day of cached reports.

Every mutation of an archive goes through :func:`fold_into_archive`, which
reads the existing member names before adding anything, writes into a hidden
temporary copy and swaps it into place only once complete. A failure at any
point leaves the previous archive untouched.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
import zipfile
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from labcache.util.paths import is_hidden

LOGGER = logging.getLogger(__name__)

_LOCKS_GUARD = threading.Lock()
_ARCHIVE_LOCKS: dict[Path, tuple[threading.Lock, int]] = {}


@dataclass(frozen=True)
class FoldResult:
    """Outcome of folding a set of files into an archive."""

    archive_path: Path
    added: tuple[str, ...]
    skipped: tuple[str, ...]
    created: bool

    @property
    def entry_count(self) -> int:
        return len(self.added) + len(self.skipped)


@contextmanager
def archive_lock(archive_path: Path) -> Iterator[None]:
    """Serialise folds targeting the same archive within this process.

    Entries are reference counted and dropped once no fold holds or waits on them.
    """

    key = archive_path.resolve()
    with _LOCKS_GUARD:
        lock, users = _ARCHIVE_LOCKS.get(key, (None, 0))
        if lock is None:
            lock = threading.Lock()
        _ARCHIVE_LOCKS[key] = (lock, users + 1)
    try:
        with lock:
            yield
    finally:
        with _LOCKS_GUARD:
            _, users = _ARCHIVE_LOCKS[key]
            if users == 1:
                del _ARCHIVE_LOCKS[key]
            else:
                _ARCHIVE_LOCKS[key] = (lock, users - 1)


def read_entry_names(archive_path: Path) -> list[str]:
    """Return the member names of `archive_path` in archive order."""
    with zipfile.ZipFile(archive_path, mode="r") as zf:
        return zf.namelist()


def staged_order(files: Iterable[Path]) -> list[Path]:
    """Order staged files by write time so records archive in staging order."""
    return sorted(files, key=lambda path: (path.stat().st_mtime_ns, path.name))


def fold_into_archive(files: Iterable[Path], archive_path: Path) -> FoldResult:
    """Add `files` to `archive_path`, creating it if needed.

    Files whose name is already a member are skipped with a warning; they
    indicate a harmless re-run. Existing members are never removed.
    """

    members = list(files)
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = archive_path.with_name(f".{archive_path.name}.partial")

    added: list[str] = []
    skipped: list[str] = []

    with archive_lock(archive_path):
        created = not archive_path.exists()
        try:
            if created:
                mode = "w"
            else:
                shutil.copy2(archive_path, temp_path)
                mode = "a"

            with zipfile.ZipFile(temp_path, mode=mode, compression=zipfile.ZIP_DEFLATED) as zf:
                present = set(zf.namelist())
                for path in members:
                    if path.name in present:
                        LOGGER.warning("%s is already present in %s", path.name, archive_path)
                        skipped.append(path.name)
                        continue
                    zf.write(path, arcname=path.name)
                    present.add(path.name)
                    added.append(path.name)

            os.replace(temp_path, archive_path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise

    LOGGER.info(
        "%s %s (%d added, %d already present)",
        "Created" if created else "Updated",
        archive_path,
        len(added),
        len(skipped),
    )
    return FoldResult(archive_path=archive_path, added=tuple(added), skipped=tuple(skipped), created=created)


def fold_directory(directory: Path, archive_path: Path, *, pattern: str = "*") -> FoldResult:
    """Fold every visible file in `directory` matching `pattern` into `archive_path`."""

    files = [path for path in directory.glob(pattern) if path.is_file() and not is_hidden(path)]
    return fold_into_archive(staged_order(files), archive_path)


__all__ = [
    "FoldResult",
    "archive_lock",
    "fold_directory",
    "fold_into_archive",
    "read_entry_names",
    "staged_order",
]
