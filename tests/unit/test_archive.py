from __future__ import annotations

import unittest
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest.mock import patch

from labcache.io import archive as archive_module
from labcache.io.archive import archive_lock, fold_directory, fold_into_archive, read_entry_names


def _write(directory: Path, name: str, text: str = "{}") -> Path:
    path = directory / name
    path.write_text(text, encoding="utf-8")
    return path


class FoldIntoArchiveTests(unittest.TestCase):
    def test_creates_archive_with_every_file(self) -> None:
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            files = [_write(root, "a.json"), _write(root, "b.json")]
            archive = root / "out" / "2024-01-01.zip"

            result = fold_into_archive(files, archive)

            self.assertTrue(result.created)
            self.assertEqual(result.added, ("a.json", "b.json"))
            self.assertEqual(read_entry_names(archive), ["a.json", "b.json"])

    def test_refolding_skips_existing_entries(self) -> None:
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            files = [_write(root, "a.json"), _write(root, "b.json")]
            archive = root / "2024-01-01.zip"
            fold_into_archive(files, archive)

            with self.assertLogs("labcache.io.archive", level="WARNING"):
                result = fold_into_archive(files, archive)

            self.assertFalse(result.created)
            self.assertEqual(result.added, ())
            self.assertEqual(result.skipped, ("a.json", "b.json"))
            self.assertEqual(read_entry_names(archive), ["a.json", "b.json"])

    def test_existing_entries_survive_later_folds(self) -> None:
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            archive = root / "2024-01-01.zip"
            fold_into_archive([_write(root, "a.json", "first")], archive)
            fold_into_archive([_write(root, "a.json", "second"), _write(root, "c.json")], archive)

            self.assertEqual(sorted(read_entry_names(archive)), ["a.json", "c.json"])

    def test_empty_fold_creates_empty_archive(self) -> None:
        with TemporaryDirectory() as tmpdir:
            archive = Path(tmpdir) / "2024-01-01.zip"
            result = fold_into_archive([], archive)

            self.assertTrue(archive.exists())
            self.assertEqual(result.entry_count, 0)
            self.assertEqual(read_entry_names(archive), [])

    def test_failure_leaves_previous_archive_untouched(self) -> None:
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            archive = root / "2024-01-01.zip"
            fold_into_archive([_write(root, "a.json")], archive)
            before = archive.read_bytes()

            with patch("labcache.io.archive.os.replace", side_effect=OSError("disk full")):
                with self.assertRaises(OSError):
                    fold_into_archive([_write(root, "b.json")], archive)

            self.assertEqual(archive.read_bytes(), before)
            self.assertEqual([p.name for p in root.iterdir() if p.name.startswith(".")], [])

    def test_fold_directory_ignores_hidden_files(self) -> None:
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            staging = root / "2024-01-01"
            staging.mkdir()
            _write(staging, "a.json")
            _write(staging, ".scratch")
            archive = root / "2024-01-01.zip"

            result = fold_directory(staging, archive)

            self.assertEqual(result.added, ("a.json",))


class ArchiveLockTests(unittest.TestCase):
    def test_lock_registry_is_emptied_after_use(self) -> None:
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            target = root / "2024-01-01.zip"

            with archive_lock(target):
                self.assertIn(target.resolve(), archive_module._ARCHIVE_LOCKS)
            self.assertNotIn(target.resolve(), archive_module._ARCHIVE_LOCKS)

            for day in range(1, 4):
                fold_into_archive([_write(root, f"{day}.json")], root / f"2024-01-0{day}.zip")
            self.assertFalse(
                [key for key in archive_module._ARCHIVE_LOCKS if key.parent == root.resolve()]
            )

    def test_lock_released_when_fold_fails(self) -> None:
        with TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            target = root / "2024-01-01.zip"

            with patch("labcache.io.archive.os.replace", side_effect=OSError("disk full")):
                with self.assertRaises(OSError):
                    fold_into_archive([_write(root, "a.json")], target)

            self.assertNotIn(target.resolve(), archive_module._ARCHIVE_LOCKS)
            fold_into_archive([_write(root, "a.json")], target)
            self.assertEqual(read_entry_names(target), ["a.json"])


if __name__ == "__main__":
    unittest.main()
