from __future__ import annotations

import json
from datetime import date

from labcache.io.archive import read_entry_names
from labcache.io.audit import JsonlAuditStore
from labcache.io.layout import CacheLayout
from labcache.models import PartitionKey

from tests.helpers import (
    PARTITION,
    DailyTransport,
    FailingTransport,
    make_config,
    make_report,
    run_cli,
    seed_bundle,
)


def test_cli_fetch_builds_daily_archives(monkeypatch, tmp_path) -> None:
    root = tmp_path / "cache"
    cfg = make_config(root, **{"fetch.default_start": "2024-01-01"})
    transport = DailyTransport({date(2024, 1, 1): [make_report("100"), make_report("101")]})

    result = run_cli(monkeypatch, cfg, "fetch", "--until", "2024-01-02", transport_factory=lambda partition: transport)

    assert result.exit_code == 0, result.output
    layout = CacheLayout(root)
    assert layout.archived_dates(PARTITION) == [date(2024, 1, 1), date(2024, 1, 2)]
    assert read_entry_names(layout.archive_path_for(PARTITION, date(2024, 1, 1))) == [
        "report-100-1.json",
        "report-101-1.json",
    ]

    manifests = list((tmp_path / "logs" / "run_manifests").glob("run_*.json"))
    assert len(manifests) == 1
    manifest = json.loads(manifests[0].read_text(encoding="utf-8"))
    assert manifest["step"] == "fetch"
    assert manifest["partitions"][0]["chunks_written"] == 2

    # a second run has nothing left to do
    result = run_cli(monkeypatch, cfg, "fetch", "--until", "2024-01-02", transport_factory=lambda partition: transport)
    assert result.exit_code == 0, result.output
    assert len(transport.calls) == 2


def test_cli_fetch_audits_failures(monkeypatch, tmp_path) -> None:
    root = tmp_path / "cache"
    cfg = make_config(root, **{"fetch.default_start": "2024-01-01"})

    result = run_cli(
        monkeypatch,
        cfg,
        "fetch",
        "--until",
        "2024-01-01",
        "--audit",
        transport_factory=lambda partition: FailingTransport(),
    )

    assert result.exit_code == 0, result.output
    failures = JsonlAuditStore(root / "Errors" / "audit.jsonl").failures()
    assert [f.partition for f in failures] == [PARTITION]
    assert (root / "Errors" / "T" / "Biochemistry" / "2024-01-01 000000.txt").exists()


def test_cli_fetch_rejects_unknown_partition(monkeypatch, tmp_path) -> None:
    cfg = make_config(tmp_path / "cache")

    result = run_cli(
        monkeypatch,
        cfg,
        "fetch",
        "--board",
        "T",
        "--discipline",
        "Astrology",
        transport_factory=lambda partition: FailingTransport(),
    )

    assert result.exit_code == 1
    assert "Astrology" in result.output


def test_cli_validate_and_latest(monkeypatch, tmp_path) -> None:
    root = tmp_path / "cache"
    cfg = make_config(root)
    layout = CacheLayout(root)
    (layout.resolve(PARTITION) / "2024-03-01.zip").write_bytes(b"")

    result = run_cli(monkeypatch, cfg, "validate")
    assert result.exit_code == 0, result.output
    assert "Cache structure OK" in result.output

    result = run_cli(monkeypatch, cfg, "latest", "--board", "T", "--discipline", "Biochemistry")
    assert result.exit_code == 0, result.output
    assert result.output.strip().endswith("2024-03-01")

    result = run_cli(monkeypatch, cfg, "latest", "--board", "F", "--discipline", "Virology")
    assert result.output.strip().endswith("none")

    (root / "T" / "Unknown").mkdir()
    result = run_cli(monkeypatch, cfg, "validate")
    assert result.exit_code == 1
    assert "Unknown" in result.output


def test_cli_refill_and_check_only(monkeypatch, tmp_path) -> None:
    root = tmp_path / "cache"
    cfg = make_config(root)
    virology = PartitionKey.parse("F", "Virology")
    bundle = seed_bundle(
        tmp_path / "backup.zip",
        [make_report("100"), make_report("200", partition=virology)],
    )

    result = run_cli(monkeypatch, cfg, "refill", str(bundle), "--check-only")
    assert result.exit_code == 0, result.output
    assert not CacheLayout(root).archive_exists(PARTITION, date(2024, 1, 1))

    result = run_cli(monkeypatch, cfg, "refill", str(bundle))
    assert result.exit_code == 0, result.output
    layout = CacheLayout(root)
    assert layout.archive_exists(PARTITION, date(2024, 1, 1))
    assert layout.archive_exists(virology, date(2024, 1, 1))

    result = run_cli(monkeypatch, cfg, "refill", str(bundle))
    assert result.exit_code == 1
    assert "already present in the cache" in result.output


def test_cli_cleanup_and_dump_config(monkeypatch, tmp_path) -> None:
    root = tmp_path / "cache"
    cfg = make_config(root)
    staged = CacheLayout(root).resolve(PARTITION) / "report-1-1.json"
    staged.write_text("{}", encoding="utf-8")

    result = run_cli(monkeypatch, cfg, "cleanup")
    assert result.exit_code == 0, result.output
    assert "Removed 1 leftover staging entries" in result.output
    assert not staged.exists()

    dest = tmp_path / "example.yaml"
    result = run_cli(monkeypatch, cfg, "dump-config", str(dest))
    assert result.exit_code == 0, result.output
    assert "permission_window" in dest.read_text(encoding="utf-8")


def test_cli_fetch_hard_failure_exits_nonzero(monkeypatch, tmp_path) -> None:
    cfg = make_config(tmp_path / "cache", **{"fetch.default_start": "2024-01-01"})

    result = run_cli(
        monkeypatch,
        cfg,
        "fetch",
        "--until",
        "2024-01-01",
        "--no-audit",
        transport_factory=lambda partition: FailingTransport(),
    )

    assert result.exit_code == 1
    assert "Failed to download data" in result.output
