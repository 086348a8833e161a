from __future__ import annotations

import zipfile
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterable, Sequence

from typer.testing import CliRunner

from labcache import cli
from labcache.config import LabCacheConfig, load_config
from labcache.errors import TransportError
from labcache.models import CacheChunk, Discipline, FetchResult, HealthBoard, LabReport, PartitionKey
from labcache.pipeline.request import FetchRequest
from labcache.util.cancellation import CancellationToken

PARTITION = PartitionKey(HealthBoard.T, Discipline.BIOCHEMISTRY)
DAY = date(2024, 1, 1)


def make_report(
    lab_number: str,
    test_report_id: str = "1",
    *,
    report_date: date = DAY,
    partition: PartitionKey = PARTITION,
    **payload: object,
) -> LabReport:
    """Build a report with just enough content to be cached."""

    return LabReport(
        hb_extract=partition.health_board,
        discipline=partition.discipline,
        lab_number=lab_number,
        test_report_id=test_report_id,
        report_date=report_date,
        payload=dict(payload) or {"result": lab_number},
    )


def make_request(
    start: datetime = datetime(2024, 1, 1),
    *,
    partition: PartitionKey = PARTITION,
    period: timedelta = timedelta(days=1),
    end: datetime = datetime(2024, 2, 1),
) -> FetchRequest:
    return FetchRequest(partition=partition, start=start, chunk_period=period, end=end)


def make_chunk(records: Sequence[LabReport], *, fetch_date: datetime = datetime(2024, 1, 1)) -> CacheChunk:
    return CacheChunk(PARTITION, tuple(records), fetch_date, request=make_request(fetch_date))


def make_config(root: Path, **overrides: object) -> LabCacheConfig:
    """Load the defaults pointed at `root` with an always-open window and no waits."""

    merged: dict[str, object] = {
        "cache.root": str(root),
        "fetch.wait_seconds": [0],
        "fetch.retries": 0,
        "permission_window": {"name": "always", "allowed_hours": [], "allowed_weekdays": [], "blackout_dates": []},
        "partitions": [{"health_board": "T", "discipline": "Biochemistry"}],
        "runtime.parallelism": 1,
    }
    merged.update(overrides)
    return load_config(overrides=merged)


def seed_bundle(path: Path, reports: Iterable[LabReport], *, entry_prefix: str = "backup/") -> Path:
    """Write reports into a backup zip, naming entries unlike the cache does."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        for index, report in enumerate(reports):
            zf.writestr(f"{entry_prefix}{index:05d}.json", report.to_json_bytes())
    return path


class RecordingToken(CancellationToken):
    """Cancellation token that records waits instead of sleeping."""

    def __init__(self, *, cancel_on_wait: int | None = None) -> None:
        super().__init__()
        self.waits: list[float] = []
        self.cancel_on_wait = cancel_on_wait

    def wait(self, seconds: float) -> bool:
        self.waits.append(seconds)
        if self.cancel_on_wait is not None and len(self.waits) >= self.cancel_on_wait:
            self.cancel()
        return self.is_cancelled


class CountdownToken(CancellationToken):
    """Cancellation token that trips on its `checks`-th `raise_if_cancelled` call."""

    def __init__(self, checks: int) -> None:
        super().__init__()
        self.remaining = checks

    def raise_if_cancelled(self) -> None:
        self.remaining -= 1
        if self.remaining <= 0:
            self.cancel()
        super().raise_if_cancelled()


class ScriptedTransport:
    """Transport replaying a script of results or exceptions, one per call."""

    def __init__(self, *script: FetchResult | BaseException) -> None:
        self.script = list(script)
        self.calls: list[tuple[datetime, timedelta]] = []

    def fetch_records_for_window(self, start: datetime, period: timedelta) -> FetchResult:
        self.calls.append((start, period))
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        if isinstance(step, BaseException):
            raise step
        return step


class FailingTransport(ScriptedTransport):
    def __init__(self) -> None:
        super().__init__(TransportError("endpoint unreachable"))


class DailyTransport:
    """Serves a fixed set of reports per day, keyed by the window start."""

    def __init__(self, reports_by_day: dict[date, list[LabReport]]) -> None:
        self.reports_by_day = reports_by_day
        self.calls: list[datetime] = []

    def fetch_records_for_window(self, start: datetime, period: timedelta) -> FetchResult:
        self.calls.append(start)
        return FetchResult.data(self.reports_by_day.get(start.date(), []))


def run_cli(monkeypatch, cfg: LabCacheConfig, *args: str, transport_factory=None):
    """Invoke the CLI against `cfg`, optionally swapping the HTTP transport out."""

    monkeypatch.setattr(cli, "load_config", lambda path=None: cfg)
    if transport_factory is not None:
        monkeypatch.setattr(cli, "http_transport_factory", lambda config: transport_factory)
    runner = CliRunner()
    return runner.invoke(cli.app, list(args), catch_exceptions=False)
