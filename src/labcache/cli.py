"""Command-line entry points for the report cache."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import List, Optional

import typer

from labcache.config import ConfigError, LabCacheConfig, dump_example_config, load_config
from labcache.errors import LabCacheError, TransferFailed
from labcache.io.audit import JsonlAuditStore
from labcache.io.layout import CacheLayout
from labcache.models import PartitionKey
from labcache.pipeline.refill import CacheRefiller
from labcache.pipeline.runner import http_transport_factory, run_partitions
from labcache.util.logging import configure_logging
from labcache.util.manifest import write_manifest
from labcache.util.paths import cache_root_from_config

app = typer.Typer(add_completion=False, help="Partitioned laboratory report cache")

CONFIG_OPTION = typer.Option(None, "--config", "-c", help="YAML/TOML/JSON config layered over the defaults")


def _load(config_path: Optional[Path]) -> LabCacheConfig:
    try:
        return load_config(config_path)
    except ConfigError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=1) from exc


def _layout_for(cfg: LabCacheConfig) -> CacheLayout:
    return CacheLayout(
        cache_root_from_config(cfg.cache.root),
        archive_extension=cfg.cache.archive_extension,
        record_extension=cfg.cache.record_extension,
        date_format=cfg.cache.date_format,
    )


def _setup(cfg: LabCacheConfig, verbose: bool = False) -> logging.Logger:
    return configure_logging(log_path=cfg.runtime.log_path, verbose=verbose)


def _fail(exc: Exception) -> typer.Exit:
    typer.echo(f"Error: {exc}", err=True)
    return typer.Exit(code=1)


def _select_partitions(cfg: LabCacheConfig, boards: List[str], disciplines: List[str]) -> list[PartitionKey]:
    if not boards and not disciplines:
        return cfg.partition_keys()
    if len(boards) != len(disciplines):
        raise typer.BadParameter("--board and --discipline must be given the same number of times")
    return [PartitionKey.parse(board, discipline) for board, discipline in zip(boards, disciplines)]


@app.command()
def fetch(
    board: List[str] = typer.Option([], "--board", "-b", help="Health board (repeat with --discipline)"),
    discipline: List[str] = typer.Option([], "--discipline", "-d", help="Discipline (repeat with --board)"),
    until: Optional[str] = typer.Option(None, help="Fetch up to this date YYYY-MM-DD (default: today)"),
    audit: Optional[bool] = typer.Option(None, "--audit/--no-audit", help="Audit exhausted fetches and move on"),
    config: Optional[Path] = CONFIG_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Fetch new reports for each partition and fold them into daily archives."""

    cfg = _load(config)
    if audit is not None:
        cfg = cfg.model_copy(update={"fetch": cfg.fetch.model_copy(update={"audit_failure_and_move_on": audit})})
    logger = _setup(cfg, verbose)

    try:
        end_day = date.fromisoformat(until) if until else date.today()
        end = datetime.combine(end_day + timedelta(days=1), time.min)
        layout = _layout_for(cfg)
        partitions = _select_partitions(cfg, board, discipline)
        audit_store = JsonlAuditStore(layout.index.error_directory / "audit.jsonl")
        summaries = run_partitions(
            partitions,
            config=cfg,
            layout=layout,
            audit_store=audit_store,
            transport_factory=http_transport_factory(cfg),
            end=end,
        )
    except (LabCacheError, TransferFailed, ValueError) as exc:
        raise _fail(exc) from exc

    for summary in summaries:
        logger.info("%s -> watermark %s", summary.partition, summary.watermark)
    write_manifest(
        {"step": "fetch", "until": end_day.isoformat(), "partitions": [s.to_dict() for s in summaries]},
        root=layout.root.parent,
    )


@app.command()
def validate(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Check every directory in the cache is a known health board or discipline."""

    cfg = _load(config)
    _setup(cfg)
    try:
        layout = _layout_for(cfg)
        layout.validate_structure()
    except LabCacheError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Cache structure OK: {layout.root}")


@app.command()
def latest(
    board: str = typer.Option(..., "--board", "-b", help="Health board"),
    discipline: str = typer.Option(..., "--discipline", "-d", help="Discipline"),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Print the most recent archived date for a partition."""

    cfg = _load(config)
    _setup(cfg)
    try:
        layout = _layout_for(cfg)
        found = layout.most_recent_archived_date(PartitionKey.parse(board, discipline))
    except LabCacheError as exc:
        raise _fail(exc) from exc
    typer.echo(found.isoformat() if found else "none")


@app.command()
def refill(
    bundle: Path = typer.Argument(..., help="Backup zip of serialized reports"),
    check_only: bool = typer.Option(False, "--check-only", help="Only verify no target day is already archived"),
    check: bool = typer.Option(
        True, "--check/--no-check", help="Refuse bundles touching days already archived (disable to resume a partial refill)"
    ),
    config: Optional[Path] = CONFIG_OPTION,
) -> None:
    """Rebuild archives from a backup bundle, refusing days that are already cached."""

    cfg = _load(config)
    _setup(cfg)
    try:
        layout = _layout_for(cfg)
        refiller = CacheRefiller(layout)
        if check_only:
            refiller.check_not_already_cached(bundle)
            typer.echo(f"No report in {bundle} is already cached")
            return
        results = refiller.refill(bundle, check=check)
    except (LabCacheError, FileNotFoundError) as exc:
        raise _fail(exc) from exc

    for result in results:
        typer.echo(f"{result.archive_path}: {len(result.added)} added")
    write_manifest(
        {"step": "refill", "bundle": str(bundle), "archives": [str(r.archive_path) for r in results]},
        root=layout.root.parent,
    )


@app.command()
def cleanup(config: Optional[Path] = CONFIG_OPTION) -> None:
    """Delete staged reports and refill directories left behind by an interrupted run."""

    cfg = _load(config)
    _setup(cfg)
    try:
        removed = _layout_for(cfg).cleanup_lingering_staging()
    except LabCacheError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Removed {removed} leftover staging entries")


@app.command("dump-config")
def dump_config(dest: Path = typer.Argument(..., help="Destination YAML or JSON file")) -> None:
    """Write the default configuration as a starting point."""

    try:
        dump_example_config(dest)
    except ConfigError as exc:
        raise _fail(exc) from exc
    typer.echo(f"Wrote {dest}")


def main() -> None:
    app()


__all__ = ["main", "app"]
