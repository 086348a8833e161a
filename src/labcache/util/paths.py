"""Path utilities centralising cache layout decisions."""

from __future__ import annotations

from pathlib import Path


def cache_root_from_config(cache_root: str | Path) -> Path:
    """Return the resolved cache root."""
    return Path(cache_root).expanduser().resolve()


def is_hidden(path: Path) -> bool:
    """Hidden entries hold in-flight work and are skipped by directory scans."""
    return path.name.startswith(".")


__all__ = ["cache_root_from_config", "is_hidden"]
