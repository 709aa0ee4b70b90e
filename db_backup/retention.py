"""Age-based removal of old backups and run logs."""
from __future__ import annotations

import logging
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

LOGGER = logging.getLogger(__name__)


class RetentionError(Exception):
    """Raised when an expired backup cannot be removed."""


def retention_cutoff(days: int, now: Optional[datetime] = None) -> datetime:
    now = now or datetime.now()
    return now - timedelta(days=days)


def _modified_at(path: Path) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(path.lstat().st_mtime)
    except OSError:
        return None


def sweep_backups(
    backup_dir: Path,
    prefix: str,
    days: int,
    now: Optional[datetime] = None,
) -> List[Path]:
    """Remove ``<prefix>_*`` entries of *backup_dir* older than *days*.

    Returns the removed paths. The first removal failure stops the sweep
    with :class:`RetentionError`.
    """

    backup_dir = Path(backup_dir)
    cutoff = retention_cutoff(days, now)
    try:
        entries = sorted(backup_dir.iterdir())
    except OSError as exc:
        raise RetentionError(f"Cannot read backup directory '{backup_dir}': {exc}") from exc

    removed: List[Path] = []
    for entry in entries:
        if not entry.name.startswith(f"{prefix}_"):
            continue
        modified = _modified_at(entry)
        if modified is None or modified >= cutoff:
            continue
        try:
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
        except OSError as exc:
            raise RetentionError(f"Cannot remove '{entry}': {exc}") from exc
        LOGGER.info("Removed old backup '%s'.", entry)
        removed.append(entry)
    return removed


def sweep_logs(log_dir: Path, days: int, now: Optional[datetime] = None) -> List[Path]:
    """Remove log files older than *days*; failures are ignored."""

    log_dir = Path(log_dir)
    cutoff = retention_cutoff(days, now)
    removed: List[Path] = []
    try:
        entries = list(log_dir.iterdir())
    except OSError:
        return removed
    for entry in entries:
        modified = _modified_at(entry)
        if modified is None or modified >= cutoff or entry.is_dir():
            continue
        try:
            entry.unlink()
        except OSError as exc:
            LOGGER.debug("Cannot remove log '%s': %s", entry, exc)
            continue
        removed.append(entry)
    return removed


__all__ = ["RetentionError", "retention_cutoff", "sweep_backups", "sweep_logs"]
