"""Packing finished backup directories with the system ``tar``."""
from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import IO, Callable, Optional

from .runner import CommandError, CommandResult, run_command

LOGGER = logging.getLogger(__name__)


class ArchiveError(Exception):
    """Raised when a backup directory cannot be archived."""


def archive_path_for(directory: Path) -> Path:
    directory = Path(directory)
    return directory.with_name(directory.name + ".tar.gz")


def archive_directory(
    directory: Path,
    *,
    sink: Optional[IO[str]] = None,
    which: Callable[[str], Optional[str]] = shutil.which,
    run: Callable[..., CommandResult] = run_command,
) -> Path:
    """Create ``<directory>.tar.gz`` next to *directory* and return its path.

    Anything that is not a directory is returned unchanged.
    """

    directory = Path(directory)
    if not directory.exists():
        raise ArchiveError(f"Backup target '{directory}' does not exist.")
    if not directory.is_dir():
        return directory

    tar = which("tar")
    if not tar:
        raise ArchiveError("tar not found in PATH")

    archive = archive_path_for(directory)
    LOGGER.info("tar %s -> %s", directory, archive)
    try:
        result = run(
            tar,
            ["-czf", str(archive), "-C", str(directory.parent), directory.name],
            sink=sink,
        )
    except CommandError as exc:
        raise ArchiveError(str(exc)) from exc
    if not result.ok:
        raise ArchiveError(f"tar archive failed with exit code {result.returncode}")
    return archive


__all__ = ["ArchiveError", "archive_directory", "archive_path_for"]
