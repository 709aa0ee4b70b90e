"""Shipping backup archives to a remote host over scp."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List

from .config import DEFAULT_SSH_PORT, RemoteConfig
from .runner import CommandError, CommandResult, run_command

LOGGER = logging.getLogger(__name__)


class RemoteCopyError(Exception):
    """Raised when copying a backup to the remote host fails."""


@dataclass
class RemoteShipper:
    config: RemoteConfig
    run: Callable[..., CommandResult] = run_command
    program: str = "scp"

    def build_args(self, file_path: Path) -> List[str]:
        return [
            "-P",
            str(self.config.port or DEFAULT_SSH_PORT),
            str(file_path),
            self.config.destination,
        ]

    def ship(self, file_path: Path) -> None:
        file_path = Path(file_path)
        if not file_path.exists():
            raise RemoteCopyError(f"File to send '{file_path}' not found.")
        if file_path.is_dir():
            raise RemoteCopyError(
                f"'{file_path}' is a directory; enable tar_archive to send backups to the remote host."
            )
        LOGGER.info("Sending %s to %s ...", file_path, self.config.destination)
        try:
            result = self.run(self.program, self.build_args(file_path))
        except CommandError as exc:
            raise RemoteCopyError(str(exc)) from exc
        if not result.ok:
            raise RemoteCopyError(f"scp failed with exit code {result.returncode}")
        LOGGER.info("File '%s' sent to '%s'.", file_path, self.config.destination)


__all__ = ["RemoteCopyError", "RemoteShipper"]
