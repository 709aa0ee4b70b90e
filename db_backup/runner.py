"""Subprocess execution shared by every external tool invocation."""
from __future__ import annotations

import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import IO, Iterable, Mapping, Optional, Sequence, Tuple

from .utils import mask_arguments, mask_sensitive

LOGGER = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when an external program cannot be started."""


@dataclass(frozen=True)
class CommandResult:
    program: str
    args: Tuple[str, ...]
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def display(self) -> str:
        return format_command(self.program, self.args)


def format_command(program: str, args: Sequence[str]) -> str:
    """Render an invocation for logs with password arguments redacted."""

    return " ".join([program, *mask_arguments(args)])


def run_command(
    program: str,
    args: Sequence[object],
    *,
    sink: Optional[IO[str]] = None,
    stdout: Optional[IO] = None,
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[str] = None,
    echo: bool = True,
    secrets: Iterable[str] = (),
) -> CommandResult:
    """Run *program* with *args* and wait for it to finish.

    Parameters
    ----------
    sink:
        Text stream receiving every output line of the program in addition
        to the console (the run log file for backups).
    stdout:
        File object that receives the program's standard output directly,
        e.g. a dump file. Only standard error is streamed in that case.
    echo:
        Copy streamed lines to ``sys.stdout``.
    secrets:
        Values replaced by ``***`` in streamed lines.

    The caller decides what a non-zero exit code means; only a failure to
    start the program raises :class:`CommandError`.
    """

    argv = [str(arg) for arg in args]
    secrets = [secret for secret in secrets if secret]
    LOGGER.info("exec: %s", format_command(program, argv))

    redirect = stdout is not None
    try:
        process = subprocess.Popen(
            [program, *argv],
            stdout=stdout if redirect else subprocess.PIPE,
            stderr=subprocess.PIPE if redirect else subprocess.STDOUT,
            env=dict(env) if env is not None else None,
            cwd=cwd,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except OSError as exc:
        raise CommandError(f"failed to start {program}: {exc}") from exc

    stream = process.stderr if redirect else process.stdout
    with stream:
        for line in stream:
            line = mask_sensitive(line, secrets)
            if echo:
                sys.stdout.write(line)
                sys.stdout.flush()
            if sink is not None:
                sink.write(line)
                sink.flush()
    returncode = process.wait()
    LOGGER.debug("%s exited with code %s", program, returncode)
    return CommandResult(program=program, args=tuple(argv), returncode=returncode)


__all__ = ["CommandError", "CommandResult", "format_command", "run_command"]
