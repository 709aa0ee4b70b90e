"""Helper utilities shared by the backup and dump tools."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence

MASK = "***"
SECRET_ARGUMENT_PREFIXES = ("--password=",)


def ensure_directory(path: Path) -> Path:
    """Create *path* if it does not exist and return it."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def timestamp_for_filename(dt: Optional[datetime] = None) -> str:
    dt = dt or datetime.now()
    return dt.strftime("%Y%m%d_%H%M%S")


def mask_sensitive(value: str, secrets: Iterable[str]) -> str:
    """Replace occurrences of secret values in *value* with '***'."""

    masked = value
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, MASK)
    return masked


def mask_arguments(args: Sequence[str]) -> List[str]:
    """Return a copy of *args* with password-bearing arguments redacted.

    Only the copy is changed; the caller keeps passing the original list to
    the subprocess.
    """

    masked: List[str] = []
    for arg in args:
        for prefix in SECRET_ARGUMENT_PREFIXES:
            if arg.startswith(prefix):
                arg = prefix + MASK
                break
        masked.append(arg)
    return masked


def mask_environment(env: Mapping[str, str]) -> List[str]:
    """Render ``NAME=value`` pairs with password variables redacted."""

    rendered: List[str] = []
    for name, value in env.items():
        if name.upper().endswith("PASSWORD") or name.upper() == "MYSQL_PWD":
            value = MASK
        rendered.append(f"{name}={value}")
    return rendered


__all__ = [
    "ensure_directory",
    "timestamp_for_filename",
    "mask_sensitive",
    "mask_arguments",
    "mask_environment",
]
