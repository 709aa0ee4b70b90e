"""Core backup logic: XtraBackup invocation and the backup pipeline."""
from __future__ import annotations

import logging
import shutil
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import IO, Callable, Iterator, List, Optional

from .archive import ArchiveError, archive_directory
from .config import BackupConfig
from .notify import STATUS_FAILURE, STATUS_SUCCESS, FeishuNotifier
from .remote import RemoteCopyError, RemoteShipper
from .retention import RetentionError, sweep_backups, sweep_logs
from .runner import CommandError, CommandResult, run_command
from .utils import ensure_directory, timestamp_for_filename

LOGGER = logging.getLogger(__name__)

PACKAGE_LOGGER = "db_backup"
LOCK_WAIT_TIMEOUT = 300


class BackupError(Exception):
    """Raised when a backup operation fails."""


@dataclass(frozen=True)
class BackupResult:
    backup_name: str
    target_dir: Path
    archive_path: Path
    log_path: Path


PIPELINE_ERRORS = (BackupError, ArchiveError, RemoteCopyError, RetentionError)


def make_backup_name(prefix: str, backup_type: str, now: Optional[datetime] = None) -> str:
    return f"{prefix}_{backup_type}_{timestamp_for_filename(now)}"


def find_latest_full(backup_dir: Path, prefix: str) -> Path:
    """Return the newest ``<prefix>_full_*`` directory under *backup_dir*.

    Names embed a ``YYYYMMDD_HHMMSS`` timestamp, so the lexicographically
    greatest name is the most recent backup.
    """

    backup_dir = Path(backup_dir)
    try:
        entries = list(backup_dir.iterdir())
    except OSError as exc:
        raise BackupError(f"read backup_dir: {exc}") from exc
    marker = f"{prefix}_full_"
    fulls = sorted(entry.name for entry in entries if entry.is_dir() and entry.name.startswith(marker))
    if not fulls:
        raise BackupError("no full backup found, run a full backup first")
    return backup_dir / fulls[-1]


def build_xtrabackup_args(
    config: BackupConfig,
    target_dir: Path,
    basedir: Optional[Path] = None,
) -> List[str]:
    mysql = config.mysql
    xtrabackup = config.xtrabackup
    args = [
        f"--defaults-file={mysql.defaults_file}",
        f"--user={mysql.user}",
        f"--password={mysql.password}",
        "--backup",
        f"--target-dir={target_dir}",
        f"--parallel={xtrabackup.parallel}",
        f"--ftwrl-wait-timeout={LOCK_WAIT_TIMEOUT}",
        f"--backup-lock-timeout={LOCK_WAIT_TIMEOUT}",
    ]
    if mysql.socket:
        args.append(f"--socket={mysql.socket}")
    else:
        args.extend([f"--host={mysql.host}", f"--port={mysql.port}"])
    if xtrabackup.compress:
        args.extend(["--compress", f"--compress-threads={xtrabackup.compress_threads}"])
    if basedir is not None:
        args.append(f"--incremental-basedir={basedir}")
    args.extend(xtrabackup.extra_args)
    return args


class _ParentForwarder(logging.Handler):
    """Pass records on to the handlers above *logger* while its propagation is off."""

    def __init__(self, logger: logging.Logger, level: int) -> None:
        super().__init__(level)
        self.logger = logger

    def emit(self, record: logging.LogRecord) -> None:
        if self.logger.parent is not None:
            self.logger.parent.handle(record)


@contextmanager
def log_to_file(log_path: Path) -> Iterator[IO[str]]:
    """Mirror package log records into *log_path* and yield it as an output sink.

    INFO records always reach the file. When the package logger is set above
    INFO, it is lowered for the run and the handlers higher up only receive
    records at the caller's original level.
    """

    try:
        sink = open(log_path, "a", encoding="utf-8")
    except OSError as exc:
        raise BackupError(f"open log file: {exc}") from exc

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    handler = logging.FileHandler(log_path, encoding="utf-8", delay=True)
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(message)s", "%Y-%m-%d %H:%M:%S"))
    previous_level = package_logger.level
    previous_propagate = package_logger.propagate
    forwarder = None
    effective_level = package_logger.getEffectiveLevel()
    if effective_level > logging.INFO:
        package_logger.setLevel(logging.INFO)
        if previous_propagate:
            forwarder = _ParentForwarder(package_logger, effective_level)
            package_logger.addHandler(forwarder)
            package_logger.propagate = False
    package_logger.addHandler(handler)
    try:
        with sink:
            yield sink
    finally:
        package_logger.removeHandler(handler)
        if forwarder is not None:
            package_logger.removeHandler(forwarder)
        package_logger.propagate = previous_propagate
        package_logger.setLevel(previous_level)
        handler.close()


@dataclass
class XtraBackupExecutor:
    config: BackupConfig
    run: Callable[..., CommandResult] = run_command
    clock: Callable[[], datetime] = datetime.now

    def prepare(self) -> BackupResult:
        """Create the storage and log directories and name this run."""

        config = self.config
        try:
            backup_dir = ensure_directory(Path(config.backup_dir))
            log_dir = ensure_directory(Path(config.log_dir))
        except OSError as exc:
            raise BackupError(f"create backup directories: {exc}") from exc
        name = make_backup_name(config.backup_prefix, config.backup_type, self.clock())
        target_dir = backup_dir / name
        return BackupResult(
            backup_name=name,
            target_dir=target_dir,
            archive_path=target_dir,
            log_path=log_dir / f"{name}.log",
        )

    def execute(self, result: BackupResult, sink: Optional[IO[str]] = None) -> None:
        config = self.config
        basedir = None
        if config.is_incremental:
            basedir = find_latest_full(Path(config.backup_dir), config.backup_prefix)
            LOGGER.info("incremental basedir: %s", basedir)

        args = build_xtrabackup_args(config, result.target_dir, basedir)
        try:
            outcome = self.run(config.xtrabackup.bin, args, sink=sink)
        except CommandError as exc:
            raise BackupError(f"xtrabackup: {exc} (see log {result.log_path})") from exc
        if not outcome.ok:
            raise BackupError(
                f"xtrabackup exited with code {outcome.returncode} (see log {result.log_path})"
            )


@dataclass
class BackupRunner:
    """Run one backup through every configured stage.

    Stages run in a fixed order: engine, archive, remote copy, retention.
    The first failing stage stops the run; a single failure notification is
    sent and the error is re-raised to the caller.
    """

    config: BackupConfig
    executor: XtraBackupExecutor
    shipper: RemoteShipper
    notifier: FeishuNotifier
    skip_remote: bool = False
    run: Callable[..., CommandResult] = run_command
    which: Callable[[str], Optional[str]] = shutil.which
    clock: Callable[[], datetime] = datetime.now
    logger: logging.Logger = LOGGER

    @classmethod
    def from_config(
        cls,
        config: BackupConfig,
        *,
        skip_remote: bool = False,
        run: Optional[Callable[..., CommandResult]] = None,
        which: Optional[Callable[[str], Optional[str]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "BackupRunner":
        run = run or run_command
        which = which or shutil.which
        clock = clock or datetime.now
        return cls(
            config=config,
            executor=XtraBackupExecutor(config, run=run, clock=clock),
            shipper=RemoteShipper(config.remote, run=run),
            notifier=FeishuNotifier(config.feishu),
            skip_remote=skip_remote,
            run=run,
            which=which,
            clock=clock,
        )

    @property
    def ships_remote(self) -> bool:
        return self.config.remote.enabled and not self.skip_remote

    def run_backup(self) -> BackupResult:
        result: Optional[BackupResult] = None
        try:
            result = self.executor.prepare()
            with log_to_file(result.log_path) as sink:
                self.logger.info("starting backup: %s", result.backup_name)
                self.executor.execute(result, sink)
                if self.config.tar_archive:
                    archive = archive_directory(result.target_dir, sink=sink, which=self.which, run=self.run)
                    result = replace(result, archive_path=archive)
                self.logger.info("backup finished")

                if self.ships_remote:
                    self.shipper.ship(result.archive_path)
                if self.config.retention_days > 0:
                    self._enforce_retention()
        except PIPELINE_ERRORS as exc:
            self.logger.error("backup failed: %s", exc)
            self.notifier.notify(STATUS_FAILURE, result, str(exc))
            raise
        self.notifier.notify(STATUS_SUCCESS, result)
        return result

    def _enforce_retention(self) -> None:
        config = self.config
        now = self.clock()
        sweep_backups(Path(config.backup_dir), config.backup_prefix, config.retention_days, now)
        sweep_logs(Path(config.log_dir), config.retention_days, now)


__all__ = [
    "BackupError",
    "BackupResult",
    "BackupRunner",
    "PIPELINE_ERRORS",
    "XtraBackupExecutor",
    "build_xtrabackup_args",
    "find_latest_full",
    "log_to_file",
    "make_backup_name",
]
