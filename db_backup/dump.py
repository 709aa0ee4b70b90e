"""One-shot dumps of MySQL, PostgreSQL and MongoDB databases."""
from __future__ import annotations

import logging
import os
import shlex
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional

from .runner import CommandError, CommandResult, run_command
from .utils import ensure_directory, mask_environment, timestamp_for_filename

LOGGER = logging.getLogger(__name__)

DEFAULT_PORTS = {"mysql": 3306, "postgresql": 5432, "mongodb": 27017}
ENGINES = tuple(DEFAULT_PORTS)
MYSQL_TOOLS = ("mysqldump", "xtrabackup")
DEFAULT_MYSQL_DATADIR = "/var/lib/mysql"
DEFAULT_MONGO_AUTH_DB = "admin"

INSTALL_HINTS = {
    "mysqldump": "Please install MySQL client tools",
    "xtrabackup": "Please install Percona XtraBackup",
    "pg_dump": "Please install PostgreSQL client tools",
    "pg_dumpall": "Please install PostgreSQL client tools",
    "mongodump": "Please install MongoDB database tools",
}


class DumpError(Exception):
    """Raised when a standalone dump fails."""


@dataclass
class MySQLDumpConfig:
    host: str
    port: int
    username: str
    password: str = ""
    database: Optional[str] = None
    all_databases: bool = True
    backup_tool: str = "mysqldump"
    datadir: str = DEFAULT_MYSQL_DATADIR


@dataclass
class PostgresDumpConfig:
    host: str
    port: int
    username: str
    password: str = ""
    database: Optional[str] = None
    all_databases: bool = False


@dataclass
class MongoDumpConfig:
    host: str
    port: int
    username: str
    password: str = ""
    database: Optional[str] = None
    auth_database: Optional[str] = None
    options: str = ""
    all_databases: bool = False


# ---------------------------------------------------------------------------
def mysqldump_args(config: MySQLDumpConfig) -> List[str]:
    args = [
        f"--host={config.host}",
        f"--port={config.port}",
        f"--user={config.username}",
        f"--password={config.password}",
        "--single-transaction",
        "--routines",
        "--triggers",
        # avoids needing the PROCESS privilege
        "--no-tablespaces",
    ]
    if config.all_databases:
        args.append("--all-databases")
    else:
        args.append(config.database)
    return args


def mysql_xtrabackup_args(config: MySQLDumpConfig, target_dir: Path) -> List[str]:
    return [
        "--backup",
        f"--datadir={config.datadir}",
        f"--target-dir={target_dir}",
        f"--host={config.host}",
        f"--port={config.port}",
        f"--user={config.username}",
        f"--password={config.password}",
    ]


def postgres_args(config: PostgresDumpConfig) -> List[str]:
    args = ["--verbose", "--clean", "--no-owner", "--no-acl"]
    if not config.all_databases:
        args.append(config.database)
    return args


def postgres_env(config: PostgresDumpConfig) -> Dict[str, str]:
    return {
        "PGHOST": config.host,
        "PGPORT": str(config.port),
        "PGUSER": config.username,
        "PGPASSWORD": config.password,
    }


def mongodump_args(config: MongoDumpConfig, out_dir: Path) -> List[str]:
    args = [
        f"--host={config.host}:{config.port}",
        f"--username={config.username}",
        f"--password={config.password}",
    ]
    if not config.all_databases:
        args.append(f"--db={config.database}")
    args.append(f"--out={out_dir}")
    args.append(f"--authenticationDatabase={config.auth_database or DEFAULT_MONGO_AUTH_DB}")
    if config.options:
        args.extend(shlex.split(config.options))
    return args


# ---------------------------------------------------------------------------
@dataclass
class DumpRunner:
    output_dir: Path
    run: Callable[..., CommandResult] = run_command
    which: Callable[[str], Optional[str]] = shutil.which
    clock: Callable[[], datetime] = datetime.now

    def backup_mysql(self, config: MySQLDumpConfig) -> Path:
        LOGGER.info("Starting MySQL backup using %s...", config.backup_tool)
        if config.backup_tool == "xtrabackup":
            return self._mysql_xtrabackup(config)
        return self._mysqldump(config)

    def backup_postgresql(self, config: PostgresDumpConfig) -> Path:
        tool = "pg_dumpall" if config.all_databases else "pg_dump"
        program = self._require(tool)
        label = "all" if config.all_databases else config.database
        path = self._output_root() / f"postgresql_{label}_{self._timestamp()}.sql"
        extra_env = postgres_env(config)
        LOGGER.info("PostgreSQL environment: %s", " ".join(mask_environment(extra_env)))
        env = dict(os.environ)
        env.update(extra_env)
        self._run_to_file(program, postgres_args(config), path, env=env, secrets=[config.password])
        LOGGER.info("PostgreSQL backup of '%s' completed successfully: %s", label, path)
        return path

    def backup_mongodb(self, config: MongoDumpConfig) -> Path:
        program = self._require("mongodump")
        label = "all" if config.all_databases else config.database
        out_dir = self._output_root() / f"mongodb_{label}_{self._timestamp()}"
        result = self._call(program, mongodump_args(config, out_dir), secrets=[config.password])
        if not result.ok:
            raise DumpError(f"mongodump failed with exit code {result.returncode}")
        LOGGER.info("MongoDB backup of '%s' completed successfully: %s", label, out_dir)
        return out_dir

    # ------------------------------------------------------------------
    def _mysqldump(self, config: MySQLDumpConfig) -> Path:
        program = self._require("mysqldump")
        path = self._output_root() / f"mysql_{self._timestamp()}.sql"
        self._run_to_file(program, mysqldump_args(config), path, secrets=[config.password])
        LOGGER.info("MySQL backup with mysqldump completed successfully: %s", path)
        return path

    def _mysql_xtrabackup(self, config: MySQLDumpConfig) -> Path:
        program = self._require("xtrabackup")
        target_dir = self._output_root() / f"xtrabackup_{self._timestamp()}"
        try:
            ensure_directory(target_dir)
        except OSError as exc:
            raise DumpError(f"failed to create backup directory: {exc}") from exc
        result = self._call(program, mysql_xtrabackup_args(config, target_dir), secrets=[config.password])
        if not result.ok:
            raise DumpError(f"xtrabackup failed with exit code {result.returncode}")
        LOGGER.info("MySQL backup with XtraBackup completed successfully: %s", target_dir)
        return target_dir

    def _require(self, tool: str) -> str:
        program = self.which(tool)
        if not program:
            raise DumpError(f"{tool} command not found. {INSTALL_HINTS.get(tool, 'Please install it')}.")
        return program

    def _output_root(self) -> Path:
        try:
            return ensure_directory(Path(self.output_dir))
        except OSError as exc:
            raise DumpError(f"Error creating output directory: {exc}") from exc

    def _timestamp(self) -> str:
        return timestamp_for_filename(self.clock())

    def _call(self, program: str, args: List[str], **kwargs) -> CommandResult:
        try:
            return self.run(program, args, **kwargs)
        except CommandError as exc:
            raise DumpError(str(exc)) from exc

    def _run_to_file(
        self,
        program: str,
        args: List[str],
        path: Path,
        env: Optional[Mapping[str, str]] = None,
        secrets: Optional[List[str]] = None,
    ) -> None:
        name = Path(program).name
        try:
            with path.open("w", encoding="utf-8") as fh:
                result = self._call(program, args, stdout=fh, env=env, secrets=secrets or [])
        except OSError as exc:
            raise DumpError(f"failed to create output file: {exc}") from exc
        if not result.ok:
            raise DumpError(f"{name} failed with exit code {result.returncode}")


__all__ = [
    "DEFAULT_PORTS",
    "DumpError",
    "DumpRunner",
    "ENGINES",
    "MYSQL_TOOLS",
    "MongoDumpConfig",
    "MySQLDumpConfig",
    "PostgresDumpConfig",
    "mongodump_args",
    "mysql_xtrabackup_args",
    "mysqldump_args",
    "postgres_args",
    "postgres_env",
]
