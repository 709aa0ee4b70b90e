"""Configuration models and helpers for the backup tool."""
from __future__ import annotations

import json
import shlex
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import yaml

CONFIG_FILENAME = "config/mysql_backup.json"

BACKUP_TYPES = ("full", "incr")
BACKUP_TYPE_ALIASES = {"incremental": "incr"}
DEFAULT_PREFIX = "mysql"
DEFAULT_MYSQL_HOST = "127.0.0.1"
DEFAULT_MYSQL_PORT = 3306
DEFAULT_SSH_PORT = 22
DEFAULT_PARALLEL = 2
DEFAULT_COMPRESS_THREADS = 2

Which = Callable[[str], Optional[str]]


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""


@dataclass
class MySQLConfig:
    defaults_file: Optional[str] = None
    socket: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    user: Optional[str] = None
    password: Optional[str] = None
    extra: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "MySQLConfig":
        data = _block(data, "mysql")
        known = {
            "defaults_file": data.get("defaults_file"),
            "socket": data.get("socket"),
            "host": data.get("host"),
            "port": _safe_int(data.get("port")),
            "user": data.get("user"),
            "password": data.get("password"),
        }
        extra = {key: value for key, value in data.items() if key not in known}
        return cls(extra=extra, **known)

    def to_dict(self) -> Dict:
        result: Dict[str, object] = {
            "defaults_file": self.defaults_file,
            "socket": self.socket,
            "host": self.host,
            "port": self.port,
            "user": self.user,
            "password": self.password,
        }
        result.update(self.extra)
        return {key: value for key, value in result.items() if value is not None}


@dataclass
class XtraBackupConfig:
    bin: Optional[str] = None
    parallel: Optional[int] = None
    compress: bool = False
    compress_threads: Optional[int] = None
    extra_args: List[str] = field(default_factory=list)
    extra: Dict[str, object] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "XtraBackupConfig":
        data = _block(data, "xtrabackup")
        known = {
            "bin": data.get("bin"),
            "parallel": _safe_int(data.get("parallel")),
            "compress": bool(data.get("compress", False)),
            "compress_threads": _safe_int(data.get("compress_threads")),
            "extra_args": _as_args(data.get("extra_args")),
        }
        extra = {key: value for key, value in data.items() if key not in known}
        return cls(extra=extra, **known)

    def to_dict(self) -> Dict:
        result: Dict[str, object] = {
            "bin": self.bin,
            "parallel": self.parallel,
            "compress": self.compress,
            "compress_threads": self.compress_threads,
            "extra_args": list(self.extra_args),
        }
        result.update(self.extra)
        return {key: value for key, value in result.items() if value is not None}


@dataclass
class RemoteConfig:
    enabled: bool = False
    user: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = None
    dest_dir: Optional[str] = None
    extra: Dict[str, object] = field(default_factory=dict)

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}:{self.dest_dir}"

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "RemoteConfig":
        data = _block(data, "remote")
        known = {
            "enabled": bool(data.get("enabled", False)),
            "user": data.get("user"),
            "host": data.get("host"),
            "port": _safe_int(data.get("port")),
            "dest_dir": data.get("dest_dir"),
        }
        extra = {key: value for key, value in data.items() if key not in known}
        return cls(extra=extra, **known)

    def to_dict(self) -> Dict:
        result: Dict[str, object] = {
            "enabled": self.enabled,
            "user": self.user,
            "host": self.host,
            "port": self.port,
            "dest_dir": self.dest_dir,
        }
        result.update(self.extra)
        return {key: value for key, value in result.items() if value is not None}


@dataclass
class FeishuConfig:
    enabled: bool = False
    webhook: Optional[str] = None
    keyword: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.enabled and self.webhook and self.keyword)

    @classmethod
    def from_dict(cls, data: Optional[Dict]) -> "FeishuConfig":
        data = _block(data, "feishu")
        return cls(
            enabled=bool(data.get("enabled", False)),
            webhook=data.get("webhook"),
            keyword=data.get("keyword"),
        )

    def to_dict(self) -> Dict:
        result: Dict[str, object] = {
            "enabled": self.enabled,
            "webhook": self.webhook,
            "keyword": self.keyword,
        }
        return {key: value for key, value in result.items() if value is not None}


@dataclass
class BackupConfig:
    backup_type: str = ""
    backup_dir: Optional[str] = None
    backup_prefix: Optional[str] = None
    retention_days: int = 0
    tar_archive: bool = False
    log_dir: Optional[str] = None
    mysql: MySQLConfig = field(default_factory=MySQLConfig)
    xtrabackup: XtraBackupConfig = field(default_factory=XtraBackupConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    feishu: FeishuConfig = field(default_factory=FeishuConfig)
    extra: Dict[str, object] = field(default_factory=dict)

    @property
    def is_incremental(self) -> bool:
        return self.backup_type == "incr"

    @classmethod
    def from_dict(cls, data: Dict) -> "BackupConfig":
        known_keys = {
            "backup_type",
            "backup_dir",
            "backup_prefix",
            "retention_days",
            "tar_archive",
            "log_dir",
            "mysql",
            "xtrabackup",
            "remote",
            "feishu",
        }
        extra = {key: value for key, value in data.items() if key not in known_keys}
        return cls(
            backup_type=data.get("backup_type") or "",
            backup_dir=data.get("backup_dir"),
            backup_prefix=data.get("backup_prefix"),
            retention_days=_safe_int(data.get("retention_days"), default=0),
            tar_archive=bool(data.get("tar_archive", False)),
            log_dir=data.get("log_dir"),
            mysql=MySQLConfig.from_dict(data.get("mysql")),
            xtrabackup=XtraBackupConfig.from_dict(data.get("xtrabackup")),
            remote=RemoteConfig.from_dict(data.get("remote")),
            feishu=FeishuConfig.from_dict(data.get("feishu")),
            extra=extra,
        )

    def to_dict(self) -> Dict:
        result: Dict[str, object] = {
            "backup_type": self.backup_type,
            "backup_dir": self.backup_dir,
            "backup_prefix": self.backup_prefix,
            "retention_days": self.retention_days,
            "tar_archive": self.tar_archive,
            "log_dir": self.log_dir,
            "mysql": self.mysql.to_dict(),
            "xtrabackup": self.xtrabackup.to_dict(),
            "remote": self.remote.to_dict(),
            "feishu": self.feishu.to_dict(),
        }
        result.update(self.extra)
        cleaned: Dict[str, object] = {}
        for key, value in result.items():
            if value in (None, "", {}):
                continue
            cleaned[key] = value
        return cleaned


# ---------------------------------------------------------------------------
def _block(data, name: str) -> Dict:
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{name} must be an object.")
    return data


def _safe_int(value, default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Value '{value}' is not an integer.")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Value '{value}' is not an integer.")


def _as_args(value) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return shlex.split(value)
    if isinstance(value, list):
        return [str(item) for item in value]
    raise ConfigError("xtrabackup.extra_args must be a list of strings.")


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in {".yml", ".yaml"}


# ---------------------------------------------------------------------------
def load_config(path: Path = Path(CONFIG_FILENAME)) -> BackupConfig:
    """Read a JSON (or YAML, by file suffix) configuration document."""

    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file '{path}' not found.")
    text = path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text) if _is_yaml(path) else json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot parse '{path}': {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file '{path}' must contain an object.")
    return BackupConfig.from_dict(data)


def save_config(config: BackupConfig, path: Path = Path(CONFIG_FILENAME)) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        if _is_yaml(path):
            yaml.safe_dump(
                config.to_dict(),
                fh,
                allow_unicode=True,
                sort_keys=False,
                default_flow_style=False,
            )
        else:
            json.dump(config.to_dict(), fh, ensure_ascii=False, indent=2)
            fh.write("\n")


def example_config() -> BackupConfig:
    """Starter configuration written by ``backup_manager.py --write-example``."""

    return BackupConfig(
        backup_type="full",
        backup_dir="/data/backup/mysql",
        backup_prefix=DEFAULT_PREFIX,
        retention_days=7,
        tar_archive=True,
        mysql=MySQLConfig(
            defaults_file="/etc/my.cnf",
            socket="/var/lib/mysql/mysql.sock",
            user="backup",
            password="change-me",
        ),
        xtrabackup=XtraBackupConfig(parallel=DEFAULT_PARALLEL),
        remote=RemoteConfig(
            enabled=False,
            user="backup",
            host="backup.example.com",
            port=DEFAULT_SSH_PORT,
            dest_dir="/data/remote_backup",
        ),
        feishu=FeishuConfig(
            enabled=False,
            webhook="https://open.feishu.cn/open-apis/bot/v2/hook/<token>",
            keyword="mysql-backup",
        ),
    )


def apply_overrides(config: BackupConfig, backup_type: Optional[str] = None) -> BackupConfig:
    """Apply command line overrides on top of the loaded document."""

    if backup_type:
        config.backup_type = backup_type
    if not config.backup_type:
        config.backup_type = "full"
    return config


def validate_config(config: BackupConfig, which: Optional[Which] = None) -> BackupConfig:
    """Check required fields and fill defaults in place.

    Rules run in a fixed order and the first failure raises
    :class:`ConfigError`. Running this on an already validated config leaves
    it unchanged.
    """

    which = which or shutil.which
    backup_type = BACKUP_TYPE_ALIASES.get(config.backup_type, config.backup_type)
    if backup_type not in BACKUP_TYPES:
        raise ConfigError(f"backup_type must be full or incr, got '{config.backup_type}'")
    config.backup_type = backup_type

    if not config.backup_dir:
        raise ConfigError("backup_dir is required")
    if not config.backup_prefix:
        config.backup_prefix = DEFAULT_PREFIX
    if not config.log_dir:
        config.log_dir = str(Path(config.backup_dir) / "log")
    if config.retention_days < 0:
        raise ConfigError("retention_days must not be negative")

    mysql = config.mysql
    if not mysql.defaults_file:
        raise ConfigError("mysql.defaults_file is required")
    if not mysql.user or not mysql.password:
        raise ConfigError("mysql.user and mysql.password are required")
    if not mysql.socket:
        if not mysql.host:
            mysql.host = DEFAULT_MYSQL_HOST
        if not mysql.port:
            mysql.port = DEFAULT_MYSQL_PORT

    xtrabackup = config.xtrabackup
    if not xtrabackup.bin:
        found = which("xtrabackup")
        if not found:
            raise ConfigError("xtrabackup not found in PATH")
        xtrabackup.bin = found
    if not xtrabackup.parallel:
        xtrabackup.parallel = DEFAULT_PARALLEL
    if xtrabackup.compress and not xtrabackup.compress_threads:
        xtrabackup.compress_threads = DEFAULT_COMPRESS_THREADS

    remote = config.remote
    if remote.enabled:
        if not remote.user or not remote.host or not remote.dest_dir:
            raise ConfigError(
                "remote.user, remote.host, remote.dest_dir are required when remote.enabled=true"
            )
        if not remote.port:
            remote.port = DEFAULT_SSH_PORT
        if not which("scp"):
            raise ConfigError("scp not found in PATH")

    feishu = config.feishu
    if feishu.enabled:
        if not feishu.webhook:
            raise ConfigError("feishu.webhook is required when feishu.enabled=true")
        if not feishu.keyword:
            raise ConfigError(
                "feishu.keyword is required when feishu.enabled=true "
                "(the webhook rejects messages without its security keyword)"
            )
    return config


__all__ = [
    "BACKUP_TYPES",
    "BackupConfig",
    "ConfigError",
    "FeishuConfig",
    "MySQLConfig",
    "RemoteConfig",
    "XtraBackupConfig",
    "apply_overrides",
    "example_config",
    "load_config",
    "save_config",
    "validate_config",
]
