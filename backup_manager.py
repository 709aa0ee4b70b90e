"""Command line interface for the MySQL XtraBackup automation tool."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from db_backup.backup import PIPELINE_ERRORS, BackupRunner
from db_backup.config import (
    CONFIG_FILENAME,
    BackupConfig,
    ConfigError,
    apply_overrides,
    example_config,
    load_config,
    save_config,
    validate_config,
)
from db_backup.notify import STATUS_FAILURE, FeishuNotifier


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Back up MySQL with XtraBackup, archive, ship to a remote host and prune old backups.",
    )
    parser.add_argument("-c", "--config", default=CONFIG_FILENAME, help="Path to config file (JSON or YAML).")
    parser.add_argument(
        "-t",
        "--type",
        dest="backup_type",
        choices=["full", "incr", "incremental"],
        help="Override backup type.",
    )
    parser.add_argument(
        "--skip-remote",
        action="store_true",
        help="Skip sending to remote storage even if enabled.",
    )
    parser.add_argument(
        "--write-example",
        metavar="PATH",
        help="Write a starter configuration to PATH and exit.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")
    return parser


def configure_logging(level: int) -> None:
    log_level = logging.DEBUG if level >= 1 else logging.INFO
    logging.basicConfig(level=log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def load_application_config(path: Path) -> BackupConfig:
    try:
        return load_config(path)
    except ConfigError as exc:
        print(f"load config: {exc}", file=sys.stderr)
        sys.exit(1)


def handle_write_example(path: Path) -> None:
    if path.exists():
        print(f"Refusing to overwrite existing file {path}", file=sys.stderr)
        sys.exit(1)
    save_config(example_config(), path)
    print(f"Example configuration written to {path}")


def prepare_config(config: BackupConfig, backup_type: Optional[str]) -> BackupConfig:
    apply_overrides(config, backup_type=backup_type)
    try:
        return validate_config(config)
    except ConfigError as exc:
        if config.feishu.is_complete():
            FeishuNotifier(config.feishu).notify(STATUS_FAILURE, error=f"config invalid: {exc}")
        print(f"config invalid: {exc}", file=sys.stderr)
        sys.exit(1)


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if args.write_example:
        handle_write_example(Path(args.write_example))
        return

    config = load_application_config(Path(args.config))
    config = prepare_config(config, args.backup_type)

    runner = BackupRunner.from_config(config, skip_remote=args.skip_remote)
    try:
        result = runner.run_backup()
    except PIPELINE_ERRORS as exc:
        print(f"backup failed: {exc}", file=sys.stderr)
        sys.exit(1)
    print(
        f"Backup finished. name={result.backup_name} local={result.target_dir} "
        f"archive={result.archive_path} log={result.log_path}"
    )


if __name__ == "__main__":
    main()
