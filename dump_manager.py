"""Command line interface for one-shot MySQL, PostgreSQL and MongoDB dumps."""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterable, Optional

from db_backup.dump import (
    DEFAULT_MYSQL_DATADIR,
    DEFAULT_PORTS,
    ENGINES,
    MYSQL_TOOLS,
    DumpError,
    DumpRunner,
    MongoDumpConfig,
    MySQLDumpConfig,
    PostgresDumpConfig,
)


def build_parser() -> argparse.ArgumentParser:
    # -h is the database host, so help is only available as --help.
    parser = argparse.ArgumentParser(
        description="Dump a MySQL, PostgreSQL or MongoDB database with the vendor tools.",
        add_help=False,
    )
    parser.add_argument("--help", action="help", help="Show this help message and exit.")
    parser.add_argument("-t", "--type", dest="db_type", type=str.lower, choices=ENGINES, help="Database type.")
    parser.add_argument("-h", "--host", default="localhost", help="Database host.")
    parser.add_argument("-P", "--port", type=int, help="Database port (engine default when omitted).")
    parser.add_argument("-u", "--user", dest="username", help="Database username.")
    parser.add_argument("-p", "--pass", "--password", dest="password", default="", help="Database password.")
    parser.add_argument("--db", dest="database", help="Database name.")
    parser.add_argument("--out", dest="output_dir", default="./backups", help="Backup output directory.")

    mongo = parser.add_argument_group("MongoDB")
    mongo.add_argument("--mongo-options", default="", help="Additional mongodump options.")
    mongo.add_argument("--mongo-auth-db", help="Authentication database (default admin).")
    mongo.add_argument("--mongo-all", action="store_true", help="Back up all databases.")

    mysql = parser.add_argument_group("MySQL")
    mysql.add_argument("--mysql-tool", choices=MYSQL_TOOLS, default="mysqldump", help="MySQL backup tool.")
    mysql.add_argument(
        "--mysql-datadir",
        default=DEFAULT_MYSQL_DATADIR,
        help="MySQL data directory (used by xtrabackup).",
    )
    mysql.add_argument(
        "--mysql-all",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Back up all databases with mysqldump.",
    )

    postgres = parser.add_argument_group("PostgreSQL")
    postgres.add_argument("--postgres-all", action="store_true", help="Back up all databases (pg_dumpall).")

    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity.")
    return parser


def configure_logging(level: int) -> None:
    log_level = logging.DEBUG if level >= 1 else logging.INFO
    logging.basicConfig(level=log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


def fail_usage(parser: argparse.ArgumentParser, message: str) -> None:
    parser.print_usage(sys.stderr)
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def check_arguments(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if not args.db_type:
        fail_usage(parser, "-t or --type is required")
    if not args.username:
        fail_usage(parser, "-u or --user is required")
    needs_database = {
        "mysql": args.mysql_tool == "mysqldump" and not args.mysql_all,
        "postgresql": not args.postgres_all,
        "mongodb": not args.mongo_all,
    }[args.db_type]
    if needs_database and not args.database:
        fail_usage(parser, "--db is required")


def run_dump(args: argparse.Namespace, runner: DumpRunner) -> Path:
    port = args.port or DEFAULT_PORTS[args.db_type]
    if args.db_type == "mysql":
        return runner.backup_mysql(
            MySQLDumpConfig(
                host=args.host,
                port=port,
                username=args.username,
                password=args.password,
                database=args.database,
                all_databases=args.mysql_all,
                backup_tool=args.mysql_tool,
                datadir=args.mysql_datadir,
            )
        )
    if args.db_type == "postgresql":
        return runner.backup_postgresql(
            PostgresDumpConfig(
                host=args.host,
                port=port,
                username=args.username,
                password=args.password,
                database=args.database,
                all_databases=args.postgres_all,
            )
        )
    return runner.backup_mongodb(
        MongoDumpConfig(
            host=args.host,
            port=port,
            username=args.username,
            password=args.password,
            database=args.database,
            auth_database=args.mongo_auth_db,
            options=args.mongo_options,
            all_databases=args.mongo_all,
        )
    )


def main(argv: Optional[Iterable[str]] = None, runner: Optional[DumpRunner] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    check_arguments(parser, args)
    configure_logging(args.verbose)

    runner = runner or DumpRunner(output_dir=Path(args.output_dir))
    try:
        path = run_dump(args, runner)
    except DumpError as exc:
        print(f"{args.db_type} backup failed: {exc}", file=sys.stderr)
        sys.exit(1)
    print(f"Backup written to {path}")


if __name__ == "__main__":
    main()
