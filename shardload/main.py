# Project: shardload
# Objective: Migrate delimited-text datasets into a sharded PostgreSQL database
import argparse
import signal
import sys

from pydantic import ValidationError

from .setup.config import get_config
from .setup.base import init_database
from .setup.logging import logger
from .core.exceptions import MigrationError
from .core.executor import MigrationExecutor, RunSupervisor
from .core.orchestrator import JobOrchestrator
from .core.services.checkpoint import CheckpointStore
from .core.services.export import DdlExportService
from .core.services.metadata import SqlMetadataRepository
from .core.utils.cli import WRITE_COMMANDS, validate_cli_arguments
from .database.dml import SqlShardWriter
from .database.engine import ShardEngineRegistry
from .database.models import CatalogBase

OPERATIONS = {"import": "insert", "update": "update", "delete": "delete"}


def _split(value):
    if not value:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shardload",
        description="Move delimited-text files into sharded tables, resumably.",
        epilog="""
Examples:
  %(prog)s import --tables orders data/orders_1.csv data/orders_2.csv
    Insert every row of both files into the shards of "orders"

  %(prog)s import --tables orders,customers --separator '|' data/orders.txt data/customers.txt
    One table per file, matched on the file name

  %(prog)s update --tables orders --columns id,status data/status.csv
    Update the status of existing orders by primary key

  %(prog)s delete --tables orders --reset-checkpoint data/obsolete.csv
    Delete rows by primary key, ignoring any previous checkpoint

  %(prog)s export-ddl --output schema.sql
    Write CREATE SCHEMA / CREATE TABLE statements of every schema

  %(prog)s export-ddl --schemas sales --tables orders,customers --output orders.sql
    Write CREATE TABLE statements of two tables only

  %(prog)s init-catalog
    Create the shard_topology and shard_partition_key tables

Settings not given on the command line come from the environment (.env).
An interrupted run resumes from its checkpoint when started again.
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--env-file", default=None, help="Environment file (default: .env)")
    commands = parser.add_subparsers(dest="command")

    for command in WRITE_COMMANDS:
        sub = commands.add_parser(command, help=f"{OPERATIONS[command].capitalize()} rows from files")
        sub.add_argument("files", nargs="*", help="Input files, in processing order")
        sub.add_argument("--tables", help="Comma-separated target tables")
        sub.add_argument("--columns", help="Comma-separated column order of the files (single table)")

        input_group = sub.add_argument_group("Input options")
        input_group.add_argument("--separator", help="Field separator, exactly one character")
        input_group.add_argument("--encoding", help="File encoding")
        input_group.add_argument("--header", action="store_true", default=None, help="Files start with a header line")
        input_group.add_argument("--null-value", help="Field value loaded as NULL")
        input_group.add_argument("--on-parse-error", choices=["skip", "abort"], help="Malformed record policy")
        input_group.add_argument("--block-size", type=int, help="Records per block")

        run_group = sub.add_argument_group("Run options")
        run_group.add_argument("--producers", type=int, help="Concurrent file readers")
        run_group.add_argument("--consumers", type=int, help="Consumer worker threads")
        run_group.add_argument("--batch-size", type=int, help="Rows per batched write")
        run_group.add_argument("--max-retries", type=int, help="Attempts per batched write")
        run_group.add_argument("--capacity", type=int, help="Event channel capacity")

        checkpoint_group = sub.add_argument_group("Checkpoint options")
        checkpoint_group.add_argument("--checkpoint", help="Checkpoint file")
        checkpoint_group.add_argument("--no-resume", action="store_true", help="Ignore an existing checkpoint")
        checkpoint_group.add_argument(
            "--reset-checkpoint", action="store_true", help="Delete the checkpoint before starting"
        )

    export = commands.add_parser("export-ddl", help="Export schema definitions")
    export.add_argument("--output", default="schema.sql", help="Output SQL file")
    export.add_argument("--schemas", help="Comma-separated schemas (default: all)")
    export.add_argument(
        "--tables", help="Comma-separated tables of one schema, exported without the schema statement"
    )

    commands.add_parser("init-catalog", help="Create the shard catalog tables")
    return parser


def build_overrides(args) -> dict:
    """Map CLI arguments onto configuration sections; None values are ignored."""
    if args.command not in WRITE_COMMANDS:
        return {}
    return {
        "producer": {
            "files": args.files or None,
            "separator": args.separator,
            "encoding": args.encoding,
            "has_header": args.header,
            "null_value": args.null_value,
            "parse_error_policy": args.on_parse_error,
            "block_size": args.block_size,
            "workers": args.producers,
        },
        "consumer": {
            "tables": _split(args.tables),
            "columns": _split(args.columns),
            "operation": OPERATIONS[args.command],
            "workers": args.consumers,
            "batch_size": args.batch_size,
            "max_retries": args.max_retries,
        },
        "channel": {"capacity": args.capacity},
        "checkpoint": {
            "path": args.checkpoint,
            "resume": False if args.no_resume else None,
        },
    }


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 2

    # Validate CLI argument combinations
    validate_cli_arguments(args)

    try:
        config = get_config(env_file=args.env_file, overrides=build_overrides(args))
    except (ValidationError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    database = init_database(config.database, CatalogBase)
    if database is None:
        return 1

    registry = None
    try:
        if args.command == "init-catalog":
            database.create_tables()
            logger.info("[SUCCESS] Shard catalog tables created")
            return 0

        repository = SqlMetadataRepository(database)
        if args.command == "export-ddl":
            job = DdlExportService(
                repository,
                args.output,
                _split(args.schemas),
                tables=_split(args.tables),
                default_schema=config.database.schema_name,
            )
        else:
            registry = ShardEngineRegistry(config.database, database)
            writer = SqlShardWriter(
                registry,
                schema_name=config.database.schema_name,
                write_timeout_seconds=config.consumer.write_timeout_seconds,
            )
            store = CheckpointStore(config.checkpoint.path)
            if args.reset_checkpoint:
                store.clear()

            supervisor = RunSupervisor()
            signal.signal(signal.SIGINT, lambda signum, frame: supervisor.request_stop())
            job = MigrationExecutor(config, repository, writer, store, supervisor)

        result = JobOrchestrator(job).run()
    except MigrationError as e:
        logger.error(f"[ERROR] {e}")
        return 1
    finally:
        if registry is not None:
            registry.dispose()
        database.dispose()

    if result is None:
        return 1
    return 0 if getattr(result, "succeeded", True) else 1


if __name__ == "__main__":
    sys.exit(main())
