import sys
from pathlib import Path

from ...setup.logging import logger

WRITE_COMMANDS = ("import", "update", "delete")


def validate_cli_arguments(args):
    """
    Validate CLI argument combinations before any connection is opened.

    Args:
        args: Parsed command line arguments

    Raises:
        SystemExit: If invalid argument combinations are detected
    """
    errors = []

    if args.command in WRITE_COMMANDS:
        if not args.files:
            errors.append("At least one input file is required.")
        for file_path in args.files or []:
            if not Path(file_path).is_file():
                errors.append(f"Input file not found: {file_path}")

        if not args.tables:
            errors.append("--tables is required.")

        tables = _split(args.tables)
        if args.columns and len(tables) != 1:
            errors.append("--columns can only be used with a single table.")

        if args.separator is not None and len(args.separator) != 1:
            errors.append(f"Separator must be exactly one character, got {args.separator!r}.")

        for name in ("block_size", "batch_size", "producers", "consumers", "capacity"):
            value = getattr(args, name, None)
            if value is not None and value < 1:
                errors.append(f"--{name.replace('_', '-')} must be positive.")

        if args.no_resume and args.reset_checkpoint:
            errors.append("--no-resume and --reset-checkpoint are redundant together; use one.")

    if args.command == "export-ddl" and args.tables and len(_split(args.schemas)) > 1:
        errors.append("--tables selects tables of one schema; give at most one --schemas entry.")

    # Log errors and exit if any found
    if errors:
        logger.error("Invalid CLI arguments detected:")
        for i, error in enumerate(errors, 1):
            logger.error(f"  {i}. {error}")
        logger.error("Use --help for valid usage examples.")
        sys.exit(1)


def _split(value):
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]
