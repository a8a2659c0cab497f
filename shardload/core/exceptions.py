"""
Error taxonomy of a migration run.

Local errors (ParseError) are absorbed according to the configured policy.
Per-file and per-table errors (FileReadError, WriteError) fail that unit and
the run. MetadataError is fatal before anything is produced.
"""
from typing import Optional


class MigrationError(Exception):
    """Base class for every error raised by shardload."""


class ParseError(MigrationError):
    """A malformed input record."""

    def __init__(self, message: str, file_path: Optional[str] = None, record_index: Optional[int] = None):
        self.file_path = file_path
        self.record_index = record_index
        location = f" ({file_path}, record {record_index})" if file_path is not None else ""
        super().__init__(f"{message}{location}")


class FileReadError(MigrationError, IOError):
    """An input file could not be opened, read or decoded."""


class MetadataError(MigrationError):
    """Table descriptors could not be resolved."""


class WriteError(MigrationError):
    """A batched write failed after exhausting its retry budget."""

    def __init__(self, message: str, table: Optional[str] = None, shard_id: Optional[str] = None):
        self.table = table
        self.shard_id = shard_id
        super().__init__(message)


class ChannelCapacityTimeout(MigrationError):
    """Publishing or claiming waited longer than the configured limit."""


class ChannelClosedError(MigrationError):
    """Publishing onto a channel that no longer accepts events."""


class CheckpointError(MigrationError):
    """The checkpoint file exists but cannot be read."""
