"""
Shared fixtures: in-memory fakes of the database boundaries and input file
factories.
"""
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Keep test log files out of the working tree; read before shardload.setup.logging is imported
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="shardload-logs-"))
os.environ.setdefault("ENVIRONMENT", "testing")

from shardload.core.schemas import (  # noqa: E402
    ColumnMeta,
    FieldMetaInfo,
    PartitionKeyDescriptor,
    PartitionRule,
    PrimaryKeyDescriptor,
    ShardInfo,
    TableDescriptor,
    TopologyDescriptor,
)
from shardload.setup.config import (  # noqa: E402
    AppConfig,
    ChannelConfig,
    CheckpointConfig,
    ConsumerConfig,
    ProducerConfig,
)


class FakeMetadataRepository:
    """MetadataRepository answering from dictionaries."""

    def __init__(self, tables: Optional[Dict[str, dict]] = None):
        # name -> {"columns": [...], "pk": [...], "shards": [ShardInfo], "partition_key": descriptor or None}
        self.tables = tables or {}
        self.calls = []

    def add_table(self, name, columns, pk=(), shard_count=1, rule=PartitionRule.HASH,
                  key_columns=None, range_bounds=(), schema="public"):
        shards = [
            ShardInfo(f"{name}_{i}", i, f"shard{i}", f"{name}_{i}") for i in range(shard_count)
        ]
        partition_key = None
        if shard_count > 1:
            partition_key = PartitionKeyDescriptor(
                tuple(key_columns or pk[:1]), rule, shard_count, tuple(range_bounds)
            )
        self.tables[name] = {
            "schema": schema,
            "columns": [ColumnMeta(column, i + 1) for i, column in enumerate(columns)],
            "pk": list(pk),
            "shards": shards,
            "partition_key": partition_key,
        }
        return self

    def _table(self, table):
        return self.tables.get(table, {})

    def fetch_primary_key(self, schema, table):
        self.calls.append(("pk", schema, table))
        return list(self._table(table).get("pk", []))

    def fetch_columns(self, schema, table):
        self.calls.append(("columns", schema, table))
        return list(self._table(table).get("columns", []))

    def fetch_topology(self, table):
        return list(self._table(table).get("shards", []))

    def fetch_partition_key(self, table):
        return self._table(table).get("partition_key")

    def list_schemas(self):
        return sorted({entry.get("schema", "public") for entry in self.tables.values()})

    def list_tables(self, schema):
        return sorted(name for name, entry in self.tables.items() if entry.get("schema", "public") == schema)


class FakeShardWriter:
    """
    ShardWriter recording every batch.

    `fail_when(shard, rows)` returning True makes that attempt raise.
    """

    def __init__(self, fail_when=None, delay: float = 0.0):
        self.fail_when = fail_when
        self.delay = delay
        self.writes: List[tuple] = []
        self.attempts = 0
        self._lock = threading.Lock()

    def write(self, shard, table, operation, rows):
        with self._lock:
            self.attempts += 1
        if self.delay:
            threading.Event().wait(self.delay)
        if self.fail_when is not None and self.fail_when(shard, rows):
            raise RuntimeError(f"shard {shard.shard_id} unavailable")
        with self._lock:
            self.writes.append((shard.shard_id, table.name, operation, list(rows)))
        return len(rows)

    @property
    def rows(self) -> List[tuple]:
        with self._lock:
            return [row for _, _, _, rows in self.writes for row in rows]

    def rows_for(self, shard_id: str) -> List[tuple]:
        with self._lock:
            return [row for sid, _, _, rows in self.writes if sid == shard_id for row in rows]


def make_descriptor(name="orders", columns=("id", "name"), pk=("id",), shard_count=1,
                    rule=PartitionRule.HASH, key_columns=None, range_bounds=()) -> TableDescriptor:
    fields = FieldMetaInfo(tuple(ColumnMeta(column, i + 1) for i, column in enumerate(columns)))
    shards = tuple(ShardInfo(f"{name}_{i}", i, f"shard{i}", f"{name}_{i}") for i in range(shard_count))
    if shard_count > 1:
        partition_key = PartitionKeyDescriptor(tuple(key_columns or pk[:1]), rule, shard_count, tuple(range_bounds))
    else:
        partition_key = PartitionKeyDescriptor((), PartitionRule.NONE, 1)
    return TableDescriptor.build(
        name, PrimaryKeyDescriptor(tuple(pk)), fields, TopologyDescriptor(name, shards), partition_key
    )


@pytest.fixture
def fake_repository():
    return FakeMetadataRepository()


@pytest.fixture
def fake_writer():
    return FakeShardWriter()


@pytest.fixture
def csv_file_factory(tmp_path):
    """Write delimited files into the test's temporary directory."""
    counter = {"n": 0}

    def _create(rows: List[List[str]], name: Optional[str] = None, separator: str = ",",
                header: Optional[List[str]] = None, encoding: str = "utf-8") -> str:
        counter["n"] += 1
        file_path = tmp_path / (name or f"input_{counter['n']}.csv")
        lines = []
        if header is not None:
            lines.append(separator.join(header))
        lines.extend(separator.join(row) for row in rows)
        file_path.write_text("\n".join(lines) + "\n", encoding=encoding)
        return str(file_path)

    return _create


@pytest.fixture
def numbered_rows():
    """`count` two-column rows with ids starting at `start`."""
    def _rows(count: int, start: int = 0) -> List[List[str]]:
        return [[str(i), f"name-{i}"] for i in range(start, start + count)]
    return _rows


@pytest.fixture
def make_config(tmp_path):
    """AppConfig tuned for fast tests: no scan delay, short intervals."""
    def _config(files, tables, block_size=10, consumers=2, producers=2, batch_size=25,
                capacity=16, max_retries=3, operation="insert", columns=None,
                parse_error_policy="skip", checkpoint_path: Optional[Path] = None, resume=True):
        return AppConfig(
            environment="testing",
            producer=ProducerConfig(
                files=list(files),
                block_size=block_size,
                workers=producers,
                parse_error_policy=parse_error_policy,
            ),
            consumer=ConsumerConfig(
                tables=list(tables),
                columns=columns,
                operation=operation,
                workers=consumers,
                batch_size=batch_size,
                max_retries=max_retries,
                retry_min_wait_seconds=0.0,
                retry_max_wait_seconds=0.0,
            ),
            channel=ChannelConfig(capacity=capacity, claim_poll_seconds=0.01),
            checkpoint=CheckpointConfig(
                path=checkpoint_path or (tmp_path / "run.checkpoint.json"),
                interval_seconds=0.05,
                initial_delay_seconds=0.0,
                force_drain_timeout_seconds=5.0,
                resume=resume,
            ),
        )
    return _config
