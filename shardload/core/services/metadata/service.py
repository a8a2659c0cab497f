"""
Metadata Resolver.

Queries the coordinator once per table, before any worker starts, and turns
the answers into frozen TableDescriptors. Routing depends on every piece, so
any failure aborts the whole run.
"""
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ....setup.config.models import WriteOperation
from ....setup.logging import logger
from ...exceptions import MetadataError
from ...interfaces import MetadataRepository
from ...schemas import (
    FieldMetaInfo,
    PartitionKeyDescriptor,
    PartitionRule,
    PrimaryKeyDescriptor,
    ShardInfo,
    TableDescriptor,
    TopologyDescriptor,
)


class MetadataResolver:
    def __init__(self, repository: MetadataRepository, schema_name: str = "public"):
        self.repository = repository
        self.schema_name = schema_name

    def resolve(
        self,
        tables: Sequence[str],
        columns: Optional[Sequence[str]] = None,
        operation: WriteOperation = WriteOperation.INSERT,
    ) -> Dict[str, TableDescriptor]:
        """
        Build the descriptors of every target table.

        Args:
            tables: Logical table names.
            columns: Explicit field order of the input files (single table).
            operation: Write operation; update and delete need a primary key.

        Raises:
            MetadataError: If any table cannot be fully described.
        """
        if not tables:
            raise MetadataError("No target tables configured")
        if columns is not None and len(tables) != 1:
            raise MetadataError("An explicit column list requires exactly one table")

        logger.info(f"[MetadataResolver] Fetching metadata of {len(tables)} table(s)...")
        descriptors = {}
        for table in tables:
            descriptors[table] = self._resolve_table(table, columns, operation)
            descriptor = descriptors[table]
            logger.info(
                f"[MetadataResolver] Table {table}: {len(descriptor.topology)} shard(s), "
                f"partition key {list(descriptor.partition_key.columns)} ({descriptor.partition_key.rule.value}), "
                f"primary key {list(descriptor.primary_key.columns)}"
            )
        logger.info("[MetadataResolver] Metadata of all tables fetched")
        return descriptors

    def _resolve_table(self, table: str, columns: Optional[Sequence[str]],
                       operation: WriteOperation) -> TableDescriptor:
        try:
            pk_columns = self.repository.fetch_primary_key(self.schema_name, table)
            column_meta = self.repository.fetch_columns(self.schema_name, table)
            shards = self.repository.fetch_topology(table)
            partition_key = self.repository.fetch_partition_key(table)
        except MetadataError:
            raise
        except Exception as e:
            raise MetadataError(f"Cannot fetch metadata of table {table}: {e}") from e

        if not column_meta:
            raise MetadataError(f"Table {self.schema_name}.{table} does not exist or has no columns")

        fields = FieldMetaInfo(tuple(sorted(column_meta, key=lambda column: column.ordinal)))
        if columns is not None:
            fields = self._select_columns(table, fields, columns)

        primary_key = PrimaryKeyDescriptor(tuple(pk_columns))
        self._check_primary_key(table, primary_key, fields, operation)

        topology = self._build_topology(table, shards)
        partition_key = self._check_partition_key(table, partition_key, topology, fields)

        return TableDescriptor.build(table, primary_key, fields, topology, partition_key)

    @staticmethod
    def _select_columns(table: str, fields: FieldMetaInfo, columns: Sequence[str]) -> FieldMetaInfo:
        by_name = {column.name: column for column in fields.columns}
        unknown = [name for name in columns if name not in by_name]
        if unknown:
            raise MetadataError(f"Table {table} has no column(s) {unknown}")
        return FieldMetaInfo(tuple(by_name[name] for name in columns))

    @staticmethod
    def _check_primary_key(table: str, primary_key: PrimaryKeyDescriptor,
                           fields: FieldMetaInfo, operation: WriteOperation) -> None:
        if operation == WriteOperation.INSERT:
            return
        if not primary_key:
            raise MetadataError(f"Table {table} has no primary key; {operation.value} needs one")
        missing = [name for name in primary_key.columns if name not in fields.names]
        if missing:
            raise MetadataError(f"Primary key column(s) {missing} of {table} are not in the input fields")
        if operation == WriteOperation.UPDATE and len(fields) == len(primary_key.columns):
            raise MetadataError(f"Nothing to update in {table}: input only carries primary key columns")

    @staticmethod
    def _build_topology(table: str, shards: List[ShardInfo]) -> TopologyDescriptor:
        if not shards:
            logger.info(f"[MetadataResolver] Table {table} is not sharded, writing to the coordinator")
            shards = [ShardInfo(shard_id=f"{table}_0", ordinal=0, connection_name="", physical_table=table)]

        ordered = tuple(sorted(shards, key=lambda shard: shard.ordinal))
        if [shard.ordinal for shard in ordered] != list(range(len(ordered))):
            raise MetadataError(
                f"Shard ordinals of {table} must be 0..{len(ordered) - 1}, got {[s.ordinal for s in ordered]}"
            )
        return TopologyDescriptor(table, ordered)

    @staticmethod
    def _check_partition_key(table: str, partition_key: Optional[PartitionKeyDescriptor],
                             topology: TopologyDescriptor, fields: FieldMetaInfo) -> PartitionKeyDescriptor:
        if partition_key is None:
            if len(topology) > 1:
                raise MetadataError(f"Table {table} has {len(topology)} shards but no partition key")
            return PartitionKeyDescriptor((), PartitionRule.NONE, 1)

        if partition_key.shard_count != len(topology):
            raise MetadataError(
                f"Partition key of {table} expects {partition_key.shard_count} shards, "
                f"topology has {len(topology)}"
            )
        missing = [name for name in partition_key.columns if name not in fields.names]
        if missing:
            raise MetadataError(f"Partition key column(s) {missing} of {table} are not in the input fields")
        if partition_key.rule != PartitionRule.NONE and not partition_key.columns:
            raise MetadataError(f"Partition rule {partition_key.rule.value} of {table} has no key columns")
        if partition_key.rule in (PartitionRule.MODULO, PartitionRule.RANGE) and len(partition_key.columns) != 1:
            raise MetadataError(f"Partition rule {partition_key.rule.value} of {table} takes exactly one column")
        if partition_key.rule == PartitionRule.RANGE:
            bounds = list(partition_key.range_bounds)
            if len(bounds) != len(topology) - 1 or bounds != sorted(bounds):
                raise MetadataError(
                    f"Range partition of {table} needs {len(topology) - 1} ascending bounds, got {bounds}"
                )
        return partition_key


def table_for_file(file_path: str, tables: Sequence[str]) -> str:
    """
    Target table of an input file.

    One table takes every file. With several tables the file name stem (up to
    the first dot) must name one of them.
    """
    if len(tables) == 1:
        return tables[0]
    stem = Path(file_path).name.split(".")[0]
    if stem in tables:
        return stem
    raise MetadataError(f"Cannot tell the target table of {file_path}: expected one of {list(tables)}")
