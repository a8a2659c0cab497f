"""
Metadata Repository - read-only queries against the coordinator database.

Primary keys and columns come from information_schema; shard topology and
partition keys come from the catalog tables in database.models.
"""
from typing import List, Optional

import sqlalchemy.exc
from sqlalchemy import inspect, text

from ....database.engine import Database
from ....database.models import ShardPartitionKey, ShardTopology
from ....setup.logging import logger
from ...exceptions import MetadataError
from ...schemas import ColumnMeta, PartitionKeyDescriptor, PartitionRule, ShardInfo


PRIMARY_KEY_QUERY = '''
SELECT kcu.column_name
FROM information_schema.table_constraints tc
JOIN information_schema.key_column_usage kcu
  ON tc.constraint_name = kcu.constraint_name
 AND tc.table_schema = kcu.table_schema
 AND tc.table_name = kcu.table_name
WHERE tc.constraint_type = 'PRIMARY KEY'
  AND tc.table_schema = :schema
  AND tc.table_name = :table
ORDER BY kcu.ordinal_position
'''

COLUMNS_QUERY = '''
SELECT
    column_name,
    ordinal_position,
    is_nullable,
    data_type,
    character_maximum_length,
    numeric_precision,
    numeric_scale
FROM information_schema.columns
WHERE table_schema = :schema
  AND table_name = :table
ORDER BY ordinal_position
'''

TOPOLOGY_QUERY = f'''
SELECT shard_id, ordinal, connection_name, physical_table
FROM {ShardTopology.__tablename__}
WHERE logical_table = :table
ORDER BY ordinal
'''

PARTITION_KEY_QUERY = f'''
SELECT key_columns, rule, shard_count, range_bounds
FROM {ShardPartitionKey.__tablename__}
WHERE logical_table = :table
'''

SCHEMAS_QUERY = '''
SELECT schema_name
FROM information_schema.schemata
WHERE schema_name NOT IN ('information_schema', 'pg_catalog')
  AND schema_name NOT LIKE 'pg_toast%'
  AND schema_name NOT LIKE 'pg_temp%'
ORDER BY schema_name
'''

TABLES_QUERY = '''
SELECT table_name
FROM information_schema.tables
WHERE table_schema = :schema
  AND table_type = 'BASE TABLE'
ORDER BY table_name
'''


def column_type(data_type: str, char_length: Optional[int],
                precision: Optional[int], scale: Optional[int]) -> str:
    """Rebuild a declarable column type from information_schema fields."""
    if data_type in ("character varying", "character") and char_length:
        return f"{data_type}({char_length})"
    if data_type == "numeric" and precision:
        return f"numeric({precision},{scale or 0})"
    return data_type


class SqlMetadataRepository:
    """
    MetadataRepository over a SQLAlchemy engine.

    Database errors are logged and re-raised; the resolver turns them into
    MetadataError.
    """

    def __init__(self, database: Database):
        self.database = database
        self._catalog_available: Optional[bool] = None

    def fetch_primary_key(self, schema: str, table: str) -> List[str]:
        rows = self._fetch_all(PRIMARY_KEY_QUERY, {"schema": schema, "table": table},
                               f"primary key of {schema}.{table}")
        return [row.column_name for row in rows]

    def fetch_columns(self, schema: str, table: str) -> List[ColumnMeta]:
        rows = self._fetch_all(COLUMNS_QUERY, {"schema": schema, "table": table},
                               f"columns of {schema}.{table}")
        return [
            ColumnMeta(
                name=row.column_name,
                ordinal=row.ordinal_position,
                nullable=row.is_nullable == "YES",
                data_type=column_type(
                    row.data_type, row.character_maximum_length,
                    row.numeric_precision, row.numeric_scale,
                ),
            )
            for row in rows
        ]

    def fetch_topology(self, table: str) -> List[ShardInfo]:
        if not self.catalog_available():
            return []
        rows = self._fetch_all(TOPOLOGY_QUERY, {"table": table}, f"topology of {table}")
        return [
            ShardInfo(
                shard_id=row.shard_id,
                ordinal=row.ordinal,
                connection_name=row.connection_name or "",
                physical_table=row.physical_table,
            )
            for row in rows
        ]

    def fetch_partition_key(self, table: str) -> Optional[PartitionKeyDescriptor]:
        if not self.catalog_available():
            return None
        rows = self._fetch_all(PARTITION_KEY_QUERY, {"table": table}, f"partition key of {table}")
        if not rows:
            return None
        row = rows[0]
        try:
            rule = PartitionRule(str(row.rule).strip().lower())
            bounds = tuple(int(bound) for bound in _split(row.range_bounds))
        except ValueError as e:
            raise MetadataError(f"Invalid partition key entry for {table}: {e}") from e
        return PartitionKeyDescriptor(
            columns=tuple(_split(row.key_columns)),
            rule=rule,
            shard_count=row.shard_count,
            range_bounds=bounds,
        )

    def list_schemas(self) -> List[str]:
        return [row.schema_name for row in self._fetch_all(SCHEMAS_QUERY, {}, "schemas")]

    def list_tables(self, schema: str) -> List[str]:
        rows = self._fetch_all(TABLES_QUERY, {"schema": schema}, f"tables of {schema}")
        return [row.table_name for row in rows]

    def catalog_available(self) -> bool:
        """Whether the coordinator holds the shard catalog tables."""
        if self._catalog_available is None:
            try:
                inspector = inspect(self.database.engine)
                self._catalog_available = (
                    inspector.has_table(ShardTopology.__tablename__)
                    and inspector.has_table(ShardPartitionKey.__tablename__)
                )
            except sqlalchemy.exc.SQLAlchemyError as e:
                logger.error(f"[MetadataRepository] Database error inspecting shard catalog: {e}")
                raise
            if not self._catalog_available:
                logger.warning(
                    "[MetadataRepository] Shard catalog tables not found, "
                    "every table is treated as unsharded"
                )
        return self._catalog_available

    def _fetch_all(self, query: str, params: dict, what: str) -> list:
        try:
            with self.database.engine.connect() as conn:
                return list(conn.execute(text(query), params))
        except (sqlalchemy.exc.SQLAlchemyError, sqlalchemy.exc.DatabaseError) as e:
            logger.error(f"[MetadataRepository] Database error fetching {what}: {e}")
            raise


def _split(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
