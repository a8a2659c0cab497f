"""
Batched row writes against the shard databases.

Every batch is one executemany statement inside one transaction on the
shard's pooled engine. Inserts skip rows whose primary key already exists so
that blocks replayed after a restart do not fail the run.
"""
from typing import Dict, List, Sequence, Tuple

import sqlalchemy.exc
from sqlalchemy import text

from ..core.schemas import Row, ShardInfo, TableDescriptor
from ..setup.config.models import WriteOperation
from ..setup.logging import logger
from ..utils.misc import quote_ident
from .engine import ShardEngineRegistry


def _params(names: Sequence[str]) -> Dict[str, str]:
    """Column name -> bind parameter name; column names are not safe bind names."""
    return {name: f"p{i}" for i, name in enumerate(names)}


def build_insert_sql(table: str, columns: Sequence[str], primary_keys: Sequence[str]) -> str:
    params = _params(columns)
    column_list = ", ".join(quote_ident(col) for col in columns)
    values = ", ".join(f":{params[col]}" for col in columns)
    sql = f"INSERT INTO {quote_ident(table)} ({column_list}) VALUES ({values})"
    if primary_keys:
        sql += f" ON CONFLICT ({', '.join(quote_ident(pk) for pk in primary_keys)}) DO NOTHING"
    return sql


def build_update_sql(table: str, columns: Sequence[str], primary_keys: Sequence[str]) -> str:
    params = _params(columns)
    assignments = ", ".join(
        f"{quote_ident(col)} = :{params[col]}" for col in columns if col not in primary_keys
    )
    predicate = " AND ".join(f"{quote_ident(pk)} = :{params[pk]}" for pk in primary_keys)
    return f"UPDATE {quote_ident(table)} SET {assignments} WHERE {predicate}"


def build_delete_sql(table: str, columns: Sequence[str], primary_keys: Sequence[str]) -> str:
    params = _params(columns)
    predicate = " AND ".join(f"{quote_ident(pk)} = :{params[pk]}" for pk in primary_keys)
    return f"DELETE FROM {quote_ident(table)} WHERE {predicate}"


SQL_BUILDERS = {
    WriteOperation.INSERT: build_insert_sql,
    WriteOperation.UPDATE: build_update_sql,
    WriteOperation.DELETE: build_delete_sql,
}


class SqlShardWriter:
    """ShardWriter over the pooled shard engines."""

    def __init__(self, registry: ShardEngineRegistry, schema_name: str = "public",
                 write_timeout_seconds: int = 60):
        self.registry = registry
        self.schema_name = schema_name
        self.write_timeout_seconds = write_timeout_seconds
        self._statements: Dict[Tuple[str, str, WriteOperation], str] = {}

    def qualified_table(self, shard: ShardInfo) -> str:
        if "." in shard.physical_table:
            return shard.physical_table
        return f"{self.schema_name}.{shard.physical_table}"

    def statement_for(self, shard: ShardInfo, table: TableDescriptor, operation: WriteOperation) -> str:
        key = (shard.shard_id, table.name, operation)
        sql = self._statements.get(key)
        if sql is None:
            sql = SQL_BUILDERS[operation](
                self.qualified_table(shard), table.fields.names, table.primary_key.columns
            )
            self._statements[key] = sql
        return sql

    def write(self, shard: ShardInfo, table: TableDescriptor,
              operation: WriteOperation, rows: Sequence[Row]) -> int:
        """Run one batched statement; returns the number of rows sent."""
        if not rows:
            return 0

        sql = self.statement_for(shard, table, operation)
        names = list(_params(table.fields.names).values())
        batch: List[dict] = [dict(zip(names, row)) for row in rows]

        engine = self.registry.engine_for(shard.connection_name)
        try:
            with engine.begin() as conn:
                if engine.dialect.name == "postgresql":
                    timeout_ms = int(self.write_timeout_seconds * 1000)
                    conn.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))
                conn.execute(text(sql), batch)
        except (sqlalchemy.exc.SQLAlchemyError, sqlalchemy.exc.DatabaseError) as e:
            logger.error(
                f"[ShardWriter] Database error writing {len(rows)} rows to "
                f"{shard.physical_table} ({shard.shard_id}): {e}"
            )
            raise

        logger.debug(f"[ShardWriter] {operation.value} of {len(rows)} rows into {shard.physical_table}")
        return len(rows)
