"""
DDL export.

Writes CREATE SCHEMA / CREATE TABLE statements for the logical schema of the
coordinator database, one schema after the other, in a single SQL file, or
for a chosen set of tables only.
"""
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ....setup.logging import logger
from ....utils.misc import quote_ident
from ...exceptions import MetadataError
from ...interfaces import MetadataRepository
from ...schemas import ColumnMeta


def create_schema_statement(schema: str) -> str:
    return f"CREATE SCHEMA IF NOT EXISTS {quote_ident(schema)};"


def create_table_statement(schema: str, table: str, columns: Sequence[ColumnMeta],
                           primary_key: Sequence[str]) -> str:
    definitions = [
        f"    {quote_ident(column.name)} {column.data_type}{'' if column.nullable else ' NOT NULL'}"
        for column in sorted(columns, key=lambda column: column.ordinal)
    ]
    if primary_key:
        definitions.append(f"    PRIMARY KEY ({', '.join(quote_ident(name) for name in primary_key)})")
    body = ",\n".join(definitions)
    return f"CREATE TABLE {quote_ident(f'{schema}.{table}')} (\n{body}\n);"


class DdlExportService:
    """
    Exports schema definitions through a MetadataRepository.

    With `tables` set only those tables of a single schema are written, each
    under its own header and without the schema statement.
    """

    def __init__(self, repository: MetadataRepository, output_path: Union[str, Path],
                 schemas: Optional[List[str]] = None, tables: Optional[List[str]] = None,
                 default_schema: str = "public"):
        self.repository = repository
        self.output_path = Path(output_path)
        self.schemas = schemas
        self.tables = tables
        self.default_schema = default_schema

    def get_name(self) -> str:
        return f"DDL export to {self.output_path}"

    def validate_config(self) -> bool:
        valid = True
        if self.output_path.exists() and self.output_path.is_dir():
            logger.error(f"[DdlExport] Output path {self.output_path} is a directory")
            valid = False
        if self.tables and self.schemas and len(self.schemas) > 1:
            logger.error("[DdlExport] A table selection needs a single schema")
            valid = False
        return valid

    def run(self) -> int:
        if self.tables:
            schema = self.schemas[0] if self.schemas else self.default_schema
            return self.export_tables(schema, self.tables)
        return self.export(self.schemas)

    def export(self, schemas: Optional[List[str]] = None) -> int:
        """
        Write the DDL of `schemas` (every user schema by default).

        Returns:
            Number of tables exported.
        """
        try:
            schemas = schemas or self.repository.list_schemas()
        except Exception as e:
            raise MetadataError(f"Cannot list schemas: {e}") from e

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        tables = 0
        with open(self.output_path, "w", encoding="utf-8") as out:
            for schema in schemas:
                logger.info(f"[DdlExport] Exporting schema {schema}")
                out.write(f"-- Database: {schema}\n")
                out.write(create_schema_statement(schema) + "\n\n")
                tables += self._write_tables(out, schema, self._tables(schema))

        logger.info(f"[DdlExport] {tables} tables of {len(schemas)} schemas written to {self.output_path}")
        return tables

    def export_tables(self, schema: str, tables: List[str]) -> int:
        """Write the DDL of the given tables of `schema`, in the order given."""
        known = set(self._tables(schema))
        missing = [table for table in tables if table not in known]
        if missing:
            raise MetadataError(f"Tables not found in schema {schema}: {', '.join(missing)}")

        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.output_path, "w", encoding="utf-8") as out:
            count = self._write_tables(out, schema, tables)

        logger.info(f"[DdlExport] {count} tables of {schema} written to {self.output_path}")
        return count

    def _write_tables(self, out, schema: str, tables: List[str]) -> int:
        for table in tables:
            logger.debug(f"[DdlExport] Exporting table {schema}.{table}")
            out.write(f"-- Table: {schema}.{table}\n")
            out.write(self._table_statement(schema, table) + "\n\n")
        return len(tables)

    def _tables(self, schema: str) -> List[str]:
        try:
            return self.repository.list_tables(schema)
        except Exception as e:
            raise MetadataError(f"Cannot list tables of {schema}: {e}") from e

    def _table_statement(self, schema: str, table: str) -> str:
        try:
            columns = self.repository.fetch_columns(schema, table)
            primary_key = self.repository.fetch_primary_key(schema, table)
        except Exception as e:
            raise MetadataError(f"Cannot describe {schema}.{table}: {e}") from e
        return create_table_statement(schema, table, columns, primary_key)
