"""
Unit tests for the DDL export.
"""
import pytest

from shardload.core.exceptions import MetadataError
from shardload.core.schemas import ColumnMeta
from shardload.core.services.export import DdlExportService
from shardload.core.services.export.service import create_table_statement

from conftest import FakeMetadataRepository


def test_create_table_statement():
    columns = [ColumnMeta("name", 2, True, "varchar(20)"), ColumnMeta("id", 1, False, "integer")]

    statement = create_table_statement("sales", "orders", columns, ["id"])

    assert statement == (
        'CREATE TABLE "sales"."orders" (\n'
        '    "id" integer NOT NULL,\n'
        '    "name" varchar(20),\n'
        '    PRIMARY KEY ("id")\n'
        ");"
    )


def test_export_writes_schemas_then_tables(tmp_path):
    repository = (
        FakeMetadataRepository()
        .add_table("orders", ["id", "total"], pk=["id"], schema="sales")
        .add_table("logs", ["line"], schema="audit")
    )
    output = tmp_path / "out" / "schema.sql"

    count = DdlExportService(repository, output).export()

    assert count == 2
    content = output.read_text()
    assert content.startswith('-- Database: audit\nCREATE SCHEMA IF NOT EXISTS "audit";\n\n')
    assert '-- Table: audit.logs\nCREATE TABLE "audit"."logs" (\n    "line" text\n);\n\n' in content
    assert content.index("-- Database: audit") < content.index("-- Database: sales")
    assert 'PRIMARY KEY ("id")\n);\n\n' in content


def test_export_selected_schemas(tmp_path):
    repository = (
        FakeMetadataRepository()
        .add_table("orders", ["id"], pk=["id"], schema="sales")
        .add_table("logs", ["line"], schema="audit")
    )
    service = DdlExportService(repository, tmp_path / "schema.sql", schemas=["sales"])

    assert service.validate_config()
    assert service.run() == 1
    assert "audit" not in (tmp_path / "schema.sql").read_text()


def test_output_directory_is_invalid(tmp_path):
    assert not DdlExportService(FakeMetadataRepository(), tmp_path).validate_config()


def test_export_selected_tables_without_schema_statement(tmp_path):
    repository = (
        FakeMetadataRepository()
        .add_table("orders", ["id"], pk=["id"], schema="sales")
        .add_table("customers", ["id"], pk=["id"], schema="sales")
        .add_table("refunds", ["id"], pk=["id"], schema="sales")
    )
    output = tmp_path / "tables.sql"
    service = DdlExportService(repository, output, schemas=["sales"], tables=["refunds", "orders"])

    assert service.validate_config()
    assert service.run() == 2
    content = output.read_text()
    assert "-- Database" not in content
    assert "CREATE SCHEMA" not in content
    assert content.startswith('-- Table: sales.refunds\nCREATE TABLE "sales"."refunds"')
    assert "customers" not in content


def test_selected_tables_use_default_schema(tmp_path):
    repository = FakeMetadataRepository().add_table("orders", ["id"], pk=["id"])
    output = tmp_path / "tables.sql"

    assert DdlExportService(repository, output, tables=["orders"]).run() == 1
    assert output.read_text().startswith("-- Table: public.orders\n")


def test_unknown_selected_table_raises(tmp_path):
    repository = FakeMetadataRepository().add_table("orders", ["id"], pk=["id"])

    with pytest.raises(MetadataError, match="ghost"):
        DdlExportService(repository, tmp_path / "t.sql", tables=["orders", "ghost"]).run()


def test_table_selection_across_schemas_is_invalid(tmp_path):
    service = DdlExportService(FakeMetadataRepository(), tmp_path / "t.sql", schemas=["a", "b"], tables=["t"])
    assert not service.validate_config()
