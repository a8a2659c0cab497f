"""
Unit tests for metadata resolution.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, Mock

import pytest
import sqlalchemy.exc

from shardload.core.exceptions import MetadataError
from shardload.core.schemas import ColumnMeta, PartitionKeyDescriptor, PartitionRule, ShardInfo
from shardload.core.services.metadata import MetadataResolver, SqlMetadataRepository, table_for_file
from shardload.core.services.metadata.repository import column_type
from shardload.setup.config import WriteOperation

from conftest import FakeMetadataRepository


@pytest.fixture
def repository():
    return FakeMetadataRepository().add_table(
        "orders", ["id", "customer", "amount"], pk=["id"], shard_count=4, rule=PartitionRule.HASH
    )


class TestMetadataResolver:
    def test_resolves_full_descriptor(self, repository):
        descriptors = MetadataResolver(repository).resolve(["orders"])
        descriptor = descriptors["orders"]

        assert descriptor.primary_key.columns == ("id",)
        assert descriptor.fields.names == ("id", "customer", "amount")
        assert len(descriptor.topology) == 4
        assert descriptor.partition_key.rule == PartitionRule.HASH
        assert descriptor.key_positions == (0,)

    def test_explicit_columns_narrow_and_reorder_fields(self, repository):
        descriptor = MetadataResolver(repository).resolve(["orders"], columns=["amount", "id"])["orders"]

        assert descriptor.fields.names == ("amount", "id")
        assert descriptor.key_positions == (1,)

    def test_unknown_column_raises(self, repository):
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve(["orders"], columns=["id", "nope"])

    def test_missing_table_raises(self, repository):
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve(["orders", "ghost"])

    def test_update_requires_primary_key(self):
        repository = FakeMetadataRepository().add_table("logs", ["ts", "line"], pk=[])
        resolver = MetadataResolver(repository)

        assert resolver.resolve(["logs"], operation=WriteOperation.INSERT)
        with pytest.raises(MetadataError):
            resolver.resolve(["logs"], operation=WriteOperation.DELETE)

    def test_update_needs_non_key_columns(self, repository):
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve(["orders"], columns=["id"], operation=WriteOperation.UPDATE)

    def test_unsharded_table_defaults_to_single_shard(self):
        repository = FakeMetadataRepository()
        repository.tables["plain"] = {"columns": [ColumnMeta("id", 1)], "pk": ["id"], "shards": []}

        descriptor = MetadataResolver(repository).resolve(["plain"])["plain"]

        assert len(descriptor.topology) == 1
        assert descriptor.topology.shard_at(0).physical_table == "plain"
        assert descriptor.partition_key.rule == PartitionRule.NONE

    def test_shard_count_mismatch_raises(self, repository):
        entry = repository.tables["orders"]
        entry["partition_key"] = PartitionKeyDescriptor(("id",), PartitionRule.HASH, 3)
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve(["orders"])

    def test_sharded_table_without_partition_key_raises(self, repository):
        repository.tables["orders"]["partition_key"] = None
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve(["orders"])

    def test_range_bounds_validated(self):
        repository = FakeMetadataRepository().add_table(
            "events", ["id", "v"], pk=["id"], shard_count=3, rule=PartitionRule.RANGE, range_bounds=(10,)
        )
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve(["events"])

    def test_gap_in_shard_ordinals_raises(self, repository):
        shards = repository.tables["orders"]["shards"]
        shards[3] = ShardInfo("orders_9", 9, "shard9", "orders_9")
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve(["orders"])

    def test_repository_errors_become_metadata_errors(self):
        repository = Mock()
        repository.fetch_primary_key.side_effect = RuntimeError("connection refused")
        with pytest.raises(MetadataError, match="connection refused"):
            MetadataResolver(repository).resolve(["orders"])

    def test_no_tables(self, repository):
        with pytest.raises(MetadataError):
            MetadataResolver(repository).resolve([])


class TestTableForFile:
    def test_single_table_takes_every_file(self):
        assert table_for_file("/data/whatever.csv", ["orders"]) == "orders"

    def test_stem_selects_table(self):
        assert table_for_file("/data/customers.part1.csv", ["orders", "customers"]) == "customers"

    def test_unmatched_file_raises(self):
        with pytest.raises(MetadataError):
            table_for_file("/data/items.csv", ["orders", "customers"])


class TestSqlMetadataRepository:
    """Query mapping, with the engine mocked out."""

    def _repository(self, results, catalog=True):
        conn = MagicMock()
        conn.execute.side_effect = [iter(rows) for rows in results]
        engine = MagicMock()
        engine.connect.return_value.__enter__.return_value = conn
        repository = SqlMetadataRepository(SimpleNamespace(engine=engine))
        repository._catalog_available = catalog
        return repository, conn

    def test_fetch_columns(self):
        rows = [
            SimpleNamespace(column_name="id", ordinal_position=1, is_nullable="NO", data_type="integer",
                            character_maximum_length=None, numeric_precision=32, numeric_scale=0),
            SimpleNamespace(column_name="name", ordinal_position=2, is_nullable="YES",
                            data_type="character varying", character_maximum_length=80,
                            numeric_precision=None, numeric_scale=None),
        ]
        repository, _ = self._repository([rows])

        columns = repository.fetch_columns("public", "orders")

        assert columns == [
            ColumnMeta("id", 1, False, "integer"),
            ColumnMeta("name", 2, True, "character varying(80)"),
        ]

    def test_fetch_partition_key(self):
        rows = [SimpleNamespace(key_columns="region, id", rule="RANGE", shard_count=3, range_bounds="10,20")]
        repository, _ = self._repository([rows])

        partition_key = repository.fetch_partition_key("orders")

        assert partition_key == PartitionKeyDescriptor(("region", "id"), PartitionRule.RANGE, 3, (10, 20))

    def test_invalid_rule_raises(self):
        rows = [SimpleNamespace(key_columns="id", rule="random", shard_count=3, range_bounds=None)]
        repository, _ = self._repository([rows])
        with pytest.raises(MetadataError):
            repository.fetch_partition_key("orders")

    def test_missing_catalog_means_unsharded(self):
        repository, conn = self._repository([], catalog=False)

        assert repository.fetch_topology("orders") == []
        assert repository.fetch_partition_key("orders") is None
        conn.execute.assert_not_called()

    def test_database_errors_propagate(self):
        repository, conn = self._repository([])
        conn.execute.side_effect = sqlalchemy.exc.OperationalError("SELECT", {}, Exception("down"))
        with pytest.raises(sqlalchemy.exc.OperationalError):
            repository.fetch_primary_key("public", "orders")


def test_column_type():
    assert column_type("numeric", None, 12, 2) == "numeric(12,2)"
    assert column_type("text", None, None, None) == "text"
