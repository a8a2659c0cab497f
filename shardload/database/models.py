"""
Shard catalog tables, kept on the coordinator database.

shard_topology lists the physical shards of each logical table;
shard_partition_key says how rows of a logical table pick their shard.
"""
from sqlalchemy import Column, Integer, String, Text, UniqueConstraint
from sqlalchemy.ext.declarative import declarative_base

CatalogBase = declarative_base()


class ShardTopology(CatalogBase):
    __tablename__ = "shard_topology"
    __table_args__ = (
        UniqueConstraint("logical_table", "ordinal", name="uq_shard_topology_ordinal"),
    )

    logical_table = Column(String(200), primary_key=True)
    shard_id = Column(String(200), primary_key=True)
    ordinal = Column(Integer, nullable=False)
    # Key of DatabaseConfig.shard_dsns; empty means the coordinator itself
    connection_name = Column(String(200), nullable=False, default="")
    physical_table = Column(String(200), nullable=False)

    def __repr__(self):
        return (
            f"ShardTopology(logical_table={self.logical_table}, shard_id={self.shard_id}, "
            f"ordinal={self.ordinal})"
        )


class ShardPartitionKey(CatalogBase):
    __tablename__ = "shard_partition_key"

    logical_table = Column(String(200), primary_key=True)
    # Comma separated, in key order
    key_columns = Column(Text, nullable=False, default="")
    rule = Column(String(20), nullable=False, default="hash")
    shard_count = Column(Integer, nullable=False)
    # RANGE only: comma separated ascending exclusive upper bounds
    range_bounds = Column(Text, nullable=True)

    def __repr__(self):
        return f"ShardPartitionKey(logical_table={self.logical_table}, rule={self.rule})"
