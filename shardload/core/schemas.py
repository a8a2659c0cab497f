from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple

from ..setup.config.models import WriteOperation

Row = Tuple[Optional[str], ...]


@dataclass(frozen=True, order=True)
class Position:
    """A (file, block) resume position. Orders file-major, block-minor."""
    file_index: int
    block_index: int

    def __str__(self) -> str:
        return f"({self.file_index}, {self.block_index})"


@dataclass
class BatchEvent:
    """
    One block of parsed rows travelling through the event channel.

    The sequence number is assigned by the channel when the event is
    published; producers leave it at -1.
    """
    file_id: int
    block_id: int
    table: str
    rows: List[Row]
    sequence: int = -1

    @property
    def position(self) -> Position:
        return Position(self.file_id, self.block_id)

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class PrimaryKeyDescriptor:
    columns: Tuple[str, ...]

    def __bool__(self) -> bool:
        return bool(self.columns)


@dataclass(frozen=True)
class ColumnMeta:
    name: str
    ordinal: int
    nullable: bool = True
    data_type: str = "text"


@dataclass(frozen=True)
class FieldMetaInfo:
    """Ordered columns matching the field order of the input files."""
    columns: Tuple[ColumnMeta, ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def index_of(self, name: str) -> int:
        for index, column in enumerate(self.columns):
            if column.name == name:
                return index
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self.columns)


class PartitionRule(str, Enum):
    """How a row's partition key values pick a shard."""
    NONE = "none"        # single shard, or every shard holds the full table
    HASH = "hash"        # crc32 of the key values modulo shard count
    MODULO = "modulo"    # integer key value modulo shard count
    RANGE = "range"      # first shard whose upper bound exceeds the key value


@dataclass(frozen=True)
class PartitionKeyDescriptor:
    columns: Tuple[str, ...]
    rule: PartitionRule
    shard_count: int
    # RANGE only: exclusive upper bounds, one per shard except the last
    range_bounds: Tuple[int, ...] = ()


@dataclass(frozen=True)
class ShardInfo:
    shard_id: str
    ordinal: int
    connection_name: str
    physical_table: str


@dataclass(frozen=True)
class TopologyDescriptor:
    logical_table: str
    shards: Tuple[ShardInfo, ...]

    def shard_at(self, ordinal: int) -> ShardInfo:
        return self.shards[ordinal]

    def __len__(self) -> int:
        return len(self.shards)


@dataclass(frozen=True)
class TableDescriptor:
    """Everything the consumers need to route and write rows of one table."""
    name: str
    primary_key: PrimaryKeyDescriptor
    fields: FieldMetaInfo
    topology: TopologyDescriptor
    partition_key: PartitionKeyDescriptor
    key_positions: Tuple[int, ...] = field(default=())

    @classmethod
    def build(cls, name: str, primary_key: PrimaryKeyDescriptor, fields: FieldMetaInfo,
              topology: TopologyDescriptor, partition_key: PartitionKeyDescriptor) -> "TableDescriptor":
        positions = tuple(fields.index_of(column) for column in partition_key.columns)
        return cls(name, primary_key, fields, topology, partition_key, positions)


@dataclass
class ProducerContext:
    """
    Producer side of a run. Immutable after start except the resume cursor,
    which only the progress tracker moves.
    """
    files: List[str]
    block_size: int
    separator: str
    encoding: str = "utf-8"
    has_header: bool = False
    null_value: Optional[str] = "\\N"
    parse_error_policy: str = "skip"
    next_file_index: int = 0
    next_block_index: int = 0

    def __post_init__(self):
        if len(self.separator) != 1:
            raise ValueError("Separator must be exactly one character")
        if self.block_size <= 0:
            raise ValueError("Block size must be positive")

    @property
    def resume_position(self) -> Position:
        return Position(self.next_file_index, self.next_block_index)


@dataclass
class ConsumerContext:
    """Consumer side of a run. Descriptors are filled once before workers start."""
    tables: List[str]
    operation: WriteOperation = WriteOperation.INSERT
    batch_size: int = 500
    max_retries: int = 3
    retry_min_wait_seconds: float = 0.5
    retry_max_wait_seconds: float = 10.0
    columns: Optional[List[str]] = None
    descriptors: Dict[str, TableDescriptor] = field(default_factory=dict)

    def descriptor(self, table: str) -> TableDescriptor:
        return self.descriptors[table]
