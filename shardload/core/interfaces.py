from typing import Protocol, Optional, Any, List, Sequence

from .schemas import ColumnMeta, PartitionKeyDescriptor, Row, ShardInfo, TableDescriptor
from ..setup.config.models import WriteOperation


class Job(Protocol):
    """A unit of work the orchestrator can time and run."""

    def run(self) -> Optional[Any]:
        ...

    def validate_config(self) -> bool:
        ...

    def get_name(self) -> str:
        ...


class ShardWriter(Protocol):
    """Database boundary for row-batch writes."""

    def write(self, shard: ShardInfo, table: TableDescriptor,
              operation: WriteOperation, rows: Sequence[Row]) -> int:
        """Apply one batched statement on a shard; returns rows affected or sent."""
        ...


class MetadataRepository(Protocol):
    """Database boundary for read-only metadata queries."""

    def fetch_primary_key(self, schema: str, table: str) -> List[str]:
        ...

    def fetch_columns(self, schema: str, table: str) -> List[ColumnMeta]:
        ...

    def fetch_topology(self, table: str) -> List[ShardInfo]:
        ...

    def fetch_partition_key(self, table: str) -> Optional[PartitionKeyDescriptor]:
        ...

    def list_schemas(self) -> List[str]:
        ...

    def list_tables(self, schema: str) -> List[str]:
        ...
