"""
Row to shard routing.

Routing is a pure function of the row's partition key values and the table
descriptor, so the same row always lands on the same shard. Python's builtin
hash() is salted per process and is therefore not used.
"""
import zlib
from bisect import bisect_right
from typing import Dict, List, Tuple

from ..exceptions import ParseError
from ..schemas import PartitionRule, Row, ShardInfo, TableDescriptor

KEY_SEPARATOR = "\x1f"


def _as_int(value, column: str) -> int:
    if value is None:
        raise ParseError(f"Partition key column '{column}' is NULL")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ParseError(f"Partition key column '{column}' is not an integer: {value!r}")


def shard_ordinal(descriptor: TableDescriptor, row: Row) -> int:
    """Compute the ordinal of the shard that owns `row`."""
    partition_key = descriptor.partition_key
    shard_count = partition_key.shard_count

    if partition_key.rule == PartitionRule.NONE or shard_count == 1:
        return 0

    if len(row) < len(descriptor.fields):
        raise ParseError(f"Row has {len(row)} fields, table {descriptor.name} expects {len(descriptor.fields)}")

    values = [row[position] for position in descriptor.key_positions]

    if partition_key.rule == PartitionRule.HASH:
        key = KEY_SEPARATOR.join("" if value is None else value for value in values)
        return zlib.crc32(key.encode("utf-8")) % shard_count

    if partition_key.rule == PartitionRule.MODULO:
        return _as_int(values[0], partition_key.columns[0]) % shard_count

    if partition_key.rule == PartitionRule.RANGE:
        ordinal = bisect_right(partition_key.range_bounds, _as_int(values[0], partition_key.columns[0]))
        return min(ordinal, shard_count - 1)

    raise ValueError(f"Unsupported partition rule: {partition_key.rule}")


class ShardRouter:
    """Routes rows of one table and groups them per shard."""

    def __init__(self, descriptor: TableDescriptor):
        self.descriptor = descriptor

    def route(self, row: Row) -> ShardInfo:
        return self.descriptor.topology.shard_at(shard_ordinal(self.descriptor, row))

    def group(self, rows: List[Row]) -> Tuple[Dict[ShardInfo, List[Row]], List[Tuple[Row, ParseError]]]:
        """
        Split rows by destination shard, keeping input order within a shard.

        Returns:
            (shard -> rows, rejected rows with the reason they could not be routed)
        """
        groups: Dict[ShardInfo, List[Row]] = {}
        rejected: List[Tuple[Row, ParseError]] = []
        for row in rows:
            try:
                shard = self.route(row)
            except ParseError as e:
                rejected.append((row, e))
                continue
            groups.setdefault(shard, []).append(row)
        return groups, rejected
