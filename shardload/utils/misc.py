from os import cpu_count
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def get_max_workers() -> int:
    """
    Gets the default number of worker threads based on the number of CPU cores.

    One core is left free for the producer pool and the progress tracker.

    Returns:
        int: The number of workers, never less than 1.
    """
    num_cores = cpu_count() or 1
    return max(num_cores - 1, 1)


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    """Split a sequence into consecutive chunks of at most `size` items."""
    if size <= 0:
        raise ValueError("Chunk size must be positive")
    return [items[i:i + size] for i in range(0, len(items), size)]


def quote_ident(name: str) -> str:
    """Quote a (possibly schema-qualified) SQL identifier."""
    parts = name.split(".")
    return ".".join('"' + part.replace('"', '""') + '"' for part in parts)

