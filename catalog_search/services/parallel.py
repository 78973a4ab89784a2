"""Partitioned parallel map used by the batch build passes.

Products are split into fixed-size partitions; each partition is evaluated
independently and returns its own partial result, so no state is shared
while workers run. Callers merge the partial results afterwards.
"""
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def partition(items: Sequence[T], size: int) -> List[Sequence[T]]:
    """Split a sequence into consecutive chunks of at most ``size`` items."""
    if size < 1:
        raise ValueError("partition size must be >= 1")
    return [items[i:i + size] for i in range(0, len(items), size)]


def map_partitions(
    fn: Callable[[Sequence[T]], R],
    items: Iterable[T],
    workers: int,
    partition_size: int,
) -> List[R]:
    """Apply ``fn`` to every partition of ``items``.

    Results are returned in partition order, which keeps merged output
    deterministic regardless of scheduling.
    """
    materialized = items if isinstance(items, Sequence) else list(items)
    chunks = partition(materialized, partition_size)
    if workers <= 1 or len(chunks) <= 1:
        return [fn(chunk) for chunk in chunks]
    with ThreadPoolExecutor(max_workers=workers) as executor:
        return list(executor.map(fn, chunks))
