"""Retention policy: ordering and per-category keep/evict partitioning.

Both functions are pure. The partition is a fold over the ordered entries
whose accumulator carries the per-category counts, so no counter outlives a
single call.
"""

from __future__ import annotations

from functools import reduce
from types import MappingProxyType
from typing import Iterable, Mapping, Tuple

from ..categories import Category
from ..errors import DuplicateEntryError
from .records import ArtifactRecord, Catalog

__all__ = ["order_entries", "partition_retained", "apply_publication"]

_Partition = Tuple[Tuple[ArtifactRecord, ...], Tuple[ArtifactRecord, ...], Mapping[Category, int]]


def order_entries(entries: Iterable[ArtifactRecord]) -> Tuple[ArtifactRecord, ...]:
    """Sort newest first; entries with equal timestamps keep their given order."""

    return tuple(sorted(entries, key=lambda record: record.created_at, reverse=True))


def partition_retained(
    ordered: Iterable[ArtifactRecord], keep: int
) -> Tuple[Tuple[ArtifactRecord, ...], Tuple[ArtifactRecord, ...]]:
    """Split ``ordered`` into (retained, evicted), keeping ``keep`` entries per category."""

    if keep < 1:
        raise ValueError("keep must be at least 1")

    def step(acc: _Partition, record: ArtifactRecord) -> _Partition:
        retained, evicted, counts = acc
        seen = counts.get(record.category, 0)
        if seen < keep:
            updated = MappingProxyType({**counts, record.category: seen + 1})
            return retained + (record,), evicted, updated
        return retained, evicted + (record,), counts

    initial: _Partition = ((), (), MappingProxyType({}))
    retained, evicted, _ = reduce(step, ordered, initial)
    return retained, evicted


def apply_publication(
    catalog: Catalog, new_entry: ArtifactRecord, keep: int
) -> Tuple[Catalog, Tuple[ArtifactRecord, ...]]:
    """Add ``new_entry``, re-sort, and apply retention.

    The new entry is placed ahead of existing entries before the stable sort,
    so among equal timestamps the most recently inserted entry ranks first.

    Raises:
        DuplicateEntryError: ``new_entry.name`` is already catalogued.
    """

    if catalog.find(new_entry.name) is not None:
        raise DuplicateEntryError(new_entry.name)
    ordered = order_entries((new_entry, *catalog.entries))
    retained, evicted = partition_retained(ordered, keep)
    return Catalog(retained, extra=catalog.extra), evicted
