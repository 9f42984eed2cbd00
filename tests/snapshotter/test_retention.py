"""Retention ordering and partition tests, including property-based checks."""

from __future__ import annotations

import hashlib
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from Snapshotter.catalog.records import ArtifactRecord, Catalog
from Snapshotter.catalog.retention import apply_publication, order_entries, partition_retained
from Snapshotter.categories import Category
from Snapshotter.errors import DuplicateEntryError

BASE_TIME = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _record(name: str, category: Category, minutes: int) -> ArtifactRecord:
    return ArtifactRecord(
        name=name,
        content_hash=hashlib.sha256(name.encode()).hexdigest(),
        category=category,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )


def test_order_is_newest_first(make_entry) -> None:
    entries = [make_entry("a", minutes=1), make_entry("b", minutes=3), make_entry("c", minutes=2)]

    assert [e.name for e in order_entries(entries)] == ["b", "c", "a"]


def test_equal_timestamps_keep_given_order(make_entry) -> None:
    entries = [make_entry("first"), make_entry("second"), make_entry("third")]

    assert [e.name for e in order_entries(entries)] == ["first", "second", "third"]


def test_partition_keeps_per_category(make_entry) -> None:
    ordered = order_entries(
        [
            make_entry("b1", Category.BEACOND, 5),
            make_entry("r1", Category.RETH, 4),
            make_entry("b2", Category.BEACOND, 3),
            make_entry("r2", Category.RETH, 2),
            make_entry("b3", Category.BEACOND, 1),
        ]
    )

    retained, evicted = partition_retained(ordered, keep=2)

    assert [e.name for e in retained] == ["b1", "r1", "b2", "r2"]
    assert [e.name for e in evicted] == ["b3"]


def test_partition_rejects_non_positive_keep() -> None:
    with pytest.raises(ValueError):
        partition_retained((), keep=0)


def test_duplicate_name_is_rejected(make_entry) -> None:
    catalog = Catalog((make_entry("a.tar.lz4"),))

    with pytest.raises(DuplicateEntryError):
        apply_publication(catalog, make_entry("a.tar.lz4", minutes=10), keep=3)


def test_new_entry_wins_timestamp_tie(make_entry) -> None:
    """Among equal timestamps the later insertion ranks first and survives keep=1."""

    catalog = Catalog((make_entry("old"),))
    updated, evicted = apply_publication(catalog, make_entry("new"), keep=1)

    assert [e.name for e in updated] == ["new"]
    assert [e.name for e in evicted] == ["old"]


_publications = st.lists(
    st.tuples(st.sampled_from(list(Category)), st.integers(min_value=0, max_value=50)),
    min_size=1,
    max_size=30,
)


@settings(max_examples=75, deadline=None)
@given(publications=_publications, keep=st.integers(min_value=1, max_value=4))
def test_retention_bound_holds_after_every_publication(publications, keep) -> None:
    """Every mutation leaves a sorted catalog with at most ``keep`` entries per category."""

    catalog = Catalog()
    for index, (category, minutes) in enumerate(publications):
        entry = _record(f"artifact-{index}", category, minutes)
        catalog, evicted = apply_publication(catalog, entry, keep)

        counts = Counter(e.category for e in catalog)
        assert all(count <= keep for count in counts.values())
        stamps = [e.created_at for e in catalog]
        assert stamps == sorted(stamps, reverse=True)
        assert not {e.name for e in evicted} & {e.name for e in catalog}


@settings(max_examples=50, deadline=None)
@given(publications=_publications, keep=st.integers(min_value=1, max_value=4))
def test_partition_is_lossless(publications, keep) -> None:
    entries = [
        _record(f"n{index}", category, minutes) for index, (category, minutes) in enumerate(publications)
    ]
    ordered = order_entries(entries)

    retained, evicted = partition_retained(ordered, keep)

    assert sorted(e.name for e in retained + evicted) == sorted(e.name for e in entries)
