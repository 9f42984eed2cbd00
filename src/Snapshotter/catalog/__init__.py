"""Catalog of published artifacts and its retention policy."""

from .records import ArtifactRecord, Catalog, format_timestamp, parse_timestamp
from .retention import apply_publication, order_entries, partition_retained
from .store import CatalogStore, EvictionFailure, PublicationRecorded, load_catalog

__all__ = [
    "ArtifactRecord",
    "Catalog",
    "CatalogStore",
    "EvictionFailure",
    "PublicationRecorded",
    "apply_publication",
    "format_timestamp",
    "load_catalog",
    "order_entries",
    "parse_timestamp",
    "partition_retained",
]
