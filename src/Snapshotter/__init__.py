"""Periodic node data snapshots with resumable uploads and a bounded catalog.

The publication pipeline archives each configured category, streams the
archive to an object store in resumable chunks, and records it in a catalog
that keeps a fixed number of artifacts per category.
"""

from __future__ import annotations

__version__ = "0.3.0"

from .catalog import ArtifactRecord, Catalog, CatalogStore
from .categories import Category
from .distribution import DistributionService
from .errors import SnapshotterError
from .pipeline import PipelineReport, run_publication
from .settings import RunConfiguration, build_run_configuration, load_settings
from .upload import ChunkedUploader, PublishResult

__all__ = [
    "__version__",
    "ArtifactRecord",
    "Catalog",
    "CatalogStore",
    "Category",
    "ChunkedUploader",
    "DistributionService",
    "PipelineReport",
    "PublishResult",
    "RunConfiguration",
    "SnapshotterError",
    "build_run_configuration",
    "load_settings",
    "run_publication",
]
