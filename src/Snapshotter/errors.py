"""Exception hierarchy shared across archiving, upload, and catalog publication.

A publication run spans configuration parsing, local archive construction,
chunked network transfer, and catalog mutation. This module groups those
failure modes into a small hierarchy so caller code can react to high-level
categories (for example, resumable network failures vs. corrupt local state)
while still having access to specialised subclasses when finer-grained
handling is required.
"""

from __future__ import annotations

from typing import Optional

__all__ = [
    "SnapshotterError",
    "ConfigError",
    "ArtifactIOError",
    "NetworkError",
    "StateCorruption",
    "DuplicateEntryError",
    "ArtifactNotFoundError",
    "PublicationCancelled",
    "PublicationFailure",
    "ServiceControlError",
]


class SnapshotterError(RuntimeError):
    """Base exception for archive, upload, and catalog failures."""


class ConfigError(SnapshotterError):
    """Raised when destination, retention, or schedule settings are missing or invalid."""


class ArtifactIOError(SnapshotterError):
    """Raised when reading or writing local files fails.

    The current run is aborted; the next scheduled run may retry safely.
    """


class NetworkError(SnapshotterError):
    """Raised when a remote transfer or session negotiation fails."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StateCorruption(SnapshotterError):
    """Raised when a catalog or upload-session document cannot be parsed.

    Loaders catch this and degrade to an empty catalog or a fresh session.
    """


class DuplicateEntryError(SnapshotterError):
    """Raised when a catalog append collides with an existing artifact name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"catalog already contains an artifact named {name!r}")
        self.name = name


class ArtifactNotFoundError(SnapshotterError):
    """Raised when a requested artifact has no local copy."""

    def __init__(self, name: str) -> None:
        super().__init__(f"artifact {name!r} not found")
        self.name = name


class PublicationCancelled(SnapshotterError):
    """Raised when a shutdown request stops an upload between chunks."""


class ServiceControlError(SnapshotterError):
    """Raised when the node service cannot be paused or resumed."""


class PublicationFailure(SnapshotterError):
    """Failure of one category's publication, annotated with where it happened.

    Attributes:
        category: Category value whose publication failed.
        stage: Pipeline stage (``archive``, ``upload``, ``catalog``).
        cause: Underlying exception.
    """

    def __init__(self, category: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"{category}: {stage} failed: {type(cause).__name__}: {cause}")
        self.category = category
        self.stage = stage
        self.cause = cause
# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.errors",
#   "purpose": "Define the exception hierarchy used across archiving, upload, and catalog publication",
#   "sections": [
#     {"id": "base", "name": "Base Exceptions", "anchor": "BAS", "kind": "api"},
#     {"id": "state", "name": "State & Catalog Errors", "anchor": "STA", "kind": "api"},
#     {"id": "pipeline", "name": "Pipeline Failures", "anchor": "PIP", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
