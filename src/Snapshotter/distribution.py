"""Read-only access to the catalog and local artifact copies.

The service never takes the catalog writer lock. Catalog writes replace the
whole document atomically, so a reader observes either the state before a
publication or the state after it.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterator, Optional

from .catalog.records import Catalog
from .catalog.store import load_catalog
from .errors import ArtifactNotFoundError

__all__ = ["DistributionService"]

STREAM_CHUNK_SIZE = 1 << 20


class DistributionService:
    """Serve the current catalog and artifact files from ``artifact_dir``."""

    def __init__(self, artifact_dir: Path, *, catalog_path: Optional[Path] = None) -> None:
        self.artifact_dir = Path(artifact_dir)
        self.catalog_path = Path(catalog_path) if catalog_path else self.artifact_dir / "metadata.json"

    def list(self) -> Catalog:
        """Return the current catalog; empty when the document is absent or malformed."""

        return load_catalog(self.catalog_path)

    def fetch(self, name: str) -> Path:
        """Return the local path of artifact ``name``.

        Raises:
            ArtifactNotFoundError: No local file matches, or ``name`` is not a
                plain file name inside the artifact directory.
        """

        if not name or name.startswith(".") or "/" in name or "\\" in name or "\x00" in name:
            raise ArtifactNotFoundError(name)
        path = self.artifact_dir / name
        if path.resolve().parent != self.artifact_dir.resolve():
            raise ArtifactNotFoundError(name)
        if name in {self.catalog_path.name, self.catalog_path.name + ".lock"}:
            raise ArtifactNotFoundError(name)
        if not path.is_file():
            raise ArtifactNotFoundError(name)
        return path

    def open(self, name: str) -> Iterator[bytes]:
        """Stream the whole content of artifact ``name``."""

        path = self.fetch(name)
        try:
            stream = path.open("rb")
        except FileNotFoundError as exc:
            raise ArtifactNotFoundError(name) from exc

        def _iter() -> Iterator[bytes]:
            with stream:
                for chunk in iter(lambda: stream.read(STREAM_CHUNK_SIZE), b""):
                    yield chunk

        return _iter()
