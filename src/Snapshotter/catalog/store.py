# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.catalog.store",
#   "purpose": "Persist the catalog document and apply retention with commit-before-delete ordering",
#   "sections": [
#     {
#       "id": "evictionfailure",
#       "name": "EvictionFailure",
#       "anchor": "class-evictionfailure",
#       "kind": "class"
#     },
#     {
#       "id": "catalogstore",
#       "name": "CatalogStore",
#       "anchor": "class-catalogstore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Catalog store.

Responsibilities:
- Load the catalog document, degrading to an empty catalog when it is
  missing or corrupt
- Serialise writers (thread lock plus a :mod:`filelock` lock beside the
  document)
- Commit the new document atomically **before** deleting any evicted
  artifact, so the catalog never references a deleted object
- Delete evicted local and remote copies best-effort; failures are logged
  and leave an orphan for external cleanup
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from filelock import FileLock, Timeout

from ..errors import ArtifactIOError, SnapshotterError, StateCorruption
from ..io_safe import atomic_write_bytes
from ..storage.base import RemoteObjectStore
from .records import ArtifactRecord, Catalog
from .retention import apply_publication

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 30.0


@dataclass
class EvictionFailure:
    """Deletion that failed for an evicted artifact."""

    record: ArtifactRecord
    target: str
    error: str


@dataclass
class PublicationRecorded:
    """Result of :meth:`CatalogStore.record_publication`."""

    catalog: Catalog
    evicted: Tuple[ArtifactRecord, ...]
    failures: List[EvictionFailure] = field(default_factory=list)

    def __iter__(self):
        # Unpacks as ``(catalog, evicted)``.
        yield self.catalog
        yield self.evicted


class CatalogStore:
    """Single-writer owner of the catalog document.

    Args:
        path: Catalog document path.
        keep: Artifacts retained per category.
        artifact_dir: Directory holding local artifact copies (defaults to the
            document's directory).
        remote: Object store holding published artifacts; also receives the
            mirrored document when ``mirror_key`` is set.
        mirror_key: Remote key of the mirrored catalog document.
        lock_timeout: Seconds to wait for the writer lock.
    """

    def __init__(
        self,
        path: Path,
        *,
        keep: int,
        artifact_dir: Optional[Path] = None,
        remote: Optional[RemoteObjectStore] = None,
        mirror_key: Optional[str] = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ) -> None:
        if keep < 1:
            raise ValueError("keep must be at least 1")
        self.path = Path(path)
        self.keep = keep
        self.artifact_dir = Path(artifact_dir) if artifact_dir is not None else self.path.parent
        self.remote = remote
        self.mirror_key = mirror_key
        self._thread_lock = threading.Lock()
        self._file_lock = FileLock(str(self.path.with_name(self.path.name + ".lock")))
        self._lock_timeout = lock_timeout

    def load(self) -> Catalog:
        """Return the persisted catalog, or an empty one if absent or corrupt."""

        return load_catalog(self.path)

    def record_publication(self, new_entry: ArtifactRecord) -> PublicationRecorded:
        """Append ``new_entry``, enforce retention, persist, then delete evictions.

        Raises:
            DuplicateEntryError: The name is already catalogued; nothing changes.
            ArtifactIOError: The document could not be written or locked.
        """

        with self._thread_lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._file_lock.acquire(timeout=self._lock_timeout)
            except Timeout as exc:
                raise ArtifactIOError(f"catalog {self.path.name} is locked by another writer") from exc
            except OSError as exc:
                raise ArtifactIOError(f"cannot lock catalog {self.path.name}: {exc}") from exc
            try:
                current = self.load()
                updated, evicted = apply_publication(current, new_entry, self.keep)
                self._persist(updated)
            finally:
                self._file_lock.release()

        logger.info(
            "catalog updated",
            extra={
                "stage": "catalog",
                "category": new_entry.category.value,
                "artifact": new_entry.name,
                "entries": len(updated),
                "evicted": [record.name for record in evicted],
            },
        )
        failures: List[EvictionFailure] = []
        for record in evicted:
            failures.extend(self._delete_artifact(record))
        return PublicationRecorded(catalog=updated, evicted=evicted, failures=failures)

    def _persist(self, catalog: Catalog) -> None:
        data = catalog.dumps().encode("utf-8")
        try:
            atomic_write_bytes(self.path, data)
        except OSError as exc:
            raise ArtifactIOError(f"cannot write catalog {self.path.name}: {exc}") from exc

        if self.remote is not None and self.mirror_key:
            try:
                self.remote.put_bytes(self.mirror_key, data)
            except SnapshotterError as exc:
                logger.warning(
                    "failed to mirror catalog to remote store",
                    extra={"stage": "catalog", "key": self.mirror_key, "error": str(exc)},
                )

    def _delete_artifact(self, record: ArtifactRecord) -> List[EvictionFailure]:
        failures: List[EvictionFailure] = []
        local = self.artifact_dir / record.name
        try:
            local.unlink(missing_ok=True)
        except OSError as exc:
            failures.append(EvictionFailure(record, str(local), str(exc)))

        if self.remote is not None:
            try:
                self.remote.delete(record.remote_key)
            except (SnapshotterError, ValueError) as exc:
                failures.append(EvictionFailure(record, record.remote_key, str(exc)))

        for failure in failures:
            logger.warning(
                "failed to delete evicted artifact; leaving orphan",
                extra={
                    "stage": "evict",
                    "category": record.category.value,
                    "artifact": record.name,
                    "target": failure.target,
                    "error": failure.error,
                },
            )
        if not failures:
            logger.info(
                "evicted artifact deleted",
                extra={"stage": "evict", "category": record.category.value, "artifact": record.name},
            )
        return failures


def load_catalog(path: Path) -> Catalog:
    """Read the catalog at ``path``; missing or corrupt documents yield an empty catalog."""

    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return Catalog()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning(
            "catalog unreadable; treating as empty",
            extra={"stage": "catalog", "error": str(exc)},
        )
        return Catalog()
    try:
        return Catalog.loads(text)
    except StateCorruption as exc:
        logger.warning(
            "catalog corrupt; treating as empty",
            extra={"stage": "catalog", "error": str(exc)},
        )
        return Catalog()
