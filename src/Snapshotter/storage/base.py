"""Remote object store abstraction used by the uploader and the catalog.

Provides a unified interface over the destinations artifacts are published
to (Google Cloud Storage, a local directory). Uploads go through a multipart
session so that a large artifact can be transferred in independently
acknowledged chunks and resumed after a crash.

NAVMAP:
  - RemoteObjectRef: Handle returned by a successful publish
  - RemoteObjectStore: Protocol defining the store interface
  - Core Methods:
    * Probing: head, session_active
    * Multipart: create_session, upload_part, complete_session
    * Writes: put_bytes
    * Deletes: delete (safe)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple, runtime_checkable

PartTag = Tuple[int, str]


@dataclass(frozen=True)
class RemoteObjectRef:
    """Reference to an object stored remotely.

    Attributes:
        key: Object key relative to the store root; also the deletion key.
        size: Object size in bytes (None if unknown)
        etag: Entity tag reported by the store (None if not supported)
        url: Absolute URL or path of the object
    """

    key: str
    size: Optional[int]
    etag: Optional[str]
    url: str


@runtime_checkable
class RemoteObjectStore(Protocol):
    """Abstract remote object store interface.

    Implementation Notes:
      - ``upload_part`` may be called concurrently from several threads for
        the same session.
      - ``delete`` must ignore missing objects.
      - Errors surface as :class:`~Snapshotter.errors.NetworkError` and never
        include session handles in their message.
    """

    def base_url(self) -> str:
        """Return the base URL or path of the store."""
        ...

    def head(self, key: str) -> Optional[RemoteObjectRef]:
        """Return a reference to ``key`` if it exists, otherwise ``None``."""
        ...

    def create_session(self, key: str) -> str:
        """Negotiate a new multipart session for ``key`` and return its handle."""
        ...

    def session_active(self, session: str) -> bool:
        """Return ``True`` while the remote side still accepts parts for ``session``."""
        ...

    def upload_part(self, session: str, part_number: int, data: bytes) -> str:
        """Upload one part (1-based) and return the tag needed to complete the object."""
        ...

    def complete_session(
        self, session: str, key: str, parts: Sequence[PartTag]
    ) -> RemoteObjectRef:
        """Assemble ``parts`` (ordered by part number) into the final object."""
        ...

    def put_bytes(self, key: str, data: bytes) -> RemoteObjectRef:
        """Write a small object in a single request."""
        ...

    def delete(self, key: str) -> None:
        """Delete ``key``; missing objects are ignored."""
        ...
