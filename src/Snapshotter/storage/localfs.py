# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.storage.localfs",
#   "purpose": "Local filesystem object store with staged multipart sessions.",
#   "sections": [
#     {
#       "id": "localobjectstore",
#       "name": "LocalObjectStore",
#       "anchor": "class-localobjectstore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Local filesystem implementation of :class:`RemoteObjectStore`.

Parts of a multipart session are staged under ``<root>/.multipart/<id>/``
and concatenated into the destination on completion. The final object is
written through a temporary file and an atomic rename, so ``head`` never
reports a half-assembled object.
"""

from __future__ import annotations

import hashlib
import os
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from ..errors import NetworkError
from ..io_safe import atomic_write_bytes, fsync_directory
from .base import PartTag, RemoteObjectRef, RemoteObjectStore

_SESSION_SCHEME = "local-multipart://"
_STAGING_DIR = ".multipart"


@dataclass(frozen=True)
class LocalObjectStore(RemoteObjectStore):
    """Object store rooted at a local directory.

    Attributes:
        root: Root directory for stored objects
    """

    root: Path

    def base_url(self) -> str:
        return str(self.root.resolve())

    def _abs(self, rel: str) -> Path:
        """Convert an object key to an absolute path, rejecting traversal."""
        if rel.startswith("/") or ".." in Path(rel).parts or "\\" in rel or not rel:
            raise ValueError(f"unsafe storage key: {rel}")
        return (self.root / Path(rel)).resolve()

    def _staging(self, session: str) -> Path:
        if not session.startswith(_SESSION_SCHEME):
            raise NetworkError("unrecognised upload session handle")
        session_id = session[len(_SESSION_SCHEME):]
        if not session_id.isalnum():
            raise NetworkError("unrecognised upload session handle")
        return self.root / _STAGING_DIR / session_id

    def _ref(self, key: str, path: Path) -> RemoteObjectRef:
        st = path.stat()
        return RemoteObjectRef(
            key=key, size=st.st_size, etag=f"{st.st_mtime_ns:x}-{st.st_size:x}", url=str(path)
        )

    def head(self, key: str) -> Optional[RemoteObjectRef]:
        path = self._abs(key)
        if not path.is_file():
            return None
        return self._ref(key, path)

    def create_session(self, key: str) -> str:
        self._abs(key)
        session_id = uuid.uuid4().hex
        staging = self.root / _STAGING_DIR / session_id
        staging.mkdir(parents=True, exist_ok=False)
        (staging / "KEY").write_text(key, encoding="utf-8")
        return f"{_SESSION_SCHEME}{session_id}"

    def session_active(self, session: str) -> bool:
        try:
            return self._staging(session).is_dir()
        except NetworkError:
            return False

    def upload_part(self, session: str, part_number: int, data: bytes) -> str:
        staging = self._staging(session)
        if not staging.is_dir():
            raise NetworkError("upload session no longer exists", status_code=404)
        try:
            atomic_write_bytes(staging / f"{part_number:05d}.part", data)
        except OSError as exc:
            raise NetworkError(f"failed to store part {part_number}: {exc}") from exc
        return hashlib.md5(data).hexdigest()

    def complete_session(
        self, session: str, key: str, parts: Sequence[PartTag]
    ) -> RemoteObjectRef:
        staging = self._staging(session)
        if not staging.is_dir():
            raise NetworkError("upload session no longer exists", status_code=404)
        dest = self._abs(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + f".tmp-{os.getpid()}")
        try:
            with tmp.open("wb") as wf:
                for part_number, tag in sorted(parts):
                    part_path = staging / f"{part_number:05d}.part"
                    data = part_path.read_bytes()
                    if hashlib.md5(data).hexdigest() != tag:
                        raise NetworkError(f"part {part_number} does not match its tag")
                    wf.write(data)
                wf.flush()
                os.fsync(wf.fileno())
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise NetworkError(f"failed to assemble {key}: {exc}") from exc
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        os.replace(tmp, dest)
        fsync_directory(dest.parent)
        shutil.rmtree(staging, ignore_errors=True)
        return self._ref(key, dest)

    def put_bytes(self, key: str, data: bytes) -> RemoteObjectRef:
        dest = self._abs(key)
        try:
            atomic_write_bytes(dest, data)
        except OSError as exc:
            raise NetworkError(f"failed to write {key}: {exc}") from exc
        return self._ref(key, dest)

    def delete(self, key: str) -> None:
        path = self._abs(key)
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            raise NetworkError(f"failed to delete {key}: {exc}") from exc
