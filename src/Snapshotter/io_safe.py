# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.io_safe",
#   "purpose": "Filesystem safety helpers: filename sanitisation, hashing, atomic replacement",
#   "sections": [
#     {
#       "id": "sanitize-filename",
#       "name": "sanitize_filename",
#       "anchor": "function-sanitize-filename",
#       "kind": "function"
#     },
#     {
#       "id": "generate-correlation-id",
#       "name": "generate_correlation_id",
#       "anchor": "function-generate-correlation-id",
#       "kind": "function"
#     },
#     {
#       "id": "sha256-file",
#       "name": "sha256_file",
#       "anchor": "function-sha256-file",
#       "kind": "function"
#     },
#     {
#       "id": "atomic-write-bytes",
#       "name": "atomic_write_bytes",
#       "anchor": "function-atomic-write-bytes",
#       "kind": "function"
#     },
#     {
#       "id": "atomic-write-json",
#       "name": "atomic_write_json",
#       "anchor": "function-atomic-write-json",
#       "kind": "function"
#     }
#   ]
# }
# === /NAVMAP ===

"""Filesystem safety utilities shared by the catalog, sessions, and storage."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import uuid
from pathlib import Path
from typing import Any, Optional

__all__ = [
    "sanitize_filename",
    "generate_correlation_id",
    "sha256_file",
    "hash_prefix",
    "atomic_write_bytes",
    "atomic_write_json",
    "fsync_directory",
]

_HASH_READ_SIZE = 1 << 20


def sanitize_filename(filename: str) -> str:
    """Return a filesystem-safe filename derived from ``filename``."""

    original = filename
    safe = filename.replace(os.sep, "_").replace("/", "_").replace("\\", "_")
    safe = re.sub(r"[^A-Za-z0-9._-]", "_", safe)
    safe = safe.strip("._") or "artifact"
    if len(safe) > 255:
        safe = safe[:255]
    if safe != original:
        logging.getLogger("Snapshotter").warning(
            "sanitized unsafe filename",
            extra={"stage": "sanitize", "original": original, "sanitized": safe},
        )
    return safe


def generate_correlation_id() -> str:
    """Return a short-lived identifier that links related log entries."""

    return uuid.uuid4().hex[:12]


def sha256_file(path: Path, *, limit: Optional[int] = None) -> str:
    """Compute the SHA-256 digest of ``path``.

    Args:
        path: File to hash.
        limit: When given, only the first ``limit`` bytes are hashed.
    """

    return hash_prefix(path, limit).hexdigest()


def hash_prefix(path: Path, limit: Optional[int] = None) -> "hashlib._Hash":
    """Return a SHA-256 accumulator primed with the first ``limit`` bytes of ``path``."""

    hasher = hashlib.sha256()
    remaining = limit
    with path.open("rb") as stream:
        while remaining is None or remaining > 0:
            size = _HASH_READ_SIZE if remaining is None else min(_HASH_READ_SIZE, remaining)
            chunk = stream.read(size)
            if not chunk:
                break
            hasher.update(chunk)
            if remaining is not None:
                remaining -= len(chunk)
    return hasher


def fsync_directory(directory: Path) -> None:
    """Flush directory metadata so a preceding rename survives a crash."""

    try:
        fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temporary file and atomic rename.

    Readers observe either the previous content or the new content, never a
    partially written file.
    """

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f"{path.name}.tmp.{uuid.uuid4().hex}")
    try:
        with tmp.open("wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    fsync_directory(path.parent)


def atomic_write_json(path: Path, payload: Any) -> None:
    """Serialise ``payload`` as indented JSON and atomically replace ``path``."""

    data = json.dumps(payload, indent=2, sort_keys=False).encode("utf-8")
    atomic_write_bytes(path, data + b"\n")
