# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.archive",
#   "purpose": "Build LZ4-compressed tar artifacts from node data directories",
#   "sections": [
#     {
#       "id": "artifact-name",
#       "name": "artifact_name",
#       "anchor": "function-artifact-name",
#       "kind": "function"
#     },
#     {
#       "id": "archiver",
#       "name": "Archiver",
#       "anchor": "class-archiver",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Archive construction.

Each category produces one ``<base>_<dd-mm-yy_HH-MM>.tar.lz4`` file in the
artifact directory. The archive is written to a temporary name and renamed
into place once complete, so a file under the final name is always a whole
archive and can be reused by a later run.
"""

from __future__ import annotations

import logging
import os
import tarfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Sequence, Tuple

import lz4.frame

from .categories import Category
from .errors import ArtifactIOError
from .io_safe import fsync_directory

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".tar.lz4"


def artifact_name(category: Category, now: datetime) -> str:
    """Return the artifact file name for ``category`` at ``now``.

    The stamp is wall-clock time in the host's local zone; aware values are
    converted, naive values are taken as already local.
    """

    local = now.astimezone() if now.tzinfo is not None else now
    return f"{category.layout.base_name}_{local.strftime('%d-%m-%y_%H-%M')}{ARTIFACT_SUFFIX}"


def _excluded(path: Path, patterns: Sequence[str]) -> bool:
    text = path.as_posix()
    return any(text.endswith(pattern) for pattern in patterns)


def _walk(root: Path, patterns: Sequence[str]) -> Iterator[Path]:
    """Yield entries below ``root`` in sorted order, pruning excluded subtrees."""

    for base, dirnames, filenames in os.walk(root):
        base_path = Path(base)
        dirnames[:] = sorted(d for d in dirnames if not _excluded(base_path / d, patterns))
        for name in dirnames:
            yield base_path / name
        for name in sorted(filenames):
            candidate = base_path / name
            if not _excluded(candidate, patterns):
                yield candidate


class Archiver:
    """Build artifacts from paths below ``node_path`` into ``artifact_dir``."""

    def __init__(self, node_path: Path, artifact_dir: Path) -> None:
        self.node_path = Path(node_path)
        self.artifact_dir = Path(artifact_dir)

    def build(
        self,
        category: Category,
        include_paths: Iterable[str],
        exclude_patterns: Iterable[str],
        now: datetime,
    ) -> Path:
        """Archive ``include_paths`` for ``category`` and return the artifact path.

        Raises:
            ArtifactIOError: An include path is missing or the archive cannot be written.
        """

        includes: Tuple[str, ...] = tuple(include_paths)
        excludes: Tuple[str, ...] = tuple(exclude_patterns)
        destination = self.artifact_dir / artifact_name(category, now)
        if destination.exists():
            logger.warning(
                "File %s already exists. Skip archiving.",
                destination.name,
                extra={"stage": "archive", "category": category.value},
            )
            return destination

        for include in includes:
            if not (self.node_path / include).exists():
                raise ArtifactIOError(f"include path {include!r} does not exist")

        self.artifact_dir.mkdir(parents=True, exist_ok=True)
        tmp = destination.with_name(f".{destination.name}.{uuid.uuid4().hex}.tmp")
        members = 0
        try:
            with lz4.frame.open(tmp, mode="wb") as compressed:
                with tarfile.open(fileobj=compressed, mode="w|") as tar:
                    for include in includes:
                        members += self._add_tree(tar, include, excludes)
            os.replace(tmp, destination)
        except OSError as exc:
            tmp.unlink(missing_ok=True)
            raise ArtifactIOError(f"cannot write archive {destination.name}: {exc}") from exc
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        fsync_directory(self.artifact_dir)

        logger.info(
            "archive created",
            extra={
                "stage": "archive",
                "category": category.value,
                "artifact": destination.name,
                "members": members,
                "size_bytes": destination.stat().st_size,
            },
        )
        return destination

    def _add_tree(self, tar: tarfile.TarFile, include: str, excludes: Sequence[str]) -> int:
        root = self.node_path / include
        arc_root = Path(include)
        if root.is_file():
            if _excluded(root, excludes):
                return 0
            tar.add(str(root), arcname=arc_root.as_posix(), recursive=False)
            return 1
        count = 0
        for path in _walk(root, excludes):
            arcname = (arc_root / path.relative_to(root)).as_posix()
            tar.add(str(path), arcname=arcname, recursive=False)
            count += 1
        return count
