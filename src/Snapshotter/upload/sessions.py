# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.upload.sessions",
#   "purpose": "Persist in-flight multipart upload checkpoints for crash/resume",
#   "sections": [
#     {
#       "id": "uploadsession",
#       "name": "UploadSession",
#       "anchor": "class-uploadsession",
#       "kind": "class"
#     },
#     {
#       "id": "uploadsessionstore",
#       "name": "UploadSessionStore",
#       "anchor": "class-uploadsessionstore",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Upload session checkpoints.

One JSON document per in-flight transfer, named after the local artifact
file. The document is replaced atomically after every acknowledged chunk, so
it always describes a contiguous prefix of the file that the remote side
holds. Its presence on startup is the signal to resume.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ArtifactIOError, StateCorruption
from ..io_safe import atomic_write_json, sanitize_filename
from ..storage.base import PartTag

logger = logging.getLogger(__name__)

SESSION_SUFFIX = ".upload.json"


@dataclass(frozen=True)
class UploadSession:
    """Checkpoint of a multipart transfer.

    Attributes:
        url: Remote session handle.
        destination_key: Object key being written.
        committed_offset: Bytes of the local file acknowledged by the remote side.
        next_part: Part number of the first unacknowledged chunk.
        parts: Tags of acknowledged parts, in part order.
        created_at: ISO 8601 time of the publication the transfer belongs to,
            so a later run can catalog it under its original time.
    """

    url: str
    destination_key: str
    committed_offset: int = 0
    next_part: int = 1
    parts: Tuple[PartTag, ...] = ()
    created_at: Optional[str] = None

    def advance(self, part_number: int, size: int, tag: str) -> "UploadSession":
        """Return the checkpoint after ``part_number`` (``size`` bytes) was acknowledged."""

        if part_number != self.next_part:
            raise ValueError(
                f"part {part_number} acknowledged out of order; expected {self.next_part}"
            )
        return replace(
            self,
            committed_offset=self.committed_offset + size,
            next_part=part_number + 1,
            parts=self.parts + ((part_number, tag),),
        )

    def started_at(self) -> Optional[datetime]:
        if self.created_at is None:
            return None
        try:
            return datetime.fromisoformat(self.created_at)
        except ValueError:
            return None

    def to_document(self) -> Dict[str, Any]:
        document: Dict[str, Any] = {
            "url": self.url,
            "destinationKey": self.destination_key,
            "committedOffset": self.committed_offset,
            "nextPart": self.next_part,
            "parts": [{"partNumber": number, "tag": tag} for number, tag in self.parts],
        }
        if self.created_at is not None:
            document["createdAt"] = self.created_at
        return document

    @classmethod
    def from_document(cls, document: Any) -> "UploadSession":
        """Parse a session document; raise :class:`StateCorruption` when malformed."""

        try:
            url = document["url"]
            offset = int(document["committedOffset"])
            parts = tuple(
                (int(item["partNumber"]), str(item["tag"])) for item in document.get("parts", [])
            )
            next_part = int(document.get("nextPart", len(parts) + 1))
            key = str(document.get("destinationKey", ""))
            created_at = document.get("createdAt")
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise StateCorruption(f"malformed upload session: {exc}") from exc
        if created_at is not None and not isinstance(created_at, str):
            raise StateCorruption("malformed upload session: bad createdAt")
        if not isinstance(url, str) or not url or offset < 0:
            raise StateCorruption("malformed upload session: bad url or offset")
        if next_part != len(parts) + 1 or [n for n, _ in parts] != list(range(1, next_part)):
            raise StateCorruption("malformed upload session: part list is not contiguous")
        return cls(
            url=url,
            destination_key=key,
            committed_offset=offset,
            next_part=next_part,
            parts=parts,
            created_at=created_at,
        )


class UploadSessionStore:
    """Directory of upload session documents keyed by local file name."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    def path_for(self, local_file: Path) -> Path:
        return self.state_dir / f"{sanitize_filename(Path(local_file).name)}{SESSION_SUFFIX}"

    def load(
        self, local_file: Path, destination_key: Optional[str] = None
    ) -> Optional[UploadSession]:
        """Return the persisted session for ``local_file``.

        Corrupt documents and, when ``destination_key`` is given, sessions
        recorded for a different destination are discarded with a warning, so
        the caller starts a fresh transfer.
        """

        path = self.path_for(local_file)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise ArtifactIOError(f"cannot read upload session {path.name}: {exc}") from exc

        try:
            session = UploadSession.from_document(json.loads(text))
        except (json.JSONDecodeError, StateCorruption) as exc:
            logger.warning(
                "discarding corrupt upload session",
                extra={"stage": "upload", "session_file": path.name, "error": str(exc)},
            )
            self.delete(local_file)
            return None

        if (
            destination_key is not None
            and session.destination_key
            and session.destination_key != destination_key
        ):
            logger.warning(
                "discarding upload session recorded for another destination",
                extra={"stage": "upload", "session_file": path.name},
            )
            self.delete(local_file)
            return None
        return session

    def save(self, local_file: Path, session: UploadSession) -> None:
        try:
            atomic_write_json(self.path_for(local_file), session.to_document())
        except OSError as exc:
            raise ArtifactIOError(f"cannot persist upload session: {exc}") from exc

    def delete(self, local_file: Path) -> None:
        try:
            self.path_for(local_file).unlink(missing_ok=True)
        except OSError as exc:
            raise ArtifactIOError(f"cannot delete upload session: {exc}") from exc

    def pending(self) -> list[Path]:
        """Return session documents currently on disk."""

        if not self.state_dir.is_dir():
            return []
        return sorted(self.state_dir.glob(f"*{SESSION_SUFFIX}"))

    def interrupted(self) -> List[Tuple[str, UploadSession]]:
        """Return ``(local file name, session)`` for every readable session document."""

        found: List[Tuple[str, UploadSession]] = []
        for path in self.pending():
            name = path.name[: -len(SESSION_SUFFIX)]
            session = self.load(Path(name))
            if session is not None:
                found.append((name, session))
        return found
