# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.catalog.records",
#   "purpose": "Artifact records and the catalog document they are persisted in",
#   "sections": [
#     {
#       "id": "format-timestamp",
#       "name": "format_timestamp",
#       "anchor": "function-format-timestamp",
#       "kind": "function"
#     },
#     {
#       "id": "artifactrecord",
#       "name": "ArtifactRecord",
#       "anchor": "class-artifactrecord",
#       "kind": "class"
#     },
#     {
#       "id": "catalog",
#       "name": "Catalog",
#       "anchor": "class-catalog",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Catalog data model.

The catalog document is a single JSON object::

    {"entries": [{"fileName": ..., "sha256": ..., "category": ...,
                  "uploadTime": "2024-05-01T12:00:00Z"}, ...]}

Entries optionally carry ``location``, the object key used to delete the
remote copy on eviction. Parsing is strict: any malformed entry makes the
whole document invalid (:class:`StateCorruption`), which loaders degrade to an
empty catalog.
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple

from ..categories import Category
from ..errors import StateCorruption

__all__ = ["format_timestamp", "parse_timestamp", "ArtifactRecord", "Catalog"]

_SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")


def format_timestamp(value: datetime) -> str:
    """Render ``value`` as an RFC 3339 UTC timestamp (naive values are taken as UTC)."""

    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class ArtifactRecord:
    """One published artifact.

    Attributes:
        name: Artifact file name; unique within a catalog.
        content_hash: Hex SHA-256 of the artifact content.
        category: Data class the artifact belongs to.
        created_at: Publication time (UTC).
        location: Remote object key, when known.
        source: Entry object the record was parsed from. It is written back
            verbatim, so unknown keys and the original ``uploadTime`` text
            survive a read-modify-write cycle.
    """

    name: str
    content_hash: str
    category: Category
    created_at: datetime
    location: Optional[str] = None
    source: Optional[Mapping[str, Any]] = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.name or "/" in self.name or "\\" in self.name:
            raise ValueError(f"invalid artifact name: {self.name!r}")
        if not _SHA256_PATTERN.match(self.content_hash):
            raise ValueError(f"content_hash must be a lowercase hex sha-256: {self.content_hash!r}")
        if self.created_at.tzinfo is None:
            object.__setattr__(self, "created_at", self.created_at.replace(tzinfo=timezone.utc))

    @property
    def remote_key(self) -> str:
        return self.location or self.category.destination_key(self.name)

    def to_document(self) -> Dict[str, Any]:
        if self.source is not None:
            return copy.deepcopy(dict(self.source))
        document: Dict[str, Any] = {
            "fileName": self.name,
            "sha256": self.content_hash,
            "category": self.category.value,
            "uploadTime": format_timestamp(self.created_at),
        }
        if self.location is not None:
            document["location"] = self.location
        return document

    @classmethod
    def from_document(cls, document: Any) -> "ArtifactRecord":
        try:
            location = document.get("location")
            return cls(
                name=str(document["fileName"]),
                content_hash=str(document["sha256"]),
                category=Category(document["category"]),
                created_at=parse_timestamp(document["uploadTime"]),
                location=str(location) if location is not None else None,
                source=copy.deepcopy(document),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise StateCorruption(f"malformed catalog entry: {exc}") from exc


@dataclass(frozen=True)
class Catalog:
    """Ordered, immutable collection of :class:`ArtifactRecord`.

    ``extra`` holds the other top-level document keys, in document order;
    they are carried through every rewrite.
    """

    entries: Tuple[ArtifactRecord, ...] = ()
    extra: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __iter__(self) -> Iterator[ArtifactRecord]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def find(self, name: str) -> Optional[ArtifactRecord]:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def for_category(self, category: Category) -> Tuple[ArtifactRecord, ...]:
        return tuple(entry for entry in self.entries if entry.category is category)

    def to_document(self) -> Dict[str, Any]:
        document = copy.deepcopy(dict(self.extra))
        document["entries"] = [entry.to_document() for entry in self.entries]
        return document

    def dumps(self) -> str:
        return json.dumps(self.to_document(), indent=2) + "\n"

    @classmethod
    def from_document(cls, document: Any) -> "Catalog":
        if not isinstance(document, dict) or not isinstance(document.get("entries"), list):
            raise StateCorruption("catalog document must be an object with an 'entries' list")
        entries = tuple(ArtifactRecord.from_document(item) for item in document["entries"])
        names = [entry.name for entry in entries]
        if len(set(names)) != len(names):
            raise StateCorruption("catalog document contains duplicate artifact names")
        # The "entries" slot is kept, empty, so rewrites preserve key order.
        extra = {key: (None if key == "entries" else value) for key, value in document.items()}
        return cls(entries, extra=copy.deepcopy(extra))

    @classmethod
    def loads(cls, text: str) -> "Catalog":
        try:
            document = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StateCorruption(f"catalog document is not valid JSON: {exc}") from exc
        return cls.from_document(document)
