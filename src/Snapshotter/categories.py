# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.categories",
#   "purpose": "Closed enumeration of archived data classes and their storage layout",
#   "sections": [
#     {
#       "id": "categorylayout",
#       "name": "CategoryLayout",
#       "anchor": "class-categorylayout",
#       "kind": "class"
#     },
#     {
#       "id": "category",
#       "name": "Category",
#       "anchor": "class-category",
#       "kind": "class"
#     }
#   ]
# }
# === /NAVMAP ===

"""Categories of node data that are archived independently.

Each category owns its own retention count in the catalog and its own
prefix in the remote object store. The mapping between a category and its
layout is explicit so that adding a category never touches pipeline code.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Tuple

__all__ = ["CategoryLayout", "Category"]


@dataclass(frozen=True)
class CategoryLayout:
    """Where a category's data lives and how its artifacts are named.

    Attributes:
        prefix: Folder used for the category in the remote object store.
        base_name: Leading component of generated artifact file names.
        include_paths: Paths archived by default, relative to the node root.
        exclude_patterns: Path suffixes skipped while archiving.
    """

    prefix: str
    base_name: str
    include_paths: Tuple[str, ...]
    exclude_patterns: Tuple[str, ...] = ()


_LAYOUTS = {
    "beacond": CategoryLayout(
        prefix="beacond",
        base_name="pruned_snapshot",
        include_paths=("data/beacond/data",),
        exclude_patterns=("priv_validator_state.json",),
    ),
    "reth": CategoryLayout(
        prefix="reth",
        base_name="reth_snapshot",
        include_paths=("data/reth/static_files", "data/reth/db"),
    ),
}


class Category(str, Enum):
    """Data class represented by an artifact."""

    BEACOND = "beacond"
    RETH = "reth"

    @property
    def layout(self) -> CategoryLayout:
        return _LAYOUTS[self.value]

    @property
    def prefix(self) -> str:
        return self.layout.prefix

    def destination_key(self, file_name: str) -> str:
        """Return the remote object key for ``file_name`` within this category."""

        return f"{self.prefix}/{file_name}"

    @classmethod
    def parse(cls, value: str) -> "Category":
        """Return the member matching ``value`` (case-insensitive)."""

        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            valid = ", ".join(member.value for member in cls)
            raise ValueError(f"unknown category {value!r}; expected one of: {valid}") from exc
