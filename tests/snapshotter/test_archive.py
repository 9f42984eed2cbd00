"""Archive construction tests."""

from __future__ import annotations

import tarfile
from datetime import datetime, timezone
from pathlib import Path

import lz4.frame
import pytest

from Snapshotter.archive import Archiver, artifact_name
from Snapshotter.categories import Category
from Snapshotter.errors import ArtifactIOError

NOW = datetime(2024, 5, 1, 9, 7)


def _node(tmp_path: Path) -> Path:
    node = tmp_path / "node"
    data = node / "data" / "beacond" / "data"
    (data / "application.db").mkdir(parents=True)
    (data / "application.db" / "000001.ldb").write_bytes(b"ldb")
    (data / "blockstore.db").mkdir()
    (data / "blockstore.db" / "MANIFEST").write_text("manifest")
    (data / "priv_validator_state.json").write_text("{}")
    return node


def _members(path: Path) -> list:
    with lz4.frame.open(path, mode="rb") as compressed:
        with tarfile.open(fileobj=compressed, mode="r|") as tar:
            return [member.name for member in tar]


def test_artifact_name_format() -> None:
    assert artifact_name(Category.BEACOND, NOW) == "pruned_snapshot_01-05-24_09-07.tar.lz4"
    assert artifact_name(Category.RETH, NOW) == "reth_snapshot_01-05-24_09-07.tar.lz4"


def test_build_excludes_matching_paths(tmp_path: Path) -> None:
    archiver = Archiver(_node(tmp_path), tmp_path / "snapshots")
    layout = Category.BEACOND.layout

    path = archiver.build(Category.BEACOND, layout.include_paths, layout.exclude_patterns, NOW)

    assert path == tmp_path / "snapshots" / "pruned_snapshot_01-05-24_09-07.tar.lz4"
    assert _members(path) == [
        "data/beacond/data/application.db",
        "data/beacond/data/blockstore.db",
        "data/beacond/data/application.db/000001.ldb",
        "data/beacond/data/blockstore.db/MANIFEST",
    ]


def test_excluded_directory_prunes_subtree(tmp_path: Path) -> None:
    archiver = Archiver(_node(tmp_path), tmp_path / "snapshots")

    path = archiver.build(Category.BEACOND, ["data/beacond/data"], ["blockstore.db"], NOW)

    names = _members(path)
    assert not any("blockstore.db" in name for name in names)
    assert "data/beacond/data/priv_validator_state.json" in names


def test_archive_content_is_readable(tmp_path: Path) -> None:
    archiver = Archiver(_node(tmp_path), tmp_path / "snapshots")
    path = archiver.build(Category.BEACOND, ["data/beacond/data"], [], NOW)

    with lz4.frame.open(path, mode="rb") as compressed:
        with tarfile.open(fileobj=compressed, mode="r|") as tar:
            contents = {m.name: tar.extractfile(m).read() for m in tar if m.isfile()}
    assert contents["data/beacond/data/blockstore.db/MANIFEST"] == b"manifest"


def test_existing_artifact_is_reused(tmp_path: Path) -> None:
    archiver = Archiver(_node(tmp_path), tmp_path / "snapshots")
    existing = tmp_path / "snapshots" / artifact_name(Category.BEACOND, NOW)
    existing.parent.mkdir(parents=True)
    existing.write_bytes(b"previous run")

    path = archiver.build(Category.BEACOND, ["data/beacond/data"], [], NOW)

    assert path == existing
    assert path.read_bytes() == b"previous run"


def test_missing_include_path_fails_without_partial_file(tmp_path: Path) -> None:
    archiver = Archiver(_node(tmp_path), tmp_path / "snapshots")

    with pytest.raises(ArtifactIOError):
        archiver.build(Category.RETH, ["data/reth/db"], [], NOW)

    assert list((tmp_path / "snapshots").glob("*")) == []


def test_artifact_name_uses_local_wall_clock(local_timezone) -> None:
    fired = datetime(2024, 5, 1, 23, 30, tzinfo=timezone.utc)

    assert artifact_name(Category.RETH, fired) == "reth_snapshot_01-05-24_23-30.tar.lz4"
    local_timezone("CEST-2")
    assert artifact_name(Category.RETH, fired) == "reth_snapshot_02-05-24_01-30.tar.lz4"
