"""CLI tests using Typer's runner."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from typer.testing import CliRunner

from Snapshotter import __version__
from Snapshotter.catalog.store import CatalogStore
from Snapshotter.cli import app
from Snapshotter.logging_config import LOGGER_NAME

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    for name in ("NODE_PATH", "GCS_BUCKET", "CRON_JOB_TIME", "SNAPSHOTTER_KEEP", "SNAPSHOTTER_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, "_snapshotter_managed", False):
            logger.removeHandler(handler)
            handler.close()


def _config(tmp_path: Path, *, include: str = "data/beacond/data") -> Path:
    node = tmp_path / "node"
    data = node / "data" / "beacond" / "data"
    data.mkdir(parents=True)
    (data / "state.db").write_bytes(b"state" * 100)
    path = tmp_path / "snapshotter.yaml"
    path.write_text(
        f"""
service:
  node_path: {node}
storage:
  backend: local
  root: {tmp_path / 'remote'}
catalog:
  artifact_dir: {tmp_path / 'snapshots'}
  keep: 2
schedule:
  categories: beacond
  include_paths:
    beacond: [{include}]
upload:
  chunk_size_bytes: 256
logging:
  log_dir: {tmp_path / 'logs'}
"""
    )
    return path


def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"snapshotter {__version__}" in result.stdout


def test_help_lists_commands() -> None:
    result = runner.invoke(app, ["--help"])

    assert result.exit_code == 0
    for command in ("start", "run-once", "serve", "catalog"):
        assert command in result.stdout


def test_run_once_publishes(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(_config(tmp_path)), "run-once"])

    assert result.exit_code == 0, result.stdout
    remote = list((tmp_path / "remote" / "beacond").glob("pruned_snapshot_*.tar.lz4"))
    assert len(remote) == 1
    document = json.loads((tmp_path / "snapshots" / "metadata.json").read_text())
    assert document["entries"][0]["fileName"] == remote[0].name
    assert (tmp_path / "remote" / "metadata.json").exists()


def test_run_once_failure_exits_non_zero(tmp_path: Path) -> None:
    config = _config(tmp_path, include="data/beacond/missing")

    result = runner.invoke(app, ["--config", str(config), "run-once"])

    assert result.exit_code == 1


def test_run_once_requires_retention(tmp_path: Path) -> None:
    config = tmp_path / "c.yaml"
    config.write_text(f"storage:\n  bucket: b\ncatalog:\n  artifact_dir: {tmp_path}\n")

    result = runner.invoke(app, ["--config", str(config), "run-once"])

    assert result.exit_code == 2


def test_invalid_config_exits_with_usage_error(tmp_path: Path) -> None:
    config = tmp_path / "bad.yaml"
    config.write_text("unknown: 1\n")

    result = runner.invoke(app, ["--config", str(config), "catalog"])

    assert result.exit_code == 2


def test_catalog_command_prints_document(tmp_path: Path, make_entry) -> None:
    artifact_dir = tmp_path / "snapshots"
    store = CatalogStore(artifact_dir / "metadata.json", keep=3)
    store.record_publication(make_entry("a.tar.lz4"))
    config = tmp_path / "c.yaml"
    config.write_text(f"catalog:\n  artifact_dir: {artifact_dir}\n")

    result = runner.invoke(app, ["--config", str(config), "catalog"])
    filtered = runner.invoke(app, ["--config", str(config), "catalog", "--category", "reth"])

    assert result.exit_code == 0
    assert [e["fileName"] for e in json.loads(result.stdout)["entries"]] == ["a.tar.lz4"]
    assert json.loads(filtered.stdout) == {"entries": []}
