"""Service controller tests."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from Snapshotter import lifecycle
from Snapshotter.errors import ServiceControlError
from Snapshotter.lifecycle import ComposeServiceController, NullServiceController, ServiceController


def test_compose_commands(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    calls = []

    def fake_run(argv, **kwargs):
        calls.append(list(argv))
        return subprocess.CompletedProcess(argv, 0, stdout="", stderr="")

    monkeypatch.setattr(lifecycle.subprocess, "run", fake_run)
    compose = tmp_path / "docker-compose.yml"
    controller = ComposeServiceController(compose, executable="docker")

    controller.pause()
    controller.resume()

    assert calls == [
        ["docker", "compose", "-f", str(compose), "stop"],
        ["docker", "compose", "-f", str(compose), "start"],
    ]


def test_non_zero_exit_raises(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setattr(
        lifecycle.subprocess,
        "run",
        lambda argv, **kwargs: subprocess.CompletedProcess(argv, 1, stdout="", stderr="no such service"),
    )

    with pytest.raises(ServiceControlError, match="no such service"):
        ComposeServiceController(tmp_path / "c.yml", executable="docker").pause()


def test_missing_executable_raises(tmp_path: Path) -> None:
    controller = ComposeServiceController(tmp_path / "c.yml", executable=str(tmp_path / "nope"))

    with pytest.raises(ServiceControlError):
        controller.resume()


def test_controllers_satisfy_protocol(tmp_path: Path) -> None:
    assert isinstance(NullServiceController(), ServiceController)
    assert isinstance(ComposeServiceController(tmp_path / "c.yml"), ServiceController)
    NullServiceController().pause()
    NullServiceController().resume()
