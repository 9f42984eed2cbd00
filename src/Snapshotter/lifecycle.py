"""Pause and resume the node service around archive construction.

The node keeps its databases open while running, so archives are taken from
a stopped service. Controllers are synchronous; a failed command raises
:class:`ServiceControlError` and leaves the decision to the caller.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from .errors import ServiceControlError

logger = logging.getLogger(__name__)

__all__ = ["ServiceController", "ComposeServiceController", "NullServiceController"]


@runtime_checkable
class ServiceController(Protocol):
    """Stops and restarts the process whose data is archived."""

    def pause(self) -> None:
        ...

    def resume(self) -> None:
        ...


class ComposeServiceController:
    """Run ``docker compose -f <file> stop|start`` for the node project.

    Args:
        compose_file: Compose file describing the node services.
        executable: Docker CLI to invoke; resolved from ``PATH`` by default.
        timeout: Seconds allowed for each compose command.
    """

    def __init__(
        self,
        compose_file: Path,
        *,
        executable: Optional[str] = None,
        timeout: float = 600.0,
    ) -> None:
        self.compose_file = Path(compose_file)
        self.executable = executable or shutil.which("docker") or "docker"
        self.timeout = timeout

    def command(self, action: str) -> List[str]:
        return [self.executable, "compose", "-f", str(self.compose_file), action]

    def pause(self) -> None:
        self._run("stop")

    def resume(self) -> None:
        self._run("start")

    def _run(self, action: str) -> None:
        argv: Sequence[str] = self.command(action)
        logger.info("docker compose %s", action, extra={"stage": "lifecycle"})
        try:
            completed = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise ServiceControlError(f"docker compose {action} failed: {exc}") from exc
        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or "").strip()
            raise ServiceControlError(
                f"docker compose {action} exited with {completed.returncode}: {detail}"
            )


class NullServiceController:
    """Controller used when no compose file is configured."""

    def pause(self) -> None:
        logger.debug("no service controller configured; not pausing", extra={"stage": "lifecycle"})

    def resume(self) -> None:
        logger.debug("no service controller configured; not resuming", extra={"stage": "lifecycle"})
