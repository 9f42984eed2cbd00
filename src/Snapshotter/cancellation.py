"""Cooperative cancellation shared by the scheduler and in-flight uploads.

A shutdown request must not tear an upload down mid-chunk: the uploader
checks the token between chunk submissions, lets chunks already in flight
finish and be checkpointed, and then stops. The scheduler waits on the same
token between firings so a shutdown wakes it immediately.
"""

from __future__ import annotations

import threading
from typing import Optional


class CancellationToken:
    """Thread-safe cancellation token for cooperative task cancellation.

    Examples:
        >>> token = CancellationToken()
        >>> token.is_cancelled()
        False
        >>> token.cancel()
        >>> token.wait(0)
        True
    """

    def __init__(self) -> None:
        self._is_cancelled = threading.Event()

    def cancel(self) -> None:
        """Signal that cancellation has been requested."""
        self._is_cancelled.set()

    def is_cancelled(self) -> bool:
        """Return ``True`` once cancellation has been requested."""
        return self._is_cancelled.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to ``timeout`` seconds; return ``True`` if cancelled meanwhile."""
        return self._is_cancelled.wait(timeout)

    def reset(self) -> None:
        """Reset the token; only meant for tests reusing a token."""
        self._is_cancelled.clear()


__all__ = ["CancellationToken"]
# === NAVMAP v1 ===
# {
#   "module": "Snapshotter.cancellation",
#   "purpose": "Provide cooperative cancellation tokens shared by the scheduler and uploader",
#   "sections": [
#     {"id": "token", "name": "CancellationToken", "anchor": "TOK", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
