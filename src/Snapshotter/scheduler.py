"""Cron-driven trigger for publication runs.

Expressions use the five standard cron fields. A six-field expression is
read with a leading seconds field (``sec min hour dom mon dow``), the form
``CRON_JOB_TIME`` has always used.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from croniter import croniter

from .cancellation import CancellationToken
from .errors import ConfigError

logger = logging.getLogger(__name__)

__all__ = ["CronScheduler", "normalize_expression"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_expression(expression: str) -> str:
    """Return ``expression`` in the field order :mod:`croniter` expects.

    Raises:
        ConfigError: The expression is empty or invalid.
    """

    fields = expression.split()
    if len(fields) == 6:
        fields = fields[1:] + fields[:1]
    normalized = " ".join(fields)
    if not normalized or not croniter.is_valid(normalized):
        raise ConfigError(f"invalid cron expression: {expression!r}")
    return normalized


class CronScheduler:
    """Invoke ``job(fire_time)`` at every firing of ``expression``.

    Firings that arrive while the previous job is still running are skipped.
    Jobs run on a worker thread so the loop keeps waiting on the token and
    shuts down promptly.
    """

    def __init__(
        self,
        expression: str,
        job: Callable[[datetime], Any],
        *,
        token: Optional[CancellationToken] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.expression = normalize_expression(expression)
        self.job = job
        self.token = token or CancellationToken()
        self._clock = clock
        self._running = threading.Lock()
        self._worker: Optional[threading.Thread] = None

    def next_fire(self, after: datetime) -> datetime:
        return croniter(self.expression, after).get_next(datetime)

    def trigger(self, fire_time: datetime) -> bool:
        """Run the job for ``fire_time`` unless a run is active; return whether it ran."""

        if not self._running.acquire(blocking=False):
            logger.warning(
                "previous run still active; skipping trigger",
                extra={"stage": "schedule", "fire_time": fire_time.isoformat()},
            )
            return False
        try:
            self.job(fire_time)
        except Exception:
            logger.exception("scheduled run failed", extra={"stage": "schedule"})
        finally:
            self._running.release()
        return True

    def run_forever(self) -> None:
        """Fire until the token is cancelled, then wait for the active job."""

        logger.info(
            "scheduler started", extra={"stage": "schedule", "cron": self.expression}
        )
        while not self.token.is_cancelled():
            now = self._clock()
            fire_time = self.next_fire(now)
            delay = max((fire_time - now).total_seconds(), 0.0)
            logger.info(
                "next run at %s", fire_time.isoformat(), extra={"stage": "schedule"}
            )
            if self.token.wait(delay):
                break
            if self._worker is not None and self._worker.is_alive():
                logger.warning(
                    "previous run still active; skipping trigger",
                    extra={"stage": "schedule", "fire_time": fire_time.isoformat()},
                )
                continue
            self._worker = threading.Thread(
                target=self.trigger, args=(fire_time,), name="snapshot-run", daemon=True
            )
            self._worker.start()

        if self._worker is not None:
            self._worker.join()
        logger.info("scheduler stopped", extra={"stage": "schedule"})
