"""Logging setup for the snapshot publisher.

Two handlers hang off the ``Snapshotter`` logger: a plain console handler and
a size-rotated file of JSON lines. Structured context travels in ``extra``
(``stage``, ``category``, ``run_id`` and whatever else a call site adds) and
every such key becomes a field of the JSON record. Tokens and upload session
URLs are masked before anything is written.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from .settings import LoggingConfiguration

LOGGER_NAME = "Snapshotter"
LOG_FILE_NAME = "snapshotter.jsonl"

_MASK = "***masked***"
# Session URLs carry the upload id, which grants write access to the object.
_SENSITIVE_KEYS = {"authorization", "access_token", "token", "secret", "password", "url"}

_RESERVED_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def mask_sensitive_data(payload: Dict[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with secret-bearing keys masked.

    Examples:
        >>> mask_sensitive_data({"token": "secret", "status": "ok"})
        {'token': '***masked***', 'status': 'ok'}
    """
    return {key: _MASK if key.lower() in _SENSITIVE_KEYS else value for key, value in payload.items()}


class JSONFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "run_id": getattr(record, "run_id", None),
            "category": getattr(record, "category", None),
            "stage": getattr(record, "stage", None),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_obj and not key.startswith("_"):
                log_obj[key] = value
        if record.exc_info:
            log_obj["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(log_obj), default=str)


def _managed(handler: logging.Handler) -> logging.Handler:
    handler._snapshotter_managed = True  # type: ignore[attr-defined]
    return handler


def setup_logging(config: LoggingConfiguration, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach the console and JSON file handlers to the ``Snapshotter`` logger.

    Calling it again replaces the handlers it added before, so commands can
    reconfigure after settings change.

    Args:
        config: Level, rotation size and backup count.
        log_dir: Overrides ``config.log_dir``; the default is ``./logs``.

    Returns:
        The configured logger.
    """
    log_dir = Path(log_dir or config.log_dir or Path.cwd() / "logs")
    log_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(config.level)
    for handler in list(logger.handlers):
        if getattr(handler, "_snapshotter_managed", False):
            logger.removeHandler(handler)
            handler.close()

    console = _managed(logging.StreamHandler(sys.stdout))
    console.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logger.addHandler(console)

    json_file = _managed(
        RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=config.max_log_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
    )
    json_file.setFormatter(JSONFormatter())
    logger.addHandler(json_file)
    return logger


__all__ = ["LOGGER_NAME", "LOG_FILE_NAME", "JSONFormatter", "setup_logging", "mask_sensitive_data"]
