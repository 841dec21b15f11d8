"""Logging setup for TestForge.

The runner owns the terminal's stdout for worker output and reporter
rendering, so every log record goes to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TextIO

_ROOT = "testforge"


class _JsonFormatter(logging.Formatter):
    """One JSON object per record.

    Keys: timestamp, level, logger, message, plus ``worker_id`` when the
    record was logged with ``extra={"worker_id": ...}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        worker_id = getattr(record, "worker_id", None)
        if worker_id is not None:
            entry["worker_id"] = worker_id
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(
    level: int = logging.WARNING,
    *,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Configure and return the root TestForge logger.

    Repeated calls only adjust the level; handlers are never duplicated.

    Args:
        level: Logging level. Defaults to WARNING so a normal run prints
            nothing but worker output and the report.
        json_format: Emit one JSON object per line instead of text.
        stream: Destination, ``sys.stderr`` when omitted.

    Returns:
        The configured ``testforge`` logger.
    """
    logger = logging.getLogger(_ROOT)
    logger.setLevel(level)

    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setLevel(level)

    if json_format:
        formatter: logging.Formatter = _JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child logger, e.g. ``get_logger("engine.relay")``."""
    return logging.getLogger(f"{_ROOT}.{name}")
