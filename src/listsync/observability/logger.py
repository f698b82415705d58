"""Structured JSON logging for listsync.

Records are written one JSON object per line so that a retry sequence can be
followed in a log pipeline by filtering on ``op``::

    {"ts": "2025-07-01T12:00:00.123456+00:00", "level": "INFO",
     "logger": "listsync.batch", "message": "Waiting before retry attempt",
     "op": "submit_batch", "delay_seconds": 2.0, "next_attempt": 3,
     "reason": "item_failure"}

Module loggers are created once at import time::

    from listsync.observability import get_logger

    log = get_logger("listsync.batch")
    log.info("batch sent", extra={"extra_fields": {"items": 12}})
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, TextIO

from listsync.utils.redact import redact


class StructuredFormatter(logging.Formatter):
    """Render a :class:`logging.LogRecord` as a single-line JSON object.

    ``ts`` (the record's creation time in UTC), ``level``, ``logger`` and
    ``message`` are always present.  Fields supplied through
    ``extra={"extra_fields": {...}}`` are redacted and merged at the top
    level, so request headers or tokens passed along by mistake never reach
    the log.  ``exception`` and ``stack_info`` are added when the record
    carries them.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        fields = getattr(record, "extra_fields", None)
        if fields:
            entry.update(redact(fields))

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            entry["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(entry, default=str)


_configured: set[str] = set()
_configure_lock = threading.Lock()


def _coerce_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level {level!r}")
    return resolved


def _json_handler(stream: TextIO | None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    return handler


def get_logger(
    name: str = "listsync",
    *,
    level: int | str = logging.DEBUG,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Return the logger *name* with a JSON handler attached.

    The handler is attached on the first call for a given name only; later
    calls return the same logger untouched, whatever *level* and *stream*
    they pass.  The logger does not propagate to its parents.

    Parameters
    ----------
    name:
        Logger name, by convention ``listsync.<subpackage>``.
    level:
        Minimum level, as an ``int`` or a case-insensitive level name.
    stream:
        Destination of the handler.  Defaults to ``sys.stderr``.

    Raises
    ------
    ValueError
        If *level* is a string that names no logging level.
    """
    logger = logging.getLogger(name)
    with _configure_lock:
        if name in _configured:
            return logger
        logger.setLevel(_coerce_level(level))
        logger.addHandler(_json_handler(stream))
        logger.propagate = False
        _configured.add(name)
    return logger
