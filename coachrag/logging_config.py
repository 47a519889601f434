"""Logging setup: stdlib logging with an orjson line formatter.

Structured fields are passed through ``extra`` with a ``ctx_`` prefix, e.g.::

    logger.info("sweep finished", extra={"ctx_sessions_deleted": 3})
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import Any, TextIO

import orjson

from coachrag.config import settings


class JsonFormatter(logging.Formatter):
    """Lightweight JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                payload[key[4:]] = value
        return orjson.dumps(payload, default=_default).decode("utf-8")


def _default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def configure_logging(
    level: str | int | None = None,
    use_json: bool | None = None,
    stream: TextIO | None = None,
) -> None:
    """Configure the root logger, JSON formatted unless LOG_JSON is false.

    CLIs that print reports on stdout pass ``stream=sys.stderr``.
    """
    level = level or settings.LOG_LEVEL
    use_json = settings.LOG_JSON if use_json is None else use_json
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(stream or sys.stdout)
    if use_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.handlers = [handler]


__all__ = ["JsonFormatter", "configure_logging"]
