"""Structured logging configuration for healthprobe.

Two line formats share one notion of context: the record attributes named in
``CONTEXT_FIELDS``, usually attached through ``logger.with_context(...)`` or
``extra=``. Logs always go to stderr so that ``summary_json`` output on stdout
stays machine-readable.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import MutableMapping
from datetime import UTC, datetime
from typing import Any

CONTEXT_FIELDS: tuple[str, ...] = ("cycle", "endpoint", "attempt", "state", "reason")


def _component(record: logging.LogRecord) -> str:
    return record.name.rpartition(".")[2]


def _context(record: logging.LogRecord) -> dict[str, Any]:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS if hasattr(record, key)}


def _created(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=UTC)


class StructuredFormatter(logging.Formatter):
    """One human-readable line per record.

    ``2024-05-01 12:00:00.123 [WARNING ] [runner      ] [endpoint=... attempt=2] message``
    """

    def format(self, record: logging.LogRecord) -> str:
        fields = [
            _created(record).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3],
            f"[{record.levelname:8}]",
            f"[{_component(record):12}]",
        ]
        if context := _context(record):
            fields.append("[" + " ".join(f"{k}={v}" for k, v in context.items()) + "]")
        fields.append(record.getMessage())
        if record.exc_info:
            fields.append(self.formatException(record.exc_info))
        return " ".join(fields)


class JSONFormatter(logging.Formatter):
    """One JSON object per record; context fields become top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _created(record).isoformat(),
            "level": record.levelname,
            "component": _component(record),
            "message": record.getMessage(),
            **_context(record),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ContextAdapter(logging.LoggerAdapter[logging.Logger]):
    """Adapter carrying fixed context; ``extra`` given at the call site wins."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


class ContextLogger(logging.Logger):
    """Logger whose ``with_context`` binds context fields for later calls.

    Usage:
        ep_logger = get_logger(__name__).with_context(endpoint=spec.display_url)
        ep_logger.warning("Attempt failed", extra={"attempt": 2})
    """

    def with_context(self, **context: Any) -> ContextAdapter:
        return ContextAdapter(self, context)


logging.setLoggerClass(ContextLogger)


def get_logger(name: str) -> ContextLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    replace_handlers: bool = True,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Log level name; unknown names fall back to INFO.
        json_format: Emit JSON lines instead of the structured text format.
        replace_handlers: Drop handlers already attached to the root logger.
    """
    numeric_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    if replace_handlers:
        for existing in list(root.handlers):
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if json_format else StructuredFormatter())
    root.addHandler(handler)

    logging.getLogger("healthprobe").setLevel(numeric_level)
    # httpx emits a line per request at INFO.
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
