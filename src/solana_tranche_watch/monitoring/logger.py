"""Logging setup with per-run and per-token context fields.

Every record emitted inside :func:`log_context` carries the fields bound
there (``run_id`` and ``owner`` for a cycle, ``mint`` and ``tranche`` while
a transition is handled), so one cycle's lines can be filtered out of the
stream and a token's history followed across runs.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from ..config.settings import MonitoringConfig, get_app_config

# Emitted at the top level of JSON records, in this order.
CONTEXT_FIELDS = ("run_id", "owner", "mint", "tranche")

_LOG_CONTEXT: ContextVar[Mapping[str, Any]] = ContextVar("log_context", default={})
_CONFIGURED = False

_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def current_log_context() -> Dict[str, Any]:
    return dict(_LOG_CONTEXT.get())


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every record logged in this block; ``None`` values are skipped."""
    merged = {**_LOG_CONTEXT.get(), **{key: value for key, value in fields.items() if value is not None}}
    token = _LOG_CONTEXT.set(merged)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _LOG_CONTEXT.get().items():
            # Explicit ``extra=`` values win over the bound context.
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; context fields first, other extras nested."""

    def format(self, record: logging.LogRecord) -> str:
        fields = _record_fields(record)
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            if key in fields:
                payload[key] = fields.pop(key)
        if fields:
            payload["extra"] = fields
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    """Readable single-line output for running the watcher in a terminal."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _record_fields(record)
        tags = " ".join(f"{key}={fields[key]}" for key in CONTEXT_FIELDS if key in fields)
        return f"{line} [{tags}]" if tags else line


def configure_logging(config: Optional[MonitoringConfig] = None, *, force: bool = False) -> None:
    global _CONFIGURED
    if _CONFIGURED and not force:
        return
    cfg = config or get_app_config().monitoring
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ConsoleFormatter() if cfg.log_format == "text" else StructuredFormatter())
    handler.addFilter(_ContextFilter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.log_level.upper(), logging.INFO))
    # Request URLs carry the Telegram bot token.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


__all__ = [
    "CONTEXT_FIELDS",
    "ConsoleFormatter",
    "StructuredFormatter",
    "configure_logging",
    "current_log_context",
    "get_logger",
    "log_context",
]
