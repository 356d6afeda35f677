"""
Structured JSON logging for the inventory kernel.

Every record is one JSON object per line: timestamp, level, logger and
message, then the operation context bound by the orchestrator, then the
record's ``extra`` fields.  Kernel exceptions logged with ``exc_info``
contribute their ``code``, ``kind`` and structured attributes so a log
search can filter on ``exc_code`` without parsing messages.

The kernel never configures logging on import.  A host process calls
``configure_logging(level=settings.log_level)`` once at start-up.
"""

from __future__ import annotations

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "inventory_kernel"

# Bound per operation by InventoryOrchestrator; audit_log_id while a revert runs
_CONTEXT: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"inventory_log_{name}", default=None)
    for name in ("correlation_id", "tenant_id", "actor_id", "operation", "audit_log_id")
}


class LogContext:
    """Operation-scoped log fields, safe across threads and tasks."""

    FIELDS: tuple[str, ...] = tuple(_CONTEXT)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {name: var.get() for name, var in _CONTEXT.items() if var.get() is not None}

    @staticmethod
    def clear() -> None:
        for var in _CONTEXT.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Set fields for the duration of the block, restoring them on exit.

        None values are skipped, so callers can pass optional ids straight
        through.  Unknown field names raise ``KeyError``.
        """
        tokens = [
            (_CONTEXT[name], _CONTEXT[name].set(str(value)))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


_RESERVED_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        payload.update(
            (key, val)
            for key, val in vars(record).items()
            if key not in _RESERVED_KEYS and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
                payload["exc_kind"] = getattr(exc, "kind", None)
            # InventoryKernelError subclasses carry ids and quantities as attributes
            payload.update(
                (f"exc_{key}", val)
                for key, val in vars(exc).items()
                if not key.startswith("_")
            )
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``inventory_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the kernel's logger tree.  Idempotent."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    handler = handler or logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo ``configure_logging``; test suites use it between cases."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
