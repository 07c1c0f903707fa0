"""
Structured JSON logging for the property kernel.

Every record is one JSON line with ``ts``, ``level``, ``logger`` and
``message``, followed by the bound request context (correlation, actor,
approval request, governed entity) and any ``extra`` fields.  Messages are
event names such as ``approval_request_created``; the detail lives in the
fields, never in the message text.
"""

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
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "property_kernel"

CONTEXT_FIELDS = ("correlation_id", "actor_id", "request_id", "entity_id", "trace_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"property_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """
    Request-scoped log fields held in context variables.

    Safe across threads and asyncio tasks: each carries its own copy.
    Values are stored as strings.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Set the given fields; ``None`` values are ignored."""
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            if value is not None:
                _context_vars[name].set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: var.get()
            for name, var in _context_vars.items()
            if var.get() is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Set fields for the duration of a ``with`` block, then restore them.

        Keys that are not context fields and ``None`` values are skipped, so
        callers can pass an operation's keyword arguments straight through.
        """
        tokens: list[tuple[ContextVar[str | None], Token]] = []
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                tokens.append((var, var.set(str(value))))
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RESERVED_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Type, message, error code and public attributes of a kernel error."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for attr, value in vars(exc).items():
        if not attr.startswith("_") and attr not in ("args", "code"):
            fields[f"exc_{attr}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record; bound context wins over ``extra`` keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RESERVED_ATTRS and key not in entry:
                entry[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            entry.update(_exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Child of the ``property_kernel`` logger, e.g. ``services.step_response``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_setup_lock = threading.Lock()
_handler_installed = False


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``property_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``.  ``level``
    may be a number or a name such as ``"DEBUG"``.
    """
    global _handler_installed
    with _setup_lock:
        if _handler_installed:
            return
        _handler_installed = True

    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.setLevel(level.upper() if isinstance(level, str) else level)
    kernel_logger.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    kernel_logger.addHandler(target)


def reset_logging() -> None:
    """Drop the installed handler and return to WARNING. Tests only."""
    global _handler_installed
    with _setup_lock:
        _handler_installed = False
    kernel_logger = logging.getLogger(_LOGGER_PREFIX)
    kernel_logger.handlers.clear()
    kernel_logger.setLevel(logging.WARNING)
