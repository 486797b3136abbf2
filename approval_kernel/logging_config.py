"""
approval_kernel.logging_config -- JSON-lines logging for approval operations.

Responsibility:
    Every record under the ``approval`` logger tree is written as one JSON
    object.  The object carries the approval context the engine bound around
    the operation that emitted it, so a single decision can be followed
    across the engine, audit log, timer and notifier records.

Record shape::

    {"ts": ..., "level": ..., "logger": ..., "message": "<event name>",
     "correlation_id": ..., "instance_id": ..., "definition_id": ...,
     "step_id": ..., "actor_id": ...,      # bound context, when present
     ...extra fields...,
     "error": {"type": ..., "message": ..., "code": ..., ...}}

    Messages are event names (``decision_recorded``, ``instance_blocked``);
    details go in ``extra``.  Bound context wins over an extra field of the
    same name.  Domain values render as they do in snapshots: ``TypedValue``
    as ``{kind, value}``, enums by value, numbers as strings.

Errors:
    ``ApprovalEngineError`` subclasses contribute their ``code`` and public
    attributes to ``error``; a chained cause is named in ``error.cause``.
"""

from __future__ import annotations

__all__ = [
    "LOGGER_ROOT",
    "ApprovalJsonFormatter",
    "LogContext",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from approval_kernel.domain.values import TypedValue
from approval_kernel.exceptions import ApprovalEngineError

LOGGER_ROOT = "approval"
_HANDLER_NAME = "approval_json"

_CONTEXT_FIELDS = ("correlation_id", "instance_id", "definition_id", "step_id", "actor_id")

_context: ContextVar[Mapping[str, str]] = ContextVar("approval_log_context", default={})


class LogContext:
    """Approval context attached to every record emitted while it is bound."""

    FIELDS = _CONTEXT_FIELDS

    @staticmethod
    def _merged(fields: Mapping[str, Any]) -> dict[str, str]:
        unknown = sorted(set(fields) - set(_CONTEXT_FIELDS))
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(unknown)}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return merged

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Bind fields until ``clear``; ``None`` leaves a field unchanged."""
        _context.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[None]:
        """Bind fields (UUIDs are stringified) and restore the outer context on exit."""
        token = _context.set(cls._merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


def _render(value: Any) -> Any:
    if isinstance(value, TypedValue):
        return value.to_dict()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _describe_error(exc: BaseException) -> dict[str, Any]:
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, ApprovalEngineError):
        error["code"] = exc.code
        error.update(
            (k, v) for k, v in vars(exc).items() if not k.startswith("_") and k not in error
        )
    if exc.__cause__ is not None:
        error["cause"] = type(exc.__cause__).__name__
    return error


class ApprovalJsonFormatter(logging.Formatter):
    """Formats a record as one JSON line with the bound approval context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())
        for key, value in vars(record).items():
            if key not in _RESERVED and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = _describe_error(record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_render)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``approval`` tree, e.g. ``get_logger("services.engine")``."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


def _installed(root: logging.Logger) -> logging.Handler | None:
    for handler in root.handlers:
        if handler.get_name() == _HANDLER_NAME:
            return handler
    return None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Install the JSON handler on the ``approval`` tree.

    Idempotent: when a JSON handler is already installed it is returned
    unchanged and ``level`` is ignored.
    """
    root = logging.getLogger(LOGGER_ROOT)
    existing = _installed(root)
    if existing is not None:
        return existing

    installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    installed.set_name(_HANDLER_NAME)
    installed.setFormatter(ApprovalJsonFormatter())
    root.addHandler(installed)
    root.setLevel(level)
    root.propagate = False
    return installed


def reset_logging() -> None:
    """Remove every handler from the ``approval`` tree (tests only)."""
    root = logging.getLogger(LOGGER_ROOT)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
    root.propagate = True
