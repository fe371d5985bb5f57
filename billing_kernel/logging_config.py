"""
Structured JSON logging for the billing kernel.

Every record under the ``billing_kernel`` logger is written as one JSON
object: a fixed envelope (ts, level, logger, message), the ambient
LogContext fields (invoice, client, branch, actor, correlation and trace
ids), the record's ``extra=`` fields, and for exceptions the kernel error
code plus the structured attributes of BillingKernelError subclasses.

Money and ids never pass through float or repr: Decimal, UUID, dates and
times are written as strings.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

LOGGER_ROOT = "billing_kernel"

_EMPTY: Mapping[str, str] = MappingProxyType({})

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------


class LogContext:
    """
    Ambient fields stamped on every record of the current thread or task.

    Fields are held as one immutable mapping in a ContextVar; a worker
    thread run under ``contextvars.copy_context()`` sees its parent's fields.
    """

    FIELDS = (
        "correlation_id",
        "actor_id",
        "invoice_id",
        "client_id",
        "branch_id",
        "trace_id",
    )

    _fields: ContextVar[Mapping[str, str]] = ContextVar(
        "billing_log_context", default=_EMPTY
    )

    @classmethod
    def _merged(cls, values: Mapping[str, Any]) -> Mapping[str, str]:
        unknown = set(values) - set(cls.FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        merged = dict(cls._fields.get())
        merged.update({k: str(v) for k, v in values.items() if v is not None})
        return MappingProxyType(merged)

    @classmethod
    def set(cls, **values: Any) -> None:
        """Set fields for the rest of the current context; None leaves a field as is."""
        cls._fields.set(cls._merged(values))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(cls._fields.get())

    @classmethod
    def clear(cls) -> None:
        cls._fields.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **values: Any) -> Iterator[type["LogContext"]]:
        """Set fields for the duration of a ``with`` block, then restore."""
        token = cls._fields.set(cls._merged(values))
        try:
            yield cls
        finally:
            cls._fields.reset(token)


# ---------------------------------------------------------------------------
# JSON formatting
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (datetime, date, time)):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(str(v) for v in obj)
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger for ``name`` under the billing_kernel namespace."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


_configured = False
_configure_lock = threading.Lock()


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level!r}")
    return resolved


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the billing_kernel logger.

    Only the first call has an effect until reset_logging(). Records do not
    propagate to the root logger.
    """
    global _configured
    resolved = _resolve_level(level)
    with _configure_lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(LOGGER_ROOT)
    root.setLevel(resolved)
    root.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging(). For tests."""
    global _configured
    with _configure_lock:
        _configured = False
    root = logging.getLogger(LOGGER_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
