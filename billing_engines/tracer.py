"""
billing_engines.tracer -- BILLING_ENGINE_TRACE records for pricing calls.

Responsibility:
    ``@traced_engine`` wraps a pure pricing function and, after it returns,
    logs one debug record carrying the engine name and version, a
    fingerprint of the call's arguments, the duration, and an optional
    summary of the result (line total, flag, line counts).

Architecture position:
    Engines -- support for the pure calculation layer.  Logs only; never
    touches inputs or results.

Invariants enforced:
    - Identical arguments give identical fingerprints across processes:
      values are canonicalized (enums by value, mappings and sets sorted,
      dataclasses field by field, dates ISO) before SHA-256 hashing.
    - Pricing calls with equal fingerprints produce equal output.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable, Mapping
from datetime import date, datetime
from datetime import time as time_of_day
from enum import Enum
from typing import Any

_logger = logging.getLogger("billing_kernel.engines.tracer")

FINGERPRINT_LENGTH = 16


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (datetime, date, time_of_day)):
        return value.isoformat()
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _canonicalize(v)) for k, v in value.items())
        return "{" + ",".join(f"{k}:{v}" for k, v in pairs) + "}"
    if isinstance(value, (set, frozenset)):
        return "{" + ",".join(sorted(_canonicalize(v) for v in value)) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    return str(value)


def compute_input_fingerprint(arguments: Mapping[str, Any]) -> str:
    """Truncated SHA-256 over canonicalized call arguments."""
    canonical = _canonicalize(dict(arguments))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    *,
    exclude: tuple[str, ...] = (),
    summarize: Callable[[Any], Mapping[str, Any]] | None = None,
) -> Callable:
    """
    Decorate a pure pricing function with a BILLING_ENGINE_TRACE record.

    Args:
        engine_name: Name recorded as ``engine_name``.
        engine_version: Bumped whenever pricing output can change.
        exclude: Argument names left out of the fingerprint (e.g. worker
            counts that must not affect the result).
        summarize: Maps the return value to extra fields for the record.

    Nothing is fingerprinted or logged unless the tracer logger is
    enabled for DEBUG.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            if not _logger.isEnabledFor(logging.DEBUG):
                return func(*args, **kwargs)

            bound = signature.bind(*args, **kwargs)
            bound.apply_defaults()
            fingerprint = compute_input_fingerprint(
                {k: v for k, v in bound.arguments.items() if k not in exclude}
            )

            started = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - started) * 1000, 2)

            extra = {
                "trace_type": "BILLING_ENGINE_TRACE",
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "duration_ms": duration_ms,
                "function": func.__qualname__,
            }
            if summarize is not None:
                extra.update(summarize(result))
            _logger.debug("BILLING_ENGINE_TRACE", extra=extra)
            return result

        return wrapper

    return decorator
