"""
approval_engines.tracer -- Engine invocation tracer emitting APPROVAL_ENGINE_TRACE.

Responsibility:
    Provide a lightweight decorator (``@traced_engine``) that wraps pure
    engine invocations with structured trace logging.  The trace captures
    engine_name, engine_version, input_fingerprint (deterministic SHA-256
    hash of selected inputs), and duration_ms.

Architecture position:
    Engines -- infrastructure support for the pure decision layer.
    Does NOT introduce I/O into engines; emits a log record only.
    Uses its own logger namespace (``approval_kernel.engines.tracer``)
    to avoid importing kernel logging infrastructure.

Invariants enforced:
    - Fingerprint computation is deterministic: _canonicalize produces
      stable string representations; dict keys and sets are sorted; the
      hash is SHA-256 truncated to 16 hex chars.
    - Engine purity: the decorator only reads arguments and emits a log
      record; it does not mutate inputs or inject side effects.

Failure modes:
    - Fingerprint fields that are not parameters of the wrapped function
      are recorded as "null".

Usage:
    from approval_engines.tracer import traced_engine

    @traced_engine("policy_matcher", "1.0", fingerprint_fields=("action",))
    def match_policy(action, policies):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

_logger = logging.getLogger("approval_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Produce a stable string representation of a value for fingerprinting.

    Dataclasses are expanded field by field; sets and frozensets are
    sorted so iteration order never leaks into the fingerprint.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return _canonicalize(
            {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        )
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (set, frozenset)):
        return "[" + ",".join(sorted(_canonicalize(v) for v in value)) + "]"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: dict[str, Any],
) -> str:
    """Compute a deterministic SHA-256 fingerprint of selected input fields.

    Returns a 16-character hex string.  Missing fields are recorded as
    "null".  Identical inputs always yield the identical fingerprint.
    """
    parts: list[str] = []
    for field in fingerprint_fields:
        val = arguments.get(field)
        parts.append(f"{field}={_canonicalize(val)}")
    canonical = "|".join(parts)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator that emits APPROVAL_ENGINE_TRACE for pure engine invocations.

    Args:
        engine_name: Engine identifier (e.g., "policy_matcher").
        engine_version: Engine version (e.g., "1.0").
        fingerprint_fields: Parameter names to include in the input
            fingerprint hash.  Positional and keyword arguments are both
            resolved against the wrapped function's signature.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fp = compute_input_fingerprint(fingerprint_fields, bound.arguments)

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.info(
                "APPROVAL_ENGINE_TRACE",
                extra={
                    "trace_type": "APPROVAL_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
