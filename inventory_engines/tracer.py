"""
Invocation tracing for the matching engines.

``@traced_engine`` logs one ``INVENTORY_ENGINE_TRACE`` record per call:
the engine name and version, a fingerprint of the keyword inputs named in
``fingerprint_fields``, how long the call took, how many results it
returned (for sized results) and whether it raised. Two calls with equal
fingerprints saw the same inputs, which is what makes a ranking dispute
reproducible from the logs alone.

Only keyword arguments are fingerprinted; engines are called with
keywords throughout. A named field that was not passed counts as None.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import json
import time
from collections.abc import Callable, Mapping, Sized
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from inventory_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_MESSAGE = "INVENTORY_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16


def _plain(value: Any) -> Any:
    """Reduce engine inputs to JSON-encodable values with a stable layout."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            "__type__": type(value).__name__,
            **{f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)},
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_plain(v) for v in value), key=repr)
    if isinstance(value, (Decimal, date)):
        return str(value)
    return value


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: Mapping[str, Any],
) -> str:
    document = {name: _plain(kwargs.get(name)) for name in fingerprint_fields}
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            trace: dict[str, Any] = {
                "trace_type": TRACE_MESSAGE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "function": func.__qualname__,
                "input_fingerprint": (
                    compute_input_fingerprint(fingerprint_fields, kwargs)
                    if fingerprint_fields
                    else ""
                ),
            }
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                trace["outcome"] = "error"
                trace["error_type"] = type(exc).__name__
                raise
            else:
                trace["outcome"] = "ok"
                if isinstance(result, Sized) and not isinstance(result, str):
                    trace["result_count"] = len(result)
                return result
            finally:
                trace["duration_ms"] = round((time.perf_counter() - started) * 1000, 2)
                logger.info(TRACE_MESSAGE, extra=trace)

        return wrapper

    return decorator
