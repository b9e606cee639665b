"""
inventory_engines.tracer -- INVENTORY_ENGINE_TRACE records for engine calls.

``@traced_engine`` logs one record per successful call of a pure engine
method: which engine and version ran, a fingerprint of the inputs that
determine its result, and how long it took.  Two calls with the same
fingerprint are expected to return the same value, which is what makes a
conversion factor or cost on a movement reproducible from the log.

The tracer writes to ``inventory_kernel.engines.tracer`` through the
standard ``logging`` module, so the engines stay free of kernel imports
while the kernel's JSON handler still receives the records.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import json
import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

_logger = logging.getLogger("inventory_kernel.engines.tracer")

FuncT = TypeVar("FuncT", bound=Callable[..., Any])

TRACE_TYPE = "INVENTORY_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16


def _json_default(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """
    SHA-256 over the named arguments, truncated to 16 hex characters.

    Values are serialised as JSON with sorted keys; dataclasses by their
    fields, Decimals, UUIDs and enums by their string form.  Sequences keep
    their order.  An absent field hashes like None.
    """
    selected = {field: arguments.get(field) for field in fingerprint_fields}
    canonical = json.dumps(
        selected, sort_keys=True, default=_json_default, separators=(",", ":")
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable[[FuncT], FuncT]:
    def decorator(func: FuncT) -> FuncT:
        signature = inspect.signature(func)

        def fingerprint(args: tuple, kwargs: dict) -> str:
            if not fingerprint_fields:
                return ""
            try:
                arguments = signature.bind_partial(*args, **kwargs).arguments
            except TypeError:
                arguments = kwargs
            return compute_input_fingerprint(fingerprint_fields, arguments)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            _logger.info(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "function": func.__qualname__,
                    "input_fingerprint": fingerprint(args, kwargs),
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                },
            )
            return result

        return wrapper  # type: ignore[return-value]

    return decorator
