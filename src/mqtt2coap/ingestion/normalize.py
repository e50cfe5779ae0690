"""Normalization helpers.

Centralizes the lenient parsing applied to every inbound message:

* the topic loses its leading prefix segment and becomes a namespace,
* the payload is parsed as a JSON object (anything else counts as empty),
* each top-level field is coerced to a float or skipped.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from mqtt2coap._logfmt import truncate_for_log
from mqtt2coap.models import FlatField

_logger = logging.getLogger(__name__)

# Strings that count as "on"; every other string maps to 0.0.
_TRUTHY_STRINGS: frozenset[str] = frozenset({"on", "1", "true"})


def normalize_topic(topic: str, separator: str = "/") -> str:
    """Strip everything up to and including the first *separator*.

    Topics without the separator are returned unchanged.
    """
    _prefix, found, rest = topic.partition(separator)
    return rest if found else topic


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant {name}")


def _parse_finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise ValueError(f"number out of range: {truncate_for_log(literal, max_string=40)}")
    return value


def _parse_float_range_int(literal: str) -> int:
    value = int(literal)
    try:
        float(value)
    except OverflowError as exc:
        raise ValueError(f"number out of range: {truncate_for_log(literal, max_string=40)}") from exc
    return value


def parse_payload(payload: bytes, *, index: int | None = None) -> dict[str, Any]:
    """Parse *payload* as a JSON object.

    Invalid UTF-8 is replaced, not rejected.  Unparseable payloads,
    numbers outside the float range and top-level values that are not
    objects yield an empty dict.
    """
    text = payload.decode("utf-8", errors="replace")
    try:
        parsed = json.loads(
            text,
            parse_constant=_reject_constant,
            parse_float=_parse_finite_float,
            parse_int=_parse_float_range_int,
        )
    except ValueError as exc:
        _logger.debug("Payload #%s is not JSON (%s): %s", index, exc, truncate_for_log(text))
        return {}
    if not isinstance(parsed, dict):
        _logger.debug("Payload #%s is %s, not an object", index, type(parsed).__name__)
        return {}
    return parsed


def coerce_value(value: Any) -> float | None:
    """Coerce a JSON value to a float reading.

    Returns ``None`` for values that carry no scalar reading
    (null, objects, arrays).
    """
    # bool is an int subclass, test it first
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return None
    if isinstance(value, str):
        return 1.0 if value.lower() in _TRUTHY_STRINGS else 0.0
    return None


def flatten_payload(
    namespace: str,
    payload: bytes,
    *,
    index: int | None = None,
) -> list[FlatField]:
    """Flatten a JSON object payload into one :class:`FlatField` per scalar."""
    data = parse_payload(payload, index=index)
    _logger.debug("Json #%s = %s -- %s", index, namespace, truncate_for_log(data))

    fields: list[FlatField] = []
    for name, raw in data.items():
        value = coerce_value(raw)
        if value is None:
            _logger.error("Could not parse json value #%s %s: %s", index, name, truncate_for_log(raw))
            continue
        fields.append(FlatField(key=f"{namespace}/{name}", value=value))
    return fields
