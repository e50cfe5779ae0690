"""Helpers for compact debug logging.

Sensor payloads are usually tiny, but a misbehaving publisher can push
arbitrarily large blobs onto a topic.  This module shortens values
before they are interpolated into log lines.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

# Below DEBUG; used for raw broker event dumps.
TRACE = 5
logging.addLevelName(TRACE, "TRACE")


def truncate_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a copy of *value* with long strings and deep nesting cut short."""
    if _depth > 20:
        return "<max-depth>"

    if value is None:
        return None

    if isinstance(value, str):
        if len(value) > max_string:
            return f"{value[:max_string]}…<truncated>"
        return value

    if isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, (bytes, bytearray)):
        if len(value) > max_string:
            return f"<bytes:{len(value)}b>"
        return bytes(value).decode("utf-8", errors="replace")

    if isinstance(value, Mapping):
        return {str(k): truncate_for_log(v, max_string=max_string, _depth=_depth + 1) for k, v in value.items()}

    if isinstance(value, Sequence):
        return [truncate_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    # Fallback: represent unknown objects without dumping internals.
    return repr(value)
