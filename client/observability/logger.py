"""
Structured connection logging (JSONL).

Every call to log_event() writes exactly one compact JSON object on its own
line and flushes. Events go to stdout unless redirected with set_stream();
tools that stream audio over stdout send them to stderr instead.
"""

from __future__ import annotations

import json
import sys
import time
from enum import Enum
from typing import Any, Callable, Mapping, TextIO

import numpy as np


_stream: TextIO | None = None
_enabled: bool = True


def _write_line(line: str) -> None:
    stream = _stream if _stream is not None else sys.stdout
    stream.write(line + "\n")
    stream.flush()


# Output sink; tests replace it to capture lines
_print: Callable[[str], None] = _write_line


def set_enabled(enabled: bool) -> None:
    """Process-wide on/off switch (ClientConfig.enable_json_logs)."""
    global _enabled  # pylint: disable=global-statement
    _enabled = enabled


def set_stream(stream: TextIO | None) -> None:
    """Redirect events to another text stream; None restores stdout."""
    global _stream  # pylint: disable=global-statement
    _stream = stream


def _to_json(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Enum):
        return value.value
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def log_event(event: Mapping[str, Any]) -> None:
    """
    Emit one event.

    `ts_ms` (wall clock, milliseconds) is filled in when the caller did not
    supply one. Numpy scalars and enums are written as plain values.

    Never raises: a payload that still cannot be serialized is replaced by
    a LOGGER_SERIALIZATION_ERROR event carrying its repr.
    """
    if not _enabled:
        return

    payload = dict(event)
    payload.setdefault("ts_ms", int(time.time() * 1000))

    try:
        line = json.dumps(
            payload,
            ensure_ascii=False,
            separators=(",", ":"),
            default=_to_json,
        )
    except (TypeError, ValueError) as e:
        line = json.dumps(
            {
                "ts_ms": payload["ts_ms"],
                "event_type": "LOGGER_SERIALIZATION_ERROR",
                "error": str(e),
                "event_repr": repr(event),
            },
            ensure_ascii=False,
            separators=(",", ":"),
        )

    _print(line)
