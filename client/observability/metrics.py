"""
Duration metrics for connections.

A Stopwatch measures one span on the monotonic clock and reports it exactly
once as a METRIC_TIMER log event. Nothing is aggregated in-process.

Metrics emitted by this package:
- connection_dial      websocket handshake (client.connect)
- connection_lifetime  workers started -> socket closed
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


class Stopwatch:
    """
    One running timer.

    Usage:
        sw = start_timer("connection_lifetime")
        try:
            ...
        finally:
            sw.stop(connection_id=conn_id, endpoint="stt")
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._started_ns = time.monotonic_ns()
        self._elapsed_ms: int | None = None

    @property
    def stopped(self) -> bool:
        return self._elapsed_ms is not None

    def stop(
        self,
        *,
        connection_id: str | None = None,
        endpoint: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> int | None:
        """
        Stop and emit the metric.

        Returns the duration in milliseconds, or None if already stopped
        (the metric is never emitted twice).
        """
        if self._elapsed_ms is not None:
            return None

        self._elapsed_ms = (time.monotonic_ns() - self._started_ns) // 1_000_000
        log_event({
            "event_type": "METRIC_TIMER",
            "metric": self.name,
            "value_ms": self._elapsed_ms,
            "connection_id": connection_id,
            "endpoint": endpoint,
            "details": details or {},
        })
        return self._elapsed_ms


def start_timer(name: str) -> Stopwatch:
    return Stopwatch(name)


@contextmanager
def timed(
    name: str,
    *,
    connection_id: str | None = None,
    endpoint: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[Stopwatch]:
    """
    Time a block; the metric is emitted even if the block raises (the
    exception still propagates).
    """
    stopwatch = start_timer(name)
    try:
        yield stopwatch
    finally:
        stopwatch.stop(
            connection_id=connection_id,
            endpoint=endpoint,
            details=details,
        )
