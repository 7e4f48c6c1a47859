"""
Connection engine: caller surface + lifecycle coordinator.

Core model:
- One Connection = one TransportSession + one writer task + one reader task,
  supervised by a single coordinator task (the shared cancellable scope).
- The writer is the ONLY task that writes to the socket.
- The reader is the ONLY task that reads from the socket and publishes
  events, in receipt order.
- If either worker fails, the other is cancelled at its next await and the
  first error becomes the connection's terminal result.
- If the reader ends cleanly (graceful remote close, or STT drain complete)
  the stream is over; a writer still waiting for input is cancelled.

Close codes:
- clean outcome                -> 1000 normal closure
- cancelled / deadline expired -> 1001 going away
- any other failure            -> 1011 internal error

Endpoint policies (TTS / STT) live in subclasses; they implement
_prepare(), _write_loop() and _read_loop().
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Generic, Optional, TypeVar

from websockets.frames import CloseCode

from constants import (
    CLOSE_GOING_AWAY,
    CLOSE_INTERNAL_ERROR,
    CLOSE_NORMAL,
    INBOUND_QUEUE_MAX,
    OUTBOUND_QUEUE_MAX,
)
from observability.logger import log_event
from observability.metrics import start_timer
from protocol.codec import encode
from protocol.messages import Message
from session.transport import TransportError, TransportSession


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class StreamCancelled(Exception):
    """The connection was cancelled before it completed."""


class StreamClosed(Exception):
    """
    Raised by submit() when the connection has already ended.

    The reason, if any, is chained as __cause__; wait() raises it.
    """


# Placed on the outbound queue by finish(); never sent as-is.
END_OF_INPUT: Any = object()

UnitT = TypeVar("UnitT")


class Connection(ABC, Generic[UnitT]):
    """
    Base class for one streaming connection.

    Usage:
        conn = await client.connect()
        async with conn:
            await conn.submit(unit)
            ...
            await conn.finish()
            async for event in conn.results():
                ...
        # leaving the block waits for shutdown and raises the terminal error

    Not thread-safe: use from the event loop that created it.
    """

    endpoint: str = "unknown"

    def __init__(
        self,
        transport: TransportSession,
        *,
        deadline_s: float | None = None,
        outbound_maxsize: int = OUTBOUND_QUEUE_MAX,
        inbound_maxsize: int = INBOUND_QUEUE_MAX,
    ) -> None:
        if deadline_s is not None and deadline_s <= 0:
            raise ValueError("deadline_s must be > 0")

        self.connection_id = f"conn_{uuid.uuid4().hex[:12]}"
        self._transport = transport
        self._deadline_s = deadline_s

        self._outbound: asyncio.Queue[Any] = asyncio.Queue(maxsize=outbound_maxsize)
        self._events: asyncio.Queue[Message] = asyncio.Queue(maxsize=inbound_maxsize)

        self._cancel_requested = asyncio.Event()
        self._input_finished = False

        self._supervisor: Optional[asyncio.Task[None]] = None
        self._error: BaseException | None = None
        self.close_code: CloseCode | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """
        Spawn the coordinator (which spawns both workers).

        Called once by the client right after the handshake.
        """
        if self._supervisor is not None:
            raise RuntimeError("Connection already started")

        self._supervisor = asyncio.create_task(
            self._supervise(),
            name=f"{self.endpoint}-{self.connection_id}",
        )
        self._log("CONNECTION_OPENED", deadline_s=self._deadline_s)

    @property
    def done(self) -> bool:
        """True once both workers stopped and the socket is closed."""
        return self._supervisor is not None and self._supervisor.done()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, unit: UnitT) -> None:
        """
        Enqueue one outbound unit for the writer.

        Waits while the outbound queue is full.

        Raises:
            RuntimeError if finish() was already called.
            StreamClosed if the connection ended before the unit was accepted.
        """
        if self._input_finished:
            raise RuntimeError("submit() called after finish()")
        await self._enqueue(self._prepare(unit))

    async def finish(self) -> None:
        """
        Signal that no more units will be submitted.

        Idempotent. A no-op on a connection that has already ended.
        """
        if self._input_finished:
            return
        self._input_finished = True
        try:
            await self._enqueue(END_OF_INPUT)
        except StreamClosed:
            pass

    async def results(self) -> AsyncIterator[Message]:
        """
        Iterate inbound events in receipt order until the stream ends.

        Finite and non-restartable. Ends early (without raising) if the
        connection fails; call wait() for the reason.
        """
        supervisor = self._require_started()
        while True:
            try:
                event = self._events.get_nowait()
            except asyncio.QueueEmpty:
                if supervisor.done():
                    return
                event = await self._next_event(supervisor)
                if event is None:
                    # Connection ended; drain anything still queued
                    continue
            yield event

    async def wait(self) -> None:
        """
        Block until both workers have stopped and the socket is closed.

        Cancelling this call (caller deadline) cancels the connection too.

        Raises:
            The connection's terminal error, if any.
        """
        supervisor = self._require_started()
        try:
            await asyncio.shield(supervisor)
        except asyncio.CancelledError:
            self.cancel()
            raise

        if self._error is not None:
            raise self._error

    def cancel(self) -> None:
        """
        Cancel the shared scope. Both workers stop at their next await and
        the socket is closed with 1001 going away.
        """
        self._cancel_requested.set()

    @property
    def error(self) -> BaseException | None:
        """Terminal error once done (None while running or on success)."""
        return self._error

    async def __aenter__(self) -> Connection[UnitT]:
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        if exc_type is not None:
            self.cancel()
            await asyncio.shield(self._require_started())
            return False

        await self.finish()
        await self.wait()
        return False

    # ------------------------------------------------------------------
    # Endpoint policy hooks
    # ------------------------------------------------------------------

    @abstractmethod
    def _prepare(self, unit: UnitT) -> Any:
        """Validate / convert a caller unit before it is queued."""
        raise NotImplementedError

    @abstractmethod
    async def _write_loop(self) -> None:
        """Outbound worker: drain self._outbound onto the socket."""
        raise NotImplementedError

    @abstractmethod
    async def _read_loop(self) -> None:
        """Inbound worker: drain the socket into self._events."""
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Worker helpers
    # ------------------------------------------------------------------

    async def _send(self, message: Message) -> None:
        await self._transport.send_binary(encode(message))

    async def _publish(self, event: Message) -> None:
        # Blocks while the caller is not reading; cancellation interrupts it.
        await self._events.put(event)

    def _log(self, event_type: str, **details: Any) -> None:
        log_event({
            "event_type": event_type,
            "connection_id": self.connection_id,
            "endpoint": self.endpoint,
            **details,
        })

    # ------------------------------------------------------------------
    # Caller-side queue helpers
    # ------------------------------------------------------------------

    def _require_started(self) -> asyncio.Task[None]:
        if self._supervisor is None:
            raise RuntimeError("Connection not started")
        return self._supervisor

    async def _enqueue(self, item: Any) -> None:
        supervisor = self._require_started()
        if supervisor.done():
            raise StreamClosed(
                f"{self.endpoint} connection is closed"
            ) from self._error

        put = asyncio.ensure_future(self._outbound.put(item))
        try:
            done, _ = await asyncio.wait(
                {put, supervisor},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not put.done():
                put.cancel()

        if put not in done:
            raise StreamClosed(
                f"{self.endpoint} connection ended before the unit was accepted"
            ) from self._error

    async def _next_event(self, supervisor: asyncio.Task[None]) -> Message | None:
        getter = asyncio.ensure_future(self._events.get())
        try:
            done, _ = await asyncio.wait(
                {getter, supervisor},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not getter.done():
                getter.cancel()

        if getter in done:
            return getter.result()
        return None

    # ------------------------------------------------------------------
    # Lifecycle coordinator
    # ------------------------------------------------------------------

    async def _supervise(self) -> None:
        stopwatch = start_timer("connection_lifetime")
        writer = asyncio.create_task(
            self._write_loop(), name=f"{self.connection_id}-writer"
        )
        reader = asyncio.create_task(
            self._read_loop(), name=f"{self.connection_id}-reader"
        )

        error: BaseException | None = None
        try:
            error = await self._await_workers(writer, reader)
        except asyncio.CancelledError:
            # Supervisor itself cancelled (event loop shutdown)
            error = StreamCancelled(f"{self.endpoint} connection supervisor cancelled")
            raise
        finally:
            await self._stop_workers(writer, reader)
            await self._close_transport(error)
            stopwatch.stop(
                connection_id=self.connection_id,
                endpoint=self.endpoint,
                details={"close_code": int(self.close_code or 0)},
            )

    async def _await_workers(
        self,
        writer: asyncio.Task[None],
        reader: asyncio.Task[None],
    ) -> BaseException | None:
        """
        Wait for the first decisive worker outcome.

        Returns the terminal error, or None for a clean end.
        """
        loop = asyncio.get_running_loop()
        deadline = None if self._deadline_s is None else loop.time() + self._deadline_s

        cancel_waiter = asyncio.ensure_future(self._cancel_requested.wait())
        pending = {writer, reader}
        try:
            while pending:
                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                done, _ = await asyncio.wait(
                    pending | {cancel_waiter},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if not done:
                    return TimeoutError(
                        f"{self.endpoint} connection deadline of {self._deadline_s}s exceeded"
                    )

                # Worker outcomes first so a real failure wins over a cancel
                for task, role in ((writer, "writer"), (reader, "reader")):
                    if task not in done:
                        continue
                    pending.discard(task)

                    if task.cancelled():
                        return StreamCancelled(f"{self.endpoint} {role} cancelled")

                    exc = task.exception()
                    if exc is not None:
                        self._log(
                            "WORKER_FAILED",
                            role=role,
                            error=f"{type(exc).__name__}: {exc}",
                        )
                        return exc

                    if task is reader:
                        # Inbound stream is over; nothing left to wait for
                        return None

                if cancel_waiter in done:
                    return StreamCancelled(f"{self.endpoint} connection cancelled")

            return None
        finally:
            cancel_waiter.cancel()

    async def _stop_workers(self, *workers: asyncio.Task[None]) -> None:
        for task in workers:
            if not task.done():
                task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def _close_transport(self, error: BaseException | None) -> None:
        if error is None:
            code = CLOSE_NORMAL
        elif isinstance(error, (StreamCancelled, TimeoutError)):
            code = CLOSE_GOING_AWAY
        else:
            code = CLOSE_INTERNAL_ERROR

        try:
            await self._transport.close(code)
        except TransportError as e:
            # Keep the initial stop error if there is one
            if error is None:
                error = e

        self._error = error
        self.close_code = code
        self._log(
            "CONNECTION_CLOSED",
            close_code=int(code),
            error=None if error is None else f"{type(error).__name__}: {error}",
        )
