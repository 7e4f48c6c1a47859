# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json
from typing import Any

import msgpack
import numpy as np
import pytest

from constants import CLOSE_GOING_AWAY, CLOSE_INTERNAL_ERROR, CLOSE_NORMAL
from protocol.codec import UnexpectedMessageError, UnknownMessageType
from protocol.messages import Audio, EndOfStream, Marker, Message, Ready, Text, Word
from session.connection import StreamCancelled, StreamClosed
from session.transport import TransportError
from session.tts import TTSConnection


def _echo_server(transport_ref: list[Any]):
    """Echo every Text back; answer Eos with audio then a clean close."""
    def reply(message: Message) -> list[Message]:
        if isinstance(message, Text):
            return [message]
        if isinstance(message, EndOfStream):
            transport_ref[0].close_gracefully()
            return []
        return []
    return reply


async def _collect(conn: TTSConnection) -> list[Message]:
    return [event async for event in conn.results()]


# ---------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------

def test_tts_happy_path(make_transport: Any) -> None:
    pcm = np.array([0.0, 0.5, -0.5], dtype=np.float32)

    async def run() -> tuple[Any, TTSConnection, list[Message]]:
        ref: list[Any] = []

        def reply(message: Message) -> list[Message]:
            if isinstance(message, Text):
                return [message]
            if isinstance(message, EndOfStream):
                ref[0].push(Audio(pcm=pcm))
                ref[0].close_gracefully()
            return []

        transport = make_transport(reply)
        ref.append(transport)
        transport.push(Ready())

        conn = TTSConnection(transport)
        conn.start()

        await conn.submit("Hello")
        await conn.submit("world")
        await conn.finish()

        events = await _collect(conn)
        await conn.wait()
        return transport, conn, events

    transport, conn, events = asyncio.run(run())

    assert transport.sent == [Text("Hello"), Text("world"), EndOfStream()]
    assert events == [Ready(), Text("Hello"), Text("world"), Audio(pcm=pcm)]
    assert transport.close_codes == [CLOSE_NORMAL]
    assert conn.close_code == CLOSE_NORMAL
    assert conn.error is None
    assert conn.done


def test_context_manager_finishes_and_waits(make_transport: Any) -> None:
    async def run() -> Any:
        ref: list[Any] = []
        transport = make_transport(_echo_server(ref))
        ref.append(transport)

        conn = TTSConnection(transport)
        conn.start()
        async with conn:
            await conn.submit("hi")

        assert conn.done
        return transport

    transport = asyncio.run(run())

    assert transport.sent == [Text("hi"), EndOfStream()]
    assert transport.close_codes == [CLOSE_NORMAL]


def test_finish_is_idempotent(make_transport: Any) -> None:
    async def run() -> Any:
        ref: list[Any] = []
        transport = make_transport(_echo_server(ref))
        ref.append(transport)

        conn = TTSConnection(transport)
        conn.start()
        await conn.finish()
        await conn.finish()
        await conn.wait()
        return transport

    transport = asyncio.run(run())

    assert transport.sent == [EndOfStream()]


# ---------------------------------------------------------------------
# Caller misuse
# ---------------------------------------------------------------------

def test_submit_after_finish_raises(make_transport: Any) -> None:
    async def run() -> None:
        conn = TTSConnection(make_transport())
        conn.start()
        await conn.finish()
        with pytest.raises(RuntimeError):
            await conn.submit("late")
        conn.cancel()
        with pytest.raises(StreamCancelled):
            await conn.wait()

    asyncio.run(run())


def test_submit_rejects_non_text_units(make_transport: Any) -> None:
    async def run() -> None:
        conn = TTSConnection(make_transport())
        conn.start()
        with pytest.raises(TypeError):
            await conn.submit(b"bytes")  # type: ignore[arg-type]
        conn.cancel()
        with pytest.raises(StreamCancelled):
            await conn.wait()

    asyncio.run(run())


def test_submit_on_ended_connection_raises_stream_closed(make_transport: Any) -> None:
    async def run() -> None:
        transport = make_transport()
        transport.fail(TransportError("connection reset"))

        conn = TTSConnection(transport)
        conn.start()
        with pytest.raises(TransportError):
            await conn.wait()

        with pytest.raises(StreamClosed) as excinfo:
            await conn.submit("too late")
        assert isinstance(excinfo.value.__cause__, TransportError)

        # finish() on an ended connection is a no-op
        await conn.finish()

    asyncio.run(run())


def test_results_requires_a_started_connection(make_transport: Any) -> None:
    async def run() -> None:
        conn = TTSConnection(make_transport())
        with pytest.raises(RuntimeError):
            await conn.results().__anext__()

    asyncio.run(run())


# ---------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------

def test_abrupt_disconnect_is_terminal_transport_error(make_transport: Any) -> None:
    async def run() -> tuple[Any, TTSConnection, list[Message]]:
        transport = make_transport()
        transport.push(Ready())
        transport.fail(TransportError("websocket connection lost"))

        conn = TTSConnection(transport)
        conn.start()
        await conn.submit("Hello")

        events = await _collect(conn)
        with pytest.raises(TransportError):
            await conn.wait()
        return transport, conn, events

    transport, conn, events = asyncio.run(run())

    assert events == [Ready()]
    assert isinstance(conn.error, TransportError)
    assert transport.close_codes == [CLOSE_INTERNAL_ERROR]


def test_unknown_discriminator_fails_the_connection(make_transport: Any) -> None:
    async def run() -> Any:
        transport = make_transport()
        transport.push_raw(msgpack.packb({"type": "Bogus"}))

        conn = TTSConnection(transport)
        conn.start()
        with pytest.raises(UnknownMessageType):
            await conn.wait()
        return transport

    transport = asyncio.run(run())

    assert transport.close_codes == [CLOSE_INTERNAL_ERROR]


@pytest.mark.parametrize("message", [Word(text="x", start_time=0.0), Marker(id=1)])
def test_stt_variant_on_tts_stream_is_unexpected(
    make_transport: Any,
    message: Message,
) -> None:
    async def run() -> None:
        transport = make_transport()
        transport.push(message)

        conn = TTSConnection(transport)
        conn.start()
        with pytest.raises(UnexpectedMessageError):
            await conn.wait()

    asyncio.run(run())


def test_write_failure_cancels_reader(make_transport: Any) -> None:
    async def run() -> Any:
        transport = make_transport()
        transport.send_error = TransportError("broken pipe")

        conn = TTSConnection(transport)
        conn.start()
        await conn.submit("Hello")
        with pytest.raises(TransportError):
            await conn.wait()
        return transport

    transport = asyncio.run(run())

    assert transport.close_codes == [CLOSE_INTERNAL_ERROR]


def test_worker_failure_is_logged(
    make_transport: Any,
    captured_logs: list[str],
) -> None:
    async def run() -> None:
        transport = make_transport()
        transport.fail(TransportError("reset"))

        conn = TTSConnection(transport)
        conn.start()
        with pytest.raises(TransportError):
            await conn.wait()

    asyncio.run(run())

    events = [json.loads(line) for line in captured_logs]
    failed = [e for e in events if e["event_type"] == "WORKER_FAILED"]
    closed = [e for e in events if e["event_type"] == "CONNECTION_CLOSED"]

    assert len(failed) == 1
    assert failed[0]["role"] == "reader"
    assert failed[0]["endpoint"] == "tts"
    assert closed[0]["close_code"] == int(CLOSE_INTERNAL_ERROR)


# ---------------------------------------------------------------------
# Cancellation / deadline
# ---------------------------------------------------------------------

def test_cancel_with_both_workers_blocked(make_transport: Any) -> None:
    async def run() -> tuple[Any, TTSConnection]:
        transport = make_transport()
        # More events than the caller-facing queue holds; nobody reads them
        transport.push(*[Ready() for _ in range(5)])

        conn = TTSConnection(transport, inbound_maxsize=1)
        conn.start()

        # Writer waits for input, reader waits on the full event queue
        await asyncio.sleep(0.05)
        assert not conn.done

        conn.cancel()
        with pytest.raises(StreamCancelled):
            await asyncio.wait_for(conn.wait(), timeout=1.0)
        return transport, conn

    transport, conn = asyncio.run(run())

    assert transport.sent == []
    assert transport.close_codes == [CLOSE_GOING_AWAY]
    assert conn.close_code == CLOSE_GOING_AWAY


def test_deadline_closes_with_going_away(make_transport: Any) -> None:
    async def run() -> Any:
        transport = make_transport()
        conn = TTSConnection(transport, deadline_s=0.05)
        conn.start()
        with pytest.raises(TimeoutError):
            await conn.wait()
        return transport

    transport = asyncio.run(run())

    assert transport.close_codes == [CLOSE_GOING_AWAY]


def test_cancelling_wait_cancels_the_connection(make_transport: Any) -> None:
    async def run() -> TTSConnection:
        conn = TTSConnection(make_transport())
        conn.start()
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(conn.wait(), timeout=0.05)

        with pytest.raises(StreamCancelled):
            await conn.wait()
        return conn

    conn = asyncio.run(run())

    assert conn.close_code == CLOSE_GOING_AWAY


def test_error_inside_context_manager_cancels(make_transport: Any) -> None:
    async def run() -> tuple[Any, TTSConnection]:
        transport = make_transport()
        conn = TTSConnection(transport)
        conn.start()
        with pytest.raises(KeyError):
            async with conn:
                raise KeyError("caller bug")
        return transport, conn

    transport, conn = asyncio.run(run())

    assert conn.done
    assert transport.sent == []
    assert transport.close_codes == [CLOSE_GOING_AWAY]


def test_invalid_deadline_is_rejected(make_transport: Any) -> None:
    with pytest.raises(ValueError):
        TTSConnection(make_transport(), deadline_s=0)
