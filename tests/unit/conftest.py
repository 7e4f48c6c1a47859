# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Any, Callable, Iterable

import pytest

from observability import logger
from protocol.codec import decode, encode
from protocol.messages import Message
from session.transport import GracefulClose


class FakeTransport:
    """
    In-memory stand-in for TransportSession.

    - Outbound payloads are decoded and recorded in `sent`
    - Inbound payloads are scripted with push() / push_raw()
    - `reply` lets a test play the server: it is called with every decoded
      outbound message and returns the messages to push back
    """

    def __init__(
        self,
        reply: Callable[[Message], Iterable[Message] | None] | None = None,
    ) -> None:
        self.sent: list[Message] = []
        self.close_codes: list[int] = []
        self.reply = reply
        self.send_error: Exception | None = None
        self._inbound: asyncio.Queue[Any] = asyncio.Queue()

    # Scripting --------------------------------------------------------

    def push(self, *messages: Message) -> None:
        for message in messages:
            self._inbound.put_nowait(encode(message))

    def push_raw(self, payload: bytes) -> None:
        self._inbound.put_nowait(payload)

    def close_gracefully(self) -> None:
        self._inbound.put_nowait(GracefulClose())

    def fail(self, exc: Exception) -> None:
        self._inbound.put_nowait(exc)

    # TransportSession surface -----------------------------------------

    async def send_binary(self, payload: bytes) -> None:
        if self.send_error is not None:
            raise self.send_error

        message = decode(payload)
        self.sent.append(message)
        if self.reply is not None:
            self.push(*(self.reply(message) or ()))

    async def receive_binary(self) -> bytes:
        item = await self._inbound.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self, code: int, reason: str = "") -> None:
        self.close_codes.append(int(code))


@pytest.fixture(autouse=True)
def captured_logs(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Keep JSONL output off stdout and available to assertions."""
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_enabled", True)
    return lines


@pytest.fixture
def make_transport() -> type[FakeTransport]:
    return FakeTransport
