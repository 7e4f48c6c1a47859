"""
Transport session: one websocket carrying binary protocol messages.

Responsibilities:
- Dial the endpoint with the API key header (once, at open)
- Send and receive raw binary frames
- Classify remote closure as graceful (GracefulClose) or abrupt
  (TransportError)
- Close with a caller-chosen close code

Non-responsibilities:
- No message encoding (protocol.codec)
- No concurrency policy (session.connection owns the workers)
"""

from __future__ import annotations

import asyncio
from typing import Mapping

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidURI,
)
from websockets.frames import CloseCode

from constants import (
    GRACEFUL_REMOTE_CLOSE_CODES,
    WS_MAX_MESSAGE_BYTES,
    WS_OPEN_TIMEOUT_S,
)
from protocol.codec import UnexpectedMessageError


# -------------------------
# Exceptions
# -------------------------

class TransportError(Exception):
    """Abrupt socket failure (write error, reset, abnormal close)."""


class DialError(TransportError):
    """
    The connection could not be established.

    Raised by open(); never retried.
    """


class GracefulClose(Exception):
    """
    The peer ended the stream cleanly.

    Not an error: inbound workers turn it into a normal end of events.
    """


def is_graceful_close(exc: ConnectionClosed) -> bool:
    """
    True when the peer sent a close frame with a normal / no-status code.
    """
    rcvd = exc.rcvd
    return rcvd is not None and rcvd.code in GRACEFUL_REMOTE_CLOSE_CODES


# -------------------------
# Session
# -------------------------

class TransportSession:
    """
    Thin binary-only wrapper over a websockets ClientConnection.

    Writes must come from a single task; the session does not serialize
    concurrent senders.
    """

    def __init__(self, ws: ClientConnection) -> None:
        self._ws = ws

    @classmethod
    async def open(
        cls,
        url: str,
        headers: Mapping[str, str],
        *,
        open_timeout_s: float = WS_OPEN_TIMEOUT_S,
        max_message_bytes: int = WS_MAX_MESSAGE_BYTES,
    ) -> TransportSession:
        """
        Dial the websocket endpoint.

        Raises:
            DialError if the URL is invalid, the TCP/TLS connection fails,
            the HTTP upgrade is refused, or open_timeout_s elapses.
        """
        try:
            ws = await connect(
                url,
                additional_headers=dict(headers),
                open_timeout=open_timeout_s,
                max_size=max_message_bytes,
                # Server keeps the stream busy; we do not need keepalive pings
                ping_interval=None,
            )
        except (InvalidURI, InvalidHandshake, OSError, asyncio.TimeoutError, TimeoutError) as e:
            raise DialError(f"Failed to dial websocket {url}: {e}") from e

        return cls(ws)

    async def send_binary(self, payload: bytes) -> None:
        """
        Write one binary websocket message.

        Raises:
            TransportError if the socket is closed or the write fails.
        """
        try:
            await self._ws.send(payload)
        except (ConnectionClosed, OSError) as e:
            raise TransportError(
                f"Failed to write message into the websocket connection: {e}"
            ) from e

    async def receive_binary(self) -> bytes:
        """
        Read the next binary websocket message.

        Raises:
            GracefulClose when the peer closed cleanly.
            TransportError on any other closure or read failure.
            UnexpectedMessageError if a text message arrives.
        """
        try:
            message = await self._ws.recv()
        except ConnectionClosed as e:
            if is_graceful_close(e):
                raise GracefulClose() from e
            raise TransportError(f"Websocket connection lost: {e}") from e
        except OSError as e:
            raise TransportError(f"Websocket read failed: {e}") from e

        if isinstance(message, str):
            raise UnexpectedMessageError(
                f"Received an unexpected websocket text message: {message}"
            )
        return message

    async def close(self, code: CloseCode, reason: str = "") -> None:
        """
        Close the websocket with the given close code.

        A socket that already completed a clean closing handshake is not an
        error (EOF-on-close race).

        Raises:
            TransportError if closing fails for any other reason.
        """
        try:
            await self._ws.close(code=code, reason=reason)
        except ConnectionClosedOK:
            return
        except (ConnectionClosed, OSError) as e:
            raise TransportError(f"Failed to close websocket: {e}") from e
