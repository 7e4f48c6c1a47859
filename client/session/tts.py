"""
TTS connection policy (text-to-speech over /api/tts_streaming).

- Each submitted string is sent immediately as one Text message.
- finish() sends Eos and the writer exits.
- The reader publishes Ready, Text (alignment echo) and Audio until the
  server closes the socket gracefully.
"""

from __future__ import annotations

from typing import Any

from protocol.codec import UnexpectedMessageError, decode_body, decode_header
from protocol.messages import EndOfStream, MessageType, Text
from session.connection import END_OF_INPUT, Connection
from session.transport import GracefulClose


_PUBLISHED = frozenset({
    MessageType.READY,
    MessageType.TEXT,
    MessageType.AUDIO,
})


class TTSConnection(Connection[str]):
    """
    Text-to-speech connection. Units are text tokens (typically words).
    """

    endpoint = "tts"

    def _prepare(self, unit: str) -> Any:
        if not isinstance(unit, str):
            raise TypeError(f"TTS units must be str, got {type(unit).__name__}")
        return unit

    async def _write_loop(self) -> None:
        while True:
            unit = await self._outbound.get()
            if unit is END_OF_INPUT:
                await self._send(EndOfStream())
                return
            await self._send(Text(text=unit))

    async def _read_loop(self) -> None:
        while True:
            try:
                payload = await self._transport.receive_binary()
            except GracefulClose:
                return

            raw = decode_header(payload)
            if raw.kind not in _PUBLISHED:
                raise UnexpectedMessageError(
                    f"Unexpected {raw.kind.value} message on the TTS stream"
                )
            await self._publish(decode_body(raw))
