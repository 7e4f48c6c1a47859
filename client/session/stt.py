"""
STT connection policy (speech-to-text over /api/asr-streaming).

Outbound framing:
- The first sample batch ever is preceded by one second of silence, which
  primes the server model's lookahead buffer.
- Batches accumulate in a FrameBuffer; every full STT_FRAME_SIZE frame is
  sent as one Audio message.
- On finish(): the leftover partial frame is zero-padded and sent, then
  Marker(DRAIN_MARKER_ID), then one second of silence per second until the
  reader reports the marker echo.

Inbound demultiplexing:
- Marker(DRAIN_MARKER_ID) is never published; it switches the reader into
  draining and releases the writer's silence loop.
- While draining, Steps with buffered_pcm > 0 are dropped (the server is
  still flushing); the first Step with buffered_pcm == 0 ends the stream.
- Caller markers (id >= FIRST_MARKER_ID) are always published.

The server has no end-of-stream message for STT: this drain handshake is
the only way to know every submitted sample has been processed.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, cast

from audio.frames import FrameBuffer, one_second_of_silence
from audio.pcm import SampleBatch, as_float32_mono
from constants import (
    DRAIN_MARKER_ID,
    FIRST_MARKER_ID,
    STT_DRAIN_SILENCE_INTERVAL_S,
    STT_FRAME_SIZE,
    STT_SILENCE_SAMPLES,
)
from protocol.codec import UnexpectedMessageError, decode_body, decode_header
from protocol.messages import Audio, Marker, MessageType, Step
from session.connection import END_OF_INPUT, Connection
from session.transport import GracefulClose, TransportSession


# Server messages published to the caller as-is
_PUBLISHED_AS_IS = frozenset({
    MessageType.READY,
    MessageType.WORD,
    MessageType.END_WORD,
})


class STTConnection(Connection[SampleBatch]):
    """
    Speech-to-text connection.

    Units are float32 mono 24kHz sample batches of any length. Events are
    Ready, Word, WordEnd, Step and the caller's own Marker echoes.
    """

    endpoint = "stt"

    def __init__(
        self,
        transport: TransportSession,
        *,
        frame_size: int = STT_FRAME_SIZE,
        drain_silence_interval_s: float = STT_DRAIN_SILENCE_INTERVAL_S,
        **kwargs: Any,
    ) -> None:
        super().__init__(transport, **kwargs)
        self._frame_size = frame_size
        self._drain_silence_interval_s = drain_silence_interval_s

        self._marker_ids = itertools.count(FIRST_MARKER_ID)

        # Set once by the reader when the drain marker echo arrives
        self._drain_started = asyncio.Event()
        self._draining = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send_marker(self) -> int:
        """
        Queue a latency marker behind the audio submitted so far.

        The server echoes it once everything before it has been processed;
        the echo is published as a Marker event with the returned id.

        Returns:
            The marker id (>= 1, unique for this connection).
        """
        if self._input_finished:
            raise RuntimeError("send_marker() called after finish()")

        marker_id = next(self._marker_ids)
        await self._enqueue(Marker(id=marker_id))
        return marker_id

    @property
    def draining(self) -> bool:
        return self._draining

    # ------------------------------------------------------------------
    # Connection hooks
    # ------------------------------------------------------------------

    def _prepare(self, unit: SampleBatch) -> Any:
        return as_float32_mono(unit)

    async def _write_loop(self) -> None:
        buffer = FrameBuffer(self._frame_size)
        primed = False

        while True:
            unit = await self._outbound.get()
            if unit is END_OF_INPUT:
                break

            if isinstance(unit, Marker):
                await self._send(unit)
                continue

            if not primed:
                await self._send(Audio(pcm=one_second_of_silence()))
                primed = True
                self._log("STT_PRIMING_SENT", samples=STT_SILENCE_SAMPLES)

            buffer.extend(unit)
            for frame in buffer.frames():
                await self._send(Audio(pcm=frame))

        await self._flush_and_drain(buffer)

    async def _flush_and_drain(self, buffer: FrameBuffer) -> None:
        tail = buffer.flush()
        if tail is not None:
            await self._send(Audio(pcm=tail))
        self._log("STT_FLUSH", padded_frame=tail is not None)

        await self._send(Marker(id=DRAIN_MARKER_ID))
        self._log("STT_DRAIN_MARKER_SENT")

        # Keep the server pipeline consuming at real time until the echo
        silences = 0
        while not self._drain_started.is_set():
            try:
                await asyncio.wait_for(
                    self._drain_started.wait(),
                    timeout=self._drain_silence_interval_s,
                )
            except asyncio.TimeoutError:
                await self._send(Audio(pcm=one_second_of_silence()))
                silences += 1

        self._log("STT_WRITER_DONE", drain_silences=silences)

    async def _read_loop(self) -> None:
        while True:
            try:
                payload = await self._transport.receive_binary()
            except GracefulClose:
                return

            raw = decode_header(payload)
            kind = raw.kind

            if kind is MessageType.MARKER:
                marker = cast(Marker, decode_body(raw))
                if marker.id != DRAIN_MARKER_ID:
                    await self._publish(marker)
                elif not self._draining:
                    self._draining = True
                    self._drain_started.set()
                    self._log("STT_DRAIN_STARTED")

            elif kind is MessageType.STEP:
                step = cast(Step, decode_body(raw))
                if not self._draining:
                    await self._publish(step)
                elif step.buffered_pcm == 0:
                    self._log("STT_DRAIN_COMPLETE", step_idx=step.step_idx)
                    return

            elif kind in _PUBLISHED_AS_IS:
                await self._publish(decode_body(raw))

            else:
                raise UnexpectedMessageError(
                    f"Unexpected {kind.value} message on the STT stream"
                )
