"""
Kyutai streaming STT client.

Audio is float32 mono at 24kHz. Batches may be any length; the connection
reframes them to the server's 80ms frames. After finish(), results() keeps
yielding until the server has transcribed every submitted sample.
"""

from __future__ import annotations

from constants import STT_PATH
from adapters.base import StreamingClient
from session.stt import STTConnection
from session.transport import TransportSession


class STTClient(StreamingClient[STTConnection]):
    endpoint = "stt"
    path = STT_PATH

    def _new_connection(self, transport: TransportSession) -> STTConnection:
        return STTConnection(transport, deadline_s=self._config.deadline_s)
