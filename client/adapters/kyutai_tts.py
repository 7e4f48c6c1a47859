"""
Kyutai streaming TTS client.

Usage:
    client = TTSClient(ClientConfig.load_from_env())
    async with await client.connect() as conn:
        for word in text.split():
            await conn.submit(word)
        await conn.finish()
        async for event in conn.results():
            if isinstance(event, Audio):
                play(event.pcm)
"""

from __future__ import annotations

from constants import TTS_PATH, VOICE_QUERY_PARAM
from adapters.base import StreamingClient
from session.transport import TransportSession
from session.tts import TTSConnection


class TTSClient(StreamingClient[TTSConnection]):
    endpoint = "tts"
    path = TTS_PATH

    def _query_params(self) -> dict[str, str]:
        if self._config.voice:
            return {VOICE_QUERY_PARAM: self._config.voice}
        return {}

    def _new_connection(self, transport: TransportSession) -> TTSConnection:
        return TTSConnection(transport, deadline_s=self._config.deadline_s)
