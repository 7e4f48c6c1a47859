"""
Where the server lives and how to reach it.

ClientConfig holds the per-deployment settings (server URL, API key, TTS
voice, dial timeout, optional connection deadline, JSON log switch).
Anything that is fixed by the wire protocol stays in constants.py.

Environment variables read by ClientConfig.load_from_env():
    KYUTAI_URL             base ws:// or wss:// URL
    KYUTAI_API_KEY         sent as the kyutai-api-key header
    KYUTAI_TTS_APIKEY      older name, used when KYUTAI_API_KEY is unset
    KYUTAI_TTS_VOICE       TTS voice id
    KYUTAI_OPEN_TIMEOUT_S  handshake timeout in seconds
    KYUTAI_DEADLINE_S      whole-connection deadline in seconds
    ENABLE_JSON_LOGS       "1" (default) or "0"
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import DEFAULT_API_KEY, WS_OPEN_TIMEOUT_S


def _optional_float(raw: str | None) -> float | None:
    if raw is None or raw.strip() == "":
        return None
    return float(raw)


@dataclass(frozen=True)
class ClientConfig:
    """
    Immutable client configuration.

    Constructed once by the caller and handed to TTSClient / STTClient.
    """

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    url: str = "ws://127.0.0.1:8080"
    api_key: str = DEFAULT_API_KEY

    # ------------------------------------------------------------------
    # TTS
    # ------------------------------------------------------------------

    voice: str | None = None

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    open_timeout_s: float = WS_OPEN_TIMEOUT_S
    # Whole-connection deadline; None means the caller owns cancellation.
    deadline_s: float | None = None

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool = True

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> ClientConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        api_key = (
            os.environ.get("KYUTAI_API_KEY")
            or os.environ.get("KYUTAI_TTS_APIKEY")
            or DEFAULT_API_KEY
        )
        return ClientConfig(
            url=os.environ.get("KYUTAI_URL", "ws://127.0.0.1:8080"),
            api_key=api_key,
            voice=os.environ.get("KYUTAI_TTS_VOICE") or None,
            open_timeout_s=float(
                os.environ.get("KYUTAI_OPEN_TIMEOUT_S", str(WS_OPEN_TIMEOUT_S))
            ),
            deadline_s=_optional_float(os.environ.get("KYUTAI_DEADLINE_S")),
            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
