"""
PROTOCOL-AS-CONSTANTS
---------------------
Single source of truth for every wire and behavioral constant of the
Kyutai streaming endpoints.

Rules:
- If changing a value changes what goes on the wire, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment settings (URL, API key, voice) live in config.py instead.
"""

from __future__ import annotations

from typing import Final

from websockets.frames import CloseCode

# =============================================================================
# Audio Format (float32 mono @ 24kHz)
# =============================================================================

SAMPLE_RATE_HZ: Final[int] = 24_000
NUM_CHANNELS: Final[int] = 1

# STT input frame: 80ms (the server model runs at 12.5 frames per second)
STT_FRAME_SIZE: Final[int] = 1920
STT_FRAME_DURATION_S: Final[float] = STT_FRAME_SIZE / SAMPLE_RATE_HZ

# =============================================================================
# STT Drain Handshake
# =============================================================================
# Values come from the server's reference streaming script; keep them as-is.

# Silence sent before the first real batch (primes the model lookahead).
STT_PRIMING_SILENCE_S: Final[float] = 1.0
STT_SILENCE_SAMPLES: Final[int] = int(SAMPLE_RATE_HZ * STT_PRIMING_SILENCE_S)

# Cadence of the keep-draining silence after end of input.
STT_DRAIN_SILENCE_INTERVAL_S: Final[float] = 1.0

# Marker ids: 0 is reserved for the drain handshake, caller markers start at 1.
DRAIN_MARKER_ID: Final[int] = 0
FIRST_MARKER_ID: Final[int] = 1

# =============================================================================
# Endpoints
# =============================================================================

TTS_PATH: Final[str] = "/api/tts_streaming"
STT_PATH: Final[str] = "/api/asr-streaming"

FORMAT_QUERY_PARAM: Final[str] = "format"
FORMAT_PCM_MESSAGEPACK: Final[str] = "PcmMessagePack"
VOICE_QUERY_PARAM: Final[str] = "voice"

API_KEY_HEADER: Final[str] = "kyutai-api-key"
DEFAULT_API_KEY: Final[str] = "public_token"

# =============================================================================
# Transport
# =============================================================================

# One second of float32 audio is ~120KB once packed; leave ample headroom.
WS_MAX_MESSAGE_BYTES: Final[int] = 2**22
WS_OPEN_TIMEOUT_S: Final[float] = 10.0

CLOSE_NORMAL: Final[CloseCode] = CloseCode.NORMAL_CLOSURE
CLOSE_GOING_AWAY: Final[CloseCode] = CloseCode.GOING_AWAY
CLOSE_INTERNAL_ERROR: Final[CloseCode] = CloseCode.INTERNAL_ERROR

# Remote close codes treated as a graceful end of stream.
GRACEFUL_REMOTE_CLOSE_CODES: Final[frozenset[int]] = frozenset({
    CloseCode.NORMAL_CLOSURE,
    CloseCode.NO_STATUS_RCVD,
})

# =============================================================================
# Caller-facing queues
# =============================================================================

OUTBOUND_QUEUE_MAX: Final[int] = 8
INBOUND_QUEUE_MAX: Final[int] = 64
