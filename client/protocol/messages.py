"""
Tagged-union message definitions for the Kyutai streaming protocol.

Rules:
- Messages carry data only (no I/O, no encoding).
- Every variant has exactly one MessageType discriminant.
- MessageType values are the literal wire discriminators.

Which variants flow where:
- TTS: caller -> Text, Eos; server -> Ready, Text, Audio
- STT: caller -> Audio, Marker; server -> Ready, Word, EndWord, Step, Marker
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import ClassVar, Union

import numpy as np
from numpy.typing import NDArray

from constants import SAMPLE_RATE_HZ


# =============================================================================
# Discriminant
# =============================================================================

class MessageType(str, Enum):
    """
    Wire discriminator carried in the `type` field of every message.
    """

    # Received on both endpoints
    READY = "Ready"

    # TTS
    TEXT = "Text"
    AUDIO = "Audio"

    # STT
    WORD = "Word"
    END_WORD = "EndWord"
    STEP = "Step"
    MARKER = "Marker"

    # Writer-side end of input; never published to the caller
    EOS = "Eos"


# =============================================================================
# Variants
# =============================================================================

@dataclass(frozen=True)
class Ready:
    """Session is ready to accept input."""

    kind: ClassVar[MessageType] = MessageType.READY


@dataclass(frozen=True)
class Text:
    """TTS input token, or the text echo the TTS server aligns with audio."""

    kind: ClassVar[MessageType] = MessageType.TEXT

    text: str


@dataclass(frozen=True, eq=False)
class Audio:
    """
    A batch of float32 PCM samples (mono, 24kHz).

    Equality compares sample values, since numpy arrays do not define a
    scalar ==.
    """

    kind: ClassVar[MessageType] = MessageType.AUDIO

    pcm: NDArray[np.float32]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Audio):
            return NotImplemented
        return bool(np.array_equal(self.pcm, other.pcm))

    __hash__ = None  # type: ignore[assignment]

    @property
    def duration_s(self) -> float:
        return len(self.pcm) / SAMPLE_RATE_HZ


@dataclass(frozen=True)
class Word:
    """A recognized word and the stream time (seconds) where it starts."""

    kind: ClassVar[MessageType] = MessageType.WORD

    text: str
    start_time: float

    @property
    def start(self) -> timedelta:
        return timedelta(seconds=self.start_time)


@dataclass(frozen=True)
class WordEnd:
    """Closes the last recognized word at `stop_time` (seconds)."""

    kind: ClassVar[MessageType] = MessageType.END_WORD

    stop_time: float

    @property
    def stop(self) -> timedelta:
        return timedelta(seconds=self.stop_time)


@dataclass(frozen=True)
class Step:
    """
    Server processing heartbeat.

    step_idx:
        Index of the model step that produced this message.
    prs:
        Per-head pause predictions (optional on the wire).
    buffered_pcm:
        Samples received by the server but not yet consumed by the model.
    """

    kind: ClassVar[MessageType] = MessageType.STEP

    step_idx: int
    buffered_pcm: int
    prs: tuple[float, ...] = field(default=())

    def __post_init__(self) -> None:
        # prs travel as float32; store them at that precision
        object.__setattr__(
            self, "prs", tuple(float(np.float32(p)) for p in self.prs)
        )

    @property
    def buffer_delay_s(self) -> float:
        """How far behind real time the server buffer currently is."""
        return self.buffered_pcm / SAMPLE_RATE_HZ


@dataclass(frozen=True)
class Marker:
    """Opaque correlation id round-tripped through the server."""

    kind: ClassVar[MessageType] = MessageType.MARKER

    id: int


@dataclass(frozen=True)
class EndOfStream:
    """No more input will follow (TTS writer only)."""

    kind: ClassVar[MessageType] = MessageType.EOS


Message = Union[Ready, Text, Audio, Word, WordEnd, Step, Marker, EndOfStream]
