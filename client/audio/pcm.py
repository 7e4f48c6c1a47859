"""PCM conversion utilities."""
from __future__ import annotations

from typing import Sequence, Union

import numpy as np
from numpy.typing import NDArray

SampleBatch = Union[NDArray[np.floating], Sequence[float]]


def as_float32_mono(samples: SampleBatch) -> NDArray[np.float32]:
    """
    Coerce one caller-submitted batch to a flat float32 array.

    No resampling. No channel mixing: multi-channel input is rejected, the
    caller must down-mix first.
    """
    audio_f32 = np.asarray(samples, dtype=np.float32)
    if audio_f32.ndim != 1:
        raise ValueError(
            f"Expected a 1-D mono sample batch, got shape {audio_f32.shape}"
        )
    return audio_f32


def pcm16le_to_float32(pcm_bytes: bytes) -> NDArray[np.float32]:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    Convenience for callers holding raw 16-bit capture data.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; drop it
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    return audio_i16.astype(np.float32) / 32768.0
