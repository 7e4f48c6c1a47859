"""
Prepare arbitrary decoded audio for the STT endpoint.

Decoded files come in any rate / channel layout; the server wants float32
mono @ 24kHz. Multi-channel input keeps the first channel only.
"""

from __future__ import annotations

from math import gcd

import numpy as np
from numpy.typing import NDArray
from scipy import signal

from constants import SAMPLE_RATE_HZ


def first_channel(samples: NDArray[np.floating]) -> NDArray[np.floating]:
    """(frames,) or (frames, channels) -> (frames,)"""
    if samples.ndim == 1:
        return samples
    if samples.ndim != 2 or samples.shape[1] == 0:
        raise ValueError(f"Unsupported audio shape {samples.shape}")
    return samples[:, 0]


def to_model_rate(
    samples: NDArray[np.floating],
    sample_rate: int,
) -> NDArray[np.float32]:
    """
    Convert decoded audio to float32 mono at SAMPLE_RATE_HZ.

    Uses polyphase resampling; a no-op (apart from the dtype) when the input
    is already at the model rate.
    """
    if sample_rate <= 0:
        raise ValueError("sample_rate must be > 0")

    mono = first_channel(np.asarray(samples))
    if sample_rate == SAMPLE_RATE_HZ:
        return mono.astype(np.float32)

    divisor = gcd(SAMPLE_RATE_HZ, sample_rate)
    resampled = signal.resample_poly(
        mono,
        SAMPLE_RATE_HZ // divisor,
        sample_rate // divisor,
    )
    return np.clip(resampled, -1.0, 1.0).astype(np.float32)
