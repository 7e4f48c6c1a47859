"""
STT outbound framing primitives.

Invariants:
- float32 mono @ 24kHz
- Every emitted frame is exactly STT_FRAME_SIZE samples
- The buffer never holds a full frame after frames() has been drained,
  except transiently inside flush()

Pure: no queues, no timing, no I/O.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Iterator

import numpy as np
from numpy.typing import NDArray

from constants import STT_FRAME_SIZE, STT_SILENCE_SAMPLES


@lru_cache(maxsize=1)
def one_second_of_silence() -> NDArray[np.float32]:
    """
    The shared one-second silence batch (priming and drain keep-alive).

    Built on first use and marked read-only so no caller can mutate it.
    """
    silence = np.zeros(STT_SILENCE_SAMPLES, dtype=np.float32)
    silence.setflags(write=False)
    return silence


class FrameBuffer:
    """
    Accumulates sample batches and releases fixed-size frames.

    Usage:
        buf = FrameBuffer()
        buf.extend(batch)
        for frame in buf.frames():
            send(frame)
        ...
        tail = buf.flush()   # zero-padded leftover, or None
    """

    def __init__(self, frame_size: int = STT_FRAME_SIZE) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0")

        self._frame_size = frame_size
        self._pending: NDArray[np.float32] = np.zeros(0, dtype=np.float32)

    @property
    def frame_size(self) -> int:
        return self._frame_size

    def __len__(self) -> int:
        return int(self._pending.shape[0])

    def extend(self, samples: NDArray[np.float32]) -> None:
        """Append a batch of samples to the pending tail."""
        if samples.size == 0:
            return
        self._pending = np.concatenate((self._pending, samples))

    def frames(self) -> Iterator[NDArray[np.float32]]:
        """
        Yield every complete frame currently buffered, oldest first.

        Consumed samples are removed as each frame is yielded.
        """
        while self._pending.shape[0] >= self._frame_size:
            frame = self._pending[: self._frame_size].copy()
            self._pending = self._pending[self._frame_size :]
            yield frame

    def flush(self) -> NDArray[np.float32] | None:
        """
        Return the leftover partial frame padded with trailing silence,
        or None if nothing is pending. Leaves the buffer empty.

        Call after frames() has been drained.
        """
        leftover = self._pending
        self._pending = np.zeros(0, dtype=np.float32)

        if leftover.shape[0] == 0:
            return None

        padding = (-leftover.shape[0]) % self._frame_size
        if padding:
            leftover = np.concatenate(
                (leftover, np.zeros(padding, dtype=np.float32))
            )
        return leftover
