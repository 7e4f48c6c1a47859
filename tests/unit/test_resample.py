# pylint: disable=missing-module-docstring,missing-function-docstring

import numpy as np
import pytest

from audio.resample import first_channel, to_model_rate
from constants import SAMPLE_RATE_HZ


def test_model_rate_input_is_passed_through() -> None:
    samples = np.linspace(-1, 1, 480, dtype=np.float64)

    out = to_model_rate(samples, SAMPLE_RATE_HZ)

    assert out.dtype == np.float32
    assert np.allclose(out, samples)


@pytest.mark.parametrize("rate", [8_000, 16_000, 44_100, 48_000])
def test_resampled_length_matches_duration(rate: int) -> None:
    one_second = np.zeros(rate, dtype=np.float32)
    assert len(to_model_rate(one_second, rate)) == SAMPLE_RATE_HZ


def test_stereo_keeps_first_channel() -> None:
    stereo = np.stack([np.full(10, 0.25), np.full(10, -0.75)], axis=1)
    assert first_channel(stereo).tolist() == [0.25] * 10


def test_bad_inputs_are_rejected() -> None:
    with pytest.raises(ValueError):
        to_model_rate(np.zeros(10), 0)
    with pytest.raises(ValueError):
        first_channel(np.zeros((2, 2, 2)))
