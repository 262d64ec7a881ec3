"""Shared synthetic-frame fixtures."""

import numpy as np
import pytest

N_BINS = 1024
SAMPLE_RATE = 44100.0
FPS = 60


def make_frame(level_db: float = -120.0, n_bins: int = N_BINS, **bins: float) -> np.ndarray:
    """Flat frame at *level_db* with selected bins overridden, e.g. ``make_frame(b20=-10)``."""
    frame = np.full(n_bins, level_db, dtype=np.float64)
    for key, value in bins.items():
        frame[int(key.lstrip("b"))] = value
    return frame


@pytest.fixture
def silent_frame():
    return make_frame(-120.0)


@pytest.fixture
def loud_frame():
    return make_frame(-10.0)


@pytest.fixture
def noise_frames():
    """300 frames of quiet noise, loud enough to be active but never clipped."""
    rng = np.random.RandomState(7)
    return rng.uniform(-100.0, -70.0, (300, N_BINS))


@pytest.fixture
def a4_frame():
    """Energy at bins near 440 Hz and 880 Hz plus a weak overtone."""
    return make_frame(-100.0, b20=-10.0, b41=-20.0, b61=-30.0)


def make_pulse_frames(n_frames: int, period: int, seed: int = 3) -> np.ndarray:
    """
    A quiet bed with a full-band spike every *period* frames.

    Only the kick and snare bins wander between frames, so the drum bands
    have something to normalize against while the frame-wide flux stays
    below the beat gate until a spike arrives.
    """
    rng = np.random.RandomState(seed)
    frames = np.full((n_frames, N_BINS), -90.0)
    frames[:, 1:24] = rng.uniform(-70.0, -62.0, (n_frames, 23))
    frames[period::period] = -10.0
    return frames


@pytest.fixture
def pulse_frames():
    """Spikes every half second (120 BPM at 60 fps)."""
    return make_pulse_frames(240, 30)
