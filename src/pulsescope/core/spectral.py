"""
Stateless spectral helpers.

Frames arrive as decibel-scaled FFT magnitudes (roughly -120..0 dB), one value
per bin.  These helpers convert them to linear magnitudes and reduce them to
band energies, RMS and frame-to-frame flux.
"""

import logging
from typing import Optional, Sequence, Union

import librosa
import numpy as np

logger = logging.getLogger(__name__)

FrameLike = Union[np.ndarray, Sequence[float]]

SILENCE_DB = -100.0
# Upper clip for plain amplitude conversion; keeps 10 ** (db / 20) finite.
DB_CEILING = 20.0


def as_frame(data: Optional[FrameLike], db_floor: float = -120.0) -> np.ndarray:
    """
    Coerce frame data to a 1-D float64 array.

    Non-finite entries are replaced by *db_floor*.  Data that cannot be
    interpreted as numbers yields an empty array.
    """
    if data is None:
        return np.zeros(0, dtype=np.float64)
    try:
        frame = np.asarray(data, dtype=np.float64).ravel()
    except (TypeError, ValueError) as exc:
        logger.warning(f"Discarding unparseable frequency frame: {exc}")
        return np.zeros(0, dtype=np.float64)
    if frame.size and not np.all(np.isfinite(frame)):
        frame = np.where(np.isfinite(frame), frame, db_floor)
    return frame


def normalize_decibel_value(db: float, min_db: float = -120.0, max_db: float = 0.0) -> float:
    """Map a dB value linearly onto [0, 1] between *min_db* and *max_db*."""
    clamped = min(max(db, min_db), max_db)
    return (clamped - min_db) / (max_db - min_db)


def db_to_magnitude(db: float) -> float:
    """
    Soft-knee dB -> linear conversion.

    Anything at or below -100 dB is silence; the result is capped at 1 so a
    single hot bin cannot dominate.
    """
    if db <= SILENCE_DB:
        return 0.0
    return min(1.0, 10.0 ** ((db + 60.0) / 20.0))


def db_array_to_magnitudes(frame: np.ndarray) -> np.ndarray:
    """Vectorised :func:`db_to_magnitude`."""
    frame = np.asarray(frame, dtype=np.float64)
    mags = np.minimum(1.0, np.power(10.0, (frame + 60.0) / 20.0))
    mags[frame <= SILENCE_DB] = 0.0
    return mags


def db_to_amplitude(frame: np.ndarray) -> np.ndarray:
    """Plain ``10 ** (db / 20)`` amplitudes, used by the spectral-shape analyzers.

    Values above :data:`DB_CEILING` are clipped first.
    """
    db = np.minimum(np.asarray(frame, dtype=np.float64), DB_CEILING)
    return librosa.db_to_amplitude(db)


def bin_frequencies(n_bins: int, sample_rate: float) -> np.ndarray:
    """Centre frequency of each of *n_bins* bins spanning 0..Nyquist."""
    if n_bins <= 0:
        return np.zeros(0, dtype=np.float64)
    return librosa.fft_frequencies(sr=sample_rate, n_fft=2 * n_bins)[:n_bins]


def band_magnitude(frame: np.ndarray, start: int, end: int) -> float:
    """Mean soft-knee magnitude over the bins of ``[start, end)`` present in *frame*."""
    start = max(int(start), 0)
    end = min(int(end), len(frame))
    if end <= start:
        return 0.0
    return float(np.mean(db_array_to_magnitudes(frame[start:end])))


def frequency_ranges(
    frame: np.ndarray,
    fft_size: int,
    sample_rate: float,
    low_mid_hz: float = 250.0,
    mid_high_hz: float = 4000.0,
) -> tuple[float, float, float]:
    """
    Split the frame into low / mid / high bands and average each.

    Boundaries map to bins via ``floor(fft_size * freq / sample_rate)``.

    Returns:
        Tuple of (low, mid, high) mean magnitudes.
    """
    low_end = int(np.floor(fft_size * low_mid_hz / sample_rate))
    mid_end = int(np.floor(fft_size * mid_high_hz / sample_rate))
    return (
        band_magnitude(frame, 0, low_end),
        band_magnitude(frame, low_end, mid_end),
        band_magnitude(frame, mid_end, len(frame)),
    )


def beat_band_energy(
    frame: np.ndarray,
    min_hz: float,
    max_hz: float,
    sample_rate: float,
    peak_weight: float = 0.7,
    average_weight: float = 0.3,
    energy_scale: float = 3.0,
    exponent: float = 0.8,
    db_min: float = -70.0,
    db_max: float = 0.0,
) -> float:
    """
    Transient-sensitive energy of one drum band.

    Peak and average power are blended so sharp hits register while single
    noisy bins cannot dominate; a power law keeps the result in [0, 1]
    without hard clipping.
    """
    n = len(frame)
    if n == 0:
        return 0.0
    bin_width = sample_rate / (2 * n)
    min_bin = int(np.floor(min_hz / bin_width))
    max_bin = min(int(np.ceil(max_hz / bin_width)), n)
    if max_bin <= min_bin:
        return 0.0

    db = np.clip(frame[min_bin:max_bin], db_min, db_max)
    power = np.power(10.0, db / 10.0)
    combined = float(power.max()) * peak_weight + float(power.mean()) * average_weight
    return min(1.0, (combined * energy_scale) ** exponent)


def rms(values: np.ndarray) -> float:
    values = np.asarray(values, dtype=np.float64)
    if values.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(values * values)))


def amplitude_rms(frame: np.ndarray, scale: float = 4.0) -> float:
    """Overall loudness in [0, 1] from the soft-knee magnitudes."""
    return min(1.0, rms(db_array_to_magnitudes(frame)) * scale)


def spectral_flux(current: np.ndarray, previous: Optional[np.ndarray]) -> float:
    """
    Mean positive magnitude increase between consecutive frames.

    Frames of different length are compared over their shared prefix.
    """
    if previous is None:
        return 0.0
    n = min(len(current), len(previous))
    if n == 0:
        return 0.0
    curr = np.maximum(current[:n], 0.0)
    prev = np.maximum(previous[:n], 0.0)
    return float(np.sum(np.maximum(curr - prev, 0.0)) / n)


def apply_envelope(current: float, previous: float, decay: float = 0.8) -> float:
    """Instant attack, exponential release."""
    if current >= previous:
        return current
    return max(previous * decay + current * (1.0 - decay), 0.0)
