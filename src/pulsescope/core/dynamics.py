"""
Display-oriented band dynamics.

Peak holds, velocities, perceptual log scaling, band balances and a coarse
logarithmic spectrum quantized to bytes.  All of it is derived from the
normalized bands of the current frame and the previous snapshot.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

import numpy as np

from pulsescope.config import DynamicsParams
from pulsescope.core.spectral import db_array_to_magnitudes

PEAK_CHANNELS = ("low", "mid", "high", "kick", "snare", "hihat", "amplitude")
VELOCITY_CHANNELS = ("low", "mid", "high", "kick", "snare", "hihat")

_BALANCE_EPS = 1e-6


@dataclass(frozen=True)
class DynamicsResult:
    peak_holds: dict
    velocities: dict
    low_log: float
    mid_log: float
    high_log: float
    low_mid_balance: float
    mid_high_balance: float
    quantized_bands: tuple

    def as_fields(self) -> dict:
        """Flatten into snapshot field names."""
        out = {f"{name}_peak_hold": v for name, v in self.peak_holds.items()}
        out.update({f"{name}_velocity": v for name, v in self.velocities.items()})
        out.update(
            low_log=self.low_log,
            mid_log=self.mid_log,
            high_log=self.high_log,
            low_mid_balance=self.low_mid_balance,
            mid_high_balance=self.mid_high_balance,
            quantized_bands=self.quantized_bands,
        )
        return out


def log_scale(value: float) -> float:
    """Perceptual ``1 + ln(v) / 10`` curve clipped to [0, 1]."""
    if value <= 0:
        return 0.0
    return float(np.clip(1.0 + np.log(value) / 10.0, 0.0, 1.0))


def balance(a: float, b: float) -> float:
    """Share of *a* in ``a + b``; 0.5 means balanced."""
    return float(np.clip(a / max(a + b, _BALANCE_EPS), 0.0, 1.0))


class BandDynamics:
    """
    Holds the rolling maximum used to scale the quantized bands.

    Args:
        params: Dynamics tuning.
        sample_rate: Sample rate the frames were computed from.
    """

    def __init__(self, params: Optional[DynamicsParams] = None, sample_rate: float = 44100.0):
        self.params = params or DynamicsParams()
        self.sample_rate = sample_rate
        self.rolling_max = 0.0

    def log_band_means(self, frame: np.ndarray) -> np.ndarray:
        """Mean soft-knee magnitude of each logarithmic band from the minimum frequency to Nyquist."""
        count = self.params.quantized_band_count
        n_bins = len(frame)
        bands = np.zeros(count, dtype=np.float64)
        if n_bins == 0:
            return bands

        mags = db_array_to_magnitudes(frame)
        min_freq = self.params.quantized_min_hz
        max_freq = self.sample_rate / 2.0
        edges = min_freq * (max_freq / min_freq) ** (np.arange(count + 1) / count)
        starts = np.floor(edges[:-1] / max_freq * n_bins).astype(int)
        ends = np.ceil(edges[1:] / max_freq * n_bins).astype(int)
        for i, (start, end) in enumerate(zip(starts, ends)):
            start, end = min(start, n_bins), min(end, n_bins)
            if end > start:
                bands[i] = mags[start:end].mean()
        return bands

    def quantize(self, frame: np.ndarray) -> tuple:
        """Rolling-max normalized log bands as integers in 0..255."""
        bands = self.log_band_means(frame)
        alpha = self.params.rolling_max_alpha
        self.rolling_max = self.rolling_max * (1.0 - alpha) + float(bands.max(initial=0.0)) * alpha
        norm = max(self.rolling_max, _BALANCE_EPS)
        scaled = np.clip(bands / norm, 0.0, 1.0)
        return tuple(int(v) for v in np.round(scaled * 255.0))

    def update(
        self,
        current: Mapping[str, float],
        prior: Mapping[str, float],
        delta_time: float,
        frame: np.ndarray,
    ) -> DynamicsResult:
        """
        Args:
            current: This frame's normalized values keyed by channel name.
            prior: Previous snapshot as a flat dict (values and peak holds).
            delta_time: Seconds since the previous frame.
            frame: dB magnitudes for this frame.
        """
        p = self.params
        dt = max(delta_time, p.min_delta_time)
        peaks = {
            name: max(prior[f"{name}_peak_hold"], current[name]) * p.peak_hold_decay
            for name in PEAK_CHANNELS
        }
        velocities = {
            name: (current[name] - prior[name]) / dt
            for name in VELOCITY_CHANNELS
        }
        low, mid, high = current["low"], current["mid"], current["high"]
        return DynamicsResult(
            peak_holds=peaks,
            velocities=velocities,
            low_log=log_scale(low),
            mid_log=log_scale(mid),
            high_log=log_scale(high),
            low_mid_balance=balance(low, mid),
            mid_high_balance=balance(mid, high),
            quantized_bands=self.quantize(frame),
        )

    def reset(self) -> None:
        self.rolling_max = 0.0
