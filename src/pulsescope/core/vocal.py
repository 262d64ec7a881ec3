"""Vocal likelihood from harmonic structure and mid-band behaviour."""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from pulsescope.config import AnalysisConfig
from pulsescope.core.history import AdaptiveNormalizer, Channel, GainState, RingHistory
from pulsescope.core.spectral import SILENCE_DB, db_to_amplitude


@dataclass(frozen=True)
class VocalResult:
    harmonic_score: float
    mid_variance: float
    likelihood: GainState


class VocalLikelihoodEstimator:
    """
    Scores how voice-like the current frame is.

    Three cues are blended: harmonic series in the vocal band, the normalized
    mid level, and how steady the mid level has been over the last few frames.

    Args:
        config: Analysis configuration.
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()
        self.mid_history = RingHistory(self.config.history.vocal_variance)
        self.normalizer = AdaptiveNormalizer(
            Channel.VOCAL, self.config.history.vocal_history, self.config.gain
        )

    def harmonic_score(self, frame: np.ndarray) -> float:
        """
        Fraction of candidate fundamentals in the vocal band with even harmonics.

        The band is scaled to its own peak so the threshold is relative.
        """
        params = self.config.vocal
        n = len(frame)
        if n == 0:
            return 0.0
        bin_width = self.config.sample_rate / (2 * n)
        min_bin = int(np.floor(params.band.min_hz / bin_width))
        max_bin = min(int(np.ceil(params.band.max_hz / bin_width)), n)
        if max_bin - min_bin < 2:
            return 0.0

        db = frame[min_bin:max_bin]
        band = np.where(db > SILENCE_DB, db_to_amplitude(db), 0.0)
        peak = float(band.max())
        if peak <= 0:
            return 0.0
        band = band / peak

        threshold = params.harmonic_threshold
        harmonics = range(2, params.harmonic_count + 2, 2)
        required = params.harmonic_count // 2
        fundamentals = 0
        for offset in np.flatnonzero(band[: len(band) // 2] > threshold):
            fundamental = offset + min_bin
            found = 0
            for h in harmonics:
                idx = fundamental * h - min_bin
                if idx < len(band) and band[idx] > threshold:
                    found += 1
            if found >= required:
                fundamentals += 1
        return min(fundamentals / params.harmonic_saturation, 1.0)

    def mid_variance(self, mid: float) -> float:
        """Record *mid* and return the scaled population variance of the window."""
        self.mid_history.push(mid)
        variance = float(np.var(self.mid_history.values()))
        return min(variance / self.config.vocal.max_variance, 1.0)

    def estimate(self, frame: np.ndarray, mid: float, gain: float) -> VocalResult:
        """
        Args:
            frame: dB magnitudes for this frame.
            mid: Normalized mid-band value for this frame.
            gain: Vocal channel gain from the previous frame.
        """
        params = self.config.vocal
        harmonic = self.harmonic_score(frame)
        variance = self.mid_variance(mid)
        raw = (
            harmonic * params.harmonic_weight
            + mid * params.mid_weight
            + (1.0 - variance) * params.variance_weight
        )
        return VocalResult(
            harmonic_score=harmonic,
            mid_variance=variance,
            likelihood=self.normalizer.apply(raw, gain),
        )

    def reset(self) -> None:
        self.mid_history.clear()
        self.normalizer.reset()
