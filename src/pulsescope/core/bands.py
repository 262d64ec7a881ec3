"""Low/mid/high and kick/snare/hihat band energy extraction."""

from dataclasses import dataclass
from typing import Mapping, Optional

import numpy as np

from pulsescope.config import AnalysisConfig, FrequencyRange
from pulsescope.core.history import AdaptiveNormalizer, Channel, GainState
from pulsescope.core.spectral import beat_band_energy, frequency_ranges


@dataclass(frozen=True)
class BandEnergies:
    """Normalized band channels for one frame."""

    low: GainState
    mid: GainState
    high: GainState
    kick: GainState
    snare: GainState
    hihat: GainState


class BandEnergyExtractor:
    """
    Computes the six band energies and runs each through its own normalizer.

    Args:
        config: Analysis configuration.
    """

    FREQ_CHANNELS = (Channel.LOW, Channel.MID, Channel.HIGH)
    BEAT_CHANNELS = (Channel.KICK, Channel.SNARE, Channel.HIHAT)

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()
        windows = self.config.history
        self.normalizers = {
            ch: AdaptiveNormalizer(ch, windows.freq_history, self.config.gain)
            for ch in self.FREQ_CHANNELS
        }
        self.normalizers.update({
            ch: AdaptiveNormalizer(ch, windows.beat_history, self.config.gain)
            for ch in self.BEAT_CHANNELS
        })

    def _beat_range(self, channel: Channel) -> FrequencyRange:
        beat = self.config.beat
        return {
            Channel.KICK: beat.kick_range,
            Channel.SNARE: beat.snare_range,
            Channel.HIHAT: beat.hihat_range,
        }[channel]

    def raw_energies(self, frame: np.ndarray) -> dict[Channel, float]:
        """Un-normalized energy per channel."""
        cfg = self.config
        beat = cfg.beat
        low, mid, high = frequency_ranges(
            frame,
            cfg.fft_size,
            cfg.sample_rate,
            cfg.low_mid_boundary_hz,
            cfg.mid_high_boundary_hz,
        )
        energies = {Channel.LOW: low, Channel.MID: mid, Channel.HIGH: high}
        for ch in self.BEAT_CHANNELS:
            rng = self._beat_range(ch)
            energies[ch] = beat_band_energy(
                frame,
                rng.min_hz,
                rng.max_hz,
                cfg.sample_rate,
                peak_weight=beat.peak_weight,
                average_weight=beat.average_weight,
                energy_scale=beat.energy_scale,
                exponent=beat.compression_exponent,
                db_min=beat.db_min,
                db_max=beat.db_max,
            )
        return energies

    def extract(self, frame: np.ndarray, gains: Mapping[Channel, float]) -> BandEnergies:
        """
        Compute and normalize all six bands.

        Args:
            frame: dB magnitudes for this frame.
            gains: Current gain per channel (missing channels use the
                configured initial gain).
        """
        initial = self.config.gain.initial_gain
        states = {
            ch: self.normalizers[ch].apply(value, gains.get(ch, initial))
            for ch, value in self.raw_energies(frame).items()
        }
        return BandEnergies(
            low=states[Channel.LOW],
            mid=states[Channel.MID],
            high=states[Channel.HIGH],
            kick=states[Channel.KICK],
            snare=states[Channel.SNARE],
            hihat=states[Channel.HIHAT],
        )

    def reset(self) -> None:
        for normalizer in self.normalizers.values():
            normalizer.reset()
