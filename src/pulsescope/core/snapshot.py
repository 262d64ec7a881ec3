"""The flat per-frame output record."""

from dataclasses import asdict, dataclass, fields

from pulsescope.core.history import Channel

QUANTIZED_BAND_COUNT = 32


@dataclass(frozen=True)
class FeatureSnapshot:
    """
    Everything the visuals read for one frame.

    Band values, likelihoods and intensities are in [0, 1]; gains are in
    [0.1, 10].  ``amplitude`` includes the configured offset.  The snapshot
    also carries each channel's gain, which the next update reads back, so a
    snapshot is the complete feedback state a caller needs to hold.
    """

    # Clocks and oscillators
    time: float = 0.0
    adjusted_time: float = 0.0
    sin: float = 0.0
    cos: float = 1.0
    sin_normal: float = 0.5
    cos_normal: float = 1.0
    adjusted_sin: float = 0.0
    adjusted_cos: float = 1.0
    adjusted_sin_normal: float = 0.5
    adjusted_cos_normal: float = 1.0

    # Bands
    low: float = 0.0
    mid: float = 0.0
    high: float = 0.0
    kick: float = 0.0
    snare: float = 0.0
    hihat: float = 0.0

    # Gains
    kick_gain: float = 1.0
    snare_gain: float = 1.0
    hihat_gain: float = 1.0
    low_gain: float = 1.0
    mid_gain: float = 1.0
    high_gain: float = 1.0
    vocal_gain: float = 1.0
    amplitude_gain: float = 1.0
    raw_amplitude_gain: float = 1.0

    # Loudness, vocal, beat
    vocal_likelihood: float = 0.0
    amplitude: float = 0.0
    raw_amplitude: float = 0.0
    beat_intensity: float = 0.0
    bps: float = 0.0
    is_audio_active: bool = False
    kick_average: float = 0.0
    spectral_flux: float = 0.0
    is_beat: bool = False
    beat_times: tuple = ()

    # Band dynamics
    low_peak_hold: float = 0.0
    mid_peak_hold: float = 0.0
    high_peak_hold: float = 0.0
    kick_peak_hold: float = 0.0
    snare_peak_hold: float = 0.0
    hihat_peak_hold: float = 0.0
    amplitude_peak_hold: float = 0.0
    low_velocity: float = 0.0
    mid_velocity: float = 0.0
    high_velocity: float = 0.0
    kick_velocity: float = 0.0
    snare_velocity: float = 0.0
    hihat_velocity: float = 0.0
    low_log: float = 0.0
    mid_log: float = 0.0
    high_log: float = 0.0
    low_mid_balance: float = 0.0
    mid_high_balance: float = 0.0
    quantized_bands: tuple = (0,) * QUANTIZED_BAND_COUNT

    # Enhanced analysis
    spectral_centroid: float = 0.0
    spectral_spread: float = 0.0
    spectral_skewness: float = 0.0
    spectral_kurtosis: float = 0.0
    chroma_vector: tuple = (0.0,) * 12
    dominant_note: int = -1
    is_onset: bool = False
    onset_strength: float = 0.0
    onset_type: str = "broadband"
    bpm: float = 0.0
    tempo_confidence: float = 0.0
    tempo_stability: float = 0.0
    beat_phase: float = 0.0

    @classmethod
    def initial(cls, gain: float = 1.0) -> "FeatureSnapshot":
        """Starting state: zero time, silent bands, every gain at *gain*."""
        return cls(**{ch.gain_field: gain for ch in Channel})

    def gain(self, channel: Channel) -> float:
        return getattr(self, channel.gain_field)

    def gains(self) -> dict:
        """Gain per :class:`Channel`."""
        return {ch: self.gain(ch) for ch in Channel}

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def field_names(cls) -> tuple:
        return tuple(f.name for f in fields(cls))
