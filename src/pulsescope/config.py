"""
Configuration objects for the reactivity pipeline.

Every constant the analysis depends on lives here as a named knob with a
documented default.  The defaults reproduce the tuning the visuals were
designed against (44.1 kHz input, 1024-point frequency data).
"""

from dataclasses import dataclass, field, fields, replace


@dataclass(frozen=True)
class FrequencyRange:
    """Closed frequency interval in Hz."""

    min_hz: float
    max_hz: float

    def validate(self, name: str) -> None:
        if self.min_hz < 0 or self.max_hz <= self.min_hz:
            raise ValueError(
                f"{name}: invalid frequency range {self.min_hz}-{self.max_hz} Hz"
            )


@dataclass
class GainControl:
    """Auto-gain feedback loop shared by every channel."""

    target_min: float = 0.1     # raise gain when normalized output is below
    target_max: float = 0.9     # lower gain when normalized output is above
    adjust_rate: float = 0.01   # gain step per frame
    min_gain: float = 0.1
    max_gain: float = 10.0
    initial_gain: float = 1.0


@dataclass
class HistoryWindows:
    """Rolling window sizes (frames unless noted)."""

    freq_history: int = 12
    beat_history: int = 12
    vocal_history: int = 12
    vocal_variance: int = 5
    beat_time_window: float = 1.0   # seconds


@dataclass
class BeatParams:
    """Kick/snare/hihat energy and beat-candidate tuning."""

    alpha: float = 0.8                  # running-average smoothing
    threshold: float = 1.2              # combined energy ratio gate
    flux_threshold: float = 0.01        # spectral flux gate
    min_beat_interval: float = 0.2      # refractory period, seconds
    decay_rate: float = 0.5             # beat intensity decay per second
    intensity_gain: float = 0.2         # ratio contribution on a hit
    bps_smoothing: float = 0.2
    min_interval: float = 0.1           # shorter beat intervals are debounce artifacts
    epsilon: float = 1e-5
    kick_range: FrequencyRange = field(default_factory=lambda: FrequencyRange(40.0, 100.0))
    snare_range: FrequencyRange = field(default_factory=lambda: FrequencyRange(120.0, 500.0))
    hihat_range: FrequencyRange = field(default_factory=lambda: FrequencyRange(2000.0, 10000.0))
    # Combined ratio weights
    kick_weight: float = 0.6
    snare_weight: float = 0.3
    hihat_weight: float = 0.1
    # Band energy blend and compression
    peak_weight: float = 0.7
    average_weight: float = 0.3
    energy_scale: float = 3.0
    compression_exponent: float = 0.8
    db_min: float = -70.0
    db_max: float = 0.0


@dataclass
class VocalParams:
    """Harmonic-structure scan and vocal score weighting."""

    band: FrequencyRange = field(default_factory=lambda: FrequencyRange(200.0, 6000.0))
    harmonic_threshold: float = 0.1
    harmonic_count: int = 5
    harmonic_saturation: int = 5    # fundamentals needed for a full score
    max_variance: float = 0.1
    harmonic_weight: float = 0.4
    mid_weight: float = 0.4
    variance_weight: float = 0.2


@dataclass
class EnhancedParams:
    """Spectral, chroma, onset and tempo analyzer tuning."""

    # Chroma
    chroma_min_hz: float = 20.0
    chroma_max_hz: float = 8000.0
    chroma_db_floor: float = -60.0
    chroma_noise_floor: float = 0.2         # fraction of the mean
    dominance_threshold: float = 0.4        # absolute probability
    dominance_ratio: float = 0.7            # relative to the mean probability

    # Onsets
    flux_history: int = 43
    onset_threshold_multiplier: float = 1.5
    onset_threshold_floor: float = 1e-6
    percussive_band: tuple = (0.1, 0.5)     # fractions of the bin range
    harmonic_band: tuple = (0.1, 0.8)
    onset_type_ratio: float = 1.5

    # Tempo
    interval_history: int = 86
    tempo_window: float = 5.0               # seconds
    min_onsets: int = 4
    tempo_smoothing: float = 0.3
    confidence_decay: float = 0.95
    initial_bpm: float = 120.0
    min_bpm: float = 60.0
    max_bpm: float = 200.0
    tempo_resolution: float = 0.01          # pulse-train step, seconds


@dataclass
class DynamicsParams:
    """Peak hold, balance and quantized band display helpers."""

    peak_hold_decay: float = 0.95
    min_delta_time: float = 0.001
    quantized_band_count: int = 32
    quantized_min_hz: float = 20.0
    rolling_max_alpha: float = 0.05


@dataclass
class AnalysisConfig:
    """
    Root configuration for an :class:`~pulsescope.pipeline.AudioPipeline`.

    Args:
        sample_rate: Sample rate of the audio the frames were computed from.
        fft_size: Bin-count assumption used by the low/mid/high split.
        low_mid_boundary_hz: Low/mid band boundary.
        mid_high_boundary_hz: Mid/high band boundary.
        audio_activity_threshold: RMS of linear magnitudes above which audio
            counts as active.
        amplitude_decay: Release factor of the amplitude envelope.
        amplitude_rms_scale: Multiplier applied to the raw RMS amplitude.
        amplitude_offset: Constant added to the reported amplitude.
        db_floor: Replacement for non-finite frame entries.
    """

    sample_rate: float = 44100.0
    fft_size: int = 1024
    low_mid_boundary_hz: float = 250.0
    mid_high_boundary_hz: float = 4000.0
    audio_activity_threshold: float = 0.01
    amplitude_decay: float = 0.8
    amplitude_rms_scale: float = 4.0
    # Added after normalization; subtracted again before the envelope.
    amplitude_offset: float = 1.0
    db_floor: float = -120.0

    gain: GainControl = field(default_factory=GainControl)
    history: HistoryWindows = field(default_factory=HistoryWindows)
    beat: BeatParams = field(default_factory=BeatParams)
    vocal: VocalParams = field(default_factory=VocalParams)
    enhanced: EnhancedParams = field(default_factory=EnhancedParams)
    dynamics: DynamicsParams = field(default_factory=DynamicsParams)

    def validate(self) -> "AnalysisConfig":
        """Check value ranges; raise ValueError on the first problem."""
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.fft_size <= 0:
            raise ValueError(f"fft_size must be positive, got {self.fft_size}")
        if not 0 < self.low_mid_boundary_hz < self.mid_high_boundary_hz:
            raise ValueError("band boundaries must satisfy 0 < low/mid < mid/high")
        if not 0 < self.gain.min_gain <= self.gain.max_gain:
            raise ValueError("gain limits must satisfy 0 < min_gain <= max_gain")
        if self.gain.target_min > self.gain.target_max:
            raise ValueError("gain target_min must not exceed target_max")
        for name in ("freq_history", "beat_history", "vocal_history", "vocal_variance"):
            if getattr(self.history, name) <= 0:
                raise ValueError(f"history.{name} must be positive")
        if self.enhanced.flux_history <= 0 or self.enhanced.interval_history <= 0:
            raise ValueError("enhanced history sizes must be positive")
        if not 0 < self.enhanced.min_bpm < self.enhanced.max_bpm:
            raise ValueError("tempo range must satisfy 0 < min_bpm < max_bpm")
        if self.enhanced.tempo_resolution <= 0:
            raise ValueError("tempo_resolution must be positive")
        self.beat.kick_range.validate("beat.kick_range")
        self.beat.snare_range.validate("beat.snare_range")
        self.beat.hihat_range.validate("beat.hihat_range")
        self.vocal.band.validate("vocal.band")
        return self


@dataclass(frozen=True)
class FeatureFlags:
    """
    Toggles for the optional analyzers.

    All four are off by default; each one costs per-frame work.
    """

    onset: bool = False
    chroma: bool = False
    spectral: bool = False
    tempo: bool = False

    def merged(self, **updates: bool) -> "FeatureFlags":
        """Return a copy with the given flags replaced; unknown names raise."""
        known = {f.name for f in fields(self)}
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown feature flag(s): {sorted(unknown)}")
        return replace(self, **{k: bool(v) for k, v in updates.items()})

    @classmethod
    def all_enabled(cls) -> "FeatureFlags":
        return cls(onset=True, chroma=True, spectral=True, tempo=True)

    @classmethod
    def all_disabled(cls) -> "FeatureFlags":
        return cls()

    def any_enabled(self) -> bool:
        return self.onset or self.chroma or self.spectral or self.tempo
