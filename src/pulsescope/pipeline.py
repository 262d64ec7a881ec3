"""
Frame-by-frame audio reactivity pipeline.

Architecture Overview
---------------------
::

    dB frequency frame  (one per render tick)
        │
        ▼
    AudioPipeline.update(delta_time, frame, prior)
        │
        ├─► amplitude path: RMS ─► raw_amplitude normalizer ─► envelope ─► amplitude normalizer
        ├─► BandEnergyExtractor      low / mid / high, kick / snare / hihat
        ├─► BeatDetector             candidate gate, intensity envelope, BPS
        ├─► VocalLikelihoodEstimator harmonic scan, mid variance
        ├─► BandDynamics             peak holds, velocities, balances, 32 bands
        ├─► EnhancedAnalyzer         spectral / chroma / onset / tempo (flag-gated)
        │
        └─► FeatureSnapshot  (frozen; fed back as ``prior`` next frame)

Every auto-gain channel reads its gain from the prior snapshot and writes the
adapted gain into the new one, so the snapshot carries the feedback loop.
One pipeline serves one audio stream; instances share no state.
"""

import logging
import math
from dataclasses import replace
from typing import Optional

import numpy as np

from pulsescope.config import AnalysisConfig, FeatureFlags
from pulsescope.core.bands import BandEnergyExtractor
from pulsescope.core.beats import BeatDetector
from pulsescope.core.dynamics import BandDynamics
from pulsescope.core.enhanced import EnhancedAnalyzer
from pulsescope.core.history import AdaptiveNormalizer, Channel
from pulsescope.core.snapshot import FeatureSnapshot
from pulsescope.core.spectral import (
    FrameLike,
    amplitude_rms,
    apply_envelope,
    as_frame,
    db_array_to_magnitudes,
    rms,
    spectral_flux,
)
from pulsescope.core.vocal import VocalLikelihoodEstimator

logger = logging.getLogger(__name__)


def _oscillators(t: float, prefix: str = "") -> dict:
    s, c = math.sin(t), math.cos(t)
    return {
        f"{prefix}sin": s,
        f"{prefix}cos": c,
        f"{prefix}sin_normal": (s + 1.0) / 2.0,
        f"{prefix}cos_normal": (c + 1.0) / 2.0,
    }


class AudioPipeline:
    """
    Turns a stream of dB frequency frames into :class:`FeatureSnapshot` records.

    Args:
        config: Analysis configuration (validated on construction).
        flags: Initial enhanced-analysis feature flags; all off by default.

    Example::

        pipeline = AudioPipeline()
        for dt, frame in frames:
            snap = pipeline.update(dt, frame)
            draw(snap.kick, snap.beat_intensity)
    """

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        flags: Optional[FeatureFlags] = None,
    ):
        self.config = (config or AnalysisConfig()).validate()
        self._flags = flags or FeatureFlags()
        self._build()
        logger.debug(
            f"AudioPipeline created: sr={self.config.sample_rate}, "
            f"fft_size={self.config.fft_size}, flags={self._flags}"
        )

    def _build(self) -> None:
        cfg = self.config
        windows = cfg.history
        self.bands = BandEnergyExtractor(cfg)
        self.beats = BeatDetector(cfg.beat, windows)
        self.vocal = VocalLikelihoodEstimator(cfg)
        self.dynamics = BandDynamics(cfg.dynamics, cfg.sample_rate)
        self.enhanced = EnhancedAnalyzer(cfg.enhanced, cfg.sample_rate, self._flags)
        self.raw_amplitude_normalizer = AdaptiveNormalizer(
            Channel.RAW_AMPLITUDE, windows.freq_history, cfg.gain
        )
        self.amplitude_normalizer = AdaptiveNormalizer(
            Channel.AMPLITUDE, windows.freq_history, cfg.gain
        )
        self.previous_magnitudes: Optional[np.ndarray] = None
        self.last_snapshot = FeatureSnapshot.initial(cfg.gain.initial_gain)

    # ------------------------------------------------------------------
    # Feature flags
    # ------------------------------------------------------------------

    @property
    def feature_flags(self) -> FeatureFlags:
        return self._flags

    def set_feature_flags(self, **flags: bool) -> FeatureFlags:
        """Merge a partial flag update, e.g. ``set_feature_flags(chroma=True)``."""
        self._flags = self._flags.merged(**flags)
        self.enhanced.flags = self._flags
        logger.info(f"Enhanced analysis flags: {self._flags}")
        return self._flags

    def enable_enhanced_analysis(self) -> FeatureFlags:
        return self.set_feature_flags(onset=True, chroma=True, spectral=True, tempo=True)

    def disable_enhanced_analysis(self) -> FeatureFlags:
        return self.set_feature_flags(onset=False, chroma=False, spectral=False, tempo=False)

    # ------------------------------------------------------------------
    # Per-frame update
    # ------------------------------------------------------------------

    def _advance_clocks(self, prior: FeatureSnapshot, delta_time: float) -> dict:
        time = prior.time + delta_time
        adjusted_time = prior.adjusted_time + delta_time * prior.amplitude
        clocks = {"time": time, "adjusted_time": adjusted_time}
        clocks.update(_oscillators(time))
        clocks.update(_oscillators(adjusted_time, prefix="adjusted_"))
        return clocks

    def _amplitude(self, frame: np.ndarray, prior: FeatureSnapshot) -> tuple[dict, float]:
        """Snapshot amplitude fields plus the un-offset smoothed amplitude."""
        cfg = self.config
        raw = self.raw_amplitude_normalizer.apply(
            amplitude_rms(frame, cfg.amplitude_rms_scale), prior.raw_amplitude_gain
        )
        previous = max(prior.amplitude - cfg.amplitude_offset, 0.0)
        envelope = apply_envelope(raw.value, previous, cfg.amplitude_decay)
        smoothed = self.amplitude_normalizer.apply(envelope, prior.amplitude_gain)
        fields = {
            "raw_amplitude": raw.value,
            "raw_amplitude_gain": raw.gain,
            "amplitude": smoothed.value + cfg.amplitude_offset,
            "amplitude_gain": smoothed.gain,
        }
        return fields, smoothed.value

    def update(
        self,
        delta_time: float,
        frame: Optional[FrameLike],
        prior: Optional[FeatureSnapshot] = None,
        now: Optional[float] = None,
        flags: Optional[FeatureFlags] = None,
    ) -> FeatureSnapshot:
        """
        Process one frame.

        Args:
            delta_time: Seconds since the previous update (negative is treated as 0).
            frame: dB magnitudes, one per bin.  Empty, missing or unparseable
                frames advance the clocks only.
            prior: Snapshot to continue from; defaults to the last one produced.
            now: Timestamp for beat and onset bookkeeping; defaults to the
                accumulated ``time``.
            flags: Feature flags for this call only.

        Returns:
            The new snapshot, which is also stored as the next default prior.
        """
        prior = prior if prior is not None else self.last_snapshot
        if not math.isfinite(delta_time) or delta_time < 0:
            delta_time = 0.0

        clocks = self._advance_clocks(prior, delta_time)
        data = as_frame(frame, self.config.db_floor)
        if data.size == 0:
            logger.debug("Empty frame; advancing clocks only")
            snapshot = replace(prior, **clocks)
            self.last_snapshot = snapshot
            return snapshot

        now = clocks["time"] if now is None else now
        flags = flags or self._flags
        cfg = self.config
        gains = prior.gains()

        amp, amplitude_value = self._amplitude(data, prior)

        magnitudes = db_array_to_magnitudes(data)
        flux = spectral_flux(magnitudes, self.previous_magnitudes)
        self.previous_magnitudes = magnitudes
        is_active = rms(magnitudes) > cfg.audio_activity_threshold

        bands = self.bands.extract(data, gains)
        beat = self.beats.update(
            bands.kick.value,
            bands.snare.value,
            bands.hihat.value,
            flux,
            is_active,
            now,
            delta_time,
            previous_intensity=prior.beat_intensity,
            previous_bps=prior.bps,
        )
        vocal = self.vocal.estimate(data, bands.mid.value, gains[Channel.VOCAL])

        current = {
            "low": bands.low.value,
            "mid": bands.mid.value,
            "high": bands.high.value,
            "kick": bands.kick.value,
            "snare": bands.snare.value,
            "hihat": bands.hihat.value,
            "amplitude": amplitude_value,
        }
        dynamics = self.dynamics.update(current, prior.as_dict(), delta_time, data)

        features = self.enhanced.analyze(data, now, self.beats.beat_times, flags)

        snapshot = FeatureSnapshot(
            **clocks,
            **amp,
            low=bands.low.value,
            mid=bands.mid.value,
            high=bands.high.value,
            kick=bands.kick.value,
            snare=bands.snare.value,
            hihat=bands.hihat.value,
            low_gain=bands.low.gain,
            mid_gain=bands.mid.gain,
            high_gain=bands.high.gain,
            kick_gain=bands.kick.gain,
            snare_gain=bands.snare.gain,
            hihat_gain=bands.hihat.gain,
            vocal_likelihood=vocal.likelihood.value,
            vocal_gain=vocal.likelihood.gain,
            beat_intensity=beat.beat_intensity,
            bps=beat.bps,
            is_audio_active=bool(is_active),
            kick_average=beat.detection.kick_average,
            spectral_flux=flux,
            is_beat=beat.detection.is_beat_candidate,
            beat_times=tuple(self.beats.beat_times),
            **dynamics.as_fields(),
            spectral_centroid=features.spectral.centroid,
            spectral_spread=features.spectral.spread,
            spectral_skewness=features.spectral.skewness,
            spectral_kurtosis=features.spectral.kurtosis,
            chroma_vector=features.chroma.chroma_vector,
            dominant_note=features.chroma.dominant_note,
            is_onset=features.onset.is_onset,
            onset_strength=features.onset.strength,
            onset_type=features.onset.onset_type,
            bpm=features.tempo.bpm,
            tempo_confidence=features.tempo.confidence,
            tempo_stability=features.tempo.stability,
            beat_phase=features.tempo.phase,
        )
        self.last_snapshot = snapshot
        return snapshot

    def reset(self) -> None:
        """Drop all history and start again from the initial snapshot."""
        self._build()
        logger.debug("AudioPipeline reset")
