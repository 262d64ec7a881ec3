"""End-to-end tests for AudioPipeline."""

import math

import numpy as np
import pytest

from pulsescope import AnalysisConfig, AudioPipeline, FeatureFlags, FeatureSnapshot
from pulsescope.config import FrequencyRange, VocalParams
from pulsescope.core.history import Channel

from conftest import FPS, make_frame, make_pulse_frames

DT = 1.0 / FPS

UNIT_FIELDS = (
    "low", "mid", "high", "kick", "snare", "hihat",
    "vocal_likelihood", "raw_amplitude", "beat_intensity",
    "low_log", "mid_log", "high_log", "low_mid_balance", "mid_high_balance",
    "sin_normal", "cos_normal", "adjusted_sin_normal", "adjusted_cos_normal",
)

CORE_FIELDS = (
    "low", "mid", "high", "kick", "snare", "hihat",
    "vocal_likelihood", "amplitude", "raw_amplitude", "beat_intensity", "bps",
    "is_beat", "spectral_flux", "quantized_bands",
) + tuple(ch.gain_field for ch in Channel)


def _run(pipeline, frames, dt=DT):
    return [pipeline.update(dt, frame) for frame in frames]


def _all_finite(snapshot: FeatureSnapshot) -> bool:
    for value in snapshot.as_dict().values():
        if isinstance(value, (bool, str)):
            continue
        if isinstance(value, tuple):
            if value and not np.all(np.isfinite(np.asarray(value, dtype=float))):
                return False
        elif not math.isfinite(value):
            return False
    return True


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------

class TestBounds:
    def test_values_and_gains_in_range(self, noise_frames):
        pipeline = AudioPipeline()
        for snap in _run(pipeline, noise_frames):
            for name in UNIT_FIELDS:
                assert 0.0 <= getattr(snap, name) <= 1.0, name
            for ch in Channel:
                assert 0.1 <= snap.gain(ch) <= 10.0, ch
            assert 1.0 <= snap.amplitude <= 2.0
            assert all(0 <= b <= 255 for b in snap.quantized_bands)
            assert snap.is_audio_active

    def test_silence_is_numerically_safe(self, silent_frame):
        pipeline = AudioPipeline(flags=FeatureFlags.all_enabled())
        for _ in range(100):
            snap = pipeline.update(DT, silent_frame)
            assert _all_finite(snap)
        assert not snap.is_audio_active
        assert not snap.is_beat
        assert not snap.is_onset
        assert snap.low == 0.0
        assert snap.dominant_note == -1

    def test_non_finite_frame_entries(self):
        frame = make_frame(-60.0)
        frame[::3] = np.nan
        frame[1::7] = np.inf
        snap = AudioPipeline(flags=FeatureFlags.all_enabled()).update(DT, frame)
        assert _all_finite(snap)

    def test_out_of_range_decibels(self):
        frame = make_frame(-60.0, b100=1e4, b500=5e3)
        pipeline = AudioPipeline(flags=FeatureFlags.all_enabled())
        for _ in range(3):
            snap = pipeline.update(DT, frame)
            assert _all_finite(snap)


# ---------------------------------------------------------------------------
# Clocks and degraded input
# ---------------------------------------------------------------------------

class TestClocks:
    def test_time_accumulates(self, noise_frames):
        pipeline = AudioPipeline()
        snaps = _run(pipeline, noise_frames[:10], dt=0.1)
        assert snaps[-1].time == pytest.approx(1.0)
        assert snaps[-1].sin == pytest.approx(math.sin(1.0))
        assert snaps[-1].cos_normal == pytest.approx((math.cos(1.0) + 1.0) / 2.0)

    def test_adjusted_time_uses_prior_amplitude(self, noise_frames):
        pipeline = AudioPipeline()
        first = pipeline.update(0.5, noise_frames[0])
        # The initial snapshot has zero amplitude, so the adjusted clock starts still
        assert first.adjusted_time == 0.0
        second = pipeline.update(0.5, noise_frames[1])
        assert second.adjusted_time == pytest.approx(0.5 * first.amplitude)
        assert second.adjusted_sin == pytest.approx(math.sin(second.adjusted_time))

    def test_amplitude_offset_is_configurable(self, noise_frames):
        pipeline = AudioPipeline(AnalysisConfig(amplitude_offset=0.0))
        for snap in _run(pipeline, noise_frames[:50]):
            assert 0.0 <= snap.amplitude <= 1.0

    def test_negative_delta_clamped(self, noise_frames):
        snap = AudioPipeline().update(-1.0, noise_frames[0])
        assert snap.time == 0.0

    @pytest.mark.parametrize("frame", [[], None, ["not", "numbers"]])
    def test_empty_frame_only_advances_time(self, noise_frames, frame):
        pipeline = AudioPipeline()
        before = pipeline.update(DT, noise_frames[0])
        after = pipeline.update(0.25, frame)
        assert after.time == pytest.approx(before.time + 0.25)
        assert after.kick == before.kick
        assert after.gains() == before.gains()
        assert after.beat_intensity == before.beat_intensity
        assert pipeline.last_snapshot is after

    def test_frame_length_may_vary(self, noise_frames):
        pipeline = AudioPipeline(flags=FeatureFlags.all_enabled())
        pipeline.update(DT, noise_frames[0])
        snap = pipeline.update(DT, noise_frames[1][:300])
        assert _all_finite(snap)
        snap = pipeline.update(DT, noise_frames[2])
        assert _all_finite(snap)

    def test_explicit_prior(self, noise_frames):
        pipeline = AudioPipeline()
        _run(pipeline, noise_frames[:5])
        snap = pipeline.update(0.2, noise_frames[5], prior=FeatureSnapshot.initial())
        assert snap.time == pytest.approx(0.2)


# ---------------------------------------------------------------------------
# Beats through the full pipeline
# ---------------------------------------------------------------------------

class TestPipelineBeats:
    def test_spikes_register_as_beats(self, pulse_frames):
        pipeline = AudioPipeline()
        snaps = _run(pipeline, pulse_frames)
        spikes = [snaps[i] for i in range(30, len(snaps), 30)]
        others = [s for i, s in enumerate(snaps) if i % 30 != 0 or i == 0]
        assert any(s.is_beat for s in spikes)
        assert not any(s.is_beat for s in others)
        beat = next(s for s in spikes if s.is_beat)
        assert beat.beat_intensity > 0.0
        assert beat.time in beat.beat_times

    def test_tempo_from_beats_alone(self):
        pipeline = AudioPipeline(flags=FeatureFlags(tempo=True))
        # 100 BPM: one spike every 36 frames for ten seconds
        snaps = _run(pipeline, make_pulse_frames(600, 36))
        assert sum(s.is_beat for s in snaps) >= 10
        assert len(pipeline.enhanced.beat_times) >= 4
        assert snaps[-1].bpm == pytest.approx(100.0, abs=2.0)
        assert snaps[-1].tempo_confidence > 0.0

    def test_explicit_now(self, pulse_frames):
        pipeline = AudioPipeline()
        snaps = [
            pipeline.update(DT, frame, now=100.0 + i * DT)
            for i, frame in enumerate(pulse_frames)
        ]
        for snap in snaps:
            assert all(t >= 100.0 for t in snap.beat_times)


# ---------------------------------------------------------------------------
# Feature flags
# ---------------------------------------------------------------------------

class TestFeatureFlags:
    def test_disabled_by_default(self, a4_frame):
        pipeline = AudioPipeline()
        assert pipeline.feature_flags == FeatureFlags()
        snap = pipeline.update(DT, a4_frame)
        assert snap.spectral_centroid == 0.0
        assert snap.chroma_vector == (0.0,) * 12
        assert snap.dominant_note == -1
        assert not snap.is_onset
        assert snap.onset_type == "broadband"
        assert snap.bpm == 0.0

    def test_enabled_analyzers_report(self, a4_frame):
        pipeline = AudioPipeline(flags=FeatureFlags(chroma=True, spectral=True))
        snap = pipeline.update(DT, a4_frame)
        assert snap.dominant_note == 9
        assert snap.spectral_centroid > 0.0

    def test_flags_do_not_change_core_fields(self, noise_frames):
        off = AudioPipeline()
        on = AudioPipeline(flags=FeatureFlags.all_enabled())
        for frame in noise_frames[:120]:
            a = off.update(DT, frame)
            b = on.update(DT, frame)
            for name in CORE_FIELDS:
                assert getattr(a, name) == getattr(b, name), name

    def test_set_feature_flags_merges(self):
        pipeline = AudioPipeline()
        pipeline.set_feature_flags(chroma=True)
        pipeline.set_feature_flags(onset=True)
        assert pipeline.feature_flags == FeatureFlags(chroma=True, onset=True)
        assert pipeline.enhanced.flags == pipeline.feature_flags

    def test_unknown_flag_raises(self):
        with pytest.raises(ValueError):
            AudioPipeline().set_feature_flags(pitch=True)

    def test_enable_and_disable_all(self):
        pipeline = AudioPipeline()
        assert pipeline.enable_enhanced_analysis() == FeatureFlags.all_enabled()
        assert pipeline.disable_enhanced_analysis() == FeatureFlags.all_disabled()

    def test_per_call_override(self, a4_frame):
        pipeline = AudioPipeline()
        snap = pipeline.update(DT, a4_frame, flags=FeatureFlags(chroma=True))
        assert snap.dominant_note == 9
        assert pipeline.feature_flags == FeatureFlags()

    def test_instances_do_not_share_flags(self):
        a = AudioPipeline()
        b = AudioPipeline()
        a.enable_enhanced_analysis()
        assert b.feature_flags == FeatureFlags()


# ---------------------------------------------------------------------------
# Lifecycle and configuration
# ---------------------------------------------------------------------------

class TestLifecycle:
    def test_reset(self, noise_frames):
        pipeline = AudioPipeline()
        _run(pipeline, noise_frames[:20])
        pipeline.reset()
        assert pipeline.last_snapshot == FeatureSnapshot.initial()
        assert pipeline.beats.beat_times == []
        assert pipeline.previous_magnitudes is None

    def test_reset_keeps_flags(self):
        pipeline = AudioPipeline(flags=FeatureFlags(tempo=True))
        pipeline.reset()
        assert pipeline.enhanced.flags == FeatureFlags(tempo=True)

    def test_instances_are_independent(self, noise_frames):
        a = AudioPipeline()
        b = AudioPipeline()
        _run(a, noise_frames[:10])
        assert b.last_snapshot == FeatureSnapshot.initial()

    def test_initial_snapshot(self):
        snap = FeatureSnapshot.initial()
        assert all(g == 1.0 for g in snap.gains().values())
        assert snap.time == 0.0
        assert snap.dominant_note == -1

    @pytest.mark.parametrize(
        "config",
        [
            AnalysisConfig(sample_rate=0.0),
            AnalysisConfig(fft_size=0),
            AnalysisConfig(low_mid_boundary_hz=5000.0),
            AnalysisConfig(vocal=VocalParams(band=FrequencyRange(6000.0, 200.0))),
        ],
    )
    def test_invalid_config_raises(self, config):
        with pytest.raises(ValueError):
            AudioPipeline(config)
