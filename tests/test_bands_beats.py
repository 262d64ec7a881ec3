"""Tests for band extraction and beat detection."""

import math

import numpy as np
import pytest

from pulsescope.config import AnalysisConfig, BeatParams, HistoryWindows
from pulsescope.core.bands import BandEnergyExtractor
from pulsescope.core.beats import BeatDetector
from pulsescope.core.history import Channel

from conftest import make_frame


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _quiet(detector: BeatDetector, start: float, frames: int = 20, dt: float = 0.016) -> float:
    """Feed steady low energy with no flux; return the time after the last frame."""
    t = start
    for _ in range(frames):
        detector.update(0.1, 0.1, 0.1, 0.0, True, t, dt)
        t += dt
    return t


def _spike(detector: BeatDetector, now: float, flux: float = 0.5, active: bool = True, **prior):
    return detector.update(1.0, 1.0, 1.0, flux, active, now, 0.016, **prior)


def _fire(detector: BeatDetector, now: float):
    """Force a clean beat candidate at *now* by pinning the running averages."""
    detector.kick_average = detector.snare_average = detector.hihat_average = 0.1
    return _spike(detector, now)


# ---------------------------------------------------------------------------
# BandEnergyExtractor
# ---------------------------------------------------------------------------

class TestBandEnergyExtractor:
    def test_raw_energies_cover_six_channels(self, silent_frame):
        energies = BandEnergyExtractor().raw_energies(silent_frame)
        assert set(energies) == {
            Channel.LOW, Channel.MID, Channel.HIGH,
            Channel.KICK, Channel.SNARE, Channel.HIHAT,
        }

    def test_each_channel_owns_a_normalizer(self):
        extractor = BandEnergyExtractor()
        assert len({id(n) for n in extractor.normalizers.values()}) == 6

    def test_silent_frame(self, silent_frame):
        bands = BandEnergyExtractor().extract(silent_frame, {})
        for state in (bands.low, bands.mid, bands.high):
            assert state.value == 0.0
            assert state.gain == pytest.approx(1.01)

    def test_bass_heavy_frame(self):
        frame = make_frame(-100.0)
        frame[:5] = -20.0
        energies = BandEnergyExtractor().raw_energies(frame)
        assert energies[Channel.LOW] > energies[Channel.MID]
        assert energies[Channel.LOW] > energies[Channel.HIGH]
        assert energies[Channel.KICK] > energies[Channel.HIHAT]

    def test_gains_are_read_per_channel(self, noise_frames):
        extractor = BandEnergyExtractor()
        bands = extractor.extract(noise_frames[0], {Channel.LOW: 2.0})
        # First push of a non-zero value normalizes to 1, so each gain steps down
        assert bands.low.gain == pytest.approx(1.99)
        assert bands.mid.gain == pytest.approx(0.99)

    def test_values_stay_in_bounds(self, noise_frames):
        extractor = BandEnergyExtractor()
        gains = {}
        for frame in noise_frames:
            bands = extractor.extract(frame, gains)
            gains = {
                Channel.LOW: bands.low.gain, Channel.MID: bands.mid.gain,
                Channel.HIGH: bands.high.gain, Channel.KICK: bands.kick.gain,
                Channel.SNARE: bands.snare.gain, Channel.HIHAT: bands.hihat.gain,
            }
            for state in (bands.low, bands.mid, bands.high, bands.kick, bands.snare, bands.hihat):
                assert 0.0 <= state.value <= 1.0
                assert 0.1 <= state.gain <= 10.0

    def test_custom_config(self):
        config = AnalysisConfig(history=HistoryWindows(freq_history=4, beat_history=6))
        extractor = BandEnergyExtractor(config)
        assert extractor.normalizers[Channel.LOW].history.buffer.capacity == 4
        assert extractor.normalizers[Channel.KICK].history.buffer.capacity == 6


# ---------------------------------------------------------------------------
# BeatDetector: gates
# ---------------------------------------------------------------------------

class TestBeatGates:
    def test_spike_after_quiet_is_a_beat(self):
        detector = BeatDetector()
        t = _quiet(detector, 0.0)
        result = _spike(detector, t)
        assert result.detection.is_beat_candidate
        assert result.detection.combined_ratio > 1.2
        assert detector.last_beat_time == t

    def test_refractory_period(self):
        detector = BeatDetector()
        t = _quiet(detector, 0.0)
        assert _spike(detector, t).detection.is_beat_candidate
        assert not _spike(detector, t + 0.1).detection.is_beat_candidate
        assert _spike(detector, t + 0.25).detection.is_beat_candidate

    def test_inactive_audio_never_beats(self):
        detector = BeatDetector()
        t = _quiet(detector, 0.0)
        assert not _spike(detector, t, active=False).detection.is_beat_candidate

    def test_low_flux_never_beats(self):
        detector = BeatDetector()
        t = _quiet(detector, 0.0)
        assert not _spike(detector, t, flux=0.005).detection.is_beat_candidate

    def test_steady_energy_never_beats(self):
        detector = BeatDetector()
        t = _quiet(detector, 0.0)
        result = detector.update(0.1, 0.1, 0.1, 0.5, True, t, 0.016)
        assert result.detection.combined_ratio == pytest.approx(1.0, abs=0.02)
        assert not result.detection.is_beat_candidate

    def test_silent_averages_are_guarded(self):
        detector = BeatDetector()
        result = detector.update(0.0, 0.0, 0.0, 0.0, False, 0.0, 0.016)
        assert result.detection.combined_ratio == 0.0
        assert result.detection.time_since_last_beat == math.inf

    def test_weights_are_configurable(self):
        detector = BeatDetector(BeatParams(kick_weight=0.0, snare_weight=0.0, hihat_weight=0.0))
        t = _quiet(detector, 0.0)
        assert not _spike(detector, t).detection.is_beat_candidate


# ---------------------------------------------------------------------------
# BeatDetector: intensity and BPS
# ---------------------------------------------------------------------------

class TestBeatEnvelope:
    def test_intensity_rises_on_beat(self):
        detector = BeatDetector()
        t = _quiet(detector, 0.0)
        result = _spike(detector, t)
        expected = min(1.0, result.detection.combined_ratio * 0.2)
        assert result.beat_intensity == pytest.approx(expected)

    def test_intensity_clamped(self):
        detector = BeatDetector()
        t = _quiet(detector, 0.0)
        result = _spike(detector, t, previous_intensity=0.95)
        assert result.beat_intensity == 1.0

    def test_intensity_decays_with_frame_delta(self):
        detector = BeatDetector()
        result = detector.update(0.0, 0.0, 0.0, 0.0, False, 0.0, 0.1, previous_intensity=0.5)
        assert result.beat_intensity == pytest.approx(0.5 * (1.0 - 0.5 * 0.5 * 0.1))

    def test_bps_from_two_beats(self):
        detector = BeatDetector()
        _fire(detector, 0.0)
        result = _fire(detector, 0.5)
        assert detector.beat_times == [0.0, 0.5]
        assert detector.instant_bps() == pytest.approx(2.0)
        assert result.bps == pytest.approx(0.4)

    def test_single_beat_contributes_nothing(self):
        detector = BeatDetector()
        result = _fire(detector, 0.0)
        assert result.detection.is_beat_candidate
        assert detector.instant_bps() == 0.0
        assert _fire(detector, 5.0).bps == 0.0

    def test_bps_smoothing_uses_prior(self):
        detector = BeatDetector()
        result = detector.update(0.0, 0.0, 0.0, 0.0, False, 0.0, 0.016, previous_bps=2.0)
        assert result.bps == pytest.approx(1.6)

    def test_beat_log_pruned_every_frame(self):
        detector = BeatDetector()
        _fire(detector, 0.0)
        _fire(detector, 0.5)
        detector.update(0.0, 0.0, 0.0, 0.0, False, 1.2, 0.016)
        assert detector.beat_times == [0.5]
        detector.update(0.0, 0.0, 0.0, 0.0, False, 2.0, 0.016)
        assert detector.beat_times == []

    def test_window_is_configurable(self):
        detector = BeatDetector(windows=HistoryWindows(beat_time_window=3.0))
        _fire(detector, 0.0)
        _fire(detector, 2.0)
        assert detector.beat_times == [0.0, 2.0]

    def test_reset(self):
        detector = BeatDetector()
        _fire(detector, 0.0)
        detector.reset()
        assert detector.beat_times == []
        assert detector.last_beat_time == -np.inf
        assert detector.kick_average == 0.0
