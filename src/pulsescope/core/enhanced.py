"""
Optional spectral-shape, pitch-class, onset and tempo analysis.

Each analyzer is gated by a :class:`~pulsescope.config.FeatureFlags` entry and
returns a fixed neutral record when disabled, without touching its state.
All four work on plain ``10 ** (db / 20)`` amplitudes rather than the
soft-knee magnitudes used by the always-on bands.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Optional, Sequence

import librosa
import numpy as np
from scipy import signal

from pulsescope.config import EnhancedParams, FeatureFlags
from pulsescope.core.history import RingHistory
from pulsescope.core.spectral import bin_frequencies, db_to_amplitude

logger = logging.getLogger(__name__)

CHROMA_NAMES = ("C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B")

ONSET_PERCUSSIVE = "percussive"
ONSET_HARMONIC = "harmonic"
ONSET_BROADBAND = "broadband"


@dataclass(frozen=True)
class SpectralFeatures:
    centroid: float = 0.0
    spread: float = 0.0
    skewness: float = 0.0
    kurtosis: float = 0.0


@dataclass(frozen=True)
class ChromaFeatures:
    chroma_vector: tuple = (0.0,) * 12
    dominant_note: int = -1
    note_probabilities: tuple = (0.0,) * 12

    @property
    def dominant_name(self) -> Optional[str]:
        if self.dominant_note < 0:
            return None
        return CHROMA_NAMES[self.dominant_note]


@dataclass(frozen=True)
class OnsetDetectionResult:
    is_onset: bool = False
    strength: float = 0.0
    onset_type: str = ONSET_BROADBAND


@dataclass(frozen=True)
class TempoAnalysis:
    bpm: float = 0.0
    confidence: float = 0.0
    stability: float = 0.0
    phase: float = 0.0


@dataclass(frozen=True)
class EnhancedFeatures:
    """Combined output of one :meth:`EnhancedAnalyzer.analyze` call."""

    spectral: SpectralFeatures = SpectralFeatures()
    chroma: ChromaFeatures = ChromaFeatures()
    onset: OnsetDetectionResult = OnsetDetectionResult()
    tempo: TempoAnalysis = TempoAnalysis()


def spectral_features(frame: np.ndarray, sample_rate: float) -> SpectralFeatures:
    """Centroid and normalized central moments 2-4 of the amplitude spectrum."""
    if len(frame) == 0:
        return SpectralFeatures()
    mags = db_to_amplitude(frame)
    freqs = bin_frequencies(len(frame), sample_rate)
    total = float(mags.sum())
    if total <= 0:
        return SpectralFeatures()

    centroid = float(np.dot(freqs, mags) / total)
    dev = freqs - centroid
    m2 = float(np.dot(dev ** 2, mags) / total)
    m3 = float(np.dot(dev ** 3, mags) / total)
    m4 = float(np.dot(dev ** 4, mags) / total)

    if m2 <= 0:
        return SpectralFeatures(centroid=centroid)
    return SpectralFeatures(
        centroid=centroid,
        spread=math.sqrt(m2),
        skewness=m3 / m2 ** 1.5,
        kurtosis=m4 / (m2 * m2),
    )


def chroma_features(
    frame: np.ndarray,
    sample_rate: float,
    params: Optional[EnhancedParams] = None,
) -> ChromaFeatures:
    """
    Fold the spectrum onto the 12 pitch classes.

    Bins are weighted towards well-tuned, lower frequencies; the folded vector
    is noise-gated at a fraction of its mean and range-normalized to [0, 1].
    """
    p = params or EnhancedParams()
    n = len(frame)
    chroma = np.zeros(12, dtype=np.float64)
    if n < 2:
        return ChromaFeatures()

    freqs = bin_frequencies(n, sample_rate)[1:]
    db = frame[1:]
    mask = (freqs > p.chroma_min_hz) & (freqs < p.chroma_max_hz) & (db > p.chroma_db_floor)
    if np.any(mask):
        f = freqs[mask]
        midi = librosa.hz_to_midi(f)
        nearest = np.floor(midi + 0.5)
        pitch_class = np.mod(nearest, 12).astype(int)
        weight = 1.0 / (1.0 + np.abs(midi - nearest)) / np.sqrt(f)
        np.add.at(chroma, pitch_class, db_to_amplitude(db[mask]) * weight)

    lo, hi = float(chroma.min()), float(chroma.max())
    span = hi - lo
    if span > 0:
        gated = np.where(chroma > chroma.mean() * p.chroma_noise_floor, chroma, 0.0)
        probs = np.clip((gated - lo) / span, 0.0, 1.0)
    else:
        probs = np.zeros(12, dtype=np.float64)

    best = float(probs.max())
    dominant = -1
    if best > p.dominance_threshold and best > probs.mean() * p.dominance_ratio:
        dominant = int(np.argmax(probs))

    values = tuple(float(v) for v in probs)
    return ChromaFeatures(chroma_vector=values, dominant_note=dominant, note_probabilities=values)


class OnsetDetector:
    """
    Spectral-flux onset detector with an adaptive median threshold.

    Args:
        params: Enhanced analysis tuning.
    """

    def __init__(self, params: Optional[EnhancedParams] = None):
        self.params = params or EnhancedParams()
        self.flux_history = RingHistory(self.params.flux_history)
        self.previous: Optional[np.ndarray] = None

    def _band_slice(self, mags: np.ndarray, band: tuple) -> slice:
        n = len(mags)
        return slice(int(n * band[0]), int(n * band[1]))

    def detect(self, frame: np.ndarray) -> OnsetDetectionResult:
        """Compare *frame* with the previous one; the first frame only primes state."""
        current = db_to_amplitude(frame)
        if self.previous is None:
            self.previous = current
            return OnsetDetectionResult()

        p = self.params
        n = min(len(current), len(self.previous))
        curr, prev = current[:n], self.previous[:n]

        flux = float(np.sum(np.maximum(curr - prev, 0.0)))
        percussive = float(np.sum(curr[self._band_slice(curr, p.percussive_band)]))
        harmonic_span = self._band_slice(curr, p.harmonic_band)
        harmonic = float(np.sum(np.abs(curr[harmonic_span] - prev[harmonic_span])))

        self.flux_history.push(flux)
        threshold = max(
            float(np.median(self.flux_history.values())) * p.onset_threshold_multiplier,
            p.onset_threshold_floor,
        )
        self.previous = current

        if flux <= threshold:
            return OnsetDetectionResult()

        onset_type = ONSET_BROADBAND
        if percussive > harmonic * p.onset_type_ratio:
            onset_type = ONSET_PERCUSSIVE
        elif harmonic > percussive * p.onset_type_ratio:
            onset_type = ONSET_HARMONIC
        return OnsetDetectionResult(is_onset=True, strength=flux / threshold, onset_type=onset_type)

    def reset(self) -> None:
        self.flux_history.clear()
        self.previous = None


class TempoTracker:
    """
    Tempo, stability and phase from a list of event timestamps.

    Inter-onset intervals accumulate in a ring; each update lays the ring out
    as a pulse train and picks the strongest autocorrelation peak inside the
    allowed BPM range.

    Args:
        params: Enhanced analysis tuning.
    """

    def __init__(self, params: Optional[EnhancedParams] = None):
        self.params = params or EnhancedParams()
        self.intervals = RingHistory(self.params.interval_history)
        self.estimate = self.params.initial_bpm
        self.confidence = 0.0
        self._last_seen: float = -math.inf

    def _lag_bounds(self) -> tuple[int, int]:
        p = self.params
        lo = int(math.ceil(round(60.0 / p.max_bpm / p.tempo_resolution, 6)))
        hi = int(math.floor(round(60.0 / p.min_bpm / p.tempo_resolution, 6)))
        return max(lo, 1), hi

    def pulse_train(self, intervals: np.ndarray) -> np.ndarray:
        """Unit impulses at the cumulative interval positions, sampled at the tempo resolution."""
        times = np.concatenate(([0.0], np.cumsum(intervals)))
        idx = np.round(times / self.params.tempo_resolution).astype(int)
        train = np.zeros(idx[-1] + 1, dtype=np.float64)
        train[idx] = 1.0
        return train

    def autocorrelation(self, train: np.ndarray) -> np.ndarray:
        """Non-negative lags of the autocorrelation, scaled so lag 0 is 1."""
        acf = signal.correlate(train, train, mode="full")[len(train) - 1:]
        if acf[0] <= 0:
            return np.zeros_like(acf)
        return acf / acf[0]

    def dominant_lag(self, acf: np.ndarray) -> Optional[tuple[int, float]]:
        """Highest local maximum of *acf* inside the BPM lag range, as (lag, magnitude)."""
        lo, hi = self._lag_bounds()
        peaks, _ = signal.find_peaks(acf)
        peaks = peaks[(peaks >= lo) & (peaks <= hi)]
        if peaks.size == 0:
            return None
        best = peaks[np.argmax(acf[peaks])]
        return int(best), float(acf[best])

    def stability(self, intervals: np.ndarray) -> float:
        if len(intervals) < 2:
            return 0.5
        mean = float(intervals.mean())
        if mean <= 0:
            return 0.5
        return math.exp(-float(intervals.var()) / (mean * 0.5))

    def phase(self, onsets: np.ndarray, now: float) -> float:
        if len(onsets) < 2:
            return 0.0
        period = 60.0 / self.estimate
        return ((now - float(onsets[-1])) % period) / period

    def update(self, onset_times: Sequence[float], now: float) -> TempoAnalysis:
        """
        Args:
            onset_times: Event timestamps, oldest first.
            now: Current time on the same clock.
        """
        p = self.params
        times = np.asarray(onset_times, dtype=np.float64)
        recent = times[now - times < p.tempo_window]

        if len(recent) < p.min_onsets:
            self.confidence *= p.confidence_decay
            return TempoAnalysis(bpm=self.estimate, confidence=self.confidence, stability=0.5, phase=0.0)

        recent_intervals = np.diff(recent)
        for end, interval in zip(recent[1:], recent_intervals):
            if end > self._last_seen:
                self.intervals.push(interval)
        self._last_seen = float(recent[-1])

        ring = self.intervals.values()
        ring = ring[ring > 0]
        if ring.size:
            found = self.dominant_lag(self.autocorrelation(self.pulse_train(ring)))
            if found is not None:
                lag, magnitude = found
                bpm = 60.0 / (lag * p.tempo_resolution)
                previous = self.estimate
                self.estimate = previous * (1.0 - p.tempo_smoothing) + bpm * p.tempo_smoothing
                self.confidence = min(magnitude, 1.0)
                if abs(self.estimate - previous) > 1.0:
                    logger.debug(f"Tempo estimate {previous:.1f} -> {self.estimate:.1f} BPM")

        return TempoAnalysis(
            bpm=self.estimate,
            confidence=self.confidence,
            stability=self.stability(recent_intervals),
            phase=self.phase(recent, now),
        )

    def reset(self) -> None:
        self.intervals.clear()
        self.estimate = self.params.initial_bpm
        self.confidence = 0.0
        self._last_seen = -math.inf


class EnhancedAnalyzer:
    """
    Runs whichever optional analyzers the flags enable.

    Args:
        params: Enhanced analysis tuning.
        sample_rate: Sample rate the frames were computed from.
        flags: Initial feature flags (all off by default).
    """

    def __init__(
        self,
        params: Optional[EnhancedParams] = None,
        sample_rate: float = 44100.0,
        flags: Optional[FeatureFlags] = None,
    ):
        self.params = params or EnhancedParams()
        self.sample_rate = sample_rate
        self.flags = flags or FeatureFlags()
        self.onsets = OnsetDetector(self.params)
        self.tempo = TempoTracker(self.params)
        self._onset_times: deque = deque()
        self._beat_times: deque = deque()

    @property
    def onset_times(self) -> list[float]:
        return list(self._onset_times)

    @property
    def beat_times(self) -> list[float]:
        """Accepted beats seen while tempo tracking is on, over the tempo window."""
        return list(self._beat_times)

    def _prune(self, times: deque, now: float) -> None:
        while times and now - times[0] >= self.params.tempo_window:
            times.popleft()

    def _record_onset(self, now: float) -> None:
        self._onset_times.append(now)
        self._prune(self._onset_times, now)

    def _record_beats(self, beat_times: Sequence[float], now: float) -> None:
        last = self._beat_times[-1] if self._beat_times else -math.inf
        self._beat_times.extend(t for t in beat_times if t > last)
        self._prune(self._beat_times, now)

    def analyze(
        self,
        frame: np.ndarray,
        now: float,
        beat_times: Sequence[float] = (),
        flags: Optional[FeatureFlags] = None,
    ) -> EnhancedFeatures:
        """
        Args:
            frame: dB magnitudes for this frame.
            now: Current time in seconds.
            beat_times: Recent accepted beat timestamps, oldest first.  New ones
                are kept for the tempo window and drive tempo when onset
                detection is disabled.
            flags: Per-call override of :attr:`flags`.
        """
        flags = flags or self.flags
        if not flags.any_enabled():
            return EnhancedFeatures()

        spectral = SpectralFeatures()
        if flags.spectral:
            spectral = spectral_features(frame, self.sample_rate)

        chroma = ChromaFeatures()
        if flags.chroma:
            chroma = chroma_features(frame, self.sample_rate, self.params)

        onset = OnsetDetectionResult()
        if flags.onset:
            onset = self.onsets.detect(frame)
            if onset.is_onset:
                self._record_onset(now)

        tempo = TempoAnalysis()
        if flags.tempo:
            self._record_beats(beat_times, now)
            source = self.onset_times if flags.onset else self.beat_times
            tempo = self.tempo.update(source, now)

        return EnhancedFeatures(spectral=spectral, chroma=chroma, onset=onset, tempo=tempo)

    def reset(self) -> None:
        self.onsets.reset()
        self.tempo.reset()
        self._onset_times.clear()
        self._beat_times.clear()
