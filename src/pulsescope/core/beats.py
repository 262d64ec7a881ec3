"""
Beat detection from kick/snare/hihat energy and spectral flux.

A frame is a beat candidate only when four gates agree: audio is active, the
weighted energy ratio against the running averages is high, spectral flux is
high, and the refractory interval since the last accepted beat has elapsed.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from pulsescope.config import BeatParams, HistoryWindows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BeatDetectionState:
    """Per-frame beat decision."""

    kick_average: float
    snare_average: float
    hihat_average: float
    combined_ratio: float
    is_beat_candidate: bool
    time_since_last_beat: float


@dataclass(frozen=True)
class BeatResult:
    """Beat decision plus the envelope and rate derived from it."""

    detection: BeatDetectionState
    beat_intensity: float
    bps: float


class BeatDetector:
    """
    Stateful beat detector for one audio stream.

    Args:
        params: Beat thresholds and weights.
        windows: History windows (uses ``beat_time_window``).
    """

    def __init__(
        self,
        params: Optional[BeatParams] = None,
        windows: Optional[HistoryWindows] = None,
    ):
        self.params = params or BeatParams()
        self.windows = windows or HistoryWindows()
        self.kick_average = 0.0
        self.snare_average = 0.0
        self.hihat_average = 0.0
        self.last_beat_time = -math.inf
        self._beat_times: deque = deque()

    @property
    def beat_times(self) -> list[float]:
        """Accepted beat timestamps inside the trailing window, oldest first."""
        return list(self._beat_times)

    def _smooth(self, average: float, value: float) -> float:
        alpha = self.params.alpha
        return average * alpha + value * (1.0 - alpha)

    def _ratio(self, value: float, average: float) -> float:
        return value / max(average, self.params.epsilon)

    def detect(
        self,
        kick: float,
        snare: float,
        hihat: float,
        spectral_flux: float,
        is_audio_active: bool,
        now: float,
    ) -> BeatDetectionState:
        """Update the running averages and decide whether this frame is a beat."""
        p = self.params
        self.kick_average = self._smooth(self.kick_average, kick)
        self.snare_average = self._smooth(self.snare_average, snare)
        self.hihat_average = self._smooth(self.hihat_average, hihat)

        combined = (
            self._ratio(kick, self.kick_average) * p.kick_weight
            + self._ratio(snare, self.snare_average) * p.snare_weight
            + self._ratio(hihat, self.hihat_average) * p.hihat_weight
        )
        since_last = now - self.last_beat_time

        is_candidate = (
            is_audio_active
            and combined > p.threshold
            and spectral_flux > p.flux_threshold
            and since_last > p.min_beat_interval
        )

        return BeatDetectionState(
            kick_average=self.kick_average,
            snare_average=self.snare_average,
            hihat_average=self.hihat_average,
            combined_ratio=combined,
            is_beat_candidate=is_candidate,
            time_since_last_beat=since_last,
        )

    def beat_intensity(
        self,
        previous: float,
        detection: BeatDetectionState,
        delta_time: float,
    ) -> float:
        """Fast-rise, slow-fall envelope driven by beat candidates."""
        p = self.params
        if detection.is_beat_candidate:
            raised = previous * (1.0 - p.decay_rate * delta_time) + detection.combined_ratio * p.intensity_gain
            return min(1.0, max(0.0, raised))
        return max(0.0, previous * (1.0 - p.decay_rate * 0.5 * delta_time))

    def _record_beat(self, now: float) -> None:
        self._beat_times.append(now)
        self.last_beat_time = now

    def _prune(self, now: float) -> None:
        window = self.windows.beat_time_window
        while self._beat_times and now - self._beat_times[0] >= window:
            self._beat_times.popleft()

    def instant_bps(self) -> float:
        """Beats per second from the retained beat log (0 with fewer than two beats)."""
        if len(self._beat_times) < 2:
            return 0.0
        intervals = np.diff(np.fromiter(self._beat_times, dtype=np.float64))
        intervals = intervals[intervals > self.params.min_interval]
        if intervals.size == 0:
            return 0.0
        mean_interval = float(intervals.mean())
        return 1.0 / mean_interval if mean_interval > 0 else 0.0

    def update(
        self,
        kick: float,
        snare: float,
        hihat: float,
        spectral_flux: float,
        is_audio_active: bool,
        now: float,
        delta_time: float,
        previous_intensity: float = 0.0,
        previous_bps: float = 0.0,
    ) -> BeatResult:
        """
        Run one frame of beat detection.

        Args:
            kick, snare, hihat: Normalized band values for this frame.
            spectral_flux: Flux of the linear magnitudes against the previous frame.
            is_audio_active: Whether the frame is above the activity threshold.
            now: Caller-supplied monotonic time in seconds.
            delta_time: Seconds since the previous frame.
            previous_intensity: Beat intensity from the previous snapshot.
            previous_bps: Smoothed BPS from the previous snapshot.
        """
        detection = self.detect(kick, snare, hihat, spectral_flux, is_audio_active, now)
        intensity = self.beat_intensity(previous_intensity, detection, delta_time)

        if detection.is_beat_candidate:
            self._record_beat(now)
            logger.debug(
                f"Beat accepted at {now:.3f}s (ratio={detection.combined_ratio:.2f}, "
                f"flux={spectral_flux:.4f})"
            )
        self._prune(now)

        smoothing = self.params.bps_smoothing
        bps = previous_bps * (1.0 - smoothing) + self.instant_bps() * smoothing

        return BeatResult(detection=detection, beat_intensity=intensity, bps=bps)

    def reset(self) -> None:
        self.kick_average = 0.0
        self.snare_average = 0.0
        self.hihat_average = 0.0
        self.last_beat_time = -math.inf
        self._beat_times.clear()
