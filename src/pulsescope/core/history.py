"""
Rolling history and auto-gain normalization.

Every visual channel (bands, beat bands, vocal score, amplitude) runs the same
self-calibrating loop: scale the raw value by a per-channel gain, normalize it
against the min/max of a short rolling history, then nudge the gain so the
normalized output stays inside a target range.  The result tracks the dynamics
of whatever is playing without manual calibration.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np

from pulsescope.config import GainControl

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    """Identity of an auto-gain channel."""

    KICK = "kick"
    SNARE = "snare"
    HIHAT = "hihat"
    LOW = "low"
    MID = "mid"
    HIGH = "high"
    VOCAL = "vocal"
    AMPLITUDE = "amplitude"
    RAW_AMPLITUDE = "raw_amplitude"

    @property
    def gain_field(self) -> str:
        """Name of the snapshot field carrying this channel's gain."""
        return f"{self.value}_gain"


class RingHistory:
    """
    Fixed-capacity circular buffer of floats.

    Storage is pre-allocated and pre-filled with zeros, so ``len()`` always
    equals the capacity.  ``push`` overwrites the oldest slot.
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError(f"RingHistory capacity must be positive, got {capacity}")
        self.capacity = int(capacity)
        self._values = np.zeros(self.capacity, dtype=np.float64)
        self._cursor = 0

    def push(self, value: float) -> None:
        self._values[self._cursor] = value
        self._cursor = (self._cursor + 1) % self.capacity

    def values(self) -> np.ndarray:
        """Copy of the contents in oldest -> newest order."""
        return np.concatenate((self._values[self._cursor:], self._values[:self._cursor]))

    @property
    def oldest(self) -> float:
        """The value the next push will overwrite."""
        return float(self._values[self._cursor])

    @property
    def latest(self) -> float:
        return float(self._values[self._cursor - 1])

    def clear(self) -> None:
        self._values.fill(0.0)
        self._cursor = 0

    def __len__(self) -> int:
        return self.capacity


class HistoryState:
    """RingHistory plus running extrema over its current contents."""

    def __init__(self, capacity: int):
        self.buffer = RingHistory(capacity)
        self.min = np.inf
        self.max = -np.inf
        self._pushes = 0

    def push(self, value: float) -> None:
        evicted = self.buffer.oldest
        self.buffer.push(value)
        self._pushes += 1

        # The first push must account for the zero fill; an evicted extremum
        # may no longer be present, so both cases rescan the buffer.
        if self._pushes == 1 or evicted == self.min or evicted == self.max:
            values = self.buffer.values()
            self.min = float(values.min())
            self.max = float(values.max())
        else:
            if value < self.min:
                self.min = value
            if value > self.max:
                self.max = value

    def normalize(self, value: float) -> float:
        """Scale into [0, 1] against the extrema; flat history passes through."""
        if self.max == self.min:
            return value
        return (value - self.min) / (self.max - self.min)

    def values(self) -> np.ndarray:
        return self.buffer.values()

    def reset(self) -> None:
        self.buffer.clear()
        self.min = np.inf
        self.max = -np.inf
        self._pushes = 0

    @property
    def is_empty(self) -> bool:
        return self._pushes == 0


@dataclass(frozen=True)
class GainState:
    """Normalized output of one channel and the gain to use next frame."""

    value: float
    gain: float


class AdaptiveNormalizer:
    """
    Auto-gain normalizer for a single channel.

    Each channel owns exactly one instance; the history is its feedback memory
    and is never shared.

    Args:
        channel: Channel identity (used for logging and gain lookup).
        capacity: Rolling history length in frames.
        control: Gain targets, step and limits.
    """

    def __init__(
        self,
        channel: Channel,
        capacity: int,
        control: Optional[GainControl] = None,
    ):
        self.channel = channel
        self.control = control or GainControl()
        self.history = HistoryState(capacity)

    def apply(self, value: float, gain: float) -> GainState:
        """
        Gain, record and normalize one raw value.

        Args:
            value: Raw channel value for this frame.
            gain: Gain carried over from the previous frame.

        Returns:
            GainState with the normalized value and the adapted, clamped gain.
        """
        ctl = self.control
        gained = float(value) * gain
        self.history.push(gained)
        normalized = self.history.normalize(gained)

        new_gain = gain
        if normalized < ctl.target_min:
            new_gain += ctl.adjust_rate
        elif normalized > ctl.target_max:
            new_gain -= ctl.adjust_rate
        clamped = min(max(new_gain, ctl.min_gain), ctl.max_gain)

        return GainState(value=float(normalized), gain=float(clamped))

    def reset(self) -> None:
        self.history.reset()
        logger.debug(f"AdaptiveNormalizer[{self.channel.value}] reset")

    def __repr__(self) -> str:
        return (
            f"AdaptiveNormalizer(channel={self.channel.value!r}, "
            f"capacity={self.history.buffer.capacity})"
        )
