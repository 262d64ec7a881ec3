"""
Snapshot serialization module.

Turns :class:`~pulsescope.core.snapshot.FeatureSnapshot` records into
JSON-safe dictionaries for shipping to a renderer or recording a session.
Nothing here touches the filesystem; callers decide where the text goes.
"""

import json
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional

import numpy as np

from pulsescope.core.enhanced import CHROMA_NAMES
from pulsescope.core.history import Channel
from pulsescope.core.snapshot import FeatureSnapshot


@dataclass
class ManifestMetadata:
    """Header for a recorded sequence of snapshots."""

    n_frames: int
    duration: float
    mean_bpm: Optional[float]
    schema_version: str = "1.0"


class SnapshotExporter:
    """
    Exports feature snapshots to plain dictionaries and JSON text.

    Floats are rounded to a fixed precision and NaN/Inf become ``None`` so
    the output always survives strict JSON parsers.
    """

    def __init__(self, precision: int = 4):
        """
        Args:
            precision: Decimal places for floating point values.
        """
        self.precision = precision

    def _round(self, value: float) -> float:
        return round(float(value), self.precision)

    def _safe_float(self, value: Any) -> Optional[float]:
        """Rounded float, or None when *value* is missing or not finite."""
        if value is None:
            return None
        try:
            f = float(value)
        except (TypeError, ValueError):
            return None
        if np.isnan(f) or np.isinf(f):
            return None
        return self._round(f)

    def _convert(self, value: Any) -> Any:
        if isinstance(value, (bool, np.bool_)):
            return bool(value)
        if isinstance(value, (int, np.integer)):
            return int(value)
        if isinstance(value, (float, np.floating)):
            return self._safe_float(value)
        if isinstance(value, (tuple, list)):
            return [self._convert(v) for v in value]
        return value

    def frame_dict(self, snapshot: FeatureSnapshot, index: Optional[int] = None) -> dict[str, Any]:
        """
        Flatten one snapshot.

        Args:
            snapshot: Source snapshot.
            index: Optional frame index recorded as ``frame_index``.

        Returns:
            Dictionary with every snapshot field plus named chroma values and
            the dominant note name.
        """
        frame: dict[str, Any] = {}
        if index is not None:
            frame["frame_index"] = index
        for name, value in snapshot.as_dict().items():
            frame[name] = self._convert(value)

        frame["chroma_values"] = {
            CHROMA_NAMES[i]: self._safe_float(v)
            for i, v in enumerate(snapshot.chroma_vector)
        }
        note = snapshot.dominant_note
        frame["dominant_chroma"] = CHROMA_NAMES[note] if 0 <= note < 12 else None
        return frame

    def gain_state(self, snapshot: FeatureSnapshot) -> dict[str, float]:
        """Per-channel gains, keyed by channel name."""
        return {ch.value: self._round(snapshot.gain(ch)) for ch in Channel}

    def build_manifest(self, snapshots: Iterable[FeatureSnapshot]) -> dict[str, Any]:
        """
        Build a manifest for a recorded sequence.

        Args:
            snapshots: Snapshots in playback order.

        Returns:
            Dictionary with ``metadata``, ``frames`` and the final ``gains``.
        """
        snapshots = list(snapshots)
        frames = [self.frame_dict(s, i) for i, s in enumerate(snapshots)]

        duration = 0.0
        if len(snapshots) >= 2:
            duration = snapshots[-1].time - snapshots[0].time
        bpms = [s.bpm for s in snapshots if s.bpm > 0]
        metadata = ManifestMetadata(
            n_frames=len(snapshots),
            duration=self._round(duration),
            mean_bpm=self._round(float(np.mean(bpms))) if bpms else None,
        )

        return {
            "metadata": asdict(metadata),
            "frames": frames,
            "gains": self.gain_state(snapshots[-1]) if snapshots else {},
        }

    def to_json(self, snapshots: Iterable[FeatureSnapshot], indent: Optional[int] = 2) -> str:
        """Serialize :meth:`build_manifest` output to JSON text."""
        return json.dumps(self.build_manifest(snapshots), indent=indent, allow_nan=False)
