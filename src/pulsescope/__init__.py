"""Per-frame audio reactivity features for generative visuals."""

from pulsescope.config import AnalysisConfig, FeatureFlags
from pulsescope.core.snapshot import FeatureSnapshot
from pulsescope.io.exporter import SnapshotExporter
from pulsescope.pipeline import AudioPipeline

__version__ = "0.1.0"
__all__ = [
    "AnalysisConfig",
    "FeatureFlags",
    "FeatureSnapshot",
    "SnapshotExporter",
    "AudioPipeline",
]
