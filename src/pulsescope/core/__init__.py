"""Core per-frame analysis modules."""

from pulsescope.core.bands import BandEnergyExtractor
from pulsescope.core.beats import BeatDetector
from pulsescope.core.dynamics import BandDynamics
from pulsescope.core.enhanced import EnhancedAnalyzer
from pulsescope.core.history import AdaptiveNormalizer, Channel, RingHistory
from pulsescope.core.snapshot import FeatureSnapshot
from pulsescope.core.vocal import VocalLikelihoodEstimator

__all__ = [
    "AdaptiveNormalizer",
    "BandDynamics",
    "BandEnergyExtractor",
    "BeatDetector",
    "Channel",
    "EnhancedAnalyzer",
    "FeatureSnapshot",
    "RingHistory",
    "VocalLikelihoodEstimator",
]
