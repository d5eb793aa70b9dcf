"""Signal engine - trend, volume health, naturalness and composite scoring."""

from pump_signal_tracker.detector.models import (
    NaturalnessCheck,
    NaturalnessReport,
    SignalCategory,
    SignalScore,
    TrendAnalysis,
    VolumeProfile,
)
from pump_signal_tracker.detector.naturalness import analyze_naturalness
from pump_signal_tracker.detector.scorer import SignalScorer, categorize
from pump_signal_tracker.detector.trend import analyze_uptrend
from pump_signal_tracker.detector.volume_profile import analyze_volume_profile

__all__ = [
    "NaturalnessCheck",
    "NaturalnessReport",
    "SignalCategory",
    "SignalScore",
    "SignalScorer",
    "TrendAnalysis",
    "VolumeProfile",
    "analyze_naturalness",
    "analyze_uptrend",
    "analyze_volume_profile",
    "categorize",
]
