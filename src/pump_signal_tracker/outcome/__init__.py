"""Outcome layer - alert win/loss resolution and milestone tracking."""

from pump_signal_tracker.outcome.models import (
    AlertOutcome,
    AlertRecord,
    AlertStats,
    AlertType,
    MilestoneEvent,
)
from pump_signal_tracker.outcome.scheduler import RecheckScheduler
from pump_signal_tracker.outcome.tracker import OutcomeTracker

__all__ = [
    "AlertOutcome",
    "AlertRecord",
    "AlertStats",
    "AlertType",
    "MilestoneEvent",
    "OutcomeTracker",
    "RecheckScheduler",
]
