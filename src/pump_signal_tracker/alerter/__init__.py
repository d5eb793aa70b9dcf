"""Alerting layer - gating, enrichment, formatting and delivery."""

from pump_signal_tracker.alerter.dispatcher import (
    AlertChannel,
    AlertDispatcher,
    ChannelError,
    DispatchResult,
)
from pump_signal_tracker.alerter.engine import (
    AlertDecision,
    AlertDecisionEngine,
    SkipReason,
)
from pump_signal_tracker.alerter.enrichment import EnrichmentError, RiskAnalysisClient
from pump_signal_tracker.alerter.formatter import AlertFormatter
from pump_signal_tracker.alerter.models import (
    AlertPayload,
    AlertType,
    FormattedAlert,
    RiskAnalysis,
)

__all__ = [
    "AlertChannel",
    "AlertDecision",
    "AlertDecisionEngine",
    "AlertDispatcher",
    "AlertFormatter",
    "AlertPayload",
    "AlertType",
    "ChannelError",
    "DispatchResult",
    "EnrichmentError",
    "FormattedAlert",
    "RiskAnalysis",
    "RiskAnalysisClient",
    "SkipReason",
]
