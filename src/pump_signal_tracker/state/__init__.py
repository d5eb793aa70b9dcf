"""Entity state layer - bounded per-token aggregates."""

from pump_signal_tracker.state.models import (
    DerivedMetrics,
    PricePoint,
    TokenState,
    TradeRecord,
    VolumeBucket,
)
from pump_signal_tracker.state.store import TokenStateStore, buy_sell_ratio

__all__ = [
    "DerivedMetrics",
    "PricePoint",
    "TokenState",
    "TokenStateStore",
    "TradeRecord",
    "VolumeBucket",
    "buy_sell_ratio",
]
