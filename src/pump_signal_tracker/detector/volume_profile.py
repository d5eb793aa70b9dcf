"""Volume-profile health over fixed-width time buckets."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from typing import TYPE_CHECKING

from pump_signal_tracker.detector.models import VolumeProfile

if TYPE_CHECKING:
    from pump_signal_tracker.state.models import TradeRecord

MIN_TRADES = 10
DEFAULT_BUCKET = timedelta(minutes=10)
MAX_MA_WINDOW = 3


def _step_trend(values: Sequence[float], start: int) -> int:
    """+1 per rising step, -1 per falling step, from index `start`."""
    trend = 0
    for i in range(max(start, 1), len(values)):
        if values[i] > values[i - 1]:
            trend += 1
        elif values[i] < values[i - 1]:
            trend -= 1
    return trend


def trailing_moving_average(values: Sequence[float], window: int) -> list[float]:
    """Average of each value and up to `window` predecessors."""
    out: list[float] = []
    for i in range(len(values)):
        lo = 0 if i < window else i - window
        segment = values[lo : i + 1]
        out.append(sum(segment) / len(segment))
    return out


def analyze_volume_profile(
    trades: Sequence[TradeRecord],
    *,
    bucket: timedelta = DEFAULT_BUCKET,
) -> VolumeProfile:
    """Classify trading volume as healthy (growing, buy-led) or not.

    Healthy means the moving average of per-bucket volume rose over more
    steps than it fell, and the per-bucket buy ratio did not trend down.
    """
    if len(trades) < MIN_TRADES:
        return VolumeProfile.insufficient()

    width = int(bucket.total_seconds())
    buy: dict[int, float] = {}
    sell: dict[int, float] = {}
    for trade in trades:
        key = int(trade.timestamp.timestamp()) // width
        buy.setdefault(key, 0.0)
        sell.setdefault(key, 0.0)
        if trade.is_buy:
            buy[key] += trade.sol_amount
        else:
            sell[key] += trade.sol_amount

    keys = sorted(buy)
    volumes = [buy[k] + sell[k] for k in keys]
    buy_ratios = [buy[k] / volumes[i] if volumes[i] > 0 else 0.0 for i, k in enumerate(keys)]

    window = min(MAX_MA_WINDOW, len(volumes) // 2)
    volume_trend = _step_trend(trailing_moving_average(volumes, window), window)
    buy_ratio_trend = _step_trend(buy_ratios, 1)

    healthy = volume_trend > 0 and buy_ratio_trend >= 0
    return VolumeProfile(
        is_healthy=healthy,
        volume_trend=volume_trend,
        buy_ratio_trend=buy_ratio_trend,
        bucket_count=len(volumes),
        reason="healthy" if healthy else "weak_volume",
    )
