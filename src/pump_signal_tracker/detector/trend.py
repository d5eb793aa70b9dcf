"""Uptrend detection from local extrema of a smoothed price sequence."""

from __future__ import annotations

import math
from collections.abc import Sequence

from pump_signal_tracker.detector.models import TrendAnalysis

MIN_PRICE_POINTS = 5
MAX_SMOOTHING_WINDOW = 3
STRONG_UPTREND_CHANGE_PERCENT = 20.0
STRONG_UPTREND_RATIO = 0.5
STRENGTH_CHANGE_STEP_PERCENT = 5.0
MAX_STRENGTH = 10


def smooth(prices: Sequence[float], window: int) -> list[float]:
    """Symmetric moving average, truncated at both ends."""
    n = len(prices)
    out: list[float] = []
    for i in range(n):
        lo = max(0, i - window)
        hi = min(n - 1, i + window)
        segment = prices[lo : hi + 1]
        out.append(sum(segment) / len(segment))
    return out


def find_extrema(values: Sequence[float]) -> tuple[list[float], list[float]]:
    """Return (local maxima, local minima) in order. Plateaus are not extrema."""
    highs: list[float] = []
    lows: list[float] = []
    for i in range(1, len(values) - 1):
        prev, cur, nxt = values[i - 1], values[i], values[i + 1]
        if cur > prev and cur > nxt:
            highs.append(cur)
        if cur < prev and cur < nxt:
            lows.append(cur)
    return highs, lows


def _count_rising(extrema: Sequence[float]) -> tuple[int, int]:
    rising = falling = 0
    for i in range(1, len(extrema)):
        if extrema[i] > extrema[i - 1]:
            rising += 1
        else:
            falling += 1
    return rising, falling


def analyze_uptrend(prices: Sequence[float]) -> TrendAnalysis:
    """Classify a price sequence as uptrend or not.

    The raw sequence is smoothed with a window of min(3, n // 3) on each
    side, then strict local maxima/minima are compared pairwise. An uptrend
    needs more rising than falling highs (or lows) and a positive overall
    change. More than 20% overall change with over half of the highs or lows
    rising is a strong uptrend regardless of the counts.

    Args:
        prices: Retained prices, oldest first.

    Returns:
        TrendAnalysis with a 0-10 strength.
    """
    n = len(prices)
    if n < MIN_PRICE_POINTS:
        return TrendAnalysis.insufficient()

    first, last = prices[0], prices[-1]
    if first <= 0:
        return TrendAnalysis(is_uptrend=False, strength=0, reason="invalid_first_price")

    window = min(MAX_SMOOTHING_WINDOW, n // 3)
    highs, lows = find_extrema(smooth(prices, window))
    higher_highs, lower_highs = _count_rising(highs)
    higher_lows, lower_lows = _count_rising(lows)

    overall = (last - first) / first * 100.0
    strength = min(
        round(higher_highs + higher_lows + max(0, math.floor(overall / STRENGTH_CHANGE_STEP_PERCENT))),
        MAX_STRENGTH,
    )

    counted_uptrend = (
        (higher_highs > lower_highs and higher_highs >= 1)
        or (higher_lows > lower_lows and higher_lows >= 1)
    ) and overall > 0

    high_ratio = higher_highs / len(highs) if highs else 0.0
    low_ratio = higher_lows / len(lows) if lows else 0.0
    strong = overall > STRONG_UPTREND_CHANGE_PERCENT and (
        high_ratio > STRONG_UPTREND_RATIO or low_ratio > STRONG_UPTREND_RATIO
    )

    is_uptrend = counted_uptrend or strong
    if strong:
        reason = "strong_uptrend"
    elif counted_uptrend:
        reason = "rising_extrema"
    else:
        reason = "no_uptrend"

    return TrendAnalysis(
        is_uptrend=is_uptrend,
        strength=strength,
        overall_change_percent=overall,
        higher_highs=higher_highs,
        lower_highs=lower_highs,
        higher_lows=higher_lows,
        lower_lows=lower_lows,
        is_strong=strong,
        reason=reason,
    )
