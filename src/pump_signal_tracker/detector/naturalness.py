"""Trading naturalness heuristics.

Four independent checks estimate whether a token's trading looks organic
or manufactured (wash trading, bot ladders). Each check needs a minimum
sample; below it the check reports "insufficient_data" and passes.

Checks:
    volume    - per-minute volume should vary (CV > 0.5)
    traders   - many distinct counterparties, no dominant or circular set
    timing    - irregular inter-trade intervals, few sub-2s gaps
    price     - no ladder of equal-ratio steps, enough direction changes

A token is natural when at least 3 of the 4 checks pass.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np

from pump_signal_tracker.detector.models import NaturalnessCheck, NaturalnessReport

if TYPE_CHECKING:
    from pump_signal_tracker.state.models import TradeRecord

INSUFFICIENT_DATA = "insufficient_data"

VOLUME_MIN_TRADES = 30
VOLUME_BUCKET_SECONDS = 60
VOLUME_MIN_CV = 0.5

TRADER_MIN_TRADES = 20
TRADER_MIN_UNIQUE = 10
TRADER_MAX_TOP3_SHARE = 0.6
CIRCULAR_WINDOW = 20
CIRCULAR_MIN_UNIQUE = 5

TIMING_MIN_TRADES = 30
TIMING_MIN_CV = 0.7
FAST_TRADE_SECONDS = 2.0
MAX_FAST_TRADE_SHARE = 0.3

PRICE_MIN_POINTS = 30
STAIR_STEP_TOLERANCE = 0.05
STAIR_STEP_MIN_RATIO = 1.02
STAIR_STEP_RUN = 3
MIN_DIRECTION_CHANGE_SHARE = 0.15

MIN_PASSING_CHECKS = 3


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population stddev / mean. Zero when the mean is zero."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    mean = float(arr.mean())
    if mean == 0:
        return 0.0
    return float(arr.std()) / mean


def _insufficient(name: str) -> NaturalnessCheck:
    return NaturalnessCheck(name=name, is_natural=True, confidence=0.0, reason=INSUFFICIENT_DATA)


def check_volume_distribution(trades: Sequence[TradeRecord]) -> NaturalnessCheck:
    if len(trades) < VOLUME_MIN_TRADES:
        return _insufficient("volume")

    buckets: dict[int, float] = {}
    for trade in trades:
        key = int(trade.timestamp.timestamp()) // VOLUME_BUCKET_SECONDS
        buckets[key] = buckets.get(key, 0.0) + trade.sol_amount

    cv = coefficient_of_variation(list(buckets.values()))
    natural = cv > VOLUME_MIN_CV
    return NaturalnessCheck(
        name="volume",
        is_natural=natural,
        confidence=min(abs(cv - VOLUME_MIN_CV) / VOLUME_MIN_CV, 1.0) * 100,
        reason="natural_volume_distribution" if natural else "suspicious_volume_consistency",
        details={"cv": cv, "buckets": float(len(buckets))},
    )


def check_trader_diversity(trades: Sequence[TradeRecord]) -> NaturalnessCheck:
    if len(trades) < TRADER_MIN_TRADES:
        return _insufficient("traders")

    counts = Counter(t.trader for t in trades)
    unique = len(counts)
    top3 = sum(c for _, c in counts.most_common(3))
    concentration = top3 / len(trades)

    recent = {t.trader for t in list(trades)[-CIRCULAR_WINDOW:]}
    circular = len(recent) < CIRCULAR_MIN_UNIQUE

    natural = unique >= TRADER_MIN_UNIQUE and concentration < TRADER_MAX_TOP3_SHARE and not circular
    if natural:
        reason = "diverse_trader_activity"
    elif circular:
        reason = "circular_trading_pattern"
    else:
        reason = "high_trader_concentration"

    trader_conf = min(unique / TRADER_MIN_UNIQUE, 1.0) * 100
    conc_conf = min(abs(concentration - TRADER_MAX_TOP3_SHARE) / TRADER_MAX_TOP3_SHARE, 1.0) * 100
    return NaturalnessCheck(
        name="traders",
        is_natural=natural,
        confidence=(trader_conf + conc_conf) / 2,
        reason=reason,
        details={"unique_traders": float(unique), "concentration": concentration},
    )


def check_timing_patterns(trades: Sequence[TradeRecord]) -> NaturalnessCheck:
    if len(trades) < TIMING_MIN_TRADES:
        return _insufficient("timing")

    stamps = np.asarray([t.timestamp.timestamp() for t in trades], dtype=float)
    intervals = np.diff(stamps)
    cv = coefficient_of_variation(intervals.tolist())
    too_regular = cv < TIMING_MIN_CV
    fast = int((intervals < FAST_TRADE_SECONDS).sum())
    too_fast = fast > len(intervals) * MAX_FAST_TRADE_SHARE

    if too_regular:
        reason = "suspiciously_regular_trading"
    elif too_fast:
        reason = "unnaturally_frequent_trades"
    else:
        reason = "natural_timing_pattern"
    return NaturalnessCheck(
        name="timing",
        is_natural=not too_regular and not too_fast,
        confidence=min(abs(cv - TIMING_MIN_CV) / TIMING_MIN_CV, 1.0) * 100,
        reason=reason,
        details={"cv": cv, "fast_intervals": float(fast)},
    )


def has_stair_steps(prices: Sequence[float]) -> bool:
    """True when several consecutive steps rise by nearly the same ratio."""
    run = 0
    for i in range(1, len(prices) - 1):
        if prices[i - 1] <= 0 or prices[i] <= 0:
            run = 0
            continue
        step = prices[i] / prices[i - 1]
        next_step = prices[i + 1] / prices[i]
        if abs(step - next_step) / step < STAIR_STEP_TOLERANCE and step > STAIR_STEP_MIN_RATIO:
            run += 1
        else:
            run = 0
        if run >= STAIR_STEP_RUN:
            return True
    return False


def count_direction_changes(prices: Sequence[float]) -> int:
    changes = 0
    for i in range(2, len(prices)):
        prev = prices[i - 1] - prices[i - 2]
        cur = prices[i] - prices[i - 1]
        if (prev > 0 and cur < 0) or (prev < 0 and cur > 0):
            changes += 1
    return changes


def check_price_patterns(prices: Sequence[float]) -> NaturalnessCheck:
    if len(prices) < PRICE_MIN_POINTS:
        return _insufficient("price")

    stair_steps = has_stair_steps(prices)
    changes = count_direction_changes(prices)
    expected = len(prices) * MIN_DIRECTION_CHANGE_SHARE
    too_smooth = changes < expected

    if stair_steps:
        reason, confidence = "suspicious_stair_step_pattern", 90.0
    elif too_smooth:
        reason, confidence = "suspiciously_smooth_price_movement", 80.0
    else:
        reason = "natural_price_pattern"
        confidence = 90.0 if changes > expected * 1.5 else 70.0
    return NaturalnessCheck(
        name="price",
        is_natural=not stair_steps and not too_smooth,
        confidence=confidence,
        reason=reason,
        details={"direction_changes": float(changes), "expected_changes": expected},
    )


def analyze_naturalness(trades: Sequence[TradeRecord], prices: Sequence[float]) -> NaturalnessReport:
    """Run all four checks over the retained trades and prices."""
    checks = (
        check_volume_distribution(trades),
        check_trader_diversity(trades),
        check_timing_patterns(trades),
        check_price_patterns(prices),
    )
    passed = sum(1 for c in checks if c.is_natural)
    return NaturalnessReport(is_natural=passed >= MIN_PASSING_CHECKS, score=passed * 25, checks=checks)
