"""Composite signal scorer.

This module provides the SignalScorer class that maps a token snapshot and
its derived metrics onto a bounded 0-100 score and a category tier. The
scorer is pure: it reads its inputs and returns a new SignalScore.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from pump_signal_tracker.config import SignalSettings
from pump_signal_tracker.detector.models import SignalCategory, SignalScore

if TYPE_CHECKING:
    from pump_signal_tracker.state.models import DerivedMetrics, TokenState

# Default weights for each factor
DEFAULT_WEIGHTS = {
    "buy_sell": 4.0,
    "price_change": 2.5,
    "volume_velocity": 3.0,
    "holders": 2.5,
    "whale": 4.0,
    "smart_money": 5.0,
    "trend": 4.0,
    "volume_trend": 3.0,
}

# Factor caps
MAX_BUY_SELL_FACTOR = 2.0
MAX_PRICE_CHANGE_FACTOR = 3.0
MAX_VELOCITY_FACTOR = 2.5
MAX_HOLDER_FACTOR = 1.5
MAX_TREND_FACTOR = 2.0
MAX_VOLUME_TREND_FACTOR = 2.0
WHALE_MANY_FACTOR = 2.0
WHALE_SOME_FACTOR = 1.5
SMART_MONEY_FACTOR = 2.5

# Bonuses
AGE_BONUS_FRESH = 1.5  # under 6h
AGE_BONUS_DAY = 1.2  # under 24h
MOMENTUM_BONUS_HIGH = 1.5  # over 10 trades/hour
MOMENTUM_BONUS_MEDIUM = 1.2  # over 5 trades/hour
SUSTAINABILITY_BONUS = 1.5
SUSTAINABILITY_MIN_ELAPSED = timedelta(hours=1)

# Category thresholds
EXTREMELY_BULLISH_SCORE = 95
VERY_BULLISH_SCORE = 85
BULLISH_SCORE = 75
NEUTRAL_SCORE = 65


def categorize(score: int) -> SignalCategory:
    """Get the category tier for a score."""
    if score >= EXTREMELY_BULLISH_SCORE:
        return SignalCategory.EXTREMELY_BULLISH
    if score >= VERY_BULLISH_SCORE:
        return SignalCategory.VERY_BULLISH
    if score >= BULLISH_SCORE:
        return SignalCategory.BULLISH
    if score >= NEUTRAL_SCORE:
        return SignalCategory.NEUTRAL
    return SignalCategory.NOT_PROMISING


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


class SignalScorer:
    """Maps a token snapshot to a bounded composite score.

    Scoring Formula:
        factors (each capped):
            buy_sell        = min(buy_sell_ratio / 1.3, 2)
            price_change    = min(max(price_change_pct / 40, 0), 3)
            volume_velocity = min(velocity / 1.1, 2.5)
            holders         = min(holder_count / 45, 1.5)
            whale           = 2 if whales > 2 else 1.5 if whales > 0 else 0
            smart_money     = 2.5 if smart money bought else 0
            trend           = min(strength / 3, 2) if uptrend else 0
            volume_trend    = min(volume_trend / 2 + 1, 2) if healthy else 0

        raw = sum(factor * weight) * age_bonus * momentum_bonus * sustainability
        score = clamp(round(raw * 7), 0, 100)   # NaN -> 0

    Example:
        ```python
        scorer = SignalScorer(SignalSettings())
        result = scorer.score(state, metrics, now=datetime.now(UTC))
        if result.is_alertable:
            ...
        ```
    """

    def __init__(
        self,
        settings: SignalSettings | None = None,
        *,
        weights: dict[str, float] | None = None,
    ) -> None:
        self._settings = settings or SignalSettings()
        self._weights = weights or DEFAULT_WEIGHTS.copy()

    @property
    def weights(self) -> dict[str, float]:
        return self._weights.copy()

    def factors(self, state: TokenState, metrics: DerivedMetrics) -> dict[str, float]:
        """Compute the capped, unweighted factor values."""
        s = self._settings

        if metrics.whale_count > 2:
            whale = WHALE_MANY_FACTOR
        elif metrics.whale_count > 0:
            whale = WHALE_SOME_FACTOR
        else:
            whale = 0.0

        trend = 0.0
        if metrics.trend.is_uptrend:
            trend = min(metrics.trend.strength / 3, MAX_TREND_FACTOR)

        volume_trend = 0.0
        if metrics.volume_profile.is_healthy:
            volume_trend = min(metrics.volume_profile.volume_trend / 2 + 1, MAX_VOLUME_TREND_FACTOR)

        return {
            "buy_sell": min(metrics.buy_sell_ratio / s.buy_sell_ratio_threshold, MAX_BUY_SELL_FACTOR),
            "price_change": min(
                max(metrics.price_change_percent / s.price_increase_threshold, 0.0),
                MAX_PRICE_CHANGE_FACTOR,
            ),
            "volume_velocity": min(metrics.volume_velocity / s.volume_velocity_threshold, MAX_VELOCITY_FACTOR),
            "holders": min(metrics.holder_count / s.holder_growth_threshold, MAX_HOLDER_FACTOR),
            "whale": whale,
            "smart_money": SMART_MONEY_FACTOR if state.smart_money_interest else 0.0,
            "trend": trend,
            "volume_trend": volume_trend,
        }

    @staticmethod
    def age_bonus(age: timedelta) -> float:
        hours = age.total_seconds() / 3600
        if hours < 6:
            return AGE_BONUS_FRESH
        if hours < 24:
            return AGE_BONUS_DAY
        return 1.0

    @staticmethod
    def momentum_bonus(trade_count: int, age: timedelta) -> float:
        trades_per_hour = trade_count / max(age.total_seconds() / 3600, 1.0)
        if trades_per_hour > 10:
            return MOMENTUM_BONUS_HIGH
        if trades_per_hour > 5:
            return MOMENTUM_BONUS_MEDIUM
        return 1.0

    @staticmethod
    def sustainability_bonus(state: TokenState, now: datetime) -> float:
        """Bonus for a token that held its price for an hour after alerting."""
        if state.last_alert_at is None or state.last_alert_price <= 0:
            return 1.0
        if now - state.last_alert_at <= SUSTAINABILITY_MIN_ELAPSED:
            return 1.0
        if state.current_price >= state.last_alert_price:
            return SUSTAINABILITY_BONUS
        return 1.0

    def score(
        self,
        state: TokenState,
        metrics: DerivedMetrics,
        *,
        now: datetime | None = None,
    ) -> SignalScore:
        """Score a snapshot.

        Args:
            state: Token snapshot (age, trade count, alert history).
            metrics: Derived metrics for the same snapshot.
            now: Evaluation time. Defaults to the current UTC time.

        Returns:
            SignalScore with an integer score in [0, 100].
        """
        now = now or datetime.now(UTC)
        age = state.age(now)
        factors = self.factors(state, metrics)

        weighted = sum(value * self._weights.get(name, 0.0) for name, value in factors.items())
        raw = (
            weighted
            * self.age_bonus(age)
            * self.momentum_bonus(state.trade_count, age)
            * self.sustainability_bonus(state, now)
        )

        scaled = raw * self._settings.score_scale
        if math.isnan(scaled):
            value = 0
        elif math.isinf(scaled):
            value = 100 if scaled > 0 else 0
        else:
            value = max(0, min(_round_half_up(scaled), 100))

        return SignalScore(score=value, category=categorize(value), factors=factors, raw_score=raw)
