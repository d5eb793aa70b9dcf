"""Alert decision engine.

Decides on each relevant token update whether to emit an alert, enforcing
at most one open alert cycle per token unless the token re-arms with a
large gain over its cycle baseline.

Gating order (first failure short-circuits and is a silent skip):
    1. token not flagged as a rug pull
    2. token age >= minimum age
    3. market cap >= minimum floor
    4. type gate: bullish score tier and confirmation, smart-money buy size,
       or an observed migration
    5. token not alerted yet, or re-armed
    6. daily quota and per-type cooldown

Every dedup mutation is committed synchronously before the enrichment
await, so trades processed while enrichment is in flight see the token as
already alerted.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from enum import Enum

from pump_signal_tracker.alerter.enrichment import RiskAnalysisClient
from pump_signal_tracker.alerter.models import AlertPayload, RiskAnalysis
from pump_signal_tracker.config import AlertSettings, SignalSettings
from pump_signal_tracker.outcome.models import AlertRecord, AlertType
from pump_signal_tracker.outcome.tracker import OutcomeTracker
from pump_signal_tracker.state.models import DerivedMetrics, TokenState

logger = logging.getLogger(__name__)

AlertSink = Callable[[AlertPayload], Awaitable[None]]

# A token with neither an uptrend nor healthy volume needs metrics this strong
STRONG_METRICS_SCORE = 90
STRONG_PRICE_CHANGE_MULTIPLIER = 2.0


class SkipReason(str, Enum):
    RUG_PULL = "rug_pull"
    TOO_YOUNG = "too_young"
    LOW_MARKET_CAP = "low_market_cap"
    LOW_SCORE = "low_score"
    NOT_CONFIRMED = "not_confirmed"
    SMALL_BUY = "small_buy"
    ALREADY_ALERTED = "already_alerted"
    DAILY_QUOTA = "daily_quota"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class AlertDecision:
    """Outcome of the gate checks for one candidate alert."""

    alert_type: AlertType
    should_alert: bool
    skip_reason: SkipReason | None = None
    is_rearm: bool = False

    @classmethod
    def skip(cls, alert_type: AlertType, reason: SkipReason) -> AlertDecision:
        return cls(alert_type=alert_type, should_alert=False, skip_reason=reason)


@dataclass
class EngineStats:
    alerts_emitted: int = 0
    rearms: int = 0
    by_type: dict[str, int] = field(default_factory=lambda: dict.fromkeys((t.value for t in AlertType), 0))
    skipped: dict[str, int] = field(default_factory=dict)
    enrichment_fallbacks: int = 0
    sink_failures: int = 0


class AlertDecisionEngine:
    """Applies the alert gates and emits alerts.

    Example:
        ```python
        engine = AlertDecisionEngine(settings.alert, tracker=tracker, sink=send)
        decision = await engine.evaluate_bullish(state)
        ```
    """

    def __init__(
        self,
        settings: AlertSettings | None = None,
        *,
        tracker: OutcomeTracker,
        signal_settings: SignalSettings | None = None,
        enrichment: RiskAnalysisClient | None = None,
        sink: AlertSink | None = None,
    ) -> None:
        self._settings = settings or AlertSettings()
        self._signal_settings = signal_settings or SignalSettings()
        self._tracker = tracker
        self._enrichment = enrichment
        self._sink = sink
        self._quota_day: date | None = None
        self._alerts_today = 0
        self._stats = EngineStats()

    @property
    def stats(self) -> EngineStats:
        return self._stats

    @property
    def alerts_today(self) -> int:
        return self._alerts_today

    def set_sink(self, sink: AlertSink | None) -> None:
        self._sink = sink

    def reset(self) -> None:
        """Clear quota counters and stats."""
        self._quota_day = None
        self._alerts_today = 0
        self._stats = EngineStats()

    # Gates

    def _check_common(self, state: TokenState, now: datetime) -> SkipReason | None:
        if state.is_rug_pull:
            return SkipReason.RUG_PULL
        if state.age(now) < timedelta(minutes=self._settings.min_age_minutes):
            return SkipReason.TOO_YOUNG
        if state.market_cap < self._settings.min_market_cap:
            return SkipReason.LOW_MARKET_CAP
        return None

    def is_rearmed(self, state: TokenState) -> bool:
        """True when an alerted token has gained enough to open a new cycle.

        The gain is measured on the cycle baseline market cap, or on the
        last alert price for tokens alerted without a recorded baseline.
        """
        baseline = state.alert_baseline_market_cap
        if baseline is not None and baseline > 0:
            reference, current = baseline, state.market_cap
        elif state.last_alert_price > 0:
            reference, current = state.last_alert_price, state.current_price
        else:
            return False
        gain = (current - reference) / reference * 100
        return gain >= self._settings.rearm_gain_percent

    def _roll_quota(self, now: datetime) -> None:
        today = now.astimezone(UTC).date()
        if self._quota_day != today:
            self._quota_day = today
            self._alerts_today = 0

    def _check_limits(self, state: TokenState, alert_type: AlertType, now: datetime) -> SkipReason | None:
        self._roll_quota(now)
        if self._alerts_today >= self._settings.max_alerts_per_day:
            return SkipReason.DAILY_QUOTA
        last = state.last_alert_by_type.get(alert_type.value)
        if last is not None and now - last < timedelta(minutes=self._settings.cooldown_minutes):
            return SkipReason.COOLDOWN
        return None

    def _finish(self, state: TokenState, alert_type: AlertType, now: datetime) -> AlertDecision:
        """Gates 5 and 6, shared by all alert types."""
        is_rearm = False
        if state.has_alerted:
            if not self.is_rearmed(state):
                return AlertDecision.skip(alert_type, SkipReason.ALREADY_ALERTED)
            is_rearm = True
        reason = self._check_limits(state, alert_type, now)
        if reason is not None:
            return AlertDecision.skip(alert_type, reason)
        return AlertDecision(alert_type=alert_type, should_alert=True, is_rearm=is_rearm)

    def is_confirmed(self, state: TokenState, metrics: DerivedMetrics) -> bool:
        """Confirmation criteria for a bullish alert."""
        s = self._signal_settings
        if state.total_volume < self._settings.min_volume:
            return False
        if not (
            metrics.buy_sell_ratio >= s.buy_sell_ratio_threshold
            or metrics.price_change_percent >= s.price_increase_threshold
        ):
            return False

        strong_price = s.price_increase_threshold * STRONG_PRICE_CHANGE_MULTIPLIER
        has_strong_signal = (
            metrics.whale_count > 0
            or state.smart_money_interest
            or metrics.holder_count >= s.holder_growth_threshold
            or metrics.volume_velocity >= s.volume_velocity_threshold
            or metrics.price_change_percent >= strong_price
        )
        if not has_strong_signal:
            return False

        if not metrics.trend.is_uptrend and not metrics.volume_profile.is_healthy:
            return metrics.score >= STRONG_METRICS_SCORE and metrics.price_change_percent >= strong_price
        return True

    def check_bullish(self, state: TokenState, *, now: datetime | None = None) -> AlertDecision:
        """Run the bullish gates without side effects."""
        now = now or datetime.now(UTC)
        reason = self._check_common(state, now)
        if reason is not None:
            return AlertDecision.skip(AlertType.BULLISH, reason)

        metrics = state.metrics
        if metrics.score < self._settings.bullish_min_score or not metrics.category.is_alertable:
            return AlertDecision.skip(AlertType.BULLISH, SkipReason.LOW_SCORE)
        if not self.is_confirmed(state, metrics):
            return AlertDecision.skip(AlertType.BULLISH, SkipReason.NOT_CONFIRMED)
        return self._finish(state, AlertType.BULLISH, now)

    def check_smart_money(
        self,
        state: TokenState,
        *,
        sol_amount: float,
        is_buy: bool,
        now: datetime | None = None,
    ) -> AlertDecision:
        now = now or datetime.now(UTC)
        reason = self._check_common(state, now)
        if reason is not None:
            return AlertDecision.skip(AlertType.SMART_MONEY, reason)
        if not is_buy or sol_amount < self._settings.smart_money_min_buy:
            return AlertDecision.skip(AlertType.SMART_MONEY, SkipReason.SMALL_BUY)
        return self._finish(state, AlertType.SMART_MONEY, now)

    def check_migration(self, state: TokenState, *, now: datetime | None = None) -> AlertDecision:
        now = now or datetime.now(UTC)
        reason = self._check_common(state, now)
        if reason is not None:
            return AlertDecision.skip(AlertType.MIGRATION, reason)
        return self._finish(state, AlertType.MIGRATION, now)

    # Emission

    def _commit(
        self,
        state: TokenState,
        decision: AlertDecision,
        now: datetime,
        baseline_override: float | None,
    ) -> AlertRecord:
        """Apply every dedup mutation. Must not await."""
        new_cycle = decision.is_rearm or state.alert_baseline_market_cap is None
        if new_cycle:
            state.alert_baseline_market_cap = (
                baseline_override if baseline_override is not None else state.market_cap
            )
        state.has_alerted = True
        state.last_alert_price = state.current_price
        state.last_alert_at = now
        state.last_alert_by_type[decision.alert_type.value] = now

        self._roll_quota(now)
        self._alerts_today += 1
        self._stats.alerts_emitted += 1
        self._stats.by_type[decision.alert_type.value] = self._stats.by_type.get(decision.alert_type.value, 0) + 1
        if decision.is_rearm:
            self._stats.rearms += 1

        record, _ = self._tracker.open_cycle(
            state,
            decision.alert_type,
            baseline_market_cap=state.alert_baseline_market_cap,
            new_cycle=new_cycle,
            now=now,
        )
        return record

    def _build_payload(
        self,
        state: TokenState,
        decision: AlertDecision,
        record: AlertRecord,
        risk: RiskAnalysis,
        now: datetime,
        wallet: str | None,
        amount: float | None,
    ) -> AlertPayload:
        metrics = state.metrics
        return AlertPayload(
            alert_type=decision.alert_type,
            alert_id=record.alert_id,
            mint=state.mint,
            name=state.name,
            symbol=state.symbol,
            market_cap=state.market_cap,
            baseline_market_cap=record.baseline_market_cap,
            price=state.current_price,
            score=metrics.score,
            category=metrics.category,
            buy_sell_ratio=metrics.buy_sell_ratio,
            price_change_percent=metrics.price_change_percent,
            holder_count=metrics.holder_count,
            total_volume=state.total_volume,
            whale_count=metrics.whale_count,
            is_natural=metrics.naturalness.is_natural,
            naturalness_score=metrics.naturalness.score,
            created_at=state.created_at,
            alerted_at=now,
            smart_money_wallet=wallet,
            smart_money_amount=amount,
            is_rearm=decision.is_rearm,
            risk=risk,
        )

    async def _emit(
        self,
        state: TokenState,
        decision: AlertDecision,
        now: datetime,
        *,
        wallet: str | None = None,
        amount: float | None = None,
        baseline_override: float | None = None,
    ) -> AlertRecord:
        record = self._commit(state, decision, now, baseline_override)
        logger.info(
            "%s alert for %s (score=%d, mcap=%.2f%s)",
            decision.alert_type.value,
            state.label,
            state.metrics.score,
            state.market_cap,
            ", re-armed" if decision.is_rearm else "",
        )

        risk = RiskAnalysis.neutral()
        if self._enrichment is not None:
            risk = await self._enrichment.fetch_with_timeout(state.mint)
        if not risk.available:
            self._stats.enrichment_fallbacks += 1

        if self._sink is not None:
            payload = self._build_payload(state, decision, record, risk, now, wallet, amount)
            try:
                await self._sink(payload)
            except Exception as e:
                self._stats.sink_failures += 1
                logger.warning("Alert delivery for %s failed: %s", state.label, e)
        return record

    def _skipped(self, state: TokenState, decision: AlertDecision) -> AlertDecision:
        reason = decision.skip_reason.value if decision.skip_reason else "unknown"
        self._stats.skipped[reason] = self._stats.skipped.get(reason, 0) + 1
        logger.debug("Skipping %s alert for %s: %s", decision.alert_type.value, state.label, reason)
        return decision

    async def evaluate_bullish(self, state: TokenState, *, now: datetime | None = None) -> AlertDecision:
        """Gate and, when it passes, emit a bullish alert."""
        now = now or datetime.now(UTC)
        decision = self.check_bullish(state, now=now)
        if not decision.should_alert:
            return self._skipped(state, decision)
        await self._emit(state, decision, now)
        return decision

    async def evaluate_smart_money(
        self,
        state: TokenState,
        *,
        wallet: str,
        sol_amount: float,
        is_buy: bool = True,
        now: datetime | None = None,
    ) -> AlertDecision:
        """Gate and, when it passes, emit a smart-money alert."""
        now = now or datetime.now(UTC)
        decision = self.check_smart_money(state, sol_amount=sol_amount, is_buy=is_buy, now=now)
        if not decision.should_alert:
            return self._skipped(state, decision)
        await self._emit(state, decision, now, wallet=wallet, amount=sol_amount)
        return decision

    async def evaluate_migration(self, state: TokenState, *, now: datetime | None = None) -> AlertDecision:
        """Gate and, when it passes, emit a migration alert."""
        now = now or datetime.now(UTC)
        decision = self.check_migration(state, now=now)
        if not decision.should_alert:
            return self._skipped(state, decision)
        await self._emit(state, decision, now, baseline_override=self._settings.migration_baseline_market_cap)
        return decision
