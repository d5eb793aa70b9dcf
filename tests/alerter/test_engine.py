"""Tests for the alert decision engine."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from pump_signal_tracker.alerter.engine import AlertDecisionEngine, SkipReason
from pump_signal_tracker.alerter.enrichment import RiskAnalysisClient
from pump_signal_tracker.alerter.models import RiskAnalysis
from pump_signal_tracker.config import AlertSettings, EnrichmentSettings, SignalSettings
from pump_signal_tracker.detector.models import TrendAnalysis
from pump_signal_tracker.detector.scorer import categorize
from pump_signal_tracker.outcome.models import AlertType
from pump_signal_tracker.outcome.scheduler import RecheckScheduler
from pump_signal_tracker.outcome.tracker import OutcomeTracker
from pump_signal_tracker.state.models import DerivedMetrics
from pump_signal_tracker.state.store import TokenStateStore

MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmpump"
WALLET = "AArPXm8JatJiuyEffuC1un2Sc835SULa4uQqDcaGpAjV"
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store():
    return TokenStateStore()


@pytest.fixture
def tracker(store):
    return OutcomeTracker(store, scheduler=MagicMock(spec=RecheckScheduler))


@pytest.fixture
def sink():
    return AsyncMock()


@pytest.fixture
def engine(tracker, sink):
    return AlertDecisionEngine(AlertSettings(), tracker=tracker, signal_settings=SignalSettings(), sink=sink)


def create_state(
    store,
    mint: str = MINT,
    *,
    market_cap: float = 100.0,
    age: timedelta = timedelta(minutes=10),
    score: int = 90,
    total_volume: float = 100.0,
    **metric_overrides,
):
    """Register a token whose metrics pass every bullish gate by default."""
    state = store.register(mint, created_at=NOW - age, symbol="TEST", market_cap=market_cap)
    state.current_price = 0.0001
    state.total_volume = total_volume
    metrics = {
        "buy_sell_ratio": 2.0,
        "price_change_percent": 50.0,
        "whale_count": 1,
        "trend": TrendAnalysis(is_uptrend=True, strength=5),
    }
    metrics.update(metric_overrides)
    state.metrics = DerivedMetrics(score=score, category=categorize(score), **metrics)
    return state


class TestCommonGates:
    """Tests for the gates shared by all alert types."""

    def test_rug_pull(self, engine, store):
        state = create_state(store)
        state.mark_rug_pull()

        assert engine.check_bullish(state, now=NOW).skip_reason == SkipReason.RUG_PULL

    def test_too_young(self, engine, store):
        state = create_state(store, age=timedelta(minutes=2))

        assert engine.check_bullish(state, now=NOW).skip_reason == SkipReason.TOO_YOUNG

    def test_low_market_cap(self, engine, store):
        state = create_state(store, market_cap=80.0)

        assert engine.check_bullish(state, now=NOW).skip_reason == SkipReason.LOW_MARKET_CAP

    def test_gates_apply_to_migration(self, engine, store):
        state = create_state(store, age=timedelta(minutes=1))

        assert engine.check_migration(state, now=NOW).skip_reason == SkipReason.TOO_YOUNG


class TestBullishGates:
    """Tests for the bullish type gate and confirmation."""

    def test_passes(self, engine, store):
        decision = engine.check_bullish(create_state(store), now=NOW)

        assert decision.should_alert
        assert decision.alert_type == AlertType.BULLISH
        assert not decision.is_rearm

    def test_low_score(self, engine, store):
        state = create_state(store, score=80)

        assert engine.check_bullish(state, now=NOW).skip_reason == SkipReason.LOW_SCORE

    def test_low_volume_not_confirmed(self, engine, store):
        state = create_state(store, total_volume=50.0)

        assert engine.check_bullish(state, now=NOW).skip_reason == SkipReason.NOT_CONFIRMED

    def test_weak_ratio_and_price_not_confirmed(self, engine, store):
        state = create_state(store, buy_sell_ratio=1.0, price_change_percent=10.0)

        assert engine.check_bullish(state, now=NOW).skip_reason == SkipReason.NOT_CONFIRMED

    def test_no_strong_signal_not_confirmed(self, engine, store):
        state = create_state(store, whale_count=0)

        assert engine.check_bullish(state, now=NOW).skip_reason == SkipReason.NOT_CONFIRMED

    def test_smart_money_interest_is_a_strong_signal(self, engine, store):
        state = create_state(store, whale_count=0)
        state.smart_money_interest = True

        assert engine.check_bullish(state, now=NOW).should_alert

    def test_without_trend_needs_very_strong_metrics(self, engine, store):
        flat = TrendAnalysis(is_uptrend=False, strength=0)

        weak = create_state(store, "weak", score=89, trend=flat, price_change_percent=100.0)
        strong = create_state(store, "strong", score=90, trend=flat, price_change_percent=80.0)

        assert engine.check_bullish(weak, now=NOW).skip_reason == SkipReason.NOT_CONFIRMED
        assert engine.check_bullish(strong, now=NOW).should_alert


class TestEmission:
    """Tests for emitting alerts and dedup state."""

    @pytest.mark.asyncio
    async def test_emits_and_commits(self, engine, store, tracker, sink):
        state = create_state(store)

        decision = await engine.evaluate_bullish(state, now=NOW)

        assert decision.should_alert
        assert state.has_alerted
        assert state.alert_baseline_market_cap == 100.0
        assert state.last_alert_at == NOW
        assert state.last_alert_by_type == {"bullish": NOW}
        assert engine.alerts_today == 1
        assert engine.stats.alerts_emitted == 1
        assert len(tracker.records_for(MINT)) == 1

        sink.assert_awaited_once()
        payload = sink.await_args.args[0]
        assert payload.alert_type == AlertType.BULLISH
        assert payload.baseline_market_cap == 100.0
        assert payload.score == 90
        assert not payload.risk.available

    @pytest.mark.asyncio
    async def test_second_alert_suppressed(self, engine, store, sink):
        state = create_state(store)

        await engine.evaluate_bullish(state, now=NOW)
        decision = await engine.evaluate_bullish(state, now=NOW + timedelta(hours=1))

        assert decision.skip_reason == SkipReason.ALREADY_ALERTED
        sink.assert_awaited_once()
        assert engine.stats.skipped["already_alerted"] == 1

    @pytest.mark.asyncio
    async def test_one_cycle_across_alert_types(self, engine, store, sink):
        state = create_state(store)

        await engine.evaluate_bullish(state, now=NOW)
        decision = await engine.evaluate_smart_money(state, wallet=WALLET, sol_amount=2.0, now=NOW)

        assert decision.skip_reason == SkipReason.ALREADY_ALERTED

    @pytest.mark.asyncio
    async def test_rearm_after_large_gain(self, engine, store, tracker, sink):
        state = create_state(store)
        await engine.evaluate_bullish(state, now=NOW)

        state.market_cap = 300.0
        decision = await engine.evaluate_bullish(state, now=NOW + timedelta(minutes=30))

        assert decision.should_alert
        assert decision.is_rearm
        assert state.alert_baseline_market_cap == 300.0
        assert [r.baseline_market_cap for r in tracker.records_for(MINT)] == [100.0, 300.0]
        assert engine.stats.rearms == 1
        assert sink.await_args.args[0].is_rearm

    @pytest.mark.asyncio
    async def test_gain_below_rearm_threshold(self, engine, store):
        state = create_state(store)
        await engine.evaluate_bullish(state, now=NOW)

        state.market_cap = 299.0
        decision = await engine.evaluate_bullish(state, now=NOW + timedelta(minutes=30))

        assert decision.skip_reason == SkipReason.ALREADY_ALERTED

    @pytest.mark.asyncio
    async def test_rearm_respects_cooldown(self, engine, store):
        state = create_state(store)
        await engine.evaluate_bullish(state, now=NOW)

        state.market_cap = 400.0
        decision = await engine.evaluate_bullish(state, now=NOW + timedelta(minutes=5))

        assert decision.skip_reason == SkipReason.COOLDOWN

    def test_rearm_falls_back_to_alert_price(self, engine, store):
        state = create_state(store)
        state.has_alerted = True
        state.last_alert_price = 0.0001
        state.current_price = 0.0004

        assert engine.is_rearmed(state)

    @pytest.mark.asyncio
    async def test_dedup_committed_before_enrichment(self, store, tracker, sink):
        release = asyncio.Event()

        async def slow_lookup(mint):
            await release.wait()
            return RiskAnalysis.neutral()

        enrichment = MagicMock()
        enrichment.fetch_with_timeout = AsyncMock(side_effect=slow_lookup)
        engine = AlertDecisionEngine(AlertSettings(), tracker=tracker, enrichment=enrichment, sink=sink)
        state = create_state(store)

        first = asyncio.create_task(engine.evaluate_bullish(state, now=NOW))
        await asyncio.sleep(0)
        assert state.has_alerted

        second = await engine.evaluate_bullish(state, now=NOW)
        assert second.skip_reason == SkipReason.ALREADY_ALERTED

        release.set()
        assert (await first).should_alert
        sink.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sink_failure_is_contained(self, tracker, store):
        engine = AlertDecisionEngine(
            AlertSettings(),
            tracker=tracker,
            sink=AsyncMock(side_effect=RuntimeError("telegram down")),
        )
        state = create_state(store)

        decision = await engine.evaluate_bullish(state, now=NOW)

        assert decision.should_alert
        assert state.has_alerted
        assert engine.stats.sink_failures == 1

    @pytest.mark.asyncio
    async def test_enrichment_result_in_payload(self, tracker, store, sink):
        risk = RiskAnalysis(available=True, bundle_count=3)
        enrichment = MagicMock()
        enrichment.fetch_with_timeout = AsyncMock(return_value=risk)
        engine = AlertDecisionEngine(AlertSettings(), tracker=tracker, enrichment=enrichment, sink=sink)

        await engine.evaluate_bullish(create_state(store), now=NOW)

        assert sink.await_args.args[0].risk is risk
        assert engine.stats.enrichment_fallbacks == 0


class TestDailyQuota:
    """Tests for the daily alert quota."""

    @pytest.mark.asyncio
    async def test_quota_exhausted(self, tracker, store, sink):
        engine = AlertDecisionEngine(AlertSettings(max_alerts_per_day=1), tracker=tracker, sink=sink)

        await engine.evaluate_bullish(create_state(store, "a"), now=NOW)
        decision = await engine.evaluate_bullish(create_state(store, "b"), now=NOW + timedelta(hours=1))

        assert decision.skip_reason == SkipReason.DAILY_QUOTA

    @pytest.mark.asyncio
    async def test_quota_resets_next_utc_day(self, tracker, store, sink):
        engine = AlertDecisionEngine(AlertSettings(max_alerts_per_day=1), tracker=tracker, sink=sink)

        await engine.evaluate_bullish(create_state(store, "a"), now=NOW)
        decision = await engine.evaluate_bullish(create_state(store, "b"), now=NOW + timedelta(days=1))

        assert decision.should_alert
        assert engine.alerts_today == 1


class TestSmartMoney:
    """Tests for smart-money alerts."""

    @pytest.mark.asyncio
    async def test_large_buy_alerts(self, engine, store, sink):
        state = create_state(store, score=10)

        decision = await engine.evaluate_smart_money(state, wallet=WALLET, sol_amount=1.0, now=NOW)

        assert decision.should_alert
        payload = sink.await_args.args[0]
        assert payload.alert_type == AlertType.SMART_MONEY
        assert payload.smart_money_wallet == WALLET
        assert payload.smart_money_amount == 1.0

    @pytest.mark.asyncio
    async def test_small_buy_skipped(self, engine, store):
        decision = await engine.evaluate_smart_money(create_state(store), wallet=WALLET, sol_amount=0.5, now=NOW)

        assert decision.skip_reason == SkipReason.SMALL_BUY

    @pytest.mark.asyncio
    async def test_sell_skipped(self, engine, store):
        decision = await engine.evaluate_smart_money(
            create_state(store), wallet=WALLET, sol_amount=5.0, is_buy=False, now=NOW
        )

        assert decision.skip_reason == SkipReason.SMALL_BUY


class TestMigration:
    """Tests for migration alerts."""

    @pytest.mark.asyncio
    async def test_migration_uses_current_market_cap(self, engine, store, tracker):
        state = create_state(store, score=0)

        decision = await engine.evaluate_migration(state, now=NOW)

        assert decision.should_alert
        assert tracker.current_record(MINT).baseline_market_cap == 100.0

    @pytest.mark.asyncio
    async def test_migration_fixed_baseline(self, tracker, store, sink):
        engine = AlertDecisionEngine(
            AlertSettings(migration_baseline_market_cap=410.88),
            tracker=tracker,
            sink=sink,
        )
        state = create_state(store)

        await engine.evaluate_migration(state, now=NOW)

        assert state.alert_baseline_market_cap == 410.88
        assert tracker.current_record(MINT).alert_type == AlertType.MIGRATION
        assert tracker.current_record(MINT).baseline_market_cap == 410.88

    def test_explicit_zero_baseline_is_kept(self, engine, store):
        state = create_state(store)
        decision = engine.check_migration(state, now=NOW)

        engine._commit(state, decision, NOW, 0.0)

        assert state.alert_baseline_market_cap == 0.0

    @pytest.mark.asyncio
    async def test_unexpected_enrichment_body_still_delivers(self, tracker, store, sink):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"creator_analysis": "unavailable"}))
        )
        enrichment = RiskAnalysisClient(EnrichmentSettings(base_url="https://risk.test/api/bundle"), client=http)
        engine = AlertDecisionEngine(AlertSettings(), tracker=tracker, enrichment=enrichment, sink=sink)
        state = create_state(store)

        decision = await engine.evaluate_migration(state, now=NOW)
        await http.aclose()

        assert decision.should_alert
        assert state.has_alerted
        sink.assert_awaited_once()
        assert sink.await_args.args[0].risk.creator_risk_level == "UNKNOWN"


class TestReset:
    """Tests for engine reset."""

    @pytest.mark.asyncio
    async def test_reset_clears_counters(self, engine, store):
        await engine.evaluate_bullish(create_state(store), now=NOW)

        engine.reset()

        assert engine.alerts_today == 0
        assert engine.stats.alerts_emitted == 0
