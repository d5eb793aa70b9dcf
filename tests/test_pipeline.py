"""Tests for the main pipeline orchestrator."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pydantic import SecretStr

from pump_signal_tracker.alerter.channels.telegram import TelegramChannel
from pump_signal_tracker.alerter.dispatcher import DispatchResult
from pump_signal_tracker.alerter.models import AlertPayload, FormattedAlert
from pump_signal_tracker.config import (
    AlertSettings,
    EnrichmentSettings,
    OutcomeSettings,
    Settings,
    SignalSettings,
    StoreSettings,
    StreamSettings,
)
from pump_signal_tracker.detector.models import SignalCategory
from pump_signal_tracker.ingestor.models import (
    AccountTradeEvent,
    MigrationEvent,
    TokenCreatedEvent,
    TradeEvent,
)
from pump_signal_tracker.outcome.models import AlertType
from pump_signal_tracker.pipeline import Pipeline, PipelineState
from pump_signal_tracker.storage.snapshot import Snapshot, SnapshotError

MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmpump"
SMART_WALLET = "5tzFkiKscXHK5ZXCGbXZxdw7gTjjD1mBwuoFbhUvuAi9"


@pytest.fixture
def mock_settings():
    """Create mock settings for testing."""
    redis = MagicMock()
    redis.url = "redis://localhost:6379"

    snapshot = MagicMock()
    snapshot.enabled = False
    snapshot.interval_seconds = 300
    snapshot.key_prefix = "pump:snapshot:"

    telegram = MagicMock()
    telegram.enabled = False
    telegram.bot_token = None
    telegram.chat_id = None

    settings = MagicMock(spec=Settings)
    settings.stream = StreamSettings()
    settings.store = StoreSettings()
    settings.signal = SignalSettings()
    settings.alert = AlertSettings(smart_money_wallets=(SMART_WALLET,))
    settings.outcome = OutcomeSettings()
    settings.enrichment = EnrichmentSettings(enabled=False)
    settings.redis = redis
    settings.snapshot = snapshot
    settings.telegram = telegram
    settings.dry_run = True
    return settings


async def create_pipeline(settings, **kwargs) -> Pipeline:
    """Create a pipeline with components initialized but no background services."""
    pipeline = Pipeline(settings, **kwargs)
    await pipeline._initialize_components()
    return pipeline


@pytest.fixture
def sample_trade_event():
    """Create a sample trade event for testing."""
    return TradeEvent(
        mint=MINT,
        trader="Trader111111111111111111111111111111111111",
        side="buy",
        sol_amount=1.5,
        token_amount=15_000_000.0,
        market_cap_sol=45.0,
        timestamp=datetime.now(UTC),
    )


def create_payload() -> AlertPayload:
    now = datetime.now(UTC)
    return AlertPayload(
        alert_type=AlertType.BULLISH,
        mint=MINT,
        name="Test Coin",
        symbol="TEST",
        market_cap=85.0,
        baseline_market_cap=85.0,
        price=0.0000001,
        score=92,
        category=SignalCategory.VERY_BULLISH,
        buy_sell_ratio=2.0,
        price_change_percent=80.0,
        holder_count=30,
        total_volume=120.0,
        whale_count=1,
        is_natural=True,
        naturalness_score=90,
        created_at=now - timedelta(minutes=30),
        alerted_at=now,
    )


class TestPipelineState:
    """Tests for pipeline state management."""

    def test_initial_state_is_stopped(self, mock_settings):
        """Pipeline should start in stopped state."""
        pipeline = Pipeline(mock_settings)
        assert pipeline.state == PipelineState.STOPPED

    def test_is_running_property(self, mock_settings):
        """is_running property should reflect state."""
        pipeline = Pipeline(mock_settings)
        assert not pipeline.is_running

        pipeline._state = PipelineState.RUNNING
        assert pipeline.is_running

    def test_dry_run_override(self, mock_settings):
        """Explicit dry_run should override settings."""
        assert Pipeline(mock_settings)._dry_run
        assert not Pipeline(mock_settings, dry_run=False)._dry_run

    @pytest.mark.asyncio
    async def test_start_twice_raises(self, mock_settings):
        pipeline = Pipeline(mock_settings)
        pipeline._state = PipelineState.RUNNING

        with pytest.raises(RuntimeError, match="Cannot start"):
            await pipeline.start()

    @pytest.mark.asyncio
    async def test_stop_when_stopped_is_noop(self, mock_settings):
        pipeline = Pipeline(mock_settings)
        await pipeline.stop()
        assert pipeline.state == PipelineState.STOPPED


class TestPipelineStats:
    """Tests for pipeline statistics."""

    def test_initial_stats(self, mock_settings):
        """Pipeline should have zero stats initially."""
        stats = Pipeline(mock_settings).stats

        assert stats.started_at is None
        assert stats.trades_processed == 0
        assert stats.alerts_sent == 0
        assert stats.milestones_sent == 0
        assert stats.errors == 0


class TestAlertChannels:
    """Tests for alert channel construction."""

    def test_no_channels_when_disabled(self, mock_settings):
        assert Pipeline(mock_settings)._build_alert_channels() == []

    def test_telegram_channel(self, mock_settings):
        mock_settings.telegram.enabled = True
        mock_settings.telegram.bot_token = SecretStr("123:abc")
        mock_settings.telegram.chat_id = "-100200"

        channels = Pipeline(mock_settings)._build_alert_channels()

        assert len(channels) == 1
        assert isinstance(channels[0], TelegramChannel)


class TestInitialization:
    """Tests for component wiring."""

    @pytest.mark.asyncio
    async def test_components_initialized(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        assert pipeline.store is not None
        assert pipeline.tracker is not None
        assert pipeline._engine is not None
        assert pipeline._redis is None
        assert pipeline._enrichment is None

    @pytest.mark.asyncio
    async def test_smart_money_wallets_watched(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        assert pipeline._stream.watched_accounts == frozenset({SMART_WALLET})

    @pytest.mark.asyncio
    async def test_registered_tokens_are_subscribed(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        pipeline.store.register(MINT)
        assert MINT in pipeline._stream.subscribed


class TestEventHandlers:
    """Tests for stream event handling."""

    @pytest.mark.asyncio
    async def test_create_registers_token(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        event = TokenCreatedEvent(
            mint=MINT,
            name="Test Coin",
            symbol="TEST",
            creator="Creator11111111111111111111111111111111111",
            initial_buy=50_000_000.0,
            sol_amount=1.0,
            market_cap_sol=30.0,
        )

        await pipeline._on_create(event)

        state = pipeline.store.get(MINT)
        assert state.symbol == "TEST"
        assert pipeline.stats.tokens_created == 1

    @pytest.mark.asyncio
    async def test_trade_spawns_bullish_evaluation(self, mock_settings, sample_trade_event):
        pipeline = await create_pipeline(mock_settings)
        pipeline._engine.evaluate_bullish = AsyncMock()

        await pipeline._on_trade(sample_trade_event)
        await asyncio.sleep(0)

        assert pipeline.stats.trades_processed == 1
        assert pipeline.store.get(MINT).trade_count == 1
        pipeline._engine.evaluate_bullish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_trade_checks_open_alert_records(self, mock_settings, sample_trade_event):
        pipeline = await create_pipeline(mock_settings)
        pipeline._engine.evaluate_bullish = AsyncMock()
        pipeline._tracker.records_for = MagicMock(return_value=[MagicMock()])
        pipeline._tracker.check = AsyncMock()

        await pipeline._on_trade(sample_trade_event)
        await asyncio.sleep(0)

        pipeline._tracker.check.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_trade_error_is_counted(self, mock_settings, sample_trade_event):
        pipeline = await create_pipeline(mock_settings)
        pipeline._engine.evaluate_bullish = AsyncMock()

        with patch.object(pipeline.store, "apply_trade", side_effect=RuntimeError("boom")):
            await pipeline._on_trade(sample_trade_event)

        assert pipeline.stats.errors == 1
        assert pipeline.stats.last_error == "boom"
        pipeline._engine.evaluate_bullish.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_account_trade_registers_unknown_token(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        pipeline._engine.evaluate_smart_money = AsyncMock()
        ts = datetime.now(UTC) - timedelta(minutes=3)
        event = AccountTradeEvent(
            mint=MINT,
            trader=SMART_WALLET,
            side="buy",
            sol_amount=2.0,
            token_amount=10_000_000.0,
            market_cap_sol=60.0,
            timestamp=ts,
        )

        await pipeline._on_account_trade(event)
        await asyncio.sleep(0)

        state = pipeline.store.get(MINT)
        assert state.created_at == ts
        assert state.market_cap == 60.0
        assert state.smart_money_interest
        assert pipeline.stats.smart_money_trades == 1
        call = pipeline._engine.evaluate_smart_money.await_args
        assert call.kwargs["wallet"] == SMART_WALLET
        assert call.kwargs["sol_amount"] == 2.0
        assert call.kwargs["is_buy"]

    @pytest.mark.asyncio
    async def test_migration_of_untracked_token_ignored(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        pipeline._engine.evaluate_migration = AsyncMock()

        await pipeline._on_migration(MigrationEvent(mint=MINT))
        await asyncio.sleep(0)

        pipeline._engine.evaluate_migration.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_migration_of_tracked_token(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        pipeline._engine.evaluate_migration = AsyncMock()
        pipeline.store.register(MINT)

        await pipeline._on_migration(MigrationEvent(mint=MINT, pool="pump-amm"))
        await asyncio.sleep(0)

        assert pipeline.store.get(MINT).migrated
        pipeline._engine.evaluate_migration.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_task_is_counted(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        async def failing():
            raise RuntimeError("evaluation failed")

        task = pipeline._spawn(failing(), name="failing")
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

        assert pipeline.stats.errors == 1
        assert pipeline.stats.last_error == "evaluation failed"


class TestAlertDelivery:
    """Tests for the notification sink."""

    @pytest.mark.asyncio
    async def test_dry_run_does_not_dispatch(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock()
        pipeline._alert_dispatcher = dispatcher

        await pipeline._send_alert(create_payload())

        dispatcher.dispatch.assert_not_awaited()
        assert pipeline.stats.alerts_sent == 0

    @pytest.mark.asyncio
    async def test_alert_dispatched(self, mock_settings):
        pipeline = Pipeline(mock_settings, dry_run=False)
        await pipeline._initialize_components()
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(return_value=DispatchResult(delivered={"telegram": True}))
        dispatcher.close = AsyncMock()
        pipeline._alert_dispatcher = dispatcher

        await pipeline._send_alert(create_payload())

        formatted = dispatcher.dispatch.await_args.args[0]
        assert isinstance(formatted, FormattedAlert)
        assert formatted.title == "🚀 Bullish Signal"
        assert pipeline.stats.alerts_sent == 1
        await pipeline._cleanup()

    @pytest.mark.asyncio
    async def test_failed_delivery_not_counted(self, mock_settings):
        pipeline = Pipeline(mock_settings, dry_run=False)
        await pipeline._initialize_components()
        dispatcher = MagicMock()
        dispatcher.dispatch = AsyncMock(
            return_value=DispatchResult(delivered={"telegram": False}, errors={"telegram": "HTTP 429"})
        )
        dispatcher.close = AsyncMock()
        pipeline._alert_dispatcher = dispatcher

        await pipeline._send_alert(create_payload())

        assert pipeline.stats.alerts_sent == 0
        await pipeline._cleanup()


class TestMaintenance:
    """Tests for eviction, resubscription and reset."""

    @pytest.mark.asyncio
    async def test_sweep_evicts_expired_tokens(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        now = datetime.now(UTC)
        pipeline.store.register("old", created_at=now - timedelta(hours=25))
        pipeline.store.register("new", created_at=now - timedelta(hours=1))

        evicted = pipeline.sweep(now=now)

        assert evicted == ["old"]
        assert pipeline.stats.tokens_evicted == 1
        assert "old" not in pipeline._stream.subscribed

    @pytest.mark.asyncio
    async def test_resubscribe_stale(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        now = datetime.now(UTC)
        pipeline.store.register("quiet", created_at=now - timedelta(minutes=30))
        pipeline.store.register("busy", created_at=now - timedelta(minutes=1))

        assert pipeline.resubscribe_stale(now=now) == 1

    @pytest.mark.asyncio
    async def test_reset_clears_state(self, mock_settings, sample_trade_event):
        pipeline = await create_pipeline(mock_settings)
        pipeline._engine.evaluate_bullish = AsyncMock()
        await pipeline._on_trade(sample_trade_event)
        started_at = datetime.now(UTC)
        pipeline._stats.started_at = started_at

        pipeline.reset()

        assert len(pipeline.store) == 0
        assert pipeline.tracker.all_records() == []
        assert pipeline.stats.trades_processed == 0
        assert pipeline.stats.started_at == started_at


class TestSnapshots:
    """Tests for snapshot save and load."""

    @pytest.mark.asyncio
    async def test_save_without_store_returns_false(self, mock_settings):
        assert not await Pipeline(mock_settings).save_snapshot()

    @pytest.mark.asyncio
    async def test_save_snapshot(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        pipeline.store.register(MINT, symbol="TEST")
        pipeline._snapshot_store = AsyncMock()

        assert await pipeline.save_snapshot()

        snapshot = pipeline._snapshot_store.save.await_args.args[0]
        assert [t["mint"] for t in snapshot.tokens] == [MINT]
        assert pipeline.stats.snapshots_saved == 1

    @pytest.mark.asyncio
    async def test_save_failure_returns_false(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        pipeline._snapshot_store = AsyncMock()
        pipeline._snapshot_store.save.side_effect = SnapshotError("Failed to write snapshot")

        assert not await pipeline.save_snapshot()
        assert pipeline.stats.snapshots_saved == 0

    @pytest.mark.asyncio
    async def test_load_snapshot_restores_tokens(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        source = Pipeline(pipeline._settings)
        await source._initialize_components()
        source.store.register(MINT, symbol="TEST", market_cap=80.0)
        snapshot = Snapshot(tokens=source.store.snapshot(), outcomes=source.tracker.snapshot())

        pipeline._snapshot_store = AsyncMock()
        pipeline._snapshot_store.load.return_value = snapshot
        await pipeline._load_snapshot()

        assert pipeline.store.get(MINT).symbol == "TEST"
        assert MINT in pipeline._stream.subscribed
        await source._cleanup()

    @pytest.mark.asyncio
    async def test_load_failure_starts_empty(self, mock_settings):
        pipeline = await create_pipeline(mock_settings)
        pipeline._snapshot_store = AsyncMock()
        pipeline._snapshot_store.load.side_effect = SnapshotError("Corrupt snapshot")

        await pipeline._load_snapshot()

        assert len(pipeline.store) == 0
