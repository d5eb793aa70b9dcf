"""Main pipeline orchestrator for the pump signal tracker.

This module wires the data stream, the token state store, the signal
scorer, the alert decision engine and the outcome tracker into a single
event flow, and runs the periodic maintenance loops.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from pump_signal_tracker.alerter.channels.telegram import TelegramChannel
from pump_signal_tracker.alerter.dispatcher import AlertChannel, AlertDispatcher
from pump_signal_tracker.alerter.engine import AlertDecisionEngine
from pump_signal_tracker.alerter.enrichment import RiskAnalysisClient
from pump_signal_tracker.alerter.formatter import AlertFormatter
from pump_signal_tracker.alerter.models import AlertPayload, FormattedAlert
from pump_signal_tracker.config import Settings, get_settings
from pump_signal_tracker.detector.scorer import SignalScorer
from pump_signal_tracker.ingestor.models import (
    AccountTradeEvent,
    MigrationEvent,
    TokenCreatedEvent,
    TradeEvent,
)
from pump_signal_tracker.ingestor.websocket import PumpStreamHandler
from pump_signal_tracker.outcome.models import MilestoneEvent
from pump_signal_tracker.outcome.scheduler import RecheckScheduler
from pump_signal_tracker.outcome.tracker import OutcomeTracker
from pump_signal_tracker.state.store import TokenStateStore
from pump_signal_tracker.storage.snapshot import Snapshot, SnapshotError, SnapshotStore

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    tokens_created: int = 0
    trades_processed: int = 0
    migrations_processed: int = 0
    smart_money_trades: int = 0
    alerts_sent: int = 0
    milestones_sent: int = 0
    tokens_evicted: int = 0
    snapshots_saved: int = 0
    errors: int = 0
    last_trade_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator.

    Pipeline flow:
        PumpPortal stream -> TokenStateStore -> SignalScorer
            -> AlertDecisionEngine -> AlertDispatcher
            -> OutcomeTracker -> milestone notifications

    Alert evaluation runs in its own task so that enrichment lookups never
    hold up the stream. The engine commits its dedup state before the first
    await, and tasks start in arrival order, so later trades for the same
    token see it as already alerted.

    Example:
        ```python
        from pump_signal_tracker.config import get_settings
        from pump_signal_tracker.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, skip sending alerts. Overrides settings.dry_run.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._snapshot_store: SnapshotStore | None = None
        self._store: TokenStateStore | None = None
        self._stream: PumpStreamHandler | None = None
        self._scheduler: RecheckScheduler | None = None
        self._tracker: OutcomeTracker | None = None
        self._enrichment: RiskAnalysisClient | None = None
        self._alert_formatter: AlertFormatter | None = None
        self._alert_dispatcher: AlertDispatcher | None = None
        self._engine: AlertDecisionEngine | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._stream_task: asyncio.Task[None] | None = None
        self._sweep_task: asyncio.Task[None] | None = None
        self._resubscribe_task: asyncio.Task[None] | None = None
        self._snapshot_task: asyncio.Task[None] | None = None
        self._event_tasks: set[asyncio.Task[Any]] = set()

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def store(self) -> TokenStateStore | None:
        return self._store

    @property
    def tracker(self) -> OutcomeTracker | None:
        return self._tracker

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components and begins processing events.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self._load_snapshot()
            await self._start_background_services()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Stops all background services, writes a final snapshot and cleans up
        resources.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self.save_snapshot()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        # Initialize Redis
        if settings.snapshot.enabled:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
            self._snapshot_store = SnapshotStore(self._redis, key_prefix=settings.snapshot.key_prefix)

        # Initialize state and scoring
        logger.debug("Initializing token state store...")
        self._store = TokenStateStore(
            settings.store,
            signal_settings=settings.signal,
            scorer=SignalScorer(settings.signal),
            smart_money_wallets=settings.alert.smart_money_wallets,
        )

        # Initialize Data Stream
        logger.debug("Initializing data stream handler...")
        self._stream = PumpStreamHandler(
            settings.stream,
            on_create=self._on_create,
            on_trade=self._on_trade,
            on_migration=self._on_migration,
            on_account_trade=self._on_account_trade,
        )
        self._store.attach_subscriptions(self._stream)
        for wallet in settings.alert.smart_money_wallets:
            self._stream.watch_account(wallet)

        # Initialize Outcome Tracking
        logger.debug("Initializing outcome tracker...")
        self._scheduler = RecheckScheduler()
        self._tracker = OutcomeTracker(
            self._store,
            settings.outcome,
            scheduler=self._scheduler,
            on_milestone=self._on_milestone,
        )

        # Initialize Alerting
        logger.debug("Initializing alerting components...")
        if settings.enrichment.enabled:
            self._enrichment = RiskAnalysisClient(settings.enrichment)
        self._alert_formatter = AlertFormatter(verbosity="detailed")
        channels = self._build_alert_channels()
        self._alert_dispatcher = AlertDispatcher(channels)
        self._engine = AlertDecisionEngine(
            settings.alert,
            tracker=self._tracker,
            signal_settings=settings.signal,
            enrichment=self._enrichment,
            sink=self._send_alert,
        )

        logger.info("All components initialized")

    def _build_alert_channels(self) -> list[AlertChannel]:
        """Build list of enabled alert channels."""
        channels: list[AlertChannel] = []
        settings = self._settings

        if settings.telegram.enabled:
            bot_token = settings.telegram.bot_token
            chat_id = settings.telegram.chat_id
            if bot_token and chat_id:
                channels.append(
                    TelegramChannel(
                        bot_token.get_secret_value(),
                        chat_id,
                    )
                )
                logger.info("Telegram channel enabled")

        if not channels:
            logger.warning("No alert channels configured")

        return channels

    async def _start_background_services(self) -> None:
        """Start background services."""
        if self._stream:
            logger.debug("Starting data stream...")
            self._stream_task = asyncio.create_task(self._run_stream())

        logger.debug("Starting eviction sweep loop...")
        self._sweep_task = asyncio.create_task(self._run_sweep_loop())

        logger.debug("Starting resubscription loop...")
        self._resubscribe_task = asyncio.create_task(self._run_resubscribe_loop())

        if self._snapshot_store:
            logger.debug("Starting snapshot loop...")
            self._snapshot_task = asyncio.create_task(self._run_snapshot_loop())

    async def _run_stream(self) -> None:
        """Run the data stream in a task."""
        if not self._stream:
            return

        try:
            await self._stream.start()
        except asyncio.CancelledError:
            logger.debug("Data stream task cancelled")
        except Exception as e:
            logger.error("Data stream error: %s", e)
            self._stats.last_error = str(e)
            self._stats.errors += 1

    async def _wait_interval(self, interval: float) -> bool:
        """Sleep for `interval` seconds. Returns True if the pipeline is stopping."""
        if not self._stop_event:
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            return True
        except TimeoutError:
            return False

    async def _run_sweep_loop(self) -> None:
        interval = self._settings.store.sweep_interval_seconds
        while self._stop_event and not self._stop_event.is_set():
            try:
                if await self._wait_interval(interval):
                    break
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Eviction sweep loop error: %s", e)

    async def _run_resubscribe_loop(self) -> None:
        interval = self._settings.store.resubscribe_interval_seconds
        while self._stop_event and not self._stop_event.is_set():
            try:
                if await self._wait_interval(interval):
                    break
                self.resubscribe_stale()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Resubscription loop error: %s", e)

    async def _run_snapshot_loop(self) -> None:
        interval = self._settings.snapshot.interval_seconds
        while self._stop_event and not self._stop_event.is_set():
            try:
                if await self._wait_interval(interval):
                    break
                await self.save_snapshot()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Snapshot loop error: %s", e)

    def sweep(self, *, now: datetime | None = None) -> list[str]:
        """Evict tokens past the max tracking age."""
        if not self._store:
            return []
        evicted = self._store.sweep_expired(now=now)
        self._stats.tokens_evicted += len(evicted)
        return evicted

    def resubscribe_stale(self, *, now: datetime | None = None) -> int:
        """Re-issue subscriptions for tokens that have gone quiet."""
        if not self._store or not self._stream:
            return 0
        stale = self._store.stale_subscriptions(now=now)
        if not stale:
            return 0
        queued = self._stream.resubscribe(stale)
        logger.info("Queued resubscription for %d quiet tokens", queued)
        return queued

    async def _stop_background_services(self) -> None:
        """Stop background services."""
        if self._stream:
            logger.debug("Stopping data stream...")
            await self._stream.stop()

        for attr in ("_stream_task", "_sweep_task", "_resubscribe_task", "_snapshot_task"):
            task: asyncio.Task[None] | None = getattr(self, attr)
            if task:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                setattr(self, attr, None)

        for task in list(self._event_tasks):
            task.cancel()
        if self._event_tasks:
            await asyncio.gather(*self._event_tasks, return_exceptions=True)
        self._event_tasks.clear()

        if self._scheduler:
            self._scheduler.cancel_all()

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._enrichment:
            await self._enrichment.close()
            self._enrichment = None

        if self._alert_dispatcher:
            await self._alert_dispatcher.close()

        # Close Redis connection
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._snapshot_store = None

        logger.debug("Resources cleaned up")

    # Snapshots

    async def _load_snapshot(self) -> None:
        """Restore the last snapshot. Failures start the pipeline empty."""
        if not self._snapshot_store or not self._store or not self._tracker:
            return
        try:
            snapshot = await self._snapshot_store.load()
        except SnapshotError as e:
            logger.warning("Could not load snapshot, starting empty: %s", e)
            return
        if snapshot is None:
            logger.info("No snapshot found, starting empty")
            return

        tokens = self._store.restore(snapshot.tokens)
        records = self._tracker.restore(snapshot.outcomes)
        logger.info(
            "Restored snapshot from %s: %d tokens, %d alert records",
            snapshot.saved_at.isoformat(),
            tokens,
            records,
        )

    async def save_snapshot(self) -> bool:
        """Persist token summaries, alert records and counters (best effort)."""
        if not self._snapshot_store or not self._store or not self._tracker:
            return False
        snapshot = Snapshot(tokens=self._store.snapshot(), outcomes=self._tracker.snapshot())
        try:
            await self._snapshot_store.save(snapshot)
        except SnapshotError as e:
            logger.warning("Snapshot not saved: %s", e)
            return False
        self._stats.snapshots_saved += 1
        return True

    def reset(self) -> None:
        """Clear all in-memory state and counters.

        Runs without awaiting, so no other task observes a partial reset.
        """
        for task in list(self._event_tasks):
            task.cancel()
        if self._store:
            self._store.reset()
        if self._tracker:
            self._tracker.reset()
        if self._engine:
            self._engine.reset()
        started_at = self._stats.started_at
        self._stats = PipelineStats(started_at=started_at)
        logger.info("Pipeline state reset")

    # Event handlers

    def _spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._event_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._event_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._stats.errors += 1
            self._stats.last_error = str(exc)
            logger.error("Task %s failed: %s", task.get_name(), exc)

    async def _on_create(self, event: TokenCreatedEvent) -> None:
        if not self._store:
            return
        self._stats.tokens_created += 1
        self._store.register_created(event)

    async def _on_trade(self, event: TradeEvent) -> None:
        """Process a single trade event.

        1. Fold the trade into the token's state
        2. Recompute derived metrics and the composite score
        3. Check open alert records for milestones and outcomes
        4. Evaluate the bullish alert gates
        """
        if not self._store or not self._tracker or not self._engine:
            return
        self._stats.trades_processed += 1
        self._stats.last_trade_time = datetime.now(UTC)

        try:
            state = self._store.apply_trade(event)
            now = datetime.now(UTC)
            self._store.compute_derived_metrics(event.mint, now=now)
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Error applying trade for %s: %s", event.mint, e)
            return

        if self._tracker.records_for(event.mint):
            self._spawn(self._tracker.check(event.mint, now=now), name=f"check:{event.mint}")
        self._spawn(self._engine.evaluate_bullish(state, now=now), name=f"bullish:{event.mint}")

    async def _on_account_trade(self, event: AccountTradeEvent) -> None:
        """Process a trade made by a watched smart-money wallet."""
        if not self._store or not self._engine:
            return
        self._stats.smart_money_trades += 1
        now = datetime.now(UTC)

        state = self._store.get(event.mint)
        if state is None:
            # Unknown tokens are tracked from here on; later trades arrive
            # through the token-trade subscription.
            state = self._store.register(
                event.mint,
                created_at=event.timestamp,
                market_cap=event.market_cap_sol,
            )
            self._store.record_smart_money(state, event.trader, event.side, event.sol_amount, event.timestamp)
            self._store.compute_derived_metrics(event.mint, now=now)

        logger.info(
            "Smart money %s %s %.4f SOL of %s",
            event.trader[:8],
            event.side,
            event.sol_amount,
            state.label,
        )
        self._spawn(
            self._engine.evaluate_smart_money(
                state,
                wallet=event.trader,
                sol_amount=event.sol_amount,
                is_buy=event.is_buy,
                now=now,
            ),
            name=f"smart_money:{event.mint}",
        )

    async def _on_migration(self, event: MigrationEvent) -> None:
        if not self._store or not self._engine:
            return
        self._stats.migrations_processed += 1
        state = self._store.mark_migrated(event.mint)
        if state is None:
            logger.debug("Migration for untracked token %s ignored", event.mint)
            return
        logger.info("Token %s migrated to %s", state.label, event.pool or "unknown pool")
        self._spawn(self._engine.evaluate_migration(state), name=f"migration:{event.mint}")

    # Notification sink

    async def _deliver(self, formatted: FormattedAlert) -> bool:
        if self._dry_run:
            logger.info("[DRY RUN] Would send: %s\n%s", formatted.title, formatted.plain_text)
            return False
        if not self._alert_dispatcher:
            return False

        result = await self._alert_dispatcher.dispatch(formatted)
        if not result.all_succeeded:
            logger.warning(
                "Alert partially failed: %d/%d channels succeeded",
                result.success_count,
                result.success_count + result.failure_count,
            )
        return result.success_count > 0

    async def _send_alert(self, payload: AlertPayload) -> None:
        if not self._alert_formatter:
            return
        formatted = self._alert_formatter.format(payload)
        if await self._deliver(formatted):
            self._stats.alerts_sent += 1
            logger.info(
                "Alert sent: %s %s score=%d",
                payload.alert_type.value,
                payload.symbol or payload.mint,
                payload.score,
            )

    async def _on_milestone(self, event: MilestoneEvent) -> None:
        if not self._alert_formatter:
            return
        formatted = self._alert_formatter.format_milestone(event)
        if await self._deliver(formatted):
            self._stats.milestones_sent += 1

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        This is a convenience method that starts the pipeline and
        blocks until a stop signal is received.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
