"""Alert outcome and milestone tracker.

Each alert record is compared against its own immutable baseline
market-cap. Checks run on a fixed schedule after the alert and
opportunistically on every trade; both paths go through `check()`, whose
"already achieved" / "already resolved" guards make them idempotent.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from pump_signal_tracker.config import OutcomeSettings
from pump_signal_tracker.outcome.models import (
    LOSS_REASON_LOW_MARKET_CAP,
    AlertOutcome,
    AlertRecord,
    AlertStats,
    AlertType,
    MilestoneEvent,
    milestone_label,
    win_time_bucket,
)
from pump_signal_tracker.outcome.scheduler import RecheckScheduler
from pump_signal_tracker.state.models import TokenState
from pump_signal_tracker.state.store import TokenStateStore

logger = logging.getLogger(__name__)

MilestoneCallback = Callable[[MilestoneEvent], Awaitable[None]]


class OutcomeTracker:
    """Tracks win/loss outcomes and milestone multiples of emitted alerts.

    Resolution rules (per record, checked against its own baseline):
        WIN  - (market_cap - baseline) / baseline >= win threshold (50%)
        LOSS - market_cap < loss floor (32) before a win
        otherwise PENDING, with no timeout

    Milestones: every multiple in the ladder is recorded at most once per
    record. All multiples crossed by one update are counted; a single
    notification names the highest of them.

    The tracker reads token state from the store and never writes to it.
    """

    def __init__(
        self,
        store: TokenStateStore,
        settings: OutcomeSettings | None = None,
        *,
        scheduler: RecheckScheduler | None = None,
        on_milestone: MilestoneCallback | None = None,
    ) -> None:
        self._store = store
        self._settings = settings or OutcomeSettings()
        self._scheduler = scheduler or RecheckScheduler()
        self._on_milestone = on_milestone
        self._milestones = tuple(sorted(self._settings.milestones))
        self._records: dict[str, list[AlertRecord]] = {}
        self._stats = AlertStats.with_milestones(self._milestones)

    @property
    def stats(self) -> AlertStats:
        return self._stats

    @property
    def scheduler(self) -> RecheckScheduler:
        return self._scheduler

    def set_milestone_callback(self, callback: MilestoneCallback | None) -> None:
        self._on_milestone = callback

    def records_for(self, mint: str) -> list[AlertRecord]:
        return list(self._records.get(mint, ()))

    def current_record(self, mint: str) -> AlertRecord | None:
        records = self._records.get(mint)
        return records[-1] if records else None

    def all_records(self) -> list[AlertRecord]:
        return [r for records in self._records.values() for r in records]

    def open_cycle(
        self,
        state: TokenState,
        alert_type: AlertType,
        *,
        baseline_market_cap: float,
        new_cycle: bool,
        now: datetime | None = None,
    ) -> tuple[AlertRecord, bool]:
        """Open a record for a new alert cycle, or reuse the open one.

        Args:
            state: Token being alerted.
            alert_type: Type of the emitted alert.
            baseline_market_cap: Baseline for a new cycle.
            new_cycle: False when the alert continues an already-open cycle.
            now: Alert time.

        Returns:
            (record, created) where `created` is False for a reused record.
        """
        now = now or datetime.now(UTC)
        current = self.current_record(state.mint)
        if current is not None and not new_cycle:
            return current, False

        record = AlertRecord(
            mint=state.mint,
            symbol=state.symbol,
            alert_type=alert_type,
            baseline_market_cap=baseline_market_cap,
            alert_price=state.current_price,
            created_at=now,
        )
        self._records.setdefault(state.mint, []).append(record)
        self._stats.total_alerts += 1
        self._stats.type_stats(alert_type).total += 1

        offsets = [timedelta(minutes=m) for m in self._settings.check_offsets_minutes]
        self._scheduler.schedule_many(offsets, state.mint, self.check)
        logger.info(
            "Tracking %s alert for %s from baseline %.2f",
            alert_type.value,
            state.label,
            baseline_market_cap,
        )
        return record, True

    def _record_milestones(self, record: AlertRecord, multiple: float, *, now: datetime) -> MilestoneEvent | None:
        newly = [m for m in self._milestones if multiple >= m and m not in record.achieved_milestones]
        if not newly:
            return None

        record.achieved_milestones.update(newly)
        for m in newly:
            label = milestone_label(m)
            self._stats.milestone_counts[label] = self._stats.milestone_counts.get(label, 0) + 1

        top = max(newly)
        self._stats.highest_win_percent = max(self._stats.highest_win_percent, (top - 1) * 100.0)
        return MilestoneEvent(
            mint=record.mint,
            symbol=record.symbol,
            alert_type=record.alert_type,
            multiple=top,
            baseline_market_cap=record.baseline_market_cap,
            current_market_cap=record.baseline_market_cap * multiple,
            alert_created_at=record.created_at,
            reached_at=now,
            crossed=tuple(newly),
        )

    def _resolve(self, record: AlertRecord, market_cap: float, *, now: datetime) -> None:
        if record.checked:
            return
        gain = (market_cap - record.baseline_market_cap) / record.baseline_market_cap * 100

        if gain >= self._settings.win_threshold_percent:
            if not record.resolve(AlertOutcome.WIN, at=now, win_percent=gain):
                return
            self._stats.wins += 1
            self._stats.type_stats(record.alert_type).wins += 1
            bucket = win_time_bucket(now - record.created_at)
            self._stats.win_times[bucket] = self._stats.win_times.get(bucket, 0) + 1
            self._stats.total_win_percent += gain
            self._stats.highest_win_percent = max(self._stats.highest_win_percent, gain)
            logger.info("WIN for %s (%s): +%.1f%% (%s)", record.symbol or record.mint, record.alert_type.value, gain, bucket)
        elif market_cap < self._settings.loss_floor_market_cap:
            if not record.resolve(AlertOutcome.LOSS, at=now):
                return
            self._stats.losses += 1
            self._stats.type_stats(record.alert_type).losses += 1
            self._stats.loss_reasons[LOSS_REASON_LOW_MARKET_CAP] = (
                self._stats.loss_reasons.get(LOSS_REASON_LOW_MARKET_CAP, 0) + 1
            )
            logger.info("LOSS for %s (%s): market cap %.2f", record.symbol or record.mint, record.alert_type.value, market_cap)

    def evaluate(self, mint: str, *, now: datetime | None = None) -> list[MilestoneEvent]:
        """Update every record of a token; return milestones reached by this update.

        No-op when the token or its records no longer exist.
        """
        state = self._store.get(mint)
        records = self._records.get(mint)
        if state is None or not records:
            return []
        now = now or datetime.now(UTC)

        events: list[MilestoneEvent] = []
        for record in records:
            if record.baseline_market_cap <= 0:
                continue
            multiple = state.market_cap / record.baseline_market_cap
            record.current_multiple = multiple
            record.highest_multiple = max(record.highest_multiple, multiple)
            event = self._record_milestones(record, multiple, now=now)
            if event is not None:
                events.append(event)
            self._resolve(record, state.market_cap, now=now)
        return events

    async def check(self, mint: str, *, now: datetime | None = None) -> list[MilestoneEvent]:
        """Evaluate a token and deliver milestone notifications."""
        events = self.evaluate(mint, now=now)
        for event in events:
            logger.info("Milestone %s reached by %s", event.label, event.symbol or event.mint)
            if self._on_milestone is None:
                continue
            try:
                await self._on_milestone(event)
            except Exception as e:
                logger.warning("Milestone notification for %s failed: %s", event.mint, e)
        return events

    def reset(self) -> None:
        """Drop every record and counter and cancel pending re-checks."""
        self._scheduler.cancel_all()
        self._records = {}
        self._stats = AlertStats.with_milestones(self._milestones)

    def snapshot(self) -> dict[str, Any]:
        return {
            "records": [r.to_dict() for r in self.all_records()],
            "stats": self._stats.to_dict(),
        }

    def restore(self, data: dict[str, Any], *, now: datetime | None = None) -> int:
        """Load records and stats, rescheduling the remaining checks of pending records."""
        now = now or datetime.now(UTC)
        stats = data.get("stats")
        if stats:
            restored_stats = AlertStats.from_dict(stats)
            for label in (milestone_label(m) for m in self._milestones):
                restored_stats.milestone_counts.setdefault(label, 0)
            self._stats = restored_stats

        loaded = 0
        for raw in data.get("records") or ():
            try:
                record = AlertRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable alert record: %s", e)
                continue
            self._records.setdefault(record.mint, []).append(record)
            loaded += 1
            if not record.checked:
                self._reschedule(record, now=now)
        return loaded

    def _reschedule(self, record: AlertRecord, *, now: datetime) -> None:
        delays: Iterable[timedelta] = (
            record.created_at + timedelta(minutes=m) - now
            for m in self._settings.check_offsets_minutes
            if record.created_at + timedelta(minutes=m) > now
        )
        self._scheduler.schedule_many(list(delays), record.mint, self.check)
