"""Data models for alert outcome and milestone tracking."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any


class AlertType(str, Enum):
    """Kinds of alert the decision engine can emit."""

    BULLISH = "bullish"
    SMART_MONEY = "smart_money"
    MIGRATION = "migration"


class AlertOutcome(str, Enum):
    PENDING = "pending"
    WIN = "win"
    LOSS = "loss"


WIN_TIME_BUCKETS = ("under1hour", "under6hours", "under24hours", "over24hours")
LOSS_REASON_LOW_MARKET_CAP = "low_market_cap"


def milestone_label(multiple: int) -> str:
    return f"{multiple}x"


def win_time_bucket(elapsed: timedelta) -> str:
    """Bucket for the time between alert and win."""
    hours = elapsed.total_seconds() / 3600
    if hours <= 1:
        return "under1hour"
    if hours <= 6:
        return "under6hours"
    if hours <= 24:
        return "under24hours"
    return "over24hours"


@dataclass
class AlertRecord:
    """One emitted alert and its tracked performance.

    `baseline_market_cap` is fixed at creation. `outcome` is terminal once
    it leaves PENDING; `resolve()` refuses to change a resolved record.
    """

    mint: str
    alert_type: AlertType
    baseline_market_cap: float
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    alert_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    symbol: str = ""
    alert_price: float = 0.0
    highest_multiple: float = 1.0
    current_multiple: float = 1.0
    achieved_milestones: set[int] = field(default_factory=set)
    outcome: AlertOutcome = AlertOutcome.PENDING
    resolved_at: datetime | None = None
    win_percent: float | None = None

    @property
    def checked(self) -> bool:
        """True once the outcome is terminal."""
        return self.outcome is not AlertOutcome.PENDING

    def resolve(self, outcome: AlertOutcome, *, at: datetime, win_percent: float | None = None) -> bool:
        """Set a terminal outcome. Returns False if the record was already resolved."""
        if self.checked or outcome is AlertOutcome.PENDING:
            return False
        self.outcome = outcome
        self.resolved_at = at
        self.win_percent = win_percent
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "mint": self.mint,
            "symbol": self.symbol,
            "alert_type": self.alert_type.value,
            "baseline_market_cap": self.baseline_market_cap,
            "alert_price": self.alert_price,
            "created_at": self.created_at.isoformat(),
            "highest_multiple": self.highest_multiple,
            "current_multiple": self.current_multiple,
            "achieved_milestones": sorted(self.achieved_milestones),
            "outcome": self.outcome.value,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "win_percent": self.win_percent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertRecord:
        resolved_at = data.get("resolved_at")
        win_percent = data.get("win_percent")
        return cls(
            alert_id=str(data["alert_id"]),
            mint=str(data["mint"]),
            symbol=str(data.get("symbol", "")),
            alert_type=AlertType(data["alert_type"]),
            baseline_market_cap=float(data["baseline_market_cap"]),
            alert_price=float(data.get("alert_price", 0.0)),
            created_at=datetime.fromisoformat(data["created_at"]),
            highest_multiple=float(data.get("highest_multiple", 1.0)),
            current_multiple=float(data.get("current_multiple", 1.0)),
            achieved_milestones={int(m) for m in data.get("achieved_milestones", [])},
            outcome=AlertOutcome(data.get("outcome", AlertOutcome.PENDING.value)),
            resolved_at=datetime.fromisoformat(resolved_at) if resolved_at else None,
            win_percent=float(win_percent) if win_percent is not None else None,
        )


@dataclass
class TypeStats:
    total: int = 0
    wins: int = 0
    losses: int = 0


@dataclass
class AlertStats:
    """Process-wide alert counters. Reset only by an explicit operator reset."""

    total_alerts: int = 0
    wins: int = 0
    losses: int = 0
    per_type: dict[str, TypeStats] = field(
        default_factory=lambda: {t.value: TypeStats() for t in AlertType}
    )
    milestone_counts: dict[str, int] = field(default_factory=dict)
    win_times: dict[str, int] = field(default_factory=lambda: dict.fromkeys(WIN_TIME_BUCKETS, 0))
    loss_reasons: dict[str, int] = field(default_factory=lambda: {LOSS_REASON_LOW_MARKET_CAP: 0})
    total_win_percent: float = 0.0
    highest_win_percent: float = 0.0

    @classmethod
    def with_milestones(cls, milestones: tuple[int, ...]) -> AlertStats:
        stats = cls()
        stats.milestone_counts = {milestone_label(m): 0 for m in milestones}
        return stats

    @property
    def pending_count(self) -> int:
        return max(self.total_alerts - self.wins - self.losses, 0)

    @property
    def win_rate(self) -> float:
        """Wins as a percentage of resolved alerts."""
        resolved = self.wins + self.losses
        return self.wins / resolved * 100 if resolved else 0.0

    @property
    def average_win_percent(self) -> float:
        return self.total_win_percent / self.wins if self.wins else 0.0

    def type_stats(self, alert_type: AlertType) -> TypeStats:
        return self.per_type.setdefault(alert_type.value, TypeStats())

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_alerts": self.total_alerts,
            "wins": self.wins,
            "losses": self.losses,
            "per_type": {k: vars(v).copy() for k, v in self.per_type.items()},
            "milestone_counts": dict(self.milestone_counts),
            "win_times": dict(self.win_times),
            "loss_reasons": dict(self.loss_reasons),
            "total_win_percent": self.total_win_percent,
            "highest_win_percent": self.highest_win_percent,
            "win_rate": self.win_rate,
            "pending_count": self.pending_count,
            "average_win_percent": self.average_win_percent,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertStats:
        stats = cls(
            total_alerts=int(data.get("total_alerts", 0)),
            wins=int(data.get("wins", 0)),
            losses=int(data.get("losses", 0)),
            total_win_percent=float(data.get("total_win_percent", 0.0)),
            highest_win_percent=float(data.get("highest_win_percent", 0.0)),
        )
        for key, raw in (data.get("per_type") or {}).items():
            stats.per_type[key] = TypeStats(
                total=int(raw.get("total", 0)),
                wins=int(raw.get("wins", 0)),
                losses=int(raw.get("losses", 0)),
            )
        stats.milestone_counts.update({k: int(v) for k, v in (data.get("milestone_counts") or {}).items()})
        stats.win_times.update({k: int(v) for k, v in (data.get("win_times") or {}).items()})
        stats.loss_reasons.update({k: int(v) for k, v in (data.get("loss_reasons") or {}).items()})
        return stats


@dataclass(frozen=True)
class MilestoneEvent:
    """A milestone multiple newly reached by an alert record."""

    mint: str
    symbol: str
    alert_type: AlertType
    multiple: int
    baseline_market_cap: float
    current_market_cap: float
    alert_created_at: datetime
    reached_at: datetime
    crossed: tuple[int, ...] = ()

    @property
    def label(self) -> str:
        return milestone_label(self.multiple)

    @property
    def gain_multiple(self) -> float:
        if self.baseline_market_cap <= 0:
            return 0.0
        return self.current_market_cap / self.baseline_market_cap
