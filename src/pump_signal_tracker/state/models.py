"""Per-entity state models."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from pump_signal_tracker.detector.models import (
    NaturalnessReport,
    SignalCategory,
    TrendAnalysis,
    VolumeProfile,
)


@dataclass(frozen=True)
class PricePoint:
    price: float
    timestamp: datetime


@dataclass(frozen=True)
class TradeRecord:
    """A trade retained in an entity's bounded history."""

    trader: str
    side: Literal["buy", "sell"]
    sol_amount: float
    token_amount: float
    price: float
    market_cap: float
    timestamp: datetime
    signature: str = ""

    @property
    def is_buy(self) -> bool:
        return self.side == "buy"


@dataclass
class VolumeBucket:
    """Volume accumulated in one fixed-width interval."""

    start: int  # epoch seconds
    volume: float = 0.0
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    trade_count: int = 0


@dataclass(frozen=True)
class SmartMoneyActivity:
    wallet: str
    side: Literal["buy", "sell"]
    sol_amount: float
    timestamp: datetime


@dataclass
class InitialPump:
    """Price action during the first minutes after creation."""

    initial_price: float
    highest_price: float
    percent_increase: float = 0.0
    detected: bool = False


@dataclass(frozen=True)
class DerivedMetrics:
    """Metrics recomputed from an entity's aggregates. Never mutated in place."""

    buy_sell_ratio: float = 0.0
    price_change_percent: float = 0.0
    volume_velocity: float = 0.0
    holder_count: int = 0
    whale_count: int = 0
    trend: TrendAnalysis = field(default_factory=TrendAnalysis.insufficient)
    volume_profile: VolumeProfile = field(default_factory=VolumeProfile.insufficient)
    naturalness: NaturalnessReport = field(
        default_factory=lambda: NaturalnessReport(is_natural=True, score=100)
    )
    score: int = 0
    category: SignalCategory = SignalCategory.NOT_PROMISING


@dataclass
class TokenState:
    """Everything tracked for one token.

    History containers are bounded deques created by the store with the
    configured caps. The dedup/alert fields are owned by the alert engine.
    """

    mint: str
    created_at: datetime
    name: str = ""
    symbol: str = ""
    creator: str = ""
    uri: str = ""

    # Market snapshot
    initial_price: float = 0.0
    current_price: float = 0.0
    market_cap: float = 0.0
    v_tokens_in_bonding_curve: float = 0.0
    v_sol_in_bonding_curve: float = 0.0
    highest_price: float = 0.0
    highest_market_cap: float = 0.0
    migrated: bool = False

    # Bounded history
    prices: deque[PricePoint] = field(default_factory=deque)
    trades: deque[TradeRecord] = field(default_factory=deque)
    volume_buckets: dict[int, VolumeBucket] = field(default_factory=dict)

    # Aggregates
    total_volume: float = 0.0
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    trade_count: int = 0
    holders: set[str] = field(default_factory=set)
    whale_count: int = 0
    smart_money_activity: deque[SmartMoneyActivity] = field(default_factory=deque)
    smart_money_interest: bool = False
    initial_pump: InitialPump | None = None
    last_trade_at: datetime | None = None

    metrics: DerivedMetrics = field(default_factory=DerivedMetrics)

    # Dedup / alert state
    has_alerted: bool = False
    alert_baseline_market_cap: float | None = None
    last_alert_price: float = 0.0
    last_alert_at: datetime | None = None
    last_alert_by_type: dict[str, datetime] = field(default_factory=dict)
    is_rug_pull: bool = False

    @property
    def label(self) -> str:
        """Symbol if known, otherwise the mint."""
        return self.symbol or self.mint

    def age(self, now: datetime | None = None) -> timedelta:
        return (now or datetime.now(UTC)) - self.created_at

    def mark_rug_pull(self) -> None:
        """Set the rug flag. It is never cleared."""
        self.is_rug_pull = True

    def to_summary(self) -> dict[str, Any]:
        """JSON-serialisable summary used for warm restarts."""
        return {
            "mint": self.mint,
            "created_at": self.created_at.isoformat(),
            "name": self.name,
            "symbol": self.symbol,
            "creator": self.creator,
            "uri": self.uri,
            "initial_price": self.initial_price,
            "current_price": self.current_price,
            "market_cap": self.market_cap,
            "highest_price": self.highest_price,
            "highest_market_cap": self.highest_market_cap,
            "migrated": self.migrated,
            "total_volume": self.total_volume,
            "buy_volume": self.buy_volume,
            "sell_volume": self.sell_volume,
            "trade_count": self.trade_count,
            "whale_count": self.whale_count,
            "smart_money_interest": self.smart_money_interest,
            "last_trade_at": self.last_trade_at.isoformat() if self.last_trade_at else None,
            "has_alerted": self.has_alerted,
            "alert_baseline_market_cap": self.alert_baseline_market_cap,
            "last_alert_price": self.last_alert_price,
            "last_alert_at": self.last_alert_at.isoformat() if self.last_alert_at else None,
            "last_alert_by_type": {k: v.isoformat() for k, v in self.last_alert_by_type.items()},
            "is_rug_pull": self.is_rug_pull,
        }

    @classmethod
    def from_summary(cls, data: dict[str, Any]) -> TokenState:
        """Rebuild a state from to_summary() output. History starts empty."""

        def _dt(value: Any) -> datetime | None:
            return datetime.fromisoformat(value) if value else None

        created_at = _dt(data.get("created_at")) or datetime.now(UTC)
        baseline = data.get("alert_baseline_market_cap")
        return cls(
            mint=str(data["mint"]),
            created_at=created_at,
            name=str(data.get("name", "")),
            symbol=str(data.get("symbol", "")),
            creator=str(data.get("creator", "")),
            uri=str(data.get("uri", "")),
            initial_price=float(data.get("initial_price", 0.0)),
            current_price=float(data.get("current_price", 0.0)),
            market_cap=float(data.get("market_cap", 0.0)),
            highest_price=float(data.get("highest_price", 0.0)),
            highest_market_cap=float(data.get("highest_market_cap", 0.0)),
            migrated=bool(data.get("migrated", False)),
            total_volume=float(data.get("total_volume", 0.0)),
            buy_volume=float(data.get("buy_volume", 0.0)),
            sell_volume=float(data.get("sell_volume", 0.0)),
            trade_count=int(data.get("trade_count", 0)),
            whale_count=int(data.get("whale_count", 0)),
            smart_money_interest=bool(data.get("smart_money_interest", False)),
            last_trade_at=_dt(data.get("last_trade_at")),
            has_alerted=bool(data.get("has_alerted", False)),
            alert_baseline_market_cap=float(baseline) if baseline is not None else None,
            last_alert_price=float(data.get("last_alert_price", 0.0)),
            last_alert_at=_dt(data.get("last_alert_at")),
            last_alert_by_type={
                k: datetime.fromisoformat(v) for k, v in (data.get("last_alert_by_type") or {}).items()
            },
            is_rug_pull=bool(data.get("is_rug_pull", False)),
        )
