"""In-memory per-token state store.

The store is the single source of truth for per-token aggregates. Memory
per token is bounded by the configured history caps and bucket retention;
the number of tokens is bounded by the max-age sweep.
"""

from __future__ import annotations

import dataclasses
import logging
from collections import deque
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from pump_signal_tracker.config import SignalSettings, StoreSettings
from pump_signal_tracker.detector.naturalness import analyze_naturalness
from pump_signal_tracker.detector.scorer import SignalScorer
from pump_signal_tracker.detector.trend import analyze_uptrend
from pump_signal_tracker.detector.volume_profile import analyze_volume_profile
from pump_signal_tracker.ingestor.models import TokenCreatedEvent, TradeEvent
from pump_signal_tracker.state.models import (
    DerivedMetrics,
    InitialPump,
    PricePoint,
    SmartMoneyActivity,
    TokenState,
    TradeRecord,
    VolumeBucket,
)

logger = logging.getLogger(__name__)


class SubscriptionManager(Protocol):
    """The part of the stream handler the store drives."""

    def subscribe(self, mint: str) -> None: ...

    def unsubscribe(self, mint: str) -> None: ...


def buy_sell_ratio(buy_volume: float, sell_volume: float) -> float:
    """Buy/sell volume ratio; infinite when there are buys and no sells."""
    if sell_volume > 0:
        return buy_volume / sell_volume
    if buy_volume > 0:
        return float("inf")
    return 0.0


class TokenStateStore:
    """Keyed store of TokenState with bounded history and explicit eviction.

    Example:
        ```python
        store = TokenStateStore(StoreSettings(), subscriptions=stream)
        store.register_created(create_event)
        state = store.apply_trade(trade_event)
        metrics = store.compute_derived_metrics(state.mint)
        ```
    """

    def __init__(
        self,
        settings: StoreSettings | None = None,
        *,
        signal_settings: SignalSettings | None = None,
        scorer: SignalScorer | None = None,
        subscriptions: SubscriptionManager | None = None,
        smart_money_wallets: Iterable[str] = (),
    ) -> None:
        self._settings = settings or StoreSettings()
        self._signal_settings = signal_settings or SignalSettings()
        self._scorer = scorer or SignalScorer(self._signal_settings)
        self._subscriptions = subscriptions
        self._smart_money_wallets = frozenset(smart_money_wallets)
        self._tokens: dict[str, TokenState] = {}

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, mint: object) -> bool:
        return mint in self._tokens

    def __iter__(self) -> Iterator[TokenState]:
        return iter(list(self._tokens.values()))

    def get(self, mint: str) -> TokenState | None:
        return self._tokens.get(mint)

    def ids(self) -> list[str]:
        return list(self._tokens)

    def attach_subscriptions(self, subscriptions: SubscriptionManager) -> None:
        self._subscriptions = subscriptions

    def _new_state(self, mint: str, created_at: datetime) -> TokenState:
        return TokenState(
            mint=mint,
            created_at=created_at,
            prices=deque(maxlen=self._settings.max_price_points),
            trades=deque(maxlen=self._settings.max_trades),
            smart_money_activity=deque(maxlen=self._settings.smart_money_log_size),
        )

    def register(
        self,
        mint: str,
        *,
        created_at: datetime | None = None,
        name: str = "",
        symbol: str = "",
        creator: str = "",
        uri: str = "",
        initial_price: float = 0.0,
        market_cap: float = 0.0,
    ) -> TokenState:
        """Create state for a token and subscribe its trades.

        No-op (returns the existing state) if the token is already tracked.
        """
        existing = self._tokens.get(mint)
        if existing is not None:
            return existing

        state = self._new_state(mint, created_at or datetime.now(UTC))
        state.name = name
        state.symbol = symbol
        state.creator = creator
        state.uri = uri
        state.initial_price = initial_price
        state.current_price = initial_price
        state.highest_price = initial_price
        state.market_cap = market_cap
        state.highest_market_cap = market_cap
        if initial_price > 0:
            state.initial_pump = InitialPump(initial_price=initial_price, highest_price=initial_price)
        self._tokens[mint] = state

        if self._subscriptions is not None:
            self._subscriptions.subscribe(mint)
        logger.debug("Registered token %s (%s)", mint, symbol or "?")
        return state

    def register_created(self, event: TokenCreatedEvent) -> TokenState:
        state = self.register(
            event.mint,
            created_at=event.timestamp,
            name=event.name,
            symbol=event.symbol,
            creator=event.creator,
            uri=event.uri,
            initial_price=event.initial_price,
            market_cap=event.market_cap_sol,
        )
        state.v_tokens_in_bonding_curve = event.v_tokens_in_bonding_curve
        state.v_sol_in_bonding_curve = event.v_sol_in_bonding_curve
        return state

    def _bucket_start(self, ts: datetime) -> int:
        width = self._settings.bucket_minutes * 60
        t = int(ts.timestamp())
        return (t // width) * width

    def _prune_buckets(self, state: TokenState, *, as_of: datetime) -> int:
        cutoff = int((as_of - timedelta(hours=self._settings.bucket_retention_hours)).timestamp())
        stale = [start for start in state.volume_buckets if start < cutoff]
        for start in stale:
            del state.volume_buckets[start]
        return len(stale)

    def _update_rug_flag(self, state: TokenState) -> None:
        if state.is_rug_pull:
            return
        s = self._settings
        if state.highest_market_cap >= s.rug_high_market_cap and state.market_cap <= s.rug_low_market_cap:
            state.mark_rug_pull()
            logger.info(
                "Rug pull detected for %s: market cap %.2f after high of %.2f",
                state.label,
                state.market_cap,
                state.highest_market_cap,
            )

    def _update_initial_pump(self, state: TokenState, price: float, ts: datetime) -> None:
        pump = state.initial_pump
        if pump is None:
            if price <= 0:
                return
            pump = state.initial_pump = InitialPump(initial_price=price, highest_price=price)
        if ts - state.created_at > timedelta(minutes=self._settings.initial_pump_window_minutes):
            return
        if price > pump.highest_price:
            pump.highest_price = price
        if pump.initial_price > 0:
            pump.percent_increase = (pump.highest_price - pump.initial_price) / pump.initial_price * 100
        if not pump.detected and pump.percent_increase >= self._settings.initial_pump_threshold_percent:
            pump.detected = True
            logger.info("Initial pump on %s: +%.1f%%", state.label, pump.percent_increase)

    def apply_trade(self, event: TradeEvent) -> TokenState:
        """Fold a trade into the token's aggregates, auto-registering unknown tokens."""
        state = self._tokens.get(event.mint)
        if state is None:
            state = self.register(event.mint, created_at=event.timestamp)

        price = event.price
        ts = event.timestamp
        market_cap = event.market_cap_sol if event.market_cap_sol > 0 else state.market_cap

        state.current_price = price
        state.market_cap = market_cap
        if event.v_tokens_in_bonding_curve:
            state.v_tokens_in_bonding_curve = event.v_tokens_in_bonding_curve
        if event.v_sol_in_bonding_curve:
            state.v_sol_in_bonding_curve = event.v_sol_in_bonding_curve
        if state.initial_price <= 0:
            state.initial_price = price

        state.prices.append(PricePoint(price=price, timestamp=ts))
        state.trades.append(
            TradeRecord(
                trader=event.trader,
                side=event.side,
                sol_amount=event.sol_amount,
                token_amount=event.token_amount,
                price=price,
                market_cap=market_cap,
                timestamp=ts,
                signature=event.signature,
            )
        )

        state.total_volume += event.sol_amount
        state.trade_count += 1
        state.last_trade_at = ts
        if event.is_buy:
            state.buy_volume += event.sol_amount
            if event.trader:
                state.holders.add(event.trader)
            if event.sol_amount >= self._signal_settings.whale_buy_threshold:
                state.whale_count += 1
        else:
            state.sell_volume += event.sol_amount

        start = self._bucket_start(ts)
        bucket = state.volume_buckets.get(start)
        if bucket is None:
            bucket = state.volume_buckets[start] = VolumeBucket(start=start)
        bucket.volume += event.sol_amount
        bucket.trade_count += 1
        if event.is_buy:
            bucket.buy_volume += event.sol_amount
        else:
            bucket.sell_volume += event.sol_amount
        self._prune_buckets(state, as_of=ts)

        if event.trader in self._smart_money_wallets:
            self.record_smart_money(state, event.trader, event.side, event.sol_amount, ts)

        state.highest_price = max(state.highest_price, price)
        state.highest_market_cap = max(state.highest_market_cap, market_cap)
        self._update_initial_pump(state, price, ts)
        self._update_rug_flag(state)
        return state

    def record_smart_money(
        self,
        state: TokenState,
        wallet: str,
        side: str,
        sol_amount: float,
        ts: datetime,
    ) -> None:
        state.smart_money_activity.append(
            SmartMoneyActivity(
                wallet=wallet,
                side="buy" if side == "buy" else "sell",
                sol_amount=sol_amount,
                timestamp=ts,
            )
        )
        if side == "buy":
            state.smart_money_interest = True

    def compute_derived_metrics(self, mint: str, *, now: datetime | None = None) -> DerivedMetrics | None:
        """Recompute derived metrics and the composite score for a token.

        Idempotent: calling it repeatedly without new trades yields equal results.

        Returns:
            The new metrics, or None if the token is not tracked.
        """
        state = self._tokens.get(mint)
        if state is None:
            return None
        now = now or datetime.now(UTC)

        prices = [p.price for p in state.prices]
        price_change = 0.0
        if len(prices) >= 2 and prices[0] > 0:
            price_change = (prices[-1] - prices[0]) / prices[0] * 100

        velocity = 0.0
        if len(state.volume_buckets) >= 2:
            latest = state.volume_buckets[max(state.volume_buckets)]
            velocity = latest.volume / self._settings.bucket_minutes

        metrics = DerivedMetrics(
            buy_sell_ratio=buy_sell_ratio(state.buy_volume, state.sell_volume),
            price_change_percent=price_change,
            volume_velocity=velocity,
            holder_count=len(state.holders),
            whale_count=state.whale_count,
            trend=analyze_uptrend(prices),
            volume_profile=analyze_volume_profile(state.trades),
            naturalness=analyze_naturalness(state.trades, prices),
        )
        result = self._scorer.score(state, metrics, now=now)
        metrics = dataclasses.replace(metrics, score=result.score, category=result.category)
        state.metrics = metrics
        return metrics

    def mark_migrated(self, mint: str) -> TokenState | None:
        state = self._tokens.get(mint)
        if state is not None:
            state.migrated = True
        return state

    def evict(self, mint: str) -> bool:
        """Remove all state for a token and unsubscribe it."""
        state = self._tokens.pop(mint, None)
        if state is None:
            return False
        if self._subscriptions is not None:
            self._subscriptions.unsubscribe(mint)
        logger.debug("Evicted token %s", state.label)
        return True

    def sweep_expired(self, *, now: datetime | None = None) -> list[str]:
        """Evict every token older than the max tracking age."""
        now = now or datetime.now(UTC)
        max_age = timedelta(hours=self._settings.max_tracking_hours)
        expired = [mint for mint, state in self._tokens.items() if now - state.created_at > max_age]
        for mint in expired:
            self.evict(mint)
        if expired:
            logger.info("Evicted %d expired tokens (%d still tracked)", len(expired), len(self._tokens))
        return expired

    def stale_subscriptions(self, *, now: datetime | None = None) -> list[str]:
        """Tokens that have not traded recently (or at all)."""
        now = now or datetime.now(UTC)
        limit = timedelta(minutes=self._settings.stale_subscription_minutes)
        return [
            mint
            for mint, state in self._tokens.items()
            if now - (state.last_trade_at or state.created_at) > limit
        ]

    def reset(self) -> int:
        """Drop every token and unsubscribe them. Returns the number removed."""
        mints = list(self._tokens)
        self._tokens.clear()
        if self._subscriptions is not None:
            for mint in mints:
                self._subscriptions.unsubscribe(mint)
        return len(mints)

    def snapshot(self) -> list[dict[str, Any]]:
        return [state.to_summary() for state in self._tokens.values()]

    def restore(self, summaries: Iterable[dict[str, Any]]) -> int:
        """Load token summaries and resubscribe them. Existing tokens are kept."""
        restored = 0
        for data in summaries:
            try:
                loaded = TokenState.from_summary(data)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable token summary: %s", e)
                continue
            if loaded.mint in self._tokens:
                continue
            state = self._new_state(loaded.mint, loaded.created_at)
            for f in dataclasses.fields(TokenState):
                if f.name in ("prices", "trades", "smart_money_activity", "volume_buckets", "holders", "metrics"):
                    continue
                setattr(state, f.name, getattr(loaded, f.name))
            self._tokens[state.mint] = state
            if self._subscriptions is not None:
                self._subscriptions.subscribe(state.mint)
            restored += 1
        return restored
