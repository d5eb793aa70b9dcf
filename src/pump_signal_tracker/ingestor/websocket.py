"""PumpPortal data-feed WebSocket client.

Owns the single upstream subscription session. Raw frames are normalized
into typed events (create / trade / migrate / account trade) and handed to
async callbacks. The subscribed token set survives reconnects and is
replayed in fixed-size batches every time the connection opens.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection

from pump_signal_tracker.config import StreamSettings
from pump_signal_tracker.ingestor.models import (
    AccountTradeEvent,
    MigrationEvent,
    TokenCreatedEvent,
    TradeEvent,
    parse_stream_message,
)

logger = logging.getLogger(__name__)

METHOD_SUBSCRIBE_NEW_TOKEN = "subscribeNewToken"
METHOD_SUBSCRIBE_MIGRATION = "subscribeMigration"
METHOD_SUBSCRIBE_TOKEN_TRADE = "subscribeTokenTrade"
METHOD_UNSUBSCRIBE_TOKEN_TRADE = "unsubscribeTokenTrade"
METHOD_SUBSCRIBE_ACCOUNT_TRADE = "subscribeAccountTrade"

RECV_POLL_SECONDS = 1.0
ACCOUNT_TRADE_DEDUP_SIZE = 10_000


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class StreamStats:
    messages_received: int = 0
    tokens_created: int = 0
    trades_received: int = 0
    migrations_received: int = 0
    account_trades_received: int = 0
    events_dropped: int = 0
    reconnect_count: int = 0
    stale_pings: int = 0
    forced_terminations: int = 0
    last_message_time: float | None = None
    connected_since: float | None = None
    last_error: str | None = None


class StreamError(Exception):
    """Base exception for data-feed stream errors."""


class StreamConnectionError(StreamError):
    """Raised when the connection fails, stalls or goes stale."""


CreateCallback = Callable[[TokenCreatedEvent], Awaitable[None]]
TradeCallback = Callable[[TradeEvent], Awaitable[None]]
MigrationCallback = Callable[[MigrationEvent], Awaitable[None]]
AccountTradeCallback = Callable[[AccountTradeEvent], Awaitable[None]]
StateCallback = Callable[[ConnectionState], Awaitable[None]]


def batched(keys: Iterable[str], size: int) -> list[list[str]]:
    """Split keys into lists of at most `size` items, preserving order."""
    items = list(keys)
    return [items[i : i + size] for i in range(0, len(items), size)]


class PumpStreamHandler:
    """WebSocket client for the PumpPortal data feed.

    State machine:
        DISCONNECTED -> CONNECTING -> OPEN -> CLOSING -> CLOSED -> DISCONNECTED

    While OPEN, inbound silence longer than `stale_after_seconds` triggers a
    liveness ping; no pong within `ping_grace_seconds` force-closes the
    session. CONNECTING or CLOSING lasting longer than `stuck_timeout_seconds`
    is aborted. Every failure schedules a reconnect after a fixed delay and
    is never propagated to the caller.

    subscribe()/unsubscribe() are synchronous: they update the desired set
    and queue a request that is flushed by the listen loop.
    """

    def __init__(
        self,
        settings: StreamSettings | None = None,
        *,
        on_create: CreateCallback | None = None,
        on_trade: TradeCallback | None = None,
        on_migration: MigrationCallback | None = None,
        on_account_trade: AccountTradeCallback | None = None,
        on_state_change: StateCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings or StreamSettings()
        self._on_create = on_create
        self._on_trade = on_trade
        self._on_migration = on_migration
        self._on_account_trade = on_account_trade
        self._on_state_change = on_state_change
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._stats = StreamStats()

        self._ws: ClientConnection | None = None
        self._running = False
        self._stop_event: asyncio.Event | None = None
        self._last_activity = clock()

        self._subscribed: set[str] = set()
        self._watched_accounts: set[str] = set()
        self._pending_subscribe: set[str] = set()
        self._pending_unsubscribe: set[str] = set()
        self._pending_accounts: set[str] = set()

        self._seen_account_trades: set[str] = set()
        self._seen_account_order: deque[str] = deque()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> StreamStats:
        return self._stats

    @property
    def subscribed(self) -> frozenset[str]:
        """Token ids the session should be subscribed to."""
        return frozenset(self._subscribed)

    @property
    def watched_accounts(self) -> frozenset[str]:
        return frozenset(self._watched_accounts)

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    async def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info("Data stream state: %s -> %s", old.value, new_state.value)
            if self._on_state_change:
                try:
                    await self._on_state_change(new_state)
                except Exception as e:  # pragma: no cover
                    logger.error("Error in state change callback: %s", e)

    def subscribe(self, mint: str) -> None:
        """Add a token to the subscribed set (idempotent)."""
        if not mint or mint in self._subscribed:
            return
        self._subscribed.add(mint)
        self._pending_unsubscribe.discard(mint)
        self._pending_subscribe.add(mint)

    def unsubscribe(self, mint: str) -> None:
        """Remove a token from the subscribed set (idempotent)."""
        if mint not in self._subscribed:
            return
        self._subscribed.discard(mint)
        self._pending_subscribe.discard(mint)
        self._pending_unsubscribe.add(mint)

    def unsubscribe_all(self) -> None:
        for mint in list(self._subscribed):
            self.unsubscribe(mint)

    def resubscribe(self, mints: Iterable[str]) -> int:
        """Re-issue subscriptions for already-subscribed tokens.

        Unknown ids are ignored. Returns the number of ids queued.
        """
        queued = {m for m in mints if m in self._subscribed}
        self._pending_subscribe |= queued
        return len(queued)

    def watch_account(self, address: str) -> None:
        """Add a counterparty to the account-trade watch list."""
        if not address or address in self._watched_accounts:
            return
        self._watched_accounts.add(address)
        self._pending_accounts.add(address)

    async def _send_batched(self, ws: ClientConnection, method: str, keys: Iterable[str]) -> int:
        batches = batched(keys, self._settings.subscribe_batch_size)
        for batch in batches:
            await ws.send(json.dumps({"method": method, "keys": batch}))
        return len(batches)

    async def _flush_pending(self, ws: ClientConnection) -> None:
        unsubscribe = sorted(self._pending_unsubscribe)
        subscribe = sorted(self._pending_subscribe)
        accounts = sorted(self._pending_accounts)
        self._pending_unsubscribe.clear()
        self._pending_subscribe.clear()
        self._pending_accounts.clear()

        if unsubscribe:
            await self._send_batched(ws, METHOD_UNSUBSCRIBE_TOKEN_TRADE, unsubscribe)
        if subscribe:
            await self._send_batched(ws, METHOD_SUBSCRIBE_TOKEN_TRADE, subscribe)
        if accounts:
            await self._send_batched(ws, METHOD_SUBSCRIBE_ACCOUNT_TRADE, accounts)

    async def _replay_subscriptions(self, ws: ClientConnection) -> None:
        """Re-issue global, token and account subscriptions on a fresh session."""
        await ws.send(json.dumps({"method": METHOD_SUBSCRIBE_NEW_TOKEN}))
        await ws.send(json.dumps({"method": METHOD_SUBSCRIBE_MIGRATION}))

        # The replay covers everything queued while disconnected.
        self._pending_subscribe.clear()
        self._pending_unsubscribe.clear()
        self._pending_accounts.clear()

        mints = sorted(self._subscribed)
        if mints:
            rounds = await self._send_batched(ws, METHOD_SUBSCRIBE_TOKEN_TRADE, mints)
            logger.info("Resubscribed %d tokens in %d batch(es)", len(mints), rounds)
        if self._watched_accounts:
            await self._send_batched(ws, METHOD_SUBSCRIBE_ACCOUNT_TRADE, sorted(self._watched_accounts))

    async def _connect(self) -> ClientConnection:
        await self._set_state(ConnectionState.CONNECTING)
        try:
            ws = await asyncio.wait_for(
                websockets.connect(self._settings.ws_url, ping_interval=None),
                timeout=self._settings.stuck_timeout_seconds,
            )
        except TimeoutError as e:
            self._stats.forced_terminations += 1
            self._stats.last_error = "connect timed out"
            raise StreamConnectionError(f"Stuck connecting to {self._settings.ws_url}") from e
        except Exception as e:
            self._stats.last_error = str(e)
            raise StreamConnectionError(f"Failed to connect to {self._settings.ws_url}: {e}") from e

        self._ws = ws
        self._last_activity = self._clock()
        await self._replay_subscriptions(ws)

        await self._set_state(ConnectionState.OPEN)
        self._stats.connected_since = time.time()
        logger.info("Connected to data stream: %s", self._settings.ws_url)
        return ws

    def _is_duplicate_account_trade(self, key: str) -> bool:
        if key in self._seen_account_trades:
            return True
        self._seen_account_trades.add(key)
        self._seen_account_order.append(key)
        if len(self._seen_account_order) > ACCOUNT_TRADE_DEDUP_SIZE:
            self._seen_account_trades.discard(self._seen_account_order.popleft())
        return False

    async def _dispatch(self, callback: Callable[[Any], Awaitable[None]] | None, event: Any) -> None:
        if callback is None:
            return
        try:
            await callback(event)
        except Exception as e:
            self._stats.events_dropped += 1
            logger.exception("Error handling %s for %s: %s", type(event).__name__, event.mint, e)

    async def _handle_message(self, message: str | bytes) -> None:
        self._last_activity = self._clock()
        self._stats.messages_received += 1
        self._stats.last_message_time = time.time()

        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self._stats.events_dropped += 1
            logger.warning("Invalid JSON message on data stream")
            return
        if not isinstance(data, dict):
            logger.debug("Ignoring non-object frame on data stream")
            return

        try:
            event = parse_stream_message(data)
        except (KeyError, ValueError) as e:
            self._stats.events_dropped += 1
            logger.warning("Dropping malformed %s event: %s", data.get("txType"), e)
            return

        if event is None:
            return

        if isinstance(event, TokenCreatedEvent):
            self._stats.tokens_created += 1
            await self._dispatch(self._on_create, event)
        elif isinstance(event, TradeEvent):
            self._stats.trades_received += 1
            await self._dispatch(self._on_trade, event)
        elif isinstance(event, MigrationEvent):
            self._stats.migrations_received += 1
            await self._dispatch(self._on_migration, event)
        elif isinstance(event, AccountTradeEvent):
            if self._is_duplicate_account_trade(event.dedup_key):
                logger.debug("Skipping duplicate account trade %s", event.signature[:8])
                return
            self._stats.account_trades_received += 1
            await self._dispatch(self._on_account_trade, event)

    async def _check_liveness(self, ws: ClientConnection) -> None:
        """Ping a silent connection; raise if the ping goes unanswered."""
        idle = self._clock() - self._last_activity
        if idle < self._settings.stale_after_seconds:
            return

        self._stats.stale_pings += 1
        logger.warning("No inbound traffic for %.0fs, sending liveness ping", idle)
        try:
            pong_waiter = await ws.ping()
            await asyncio.wait_for(pong_waiter, timeout=self._settings.ping_grace_seconds)
        except TimeoutError as e:
            self._stats.forced_terminations += 1
            raise StreamConnectionError("Liveness ping timed out") from e
        self._last_activity = self._clock()

    async def _listen(self, ws: ClientConnection) -> None:
        try:
            while self._running:
                try:
                    message = await asyncio.wait_for(ws.recv(), timeout=RECV_POLL_SECONDS)
                except TimeoutError:
                    message = None

                if message is not None:
                    await self._handle_message(message)

                if self._running:
                    await self._flush_pending(ws)
                    await self._check_liveness(ws)
        except websockets.ConnectionClosed as e:
            logger.warning("Data stream connection closed: %s", e)
            raise

    async def _close(self, ws: ClientConnection) -> None:
        await self._set_state(ConnectionState.CLOSING)
        try:
            await asyncio.wait_for(ws.close(), timeout=self._settings.stuck_timeout_seconds)
        except TimeoutError:
            self._stats.forced_terminations += 1
            logger.warning("Data stream stuck closing, aborting transport")
            with contextlib.suppress(Exception):
                ws.transport.abort()
        except Exception as e:
            logger.debug("Error closing data stream: %s", e)
        await self._set_state(ConnectionState.CLOSED)

    async def start(self) -> None:
        """Run the connect/listen/reconnect loop until stop() is called."""
        if self._running:
            raise RuntimeError("Data stream already running")
        self._running = True
        self._stop_event = asyncio.Event()

        while self._running and not self._stop_event.is_set():
            try:
                ws = await self._connect()
                await self._listen(ws)
            except Exception as e:
                self._stats.last_error = str(e)
                logger.warning("Data stream error: %s", e)
            finally:
                if self._ws is not None:
                    await self._close(self._ws)
                self._ws = None

            if not self._running:
                break
            await self._set_state(ConnectionState.DISCONNECTED)
            self._stats.reconnect_count += 1
            logger.info("Reconnecting in %.1fs", self._settings.reconnect_delay_seconds)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._stop_event.wait(),
                    timeout=self._settings.reconnect_delay_seconds,
                )

        await self._set_state(ConnectionState.DISCONNECTED)

    async def stop(self) -> None:
        self._running = False
        if self._stop_event:
            self._stop_event.set()
