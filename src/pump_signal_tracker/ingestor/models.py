"""Data models for the ingestor module."""

from __future__ import annotations

import contextlib
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal


def _parse_timestamp(data: dict[str, Any]) -> datetime:
    """Parse an optional epoch (s or ms) / ISO timestamp, defaulting to now."""
    raw = data.get("timestamp")
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        ts = float(raw)
        if ts > 1e12:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(raw, str):
        with contextlib.suppress(ValueError):
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed.astimezone(UTC)
    return datetime.now(UTC)


def _require_str(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None or str(value) == "":
        raise ValueError(f"Missing required field {key!r}")
    return str(value)


def _float(data: dict[str, Any], key: str, *, required: bool = False) -> float:
    value = data.get(key)
    if value is None:
        if required:
            raise ValueError(f"Missing required field {key!r}")
        return 0.0
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid numeric field {key!r}: {value!r}") from e
    if not math.isfinite(result):
        raise ValueError(f"Non-finite numeric field {key!r}: {value!r}")
    return result


@dataclass(frozen=True)
class TokenCreatedEvent:
    """A new token was created on the bonding curve."""

    mint: str
    name: str
    symbol: str
    creator: str
    initial_buy: float
    sol_amount: float
    market_cap_sol: float
    uri: str = ""
    bonding_curve_key: str = ""
    v_tokens_in_bonding_curve: float = 0.0
    v_sol_in_bonding_curve: float = 0.0
    pool: str = ""
    signature: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def initial_price(self) -> float:
        """Price paid by the creator's initial buy (base currency per token)."""
        if self.initial_buy <= 0:
            return 0.0
        return self.sol_amount / self.initial_buy

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> TokenCreatedEvent:
        """Create a TokenCreatedEvent from a `txType=create` frame.

        Raises:
            ValueError: If the mint is missing or a numeric field is invalid.
        """
        return cls(
            mint=_require_str(data, "mint"),
            name=str(data.get("name") or ""),
            symbol=str(data.get("symbol") or ""),
            creator=str(data.get("traderPublicKey") or ""),
            initial_buy=_float(data, "initialBuy"),
            sol_amount=_float(data, "solAmount"),
            market_cap_sol=_float(data, "marketCapSol"),
            uri=str(data.get("uri") or ""),
            bonding_curve_key=str(data.get("bondingCurveKey") or ""),
            v_tokens_in_bonding_curve=_float(data, "vTokensInBondingCurve"),
            v_sol_in_bonding_curve=_float(data, "vSolInBondingCurve"),
            pool=str(data.get("pool") or ""),
            signature=str(data.get("signature") or ""),
            timestamp=_parse_timestamp(data),
        )


@dataclass(frozen=True)
class TradeEvent:
    """A buy or sell executed against a subscribed token."""

    mint: str
    trader: str
    side: Literal["buy", "sell"]
    sol_amount: float
    token_amount: float
    market_cap_sol: float
    v_tokens_in_bonding_curve: float = 0.0
    v_sol_in_bonding_curve: float = 0.0
    signature: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def price(self) -> float:
        """Execution price in base currency per token."""
        return self.sol_amount / self.token_amount

    @property
    def is_buy(self) -> bool:
        """Return True if this is a buy trade."""
        return self.side == "buy"

    @property
    def is_sell(self) -> bool:
        """Return True if this is a sell trade."""
        return self.side == "sell"

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> TradeEvent:
        """Create a TradeEvent from a `txType=buy|sell` frame.

        Raises:
            ValueError: If a required field is missing or the token amount is zero.
        """
        side_raw = str(data.get("txType") or data.get("side") or "").lower()
        if side_raw not in ("buy", "sell"):
            raise ValueError(f"Invalid trade side {side_raw!r}")
        token_amount = _float(data, "tokenAmount", required=True)
        if token_amount <= 0:
            raise ValueError("tokenAmount must be positive")
        side: Literal["buy", "sell"] = "buy" if side_raw == "buy" else "sell"
        return cls(
            mint=_require_str(data, "mint"),
            trader=str(data.get("traderPublicKey") or ""),
            side=side,
            sol_amount=_float(data, "solAmount", required=True),
            token_amount=token_amount,
            market_cap_sol=_float(data, "marketCapSol"),
            v_tokens_in_bonding_curve=_float(data, "vTokensInBondingCurve"),
            v_sol_in_bonding_curve=_float(data, "vSolInBondingCurve"),
            signature=str(data.get("signature") or ""),
            timestamp=_parse_timestamp(data),
        )


@dataclass(frozen=True)
class MigrationEvent:
    """A token graduated from the bonding curve to an AMM pool."""

    mint: str
    pool: str = ""
    signature: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> MigrationEvent:
        """Create a MigrationEvent from a `txType=migrate` frame."""
        return cls(
            mint=_require_str(data, "mint"),
            pool=str(data.get("pool") or ""),
            signature=str(data.get("signature") or ""),
            timestamp=_parse_timestamp(data),
        )


@dataclass(frozen=True)
class AccountTradeEvent:
    """A trade made by a watched counterparty (smart-money wallet)."""

    mint: str
    trader: str
    side: Literal["buy", "sell"]
    sol_amount: float
    token_amount: float
    market_cap_sol: float
    signature: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_buy(self) -> bool:
        """Return True if this is a buy trade."""
        return self.side == "buy"

    @property
    def dedup_key(self) -> str:
        """Key identifying a repeated delivery of the same account trade."""
        return f"{self.trader}_{self.mint}_{self.sol_amount:.4f}_{self.signature}"

    def to_trade_event(self) -> TradeEvent | None:
        """Return the equivalent TradeEvent, or None if it carries no price."""
        if self.token_amount <= 0:
            return None
        return TradeEvent(
            mint=self.mint,
            trader=self.trader,
            side=self.side,
            sol_amount=self.sol_amount,
            token_amount=self.token_amount,
            market_cap_sol=self.market_cap_sol,
            signature=self.signature,
            timestamp=self.timestamp,
        )

    @classmethod
    def from_websocket_message(cls, data: dict[str, Any]) -> AccountTradeEvent:
        """Create an AccountTradeEvent from a `txType=accountTrade` frame."""
        side_raw = str(data.get("side") or data.get("tradeType") or "buy").lower()
        side: Literal["buy", "sell"] = "sell" if side_raw == "sell" else "buy"
        return cls(
            mint=_require_str(data, "mint"),
            trader=_require_str(data, "traderPublicKey"),
            side=side,
            sol_amount=_float(data, "solAmount", required=True),
            token_amount=_float(data, "tokenAmount"),
            market_cap_sol=_float(data, "marketCapSol"),
            signature=str(data.get("signature") or ""),
            timestamp=_parse_timestamp(data),
        )


StreamEvent = TokenCreatedEvent | TradeEvent | MigrationEvent | AccountTradeEvent


def parse_stream_message(data: dict[str, Any]) -> StreamEvent | None:
    """Normalize a decoded upstream frame into a typed event.

    Returns:
        The typed event, or None for acknowledgements and unknown frame types.

    Raises:
        ValueError: If the frame is a known event type with invalid data.
    """
    if "message" in data:
        return None

    tx_type = data.get("txType")
    if tx_type == "create":
        return TokenCreatedEvent.from_websocket_message(data)
    if tx_type in ("buy", "sell"):
        return TradeEvent.from_websocket_message(data)
    if tx_type == "migrate":
        return MigrationEvent.from_websocket_message(data)
    if tx_type == "accountTrade":
        return AccountTradeEvent.from_websocket_message(data)
    return None
