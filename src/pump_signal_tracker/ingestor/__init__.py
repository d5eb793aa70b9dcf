"""Data ingestion layer - Real-time PumpPortal event streaming."""

from pump_signal_tracker.ingestor.models import (
    AccountTradeEvent,
    MigrationEvent,
    TokenCreatedEvent,
    TradeEvent,
    parse_stream_message,
)
from pump_signal_tracker.ingestor.websocket import (
    ConnectionState,
    PumpStreamHandler,
    StreamConnectionError,
    StreamError,
)

__all__ = [
    "AccountTradeEvent",
    "ConnectionState",
    "MigrationEvent",
    "PumpStreamHandler",
    "StreamConnectionError",
    "StreamError",
    "TokenCreatedEvent",
    "TradeEvent",
    "parse_stream_message",
]
