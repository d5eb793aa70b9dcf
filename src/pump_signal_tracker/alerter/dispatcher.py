"""Fan-out of formatted alerts to every configured delivery channel."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from pump_signal_tracker.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)


class ChannelError(Exception):
    """Raised by a channel when a message cannot be delivered."""


class AlertChannel(Protocol):
    """A delivery channel (Telegram, ...)."""

    name: str

    async def send(self, alert: FormattedAlert) -> bool: ...

    async def close(self) -> None: ...


@dataclass
class DispatchResult:
    """Per-channel delivery outcome of one dispatch."""

    delivered: dict[str, bool] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return sum(1 for ok in self.delivered.values() if ok)

    @property
    def failure_count(self) -> int:
        return len(self.delivered) - self.success_count

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0


class AlertDispatcher:
    """Sends a FormattedAlert to all channels concurrently.

    Delivery failures are reported in the DispatchResult and logged; they
    never raise.
    """

    def __init__(self, channels: list[AlertChannel]) -> None:
        self._channels = list(channels)

    @property
    def channels(self) -> list[AlertChannel]:
        return list(self._channels)

    async def dispatch(self, alert: FormattedAlert) -> DispatchResult:
        result = DispatchResult()
        if not self._channels:
            return result

        outcomes = await asyncio.gather(
            *(channel.send(alert) for channel in self._channels),
            return_exceptions=True,
        )
        for channel, outcome in zip(self._channels, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                result.delivered[channel.name] = False
                result.errors[channel.name] = str(outcome)
                logger.warning("Channel %s failed to deliver '%s': %s", channel.name, alert.title, outcome)
            else:
                result.delivered[channel.name] = bool(outcome)
        return result

    async def close(self) -> None:
        for channel in self._channels:
            try:
                await channel.close()
            except Exception as e:
                logger.warning("Error closing channel %s: %s", channel.name, e)
