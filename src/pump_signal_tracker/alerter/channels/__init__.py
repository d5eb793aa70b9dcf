"""Alert delivery channels."""

from pump_signal_tracker.alerter.channels.telegram import TelegramChannel

__all__ = ["TelegramChannel"]
