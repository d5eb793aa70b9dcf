"""Pump Signal Tracker - real-time memecoin signal scoring and alert outcome tracking."""

__version__ = "0.1.0"
