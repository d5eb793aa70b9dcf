"""Pytest configuration and fixtures."""

from datetime import UTC, datetime

import pytest


@pytest.fixture
def sample_mint() -> str:
    """Sample token mint address for testing."""
    return "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmpump"


@pytest.fixture
def sample_wallet() -> str:
    """Sample trader wallet address for testing."""
    return "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


@pytest.fixture
def now() -> datetime:
    """Fixed evaluation time."""
    return datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
