"""Tests for uptrend detection."""

import pytest

from pump_signal_tracker.detector.trend import analyze_uptrend, find_extrema, smooth

# One period of a triangle wave added on top of a linear drift
WAVE = (0, 2, 4, 2, 0, -2, -4, -2)


def wave_prices(*, base: float, slope: float, amplitude: float = 1.0, phase: int = 0, n: int = 24):
    return [base + slope * i + amplitude * WAVE[(i + phase) % 8] for i in range(n)]


class TestSmooth:
    """Tests for the symmetric moving average."""

    def test_window_zero_is_identity(self):
        assert smooth([1.0, 5.0, 2.0], 0) == [1.0, 5.0, 2.0]

    def test_truncated_at_edges(self):
        assert smooth([1.0, 2.0, 3.0, 4.0], 1) == pytest.approx([1.5, 2.0, 3.0, 3.5])


class TestFindExtrema:
    """Tests for local extrema detection."""

    def test_strict_extrema(self):
        highs, lows = find_extrema([1, 3, 2, 4, 1, 5])
        assert highs == [3, 4]
        assert lows == [2, 1]

    def test_plateaus_ignored(self):
        highs, lows = find_extrema([1, 3, 3, 1])
        assert highs == []
        assert lows == []

    def test_endpoints_never_extrema(self):
        assert find_extrema([5, 1, 5]) == ([], [1])


class TestAnalyzeUptrend:
    """Tests for analyze_uptrend."""

    def test_insufficient_data(self):
        result = analyze_uptrend([1.0, 1.1, 1.2, 1.3])
        assert not result.is_uptrend
        assert result.strength == 0
        assert result.reason == "insufficient_data"

    def test_invalid_first_price(self):
        result = analyze_uptrend([0.0, 1.0, 2.0, 3.0, 4.0])
        assert not result.is_uptrend
        assert result.reason == "invalid_first_price"

    def test_rising_extrema(self):
        result = analyze_uptrend(wave_prices(base=10, slope=0.1))

        assert result.is_uptrend
        assert not result.is_strong
        assert result.reason == "rising_extrema"
        assert result.higher_highs == 1
        assert result.higher_lows == 1
        assert result.lower_highs == 0
        assert result.lower_lows == 0
        assert result.overall_change_percent == pytest.approx(3.0)
        assert result.strength == 2

    def test_falling_extrema(self):
        result = analyze_uptrend(wave_prices(base=20, slope=-0.1))

        assert not result.is_uptrend
        assert result.reason == "no_uptrend"
        assert result.higher_highs == 0
        assert result.lower_highs == 1
        assert result.strength == 0

    def test_strong_uptrend(self):
        result = analyze_uptrend(wave_prices(base=10, slope=0.2, amplitude=2.0, phase=6))

        assert result.is_uptrend
        assert result.is_strong
        assert result.reason == "strong_uptrend"
        assert result.higher_highs == 2
        assert result.overall_change_percent == pytest.approx(430.0)
        assert result.strength == 10

    def test_monotonic_rise_has_no_extrema(self):
        result = analyze_uptrend([1.0 + i for i in range(10)])

        assert not result.is_uptrend
        assert result.higher_highs == 0
        assert result.higher_lows == 0
        # The overall-change bonus alone still reaches the cap
        assert result.strength == 10
