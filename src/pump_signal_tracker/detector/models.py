"""Data models for the signal engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SignalCategory(str, Enum):
    """Composite score tiers."""

    EXTREMELY_BULLISH = "Extremely Bullish"
    VERY_BULLISH = "Very Bullish"
    BULLISH = "Bullish"
    NEUTRAL = "Neutral"
    NOT_PROMISING = "Not Promising"

    @property
    def is_alertable(self) -> bool:
        """Only the two highest tiers qualify for a bullish alert."""
        return self in (SignalCategory.EXTREMELY_BULLISH, SignalCategory.VERY_BULLISH)


@dataclass(frozen=True)
class TrendAnalysis:
    """Local-extrema trend classification of a price sequence.

    Attributes:
        is_uptrend: True for a regular or strong uptrend.
        strength: 0-10 scale from rising extrema plus an overall-change bonus.
        overall_change_percent: First-to-last change of the raw sequence.
        is_strong: True when the strong-uptrend override applied.
        reason: Short machine-readable explanation.
    """

    is_uptrend: bool
    strength: int
    overall_change_percent: float = 0.0
    higher_highs: int = 0
    lower_highs: int = 0
    higher_lows: int = 0
    lower_lows: int = 0
    is_strong: bool = False
    reason: str = ""

    @classmethod
    def insufficient(cls) -> TrendAnalysis:
        return cls(is_uptrend=False, strength=0, reason="insufficient_data")


@dataclass(frozen=True)
class VolumeProfile:
    """Moving-average volume health over fixed-width buckets."""

    is_healthy: bool
    volume_trend: int
    buy_ratio_trend: int = 0
    bucket_count: int = 0
    reason: str = ""

    @classmethod
    def insufficient(cls) -> VolumeProfile:
        return cls(is_healthy=False, volume_trend=0, reason="insufficient_data")


@dataclass(frozen=True)
class NaturalnessCheck:
    """Result of one naturalness sub-check."""

    name: str
    is_natural: bool
    confidence: float = 0.0
    reason: str = ""
    details: dict[str, float] = field(default_factory=dict)

    @property
    def insufficient_data(self) -> bool:
        return self.reason == "insufficient_data"


@dataclass(frozen=True)
class NaturalnessReport:
    """Combined result of the four naturalness sub-checks."""

    is_natural: bool
    score: int
    checks: tuple[NaturalnessCheck, ...] = ()

    @property
    def pass_count(self) -> int:
        return sum(1 for c in self.checks if c.is_natural)

    @property
    def reasons(self) -> list[str]:
        """Reasons reported by the failing sub-checks."""
        return [c.reason for c in self.checks if not c.is_natural and c.reason]


@dataclass(frozen=True)
class SignalScore:
    """Composite score for one entity snapshot.

    Attributes:
        score: Integer in [0, 100].
        category: Tier derived from the score.
        factors: Individual factor values before weighting.
        raw_score: Weighted sum times bonuses, before rescaling.
    """

    score: int
    category: SignalCategory
    factors: dict[str, float] = field(default_factory=dict)
    raw_score: float = 0.0

    @property
    def is_alertable(self) -> bool:
        return self.category.is_alertable
