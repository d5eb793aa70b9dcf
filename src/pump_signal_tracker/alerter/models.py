"""Data models for alerting and enrichment."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pump_signal_tracker.detector.models import SignalCategory
from pump_signal_tracker.outcome.models import AlertType

HIGH_BUNDLING_PERCENT = 40.0
UNKNOWN_RISK_LEVEL = "UNKNOWN"


def _as_float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class RiskAnalysis:
    """Creator and bundle risk data from the enrichment collaborator.

    `available` is False for the neutral fallback used when the lookup
    failed or lost the timeout race.
    """

    available: bool = False
    creator_risk_level: str = UNKNOWN_RISK_LEVEL
    coins_created: int = 0
    rug_count: int = 0
    rug_percentage: float = 0.0
    holding_percentage: float = 0.0
    creator_high_risk: bool = False
    bundle_count: int = 0
    likely_bundle_count: int = 0
    percentage_bundled: float = 0.0
    top_bundle_percentage: float = 0.0
    warning_flags: tuple[str, ...] = ()

    @classmethod
    def neutral(cls) -> RiskAnalysis:
        return cls()

    @property
    def high_bundling(self) -> bool:
        return self.percentage_bundled > HIGH_BUNDLING_PERCENT

    @classmethod
    def from_api_response(cls, data: dict[str, Any]) -> RiskAnalysis:
        """Parse a bundle_advanced response.

        Raises:
            ValueError: If the payload is not a JSON object.
        """
        if not isinstance(data, dict):
            raise ValueError("Risk analysis response must be an object")

        creator = _as_dict(data.get("creator_analysis"))
        history = _as_dict(creator.get("history"))
        bundles = _as_dict(data.get("bundles"))

        likely = 0
        top_percentage = 0.0
        for bundle in bundles.values():
            if not isinstance(bundle, dict):
                continue
            if _as_dict(bundle.get("bundle_analysis")).get("is_likely_bundle"):
                likely += 1
            top_percentage = max(top_percentage, _as_float(bundle.get("token_percentage")))

        raw_flags = creator.get("warning_flags")
        if not isinstance(raw_flags, list):
            raw_flags = []
        flags = tuple(str(f) for f in raw_flags if f is not None)
        return cls(
            available=True,
            creator_risk_level=str(creator.get("risk_level") or UNKNOWN_RISK_LEVEL),
            coins_created=_as_int(history.get("total_coins_created")),
            rug_count=_as_int(history.get("rug_count")),
            rug_percentage=_as_float(history.get("rug_percentage")),
            holding_percentage=_as_float(creator.get("holding_percentage")),
            creator_high_risk=bool(history.get("high_risk", False)),
            bundle_count=_as_int(data.get("total_bundles")),
            likely_bundle_count=likely,
            percentage_bundled=_as_float(data.get("total_percentage_bundled")),
            top_bundle_percentage=top_percentage,
            warning_flags=flags,
        )


@dataclass(frozen=True)
class AlertPayload:
    """Everything the notification sink needs for one alert."""

    alert_type: AlertType
    mint: str
    name: str
    symbol: str
    market_cap: float
    baseline_market_cap: float
    price: float
    score: int
    category: SignalCategory
    buy_sell_ratio: float
    price_change_percent: float
    holder_count: int
    total_volume: float
    whale_count: int
    is_natural: bool
    naturalness_score: int
    created_at: datetime
    alerted_at: datetime
    alert_id: str = ""
    smart_money_wallet: str | None = None
    smart_money_amount: float | None = None
    is_rearm: bool = False
    risk: RiskAnalysis = field(default_factory=RiskAnalysis.neutral)


@dataclass(frozen=True)
class FormattedAlert:
    """A message rendered for every delivery channel."""

    title: str
    body: str
    telegram_markdown: str
    plain_text: str
    links: dict[str, str] = field(default_factory=dict)
