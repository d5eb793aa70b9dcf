"""Alert message formatter for multi-channel delivery.

This module transforms AlertPayload and MilestoneEvent objects into
human-readable messages for Telegram (MarkdownV2) and plain text.
"""

from __future__ import annotations

import math
from typing import Literal

from pump_signal_tracker.alerter.models import AlertPayload, FormattedAlert, RiskAnalysis
from pump_signal_tracker.outcome.models import AlertType, MilestoneEvent

# Token URLs
PUMP_FUN_URL = "https://pump.fun/coin/{mint}"
SOLSCAN_TOKEN_URL = "https://solscan.io/token/{mint}"
SOLSCAN_ACCOUNT_URL = "https://solscan.io/account/{address}"
BULLX_URL = "https://neo.bullx.io/terminal?chainId=1399811149&address={mint}"
AXIOM_URL = "https://axiom.trade/meme/{mint}"

LINK_LABELS = {
    "pump_fun": "Pump.fun",
    "solscan": "Solscan",
    "bullx": "BullX",
    "axiom": "Axiom",
    "wallet": "Wallet",
}

TITLES = {
    AlertType.BULLISH: "🚀 Bullish Signal",
    AlertType.SMART_MONEY: "🧠 Smart Money Buy",
    AlertType.MIGRATION: "🌉 Token Migrated",
}

_MARKDOWN_SPECIAL = "_*[]()~`>#+-=|{}.!\\"


def escape_markdown(text: str) -> str:
    """Escape special Telegram MarkdownV2 characters."""
    return "".join(f"\\{c}" if c in _MARKDOWN_SPECIAL else c for c in text)


def truncate_address(address: str, chars: int = 4) -> str:
    """Truncate a Solana address to ABCD...WXYZ format."""
    if len(address) <= chars * 2 + 3:
        return address
    return f"{address[:chars]}...{address[-chars:]}"


def format_sol(amount: float) -> str:
    """Format a SOL amount, switching to thousands above 1000."""
    if amount >= 1000:
        return f"{amount / 1000:.2f}K SOL"
    return f"{amount:.2f} SOL"


def format_ratio(ratio: float) -> str:
    if math.isinf(ratio):
        return "∞"
    return f"{ratio:.2f}"


def format_age(minutes: float) -> str:
    if minutes < 60:
        return f"{int(minutes)}m"
    return f"{minutes / 60:.1f}h"


def build_links(mint: str, wallet: str | None = None) -> dict[str, str]:
    links = {
        "pump_fun": PUMP_FUN_URL.format(mint=mint),
        "solscan": SOLSCAN_TOKEN_URL.format(mint=mint),
        "bullx": BULLX_URL.format(mint=mint),
        "axiom": AXIOM_URL.format(mint=mint),
    }
    if wallet:
        links["wallet"] = SOLSCAN_ACCOUNT_URL.format(address=wallet)
    return links


def risk_lines(risk: RiskAnalysis) -> list[str]:
    """Plain-text lines describing enrichment data."""
    if not risk.available:
        return ["Risk data: unavailable"]

    lines = [
        f"Bundles: {risk.bundle_count} | Bundled: {risk.percentage_bundled:.1f}% | "
        f"Top: {risk.top_bundle_percentage:.1f}%",
    ]
    creator = f"Creator: Risk {risk.creator_risk_level} | Tokens: {risk.coins_created}"
    if risk.rug_count > 0:
        creator += f" | Rugs: {risk.rug_count} ({risk.rug_percentage:.0f}%)"
    lines.append(creator)
    if risk.high_bundling:
        lines.append("⚠️ High bundling detected")
    if risk.creator_high_risk:
        lines.append("⚠️ High-risk creator detected")
    return lines


class AlertFormatter:
    """Formats alerts and milestones into multi-channel messages.

    Supports two verbosity levels:
    - compact: Essential info only (token, market cap, score)
    - detailed: Full context (metrics, enrichment, links)
    """

    def __init__(
        self,
        verbosity: Literal["compact", "detailed"] = "detailed",
    ) -> None:
        self.verbosity = verbosity

    def format(self, payload: AlertPayload) -> FormattedAlert:
        """Format an alert payload.

        Args:
            payload: The alert to format.

        Returns:
            FormattedAlert with all channel formats.
        """
        title = TITLES[payload.alert_type]
        if payload.is_rearm:
            title += " (re-armed)"
        token = f"{payload.name} (${payload.symbol})" if payload.symbol else payload.mint
        links = build_links(payload.mint, payload.smart_money_wallet)

        details = self._detail_lines(payload)
        body = "\n".join([f"Token: {token}", *details])

        return FormattedAlert(
            title=title,
            body=body,
            telegram_markdown=self._build_telegram_markdown(title, token, details, links, payload.mint),
            plain_text=self._build_plain_text(title, token, details, links, payload.mint),
            links=links,
        )

    def format_milestone(self, event: MilestoneEvent) -> FormattedAlert:
        """Format a milestone notification."""
        title = f"🎯 {event.label} Milestone"
        token = f"${event.symbol}" if event.symbol else event.mint
        elapsed_minutes = (event.reached_at - event.alert_created_at).total_seconds() / 60
        details = [
            f"Alert type: {event.alert_type.value}",
            f"Baseline: {format_sol(event.baseline_market_cap)}",
            f"Market cap: {format_sol(event.current_market_cap)} ({event.gain_multiple:.2f}x)",
            f"Time since alert: {format_age(elapsed_minutes)}",
        ]
        if len(event.crossed) > 1:
            details.append("Crossed: " + ", ".join(f"{m}x" for m in event.crossed))
        links = build_links(event.mint)

        return FormattedAlert(
            title=title,
            body="\n".join([f"Token: {token}", *details]),
            telegram_markdown=self._build_telegram_markdown(title, token, details, links, event.mint),
            plain_text=self._build_plain_text(title, token, details, links, event.mint),
            links=links,
        )

    def _detail_lines(self, payload: AlertPayload) -> list[str]:
        lines = [f"Market cap: {format_sol(payload.market_cap)}"]

        if payload.alert_type is AlertType.SMART_MONEY and payload.smart_money_wallet:
            amount = payload.smart_money_amount or 0.0
            lines.append(f"Wallet: {truncate_address(payload.smart_money_wallet)} bought {amount:.4f} SOL")

        lines.append(f"Score: {payload.score}/100 ({payload.category.value})")
        if self.verbosity == "compact":
            return lines

        age_minutes = (payload.alerted_at - payload.created_at).total_seconds() / 60
        lines.extend(
            [
                f"Age: {format_age(age_minutes)}",
                f"Price: {payload.price:.9f} SOL",
                f"Buy/Sell ratio: {format_ratio(payload.buy_sell_ratio)}",
                f"Price change: {payload.price_change_percent:+.1f}%",
                f"Holders: {payload.holder_count} | Whales: {payload.whale_count}",
                f"Volume: {format_sol(payload.total_volume)}",
                f"Naturalness: {payload.naturalness_score}/100"
                + ("" if payload.is_natural else " ⚠️ suspicious activity"),
            ]
        )
        lines.extend(risk_lines(payload.risk))
        return lines

    def _build_telegram_markdown(
        self,
        title: str,
        token: str,
        details: list[str],
        links: dict[str, str],
        mint: str,
    ) -> str:
        """Build Telegram MarkdownV2 format."""
        lines = [f"*{escape_markdown(title)}*", "", f"*{escape_markdown(token)}*"]
        lines.extend(f"• {escape_markdown(line)}" for line in details)
        lines.append("")
        lines.append(
            " \\| ".join(
                f"[{escape_markdown(LINK_LABELS.get(key, key))}]({url})" for key, url in links.items()
            )
        )
        lines.append(f"`{mint}`")
        return "\n".join(lines)

    def _build_plain_text(
        self,
        title: str,
        token: str,
        details: list[str],
        links: dict[str, str],
        mint: str,
    ) -> str:
        """Build plain text format for generic channels."""
        lines = [title.upper(), "=" * 30, "", f"Token: {token}", *details, ""]
        lines.extend(f"{LINK_LABELS.get(key, key)}: {url}" for key, url in links.items())
        lines.append(mint)
        return "\n".join(lines)
