"""Telegram Bot API delivery channel."""

from __future__ import annotations

import logging

import httpx

from pump_signal_tracker.alerter.dispatcher import ChannelError
from pump_signal_tracker.alerter.models import FormattedAlert

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"
DEFAULT_TIMEOUT_SECONDS = 10.0


class TelegramChannel:
    """Posts alerts to one Telegram chat using MarkdownV2."""

    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._url = TELEGRAM_API_URL.format(token=bot_token)
        self._chat_id = chat_id
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def send(self, alert: FormattedAlert) -> bool:
        """Send an alert.

        Raises:
            ChannelError: If Telegram rejects the message or is unreachable.
        """
        payload = {
            "chat_id": self._chat_id,
            "text": alert.telegram_markdown,
            "parse_mode": "MarkdownV2",
            "disable_web_page_preview": True,
        }
        try:
            response = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            raise ChannelError(f"Telegram request failed: {e}") from e

        if response.status_code != 200:
            raise ChannelError(f"Telegram returned HTTP {response.status_code}: {response.text[:200]}")
        logger.debug("Telegram message sent: %s", alert.title)
        return True

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
