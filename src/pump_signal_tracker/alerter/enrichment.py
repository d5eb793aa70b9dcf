"""Risk-analysis enrichment client.

Wraps the bundle/creator analysis endpoint with httpx. Alerts never wait
on it for longer than the race timeout: `fetch_with_timeout()` returns the
neutral RiskAnalysis as soon as the timeout elapses and lets the request
finish (or fail) in the background, discarding its late result.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from pump_signal_tracker.alerter.models import RiskAnalysis
from pump_signal_tracker.config import EnrichmentSettings

logger = logging.getLogger(__name__)


class EnrichmentError(Exception):
    """Raised when risk analysis cannot be fetched or parsed."""


class RiskAnalysisClient:
    """Async client for the risk-analysis collaborator.

    Example:
        ```python
        client = RiskAnalysisClient(settings.enrichment)
        risk = await client.fetch_with_timeout(mint)
        await client.close()
        ```
    """

    def __init__(
        self,
        settings: EnrichmentSettings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or EnrichmentSettings()
        self._client = client or httpx.AsyncClient(
            timeout=self._settings.request_timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self._owns_client = client is None
        self._late: set[asyncio.Task[RiskAnalysis]] = set()
        self.timeouts = 0
        self.failures = 0

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    @property
    def in_flight(self) -> int:
        """Requests that lost the race and are still running."""
        return len(self._late)

    async def fetch(self, mint: str) -> RiskAnalysis:
        """Fetch and parse risk analysis for a token.

        Raises:
            EnrichmentError: On transport, HTTP status or payload errors.
        """
        url = f"{self._settings.base_url}/{mint}"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            return RiskAnalysis.from_api_response(response.json())
        except httpx.HTTPStatusError as e:
            raise EnrichmentError(f"Risk analysis for {mint} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise EnrichmentError(f"Risk analysis request for {mint} failed: {e}") from e
        except ValueError as e:
            raise EnrichmentError(f"Risk analysis for {mint} is malformed: {e}") from e

    async def fetch_with_timeout(self, mint: str, timeout: float | None = None) -> RiskAnalysis:
        """Race `fetch()` against a hard timeout.

        Never raises: failures and timeouts return RiskAnalysis.neutral().
        """
        if not self._settings.enabled:
            return RiskAnalysis.neutral()

        limit = timeout if timeout is not None else self._settings.race_timeout_seconds
        task = asyncio.create_task(self.fetch(mint))
        done, _ = await asyncio.wait({task}, timeout=limit)

        if not done:
            self.timeouts += 1
            logger.warning("Risk analysis for %s timed out after %.1fs; using neutral data", mint, limit)
            self._late.add(task)
            task.add_done_callback(self._discard_late)
            return RiskAnalysis.neutral()

        try:
            return task.result()
        except EnrichmentError as e:
            self.failures += 1
            logger.warning("%s; using neutral data", e)
        except Exception as e:
            self.failures += 1
            logger.warning("Unexpected risk analysis error for %s: %s; using neutral data", mint, e)
        return RiskAnalysis.neutral()

    def _discard_late(self, task: asyncio.Task[RiskAnalysis]) -> None:
        self._late.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug("Late risk analysis failed: %s", exc)

    async def close(self) -> None:
        for task in list(self._late):
            task.cancel()
        if self._owns_client:
            await self._client.aclose()
