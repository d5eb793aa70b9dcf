"""Tests for the risk-analysis enrichment client."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from pump_signal_tracker.alerter.enrichment import EnrichmentError, RiskAnalysisClient
from pump_signal_tracker.alerter.models import RiskAnalysis
from pump_signal_tracker.config import EnrichmentSettings

MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmpump"

SAMPLE_RESPONSE = {
    "total_bundles": 4,
    "total_percentage_bundled": 45.5,
    "bundles": {
        "slot1": {"bundle_analysis": {"is_likely_bundle": True}, "token_percentage": 20.0},
        "slot2": {"bundle_analysis": {"is_likely_bundle": False}, "token_percentage": 5.5},
    },
    "creator_analysis": {
        "risk_level": "HIGH",
        "holding_percentage": 3.2,
        "warning_flags": ["serial_rugger", None],
        "history": {
            "total_coins_created": 12,
            "rug_count": 9,
            "rug_percentage": 75.0,
            "high_risk": True,
        },
    },
}


def create_client(handler, **settings) -> tuple[RiskAnalysisClient, httpx.AsyncClient]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    client = RiskAnalysisClient(
        EnrichmentSettings(base_url="https://risk.test/api/bundle", **settings),
        client=http,
    )
    return client, http


class TestRiskAnalysis:
    """Tests for parsing risk-analysis responses."""

    def test_from_api_response(self):
        risk = RiskAnalysis.from_api_response(SAMPLE_RESPONSE)

        assert risk.available
        assert risk.bundle_count == 4
        assert risk.likely_bundle_count == 1
        assert risk.top_bundle_percentage == 20.0
        assert risk.percentage_bundled == 45.5
        assert risk.high_bundling
        assert risk.creator_risk_level == "HIGH"
        assert risk.coins_created == 12
        assert risk.rug_count == 9
        assert risk.creator_high_risk
        assert risk.warning_flags == ("serial_rugger",)

    def test_sparse_response(self):
        risk = RiskAnalysis.from_api_response({})

        assert risk.available
        assert risk.bundle_count == 0
        assert risk.creator_risk_level == "UNKNOWN"

    @pytest.mark.parametrize(
        "body",
        [
            {"creator_analysis": "unavailable"},
            {"creator_analysis": {"history": ["n/a"], "warning_flags": "none"}},
            {"bundles": [{"token_percentage": 10.0}]},
            {"bundles": {"slot1": {"bundle_analysis": "n/a", "token_percentage": 10.0}}},
        ],
    )
    def test_unexpected_nested_shapes(self, body):
        risk = RiskAnalysis.from_api_response(body)

        assert risk.available
        assert risk.creator_risk_level == "UNKNOWN"
        assert risk.likely_bundle_count == 0

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            RiskAnalysis.from_api_response([1, 2, 3])

    def test_neutral(self):
        risk = RiskAnalysis.neutral()

        assert not risk.available
        assert not risk.high_bundling


class TestFetch:
    """Tests for direct fetches."""

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=SAMPLE_RESPONSE)

        client, http = create_client(handler)
        risk = await client.fetch(MINT)
        await http.aclose()

        assert seen == [f"/api/bundle/{MINT}"]
        assert risk.bundle_count == 4

    @pytest.mark.asyncio
    async def test_http_error(self):
        client, http = create_client(lambda request: httpx.Response(503))

        with pytest.raises(EnrichmentError, match="503"):
            await client.fetch(MINT)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        client, http = create_client(lambda request: httpx.Response(200, text="<html>oops</html>"))

        with pytest.raises(EnrichmentError, match="malformed"):
            await client.fetch(MINT)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client, http = create_client(handler)

        with pytest.raises(EnrichmentError, match="failed"):
            await client.fetch(MINT)
        await http.aclose()


class TestFetchWithTimeout:
    """Tests for the enrichment timeout race."""

    @pytest.mark.asyncio
    async def test_fast_response_wins(self):
        client, http = create_client(lambda request: httpx.Response(200, json=SAMPLE_RESPONSE))

        risk = await client.fetch_with_timeout(MINT, timeout=1.0)
        await http.aclose()

        assert risk.available

    @pytest.mark.asyncio
    async def test_slow_response_falls_back_to_neutral(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200, json=SAMPLE_RESPONSE)

        client, http = create_client(handler)

        risk = await client.fetch_with_timeout(MINT, timeout=0.05)

        assert not risk.available
        assert client.timeouts == 1
        assert client.in_flight == 1

        await client.close()
        await asyncio.sleep(0.01)
        assert client.in_flight == 0
        await http.aclose()

    @pytest.mark.asyncio
    async def test_failure_falls_back_to_neutral(self):
        client, http = create_client(lambda request: httpx.Response(500))

        risk = await client.fetch_with_timeout(MINT)
        await http.aclose()

        assert risk == RiskAnalysis.neutral()
        assert client.failures == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_falls_back_to_neutral(self):
        client, http = create_client(lambda request: httpx.Response(200, json=SAMPLE_RESPONSE))

        with patch.object(client, "fetch", AsyncMock(side_effect=AttributeError("no attribute"))):
            risk = await client.fetch_with_timeout(MINT)
        await http.aclose()

        assert risk == RiskAnalysis.neutral()
        assert client.failures == 1

    @pytest.mark.asyncio
    async def test_disabled_skips_request(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client, http = create_client(handler, enabled=False)

        risk = await client.fetch_with_timeout(MINT)
        await http.aclose()

        assert not risk.available
        assert not client.enabled
