"""Tests for the scan pipeline (lens_inventory/pipeline/scan.py).

The model gateway is a scripted fake; no API keys needed.
"""

import json

import httpx
import pytest
from google.genai import errors as genai_errors

from lens_inventory.errors import (
    EmptyCatalog,
    InvalidKey,
    NetworkError,
    ParseFailure,
    QuotaExceeded,
    UpstreamError,
)
from lens_inventory.pipeline.scan import scan
from lens_inventory.utils.gemini import GatewayResponse
from tests.fakes import FakeGateway, scan_payload

URL = "https://shop.example.com"


class TestScanSuccess:
    @pytest.mark.asyncio
    async def test_three_products(self):
        gateway = FakeGateway(scan_payload(3))
        result = await scan(gateway, URL)

        assert len(result.products) == 3
        assert result.stats.total_count == 3
        assert result.stats.category == "Homeware"
        assert result.stats.scan_duration.endswith("s")
        assert result.products[0].numeric_price == 10.5
        assert all(p.source_url == URL for p in result.products)

    @pytest.mark.asyncio
    async def test_call_is_grounded_with_scan_prompt(self):
        gateway = FakeGateway(scan_payload(1))
        await scan(gateway, f"  {URL}  ", limit=5)

        call = gateway.calls[0]
        assert call["grounded_search"] is True
        assert call["image"] is None
        assert URL in call["prompt"]
        assert "at most 5 products" in call["prompt"]

    @pytest.mark.asyncio
    async def test_sources_from_grounding_chunks(self):
        response = GatewayResponse(
            text=scan_payload(2),
            grounding_chunks=[
                {"web": {"title": "Shop", "uri": "https://shop.example.com"}},
                {"web": {"title": "No uri"}},
            ],
        )
        result = await scan(FakeGateway(response), URL)

        assert [s.uri for s in result.stats.sources] == ["https://shop.example.com"]

    @pytest.mark.asyncio
    async def test_fenced_and_cited_output(self):
        text = f"```json\n{scan_payload(2)} [1][2]\n```"
        result = await scan(FakeGateway(text), URL)
        assert result.stats.total_count == 2

    @pytest.mark.asyncio
    async def test_generated_ids_unique(self):
        result = await scan(FakeGateway(scan_payload(20)), URL, limit=20)
        ids = [p.id for p in result.products]
        assert len(set(ids)) == 20

    @pytest.mark.asyncio
    async def test_products_capped_at_limit(self):
        result = await scan(FakeGateway(scan_payload(15)), URL, limit=12)
        assert result.stats.total_count == 12

    @pytest.mark.asyncio
    async def test_missing_site_category_defaults(self):
        text = json.dumps({"products": [{"name": "Mug", "price": "Free"}]})
        result = await scan(FakeGateway(text), URL)
        assert result.stats.category == "Shop"


class TestScanFailures:
    @pytest.mark.asyncio
    async def test_zero_products_is_empty_catalog(self):
        with pytest.raises(EmptyCatalog):
            await scan(FakeGateway(scan_payload(0)), URL)

    @pytest.mark.asyncio
    async def test_unparseable_output_is_parse_failure(self):
        with pytest.raises(ParseFailure) as exc_info:
            await scan(FakeGateway("Sorry, I cannot browse that site."), URL)
        assert "cannot browse" in exc_info.value.snippet

    @pytest.mark.asyncio
    async def test_rate_limit_is_quota_exceeded(self):
        exc = genai_errors.ClientError(429, {"error": {"message": "quota", "status": "RESOURCE_EXHAUSTED"}})
        with pytest.raises(QuotaExceeded) as exc_info:
            await scan(FakeGateway(exc), URL, retry_after_seconds=20)
        assert exc_info.value.retry_after_seconds == 20
        assert exc_info.value.__cause__ is exc

    @pytest.mark.asyncio
    async def test_rejected_key_is_invalid_key(self):
        exc = genai_errors.ClientError(403, {"error": {"message": "denied", "status": "PERMISSION_DENIED"}})
        with pytest.raises(InvalidKey):
            await scan(FakeGateway(exc), URL)

    @pytest.mark.asyncio
    async def test_server_error_keeps_status(self):
        exc = genai_errors.ServerError(500, {"error": {"message": "oops", "status": "INTERNAL"}})
        with pytest.raises(UpstreamError) as exc_info:
            await scan(FakeGateway(exc), URL)
        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_unreachable_provider_is_network_error(self):
        with pytest.raises(NetworkError):
            await scan(FakeGateway(httpx.ConnectError("no route to host")), URL)

    @pytest.mark.asyncio
    async def test_no_retry_on_failure(self):
        gateway = FakeGateway(genai_errors.ServerError(503, {"error": {"status": "UNAVAILABLE"}}))
        with pytest.raises(UpstreamError):
            await scan(gateway, URL)
        assert len(gateway.calls) == 1
