"""Tests for the match engine (lens_inventory/pipeline/match.py)."""

import json

import pytest
from google.genai import errors as genai_errors

from lens_inventory.errors import InvalidImage, QuotaExceeded
from lens_inventory.pipeline.match import match_by_image, validate_match
from lens_inventory.utils.gemini import ImagePayload
from tests.fakes import FakeGateway, make_catalog


def _answer(product_id, confidence=0.9, reasoning="Same glaze and handle shape"):
    return json.dumps({"productId": product_id, "confidence": confidence, "reasoning": reasoning})


class TestValidateMatch:
    def test_valid_match(self, catalog):
        result = validate_match({"productId": "sku-1", "confidence": 0.8, "reasoning": "r"}, catalog)
        assert result.product_id == "sku-1"
        assert result.confidence == 0.8

    def test_unknown_id_is_no_match(self, catalog):
        assert validate_match({"productId": "sku-99", "confidence": 0.8}, catalog) is None

    def test_null_id_is_no_match(self, catalog):
        assert validate_match({"productId": None, "confidence": 0}, catalog) is None

    @pytest.mark.parametrize("confidence", [1.4, -0.1, float("nan"), "high", None, True])
    def test_out_of_range_or_malformed_confidence_rejected(self, catalog, confidence):
        assert validate_match({"productId": "sku-0", "confidence": confidence}, catalog) is None

    @pytest.mark.parametrize("confidence", [0, 1, "0.75"])
    def test_boundary_and_numeric_string_confidence_accepted(self, catalog, confidence):
        result = validate_match({"productId": "sku-0", "confidence": confidence}, catalog)
        assert result is not None
        assert 0 <= result.confidence <= 1

    def test_single_item_list_unwrapped(self, catalog):
        result = validate_match([{"productId": "sku-2", "confidence": 0.5}], catalog)
        assert result.product_id == "sku-2"

    def test_missing_reasoning_defaults_to_empty(self, catalog):
        result = validate_match({"productId": "sku-0", "confidence": 0.5}, catalog)
        assert result.reasoning == ""


class TestMatchByImage:
    @pytest.mark.asyncio
    async def test_match_found(self, catalog, png_b64):
        gateway = FakeGateway(_answer("sku-1"))
        result = await match_by_image(gateway, png_b64, catalog)

        assert result.product_id == "sku-1"
        call = gateway.calls[0]
        assert call["grounded_search"] is False
        assert call["image"].mime_type == "image/png"
        assert "ID: sku-2" in call["prompt"]

    @pytest.mark.asyncio
    async def test_unknown_product_returns_none(self, catalog, png_b64):
        result = await match_by_image(FakeGateway(_answer("not-in-catalog")), png_b64, catalog)
        assert result is None

    @pytest.mark.asyncio
    async def test_confidence_above_one_rejected(self, catalog, png_b64):
        result = await match_by_image(FakeGateway(_answer("sku-0", 1.4)), png_b64, catalog)
        assert result is None

    @pytest.mark.asyncio
    async def test_unparseable_answer_returns_none(self, catalog, png_b64):
        result = await match_by_image(FakeGateway("I think it's the mug."), png_b64, catalog)
        assert result is None

    @pytest.mark.asyncio
    async def test_fenced_answer_accepted(self, catalog, png_b64):
        text = f"```json\n{_answer('sku-0')}\n```"
        result = await match_by_image(FakeGateway(text), png_b64, catalog)
        assert result.product_id == "sku-0"

    @pytest.mark.asyncio
    async def test_decoded_payload_accepted(self, catalog):
        payload = ImagePayload(data=b"already-validated", mime_type="image/webp")
        gateway = FakeGateway(_answer("sku-0"))
        await match_by_image(gateway, payload, catalog)
        assert gateway.calls[0]["image"] is payload

    @pytest.mark.asyncio
    async def test_empty_catalog_skips_model(self, png_b64):
        gateway = FakeGateway()
        assert await match_by_image(gateway, png_b64, []) is None
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_gateway_failure_is_an_error_not_no_match(self, catalog, png_b64):
        exc = genai_errors.ClientError(429, {"error": {"status": "RESOURCE_EXHAUSTED"}})
        with pytest.raises(QuotaExceeded):
            await match_by_image(FakeGateway(exc), png_b64, catalog)

    @pytest.mark.asyncio
    async def test_invalid_image_raises(self, catalog):
        with pytest.raises(InvalidImage):
            await match_by_image(FakeGateway(), "bm90IGFuIGltYWdl", catalog)

    @pytest.mark.asyncio
    async def test_catalog_not_mutated(self, png_b64):
        catalog = make_catalog(2)
        before = [p.model_copy() for p in catalog]
        await match_by_image(FakeGateway(_answer("sku-0")), png_b64, catalog)
        assert catalog == before
