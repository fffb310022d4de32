"""Tests for prompt construction (lens_inventory/pipeline/prompts.py)."""

import pytest

from lens_inventory.models.contracts import Product
from lens_inventory.pipeline.prompts import (
    MAX_SCAN_PRODUCTS,
    build_match_prompt,
    build_scan_prompt,
    format_catalog_context,
)
from tests.fakes import make_catalog


class TestScanPrompt:
    def test_contains_url_and_limit(self):
        prompt = build_scan_prompt("https://shop.example.com", limit=12)
        assert "https://shop.example.com" in prompt
        assert "at most 12 products" in prompt

    def test_demands_pure_json_without_citations(self):
        prompt = build_scan_prompt("https://shop.example.com")
        assert "ONLY pure JSON" in prompt
        assert "citation markers" in prompt
        assert '"siteCategory"' in prompt
        assert '"numericPrice"' in prompt

    def test_braces_in_url_are_literal(self):
        prompt = build_scan_prompt("https://shop.example.com/{id}")
        assert "https://shop.example.com/{id}" in prompt

    @pytest.mark.parametrize("limit", [0, MAX_SCAN_PRODUCTS + 1])
    def test_limit_bounds(self, limit):
        with pytest.raises(ValueError):
            build_scan_prompt("https://shop.example.com", limit=limit)


class TestMatchPrompt:
    def test_one_line_per_product(self):
        catalog = make_catalog(3)
        context = format_catalog_context(catalog)
        lines = context.splitlines()
        assert len(lines) == 3
        assert lines[0].startswith("ID: sku-0, Name: Ceramic Mug 0, Description: ")

    def test_description_omitted_when_blank(self):
        context = format_catalog_context([Product(id="x", name="Bare")])
        assert context == "ID: x, Name: Bare"

    def test_long_description_shortened(self):
        product = Product(id="x", name="Lamp", description="bright " * 100)
        line = format_catalog_context([product])
        assert line.endswith("…")
        assert len(line) < 150

    def test_catalog_never_truncated(self):
        catalog = [Product(id=f"id-{i}", name=f"Item {i}") for i in range(200)]
        prompt = build_match_prompt(catalog)
        assert all(f"ID: id-{i}," in prompt for i in range(200))

    def test_asks_for_single_match_or_null(self):
        prompt = build_match_prompt(make_catalog(1))
        assert '"productId": null' in prompt
        assert "single best match" in prompt
