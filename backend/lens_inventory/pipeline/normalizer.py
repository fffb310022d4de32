"""Coerce parsed model records into canonical Product objects.

Missing optional fields get declared defaults and never drop a record. The
only whole-scan rejection is an empty product list (EmptyCatalog).
"""

from __future__ import annotations

import math
import re
from typing import Any

import structlog

from lens_inventory.errors import EmptyCatalog, ParseFailure
from lens_inventory.models.contracts import DEFAULT_CATEGORY, DEFAULT_SITE_CATEGORY, Product

logger = structlog.get_logger()

_NUMBER = re.compile(r"\d+(?:\.\d+)?|\.\d+")
_THOUSANDS = re.compile(r"(?<=\d),(?=\d{3}(?!\d))")


def parse_price(price: str) -> float:
    """Leading numeric run of a display price: "¥1,299" -> 1299.0, "Free" -> NaN."""
    match = _NUMBER.search(_THOUSANDS.sub("", price or ""))
    if match is None:
        return math.nan
    return float(match.group())


def _numeric_price(record: dict[str, Any], display_price: str) -> float:
    value = record.get("numericPrice", record.get("numeric_price"))
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        return float(value)
    if isinstance(value, str):
        parsed = parse_price(value)
        if not math.isnan(parsed):
            return parsed
    return parse_price(display_price)


def _text(record: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = record.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return ""


def extract_records(data: Any) -> tuple[list[Any], str]:
    """Split parsed scan output into (raw product records, site category).

    Accepts ``{"products": [...], "siteCategory": ...}`` or a bare list.
    """
    if isinstance(data, list):
        return data, DEFAULT_SITE_CATEGORY
    if not isinstance(data, dict):
        raise ParseFailure(f"expected a JSON object, got {type(data).__name__}", repr(data))
    records = data.get("products")
    if records is None:
        records = []
    if not isinstance(records, list):
        raise ParseFailure(
            f"'products' must be a list, got {type(records).__name__}", repr(records)
        )
    site_category = _text(data, "siteCategory", "site_category") or DEFAULT_SITE_CATEGORY
    return records, site_category


def normalize_products(
    records: list[Any],
    *,
    target_url: str,
    scan_ms: int,
    limit: int | None = None,
) -> list[Product]:
    """Build the catalog for one scan.

    Generated ids are ``p-{position}-{scan_ms}``, unique within the batch.
    Record-provided ids are kept unless an earlier record already used them.
    """
    products: list[Product] = []
    seen_ids: set[str] = set()
    for position, record in enumerate(records):
        if limit is not None and len(products) >= limit:
            logger.info("scan_products_capped", limit=limit, received=len(records))
            break
        if not isinstance(record, dict):
            logger.warning("scan_record_skipped", position=position, type=type(record).__name__)
            continue

        product_id = _text(record, "id")
        if not product_id or product_id in seen_ids:
            product_id = f"p-{position}-{scan_ms}"
            suffix = 1
            while product_id in seen_ids:
                product_id = f"p-{position}-{scan_ms}-{suffix}"
                suffix += 1
        seen_ids.add(product_id)

        price = _text(record, "price")
        products.append(
            Product(
                id=product_id,
                name=_text(record, "name", "title"),
                description=_text(record, "description"),
                price=price,
                numeric_price=_numeric_price(record, price),
                category=_text(record, "category") or DEFAULT_CATEGORY,
                image_url=_text(record, "imageUrl", "image_url"),
                source_url=_text(record, "sourceUrl", "source_url") or target_url,
            )
        )

    if not products:
        raise EmptyCatalog(target_url)
    return products
