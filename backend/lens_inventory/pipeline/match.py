"""Photo match: find the catalog entry shown in an uploaded photo.

Returns None (NoMatch) when the model's answer is unusable: unparseable,
an id that is not in the supplied catalog, or a confidence outside [0, 1]
(out-of-range values are rejected, never clamped). Failures that stopped
the match from being attempted at all (quota, credentials, upstream,
network) propagate as classified errors.
"""

from __future__ import annotations

import math
from typing import Any

import structlog

from lens_inventory.errors import (
    DEFAULT_RETRY_AFTER_SECONDS,
    CatalogError,
    ParseFailure,
    classify_error,
)
from lens_inventory.models.contracts import MatchResult, Product
from lens_inventory.pipeline.prompts import build_match_prompt
from lens_inventory.pipeline.sanitizer import parse_model_json
from lens_inventory.utils.gemini import ImagePayload, ModelGateway
from lens_inventory.utils.image import decode_image

logger = structlog.get_logger()


def validate_match(data: Any, catalog: list[Product]) -> MatchResult | None:
    """Check a parsed match against the live catalog."""
    if isinstance(data, list) and len(data) == 1:
        data = data[0]
    if not isinstance(data, dict):
        logger.info("match_rejected", reason="not_an_object")
        return None

    product_id = data.get("productId", data.get("product_id"))
    if product_id is None or str(product_id).strip() == "":
        logger.info("match_rejected", reason="no_product_id")
        return None
    product_id = str(product_id).strip()
    if product_id not in {p.id for p in catalog}:
        logger.info("match_rejected", reason="unknown_product_id", product_id=product_id)
        return None

    confidence = data.get("confidence")
    if isinstance(confidence, str):
        try:
            confidence = float(confidence)
        except ValueError:
            confidence = None
    if (
        not isinstance(confidence, (int, float))
        or isinstance(confidence, bool)
        or math.isnan(confidence)
        or not 0 <= confidence <= 1
    ):
        logger.info("match_rejected", reason="confidence_out_of_range", confidence=confidence)
        return None

    reasoning = data.get("reasoning")
    return MatchResult(
        product_id=product_id,
        confidence=float(confidence),
        reasoning=str(reasoning).strip() if reasoning is not None else "",
    )


async def match_by_image(
    gateway: ModelGateway,
    image: str | ImagePayload,
    catalog: list[Product],
    *,
    retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
) -> MatchResult | None:
    """Match a photo (base64 string or decoded payload) against ``catalog``.

    The catalog is always supplied by the caller; nothing is cached here.
    """
    if not catalog:
        logger.info("match_skipped", reason="empty_catalog")
        return None

    payload = image if isinstance(image, ImagePayload) else decode_image(image)
    log = logger.bind(catalog_size=len(catalog), image_bytes=len(payload.data))
    log.info("match_started")

    try:
        response = await gateway.generate(build_match_prompt(catalog), image=payload)
    except CatalogError:
        raise
    except Exception as exc:
        error = classify_error(exc, retry_after_seconds=retry_after_seconds)
        log.warning(
            "match_failed",
            error=error.code,
            error_type=type(exc).__name__,
            detail=error.detail,
        )
        raise error from exc

    try:
        data = parse_model_json(response.text)
    except ParseFailure as exc:
        log.info("match_rejected", reason="parse_failure", detail=exc.snippet)
        return None

    result = validate_match(data, catalog)
    if result is not None:
        log.info("match_completed", product_id=result.product_id, confidence=result.confidence)
    return result
