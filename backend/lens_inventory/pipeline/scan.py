"""Catalog scan: one grounded Gemini call turned into products + stats.

prompt -> gateway (search grounded) -> sanitize/parse -> normalize + sources.
Stateless: nothing survives between calls. Every failure leaves as a
classified CatalogError; there are no retries here.
"""

from __future__ import annotations

import time

import structlog

from lens_inventory.errors import DEFAULT_RETRY_AFTER_SECONDS, CatalogError, classify_error
from lens_inventory.models.contracts import ScanResult, ScanStats
from lens_inventory.pipeline.grounding import extract_sources
from lens_inventory.pipeline.normalizer import extract_records, normalize_products
from lens_inventory.pipeline.prompts import build_scan_prompt
from lens_inventory.pipeline.sanitizer import parse_model_json
from lens_inventory.utils.gemini import ModelGateway

logger = structlog.get_logger()


async def scan(
    gateway: ModelGateway,
    target_url: str,
    *,
    limit: int = 12,
    retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
) -> ScanResult:
    """Extract a product catalog from one shop URL.

    Raises EmptyCatalog when nothing was extracted, or one of the gateway
    failure kinds (QuotaExceeded, InvalidKey, ParseFailure, UpstreamError,
    NetworkError).
    """
    target_url = target_url.strip()
    started = time.monotonic()
    scan_ms = int(time.time() * 1000)
    log = logger.bind(target_url=target_url)
    log.info("scan_started", limit=limit)

    try:
        response = await gateway.generate(
            build_scan_prompt(target_url, limit),
            grounded_search=True,
        )
        data = parse_model_json(response.text)
        records, site_category = extract_records(data)
        products = normalize_products(
            records, target_url=target_url, scan_ms=scan_ms, limit=limit
        )
    except CatalogError as exc:
        log.warning("scan_failed", error=exc.code, detail=exc.detail)
        raise
    except Exception as exc:
        error = classify_error(exc, retry_after_seconds=retry_after_seconds)
        log.warning(
            "scan_failed",
            error=error.code,
            error_type=type(exc).__name__,
            detail=error.detail,
        )
        raise error from exc

    duration = time.monotonic() - started
    stats = ScanStats(
        total_count=len(products),
        category=site_category,
        scan_duration=f"{duration:.1f}s",
        scan_duration_seconds=round(duration, 3),
        sources=extract_sources(response.grounding_chunks),
    )
    log.info(
        "scan_completed",
        products=stats.total_count,
        sources=len(stats.sources),
        duration_s=stats.scan_duration_seconds,
    )
    return ScanResult(products=products, stats=stats)
