"""Health check endpoint.

Always returns 200 so load balancers keep routing; the body reports whether
the Gemini key is configured and whether the snapshot backend is reachable.
"""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter

from lens_inventory.config import settings
from lens_inventory.storage.snapshot import build_r2_client

logger = structlog.get_logger()

router = APIRouter(tags=["health"])

_CHECK_TIMEOUT = 3.0  # seconds per service check


async def _check_r2() -> str:
    """Check R2 bucket accessibility via head_bucket."""
    try:

        def _head_bucket() -> None:
            build_r2_client(settings).head_bucket(Bucket=settings.r2_bucket_name)

        await asyncio.wait_for(asyncio.to_thread(_head_bucket), timeout=_CHECK_TIMEOUT)
        return "connected"
    except Exception as exc:
        logger.debug("health_r2_failed", error=str(exc))
        return "disconnected"


@router.get("/health")
async def health_check() -> dict:
    """Confirm the API process is alive and report its configuration."""
    if settings.snapshot_backend == "r2":
        snapshot_store = await _check_r2()
    else:
        snapshot_store = "memory"

    return {
        "status": "ok",
        "version": "0.1.0",
        "environment": settings.environment,
        "gemini": "configured" if settings.google_ai_api_key.strip() else "missing",
        "gemini_model": settings.gemini_model,
        "snapshot_store": snapshot_store,
    }
