"""Catalog session endpoints.

Sessions live in process memory (one CatalogSession per id); catalogs are
also written to the configured snapshot store so a session can be restored
after a restart by creating it again with the same id.
"""

import uuid

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from lens_inventory.config import settings
from lens_inventory.errors import CatalogError
from lens_inventory.models.contracts import (
    CreateSessionRequest,
    ErrorResponse,
    MatchRequest,
    MatchResponse,
    ScanRequest,
    ScanResult,
    SessionView,
)
from lens_inventory.session import CatalogSession
from lens_inventory.storage.snapshot import SnapshotStoreFactory
from lens_inventory.utils.gemini import GatewayConfig, GeminiGateway, ModelGateway
from lens_inventory.utils.image import decode_image

logger = structlog.get_logger()

router = APIRouter(tags=["sessions"])

_sessions: dict[str, CatalogSession] = {}
_store_factory = SnapshotStoreFactory()


def get_gateway(request: Request) -> ModelGateway:
    """Build the Gemini gateway once per app; missing key -> InvalidKey(missing)."""
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        gateway = GeminiGateway(GatewayConfig.from_settings(settings))
        request.app.state.gateway = gateway
    return gateway


def _error(status: int, code: str, message: str, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=code, message=message, retryable=retryable).model_dump(),
    )


_NOT_FOUND = ("session_not_found", "Session not found")


def _new_session(session_id: str) -> CatalogSession:
    return CatalogSession(
        session_id,
        _store_factory.for_session(session_id),
        scan_limit=settings.scan_product_limit,
        cooldown_seconds=settings.quota_cooldown_seconds,
    )


@router.post("/sessions", status_code=201, response_model=SessionView)
async def create_session(body: CreateSessionRequest | None = None) -> SessionView:
    """Create a session, or reopen one and restore its persisted catalog."""
    session_id = (body.session_id if body else None) or str(uuid.uuid4())
    session = _sessions.get(session_id)
    if session is None:
        session = _new_session(session_id)
        restored = await session.restore()
        _sessions[session_id] = session
        logger.info("session_created", session_id=session_id, restored=restored)
    return session.view()


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
    session = _sessions.get(session_id)
    if session is None:
        return _error(404, *_NOT_FOUND)
    return session.view()


@router.post("/sessions/{session_id}/scan", response_model=ScanResult)
async def scan_catalog(
    session_id: str,
    body: ScanRequest,
    gateway: ModelGateway = Depends(get_gateway),
):
    session = _sessions.get(session_id)
    if session is None:
        return _error(404, *_NOT_FOUND)
    return await session.scan(gateway, body.target_url)


@router.post("/sessions/{session_id}/match", response_model=MatchResponse)
async def match_photo(
    session_id: str,
    body: MatchRequest,
    gateway: ModelGateway = Depends(get_gateway),
):
    """Match an uploaded photo; ``match`` is null when nothing matched."""
    session = _sessions.get(session_id)
    if session is None:
        return _error(404, *_NOT_FOUND)

    # Intake limits are enforced here, before the session changes state
    try:
        image = decode_image(body.image_base64, max_bytes=settings.max_image_bytes)
    except CatalogError as exc:
        logger.info("photo_rejected", session_id=session_id, error=exc.code)
        raise

    result = await session.match_photo(gateway, image)
    return MatchResponse(match=result, product=session.matched_product())


@router.delete("/sessions/{session_id}/match", status_code=204)
async def clear_match(session_id: str):
    session = _sessions.get(session_id)
    if session is None:
        return _error(404, *_NOT_FOUND)
    session.clear_match()
    return Response(status_code=204)


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str):
    """Reset the session, delete its persisted snapshot and forget it."""
    session = _sessions.pop(session_id, None)
    if session is None:
        return _error(404, *_NOT_FOUND)
    await session.reset()
    _store_factory.discard(session_id)
    logger.info("session_deleted", session_id=session_id)
    return Response(status_code=204)
