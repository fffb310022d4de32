"""Failure taxonomy for the scan and match pipelines.

Every failure that leaves the pipeline is one of a closed set of
``CatalogError`` subclasses. ``classify_error`` maps raw gateway and
transport exceptions onto that set; callers render guidance from the
error's ``code``, ``retryable`` flag and message.
"""

from __future__ import annotations

from typing import Literal

import httpx
import structlog
from google.genai import errors as genai_errors

from lens_inventory.models.contracts import ErrorResponse

logger = structlog.get_logger()

SNIPPET_LIMIT = 200
DEFAULT_RETRY_AFTER_SECONDS = 60

_QUOTA_STATUSES = {"RESOURCE_EXHAUSTED"}
_AUTH_STATUSES = {"UNAUTHENTICATED", "PERMISSION_DENIED"}
_AUTH_CODES = {401, 403}
_INVALID_KEY_MARKERS = ("API_KEY_INVALID", "API key not valid", "API key expired")


def snippet(text: str, limit: int = SNIPPET_LIMIT) -> str:
    """Bound diagnostic text so raw payloads never travel whole."""
    text = text.strip()
    if len(text) <= limit:
        return text
    return text[:limit] + "…"


class CatalogError(Exception):
    """Base class for every classified pipeline failure."""

    code = "catalog_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=self.code,
            message=self.message,
            retryable=self.retryable,
            detail=self.detail,
        )


class QuotaExceeded(CatalogError):
    code = "quota_exceeded"
    http_status = 429
    retryable = True

    def __init__(
        self,
        retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
        *,
        detail: str | None = None,
    ) -> None:
        super().__init__(
            f"The model provider's rate limit was reached. "
            f"Wait about {retry_after_seconds}s before trying again.",
            detail=detail,
        )
        self.retry_after_seconds = retry_after_seconds

    def to_response(self) -> ErrorResponse:
        response = super().to_response()
        response.retry_after_seconds = self.retry_after_seconds
        return response


class InvalidKey(CatalogError):
    """The provider credential is missing or was rejected.

    ``reason`` separates "not configured" from "rejected" so callers can
    show different remediation.
    """

    retryable = False

    def __init__(
        self,
        reason: Literal["missing", "rejected"],
        *,
        detail: str | None = None,
    ) -> None:
        if reason == "missing":
            message = (
                "No Gemini API key is configured. "
                "Set GOOGLE_AI_API_KEY in the environment or .env file."
            )
        else:
            message = (
                "The Gemini API key was rejected. "
                "Check that GOOGLE_AI_API_KEY is correct and enabled for the Gemini API."
            )
        super().__init__(message, detail=detail)
        self.reason = reason

    @property
    def code(self) -> str:  # type: ignore[override]
        return "api_key_missing" if self.reason == "missing" else "api_key_rejected"

    @property
    def http_status(self) -> int:  # type: ignore[override]
        return 503 if self.reason == "missing" else 502


class ParseFailure(CatalogError):
    code = "parse_failure"
    http_status = 502
    retryable = True

    def __init__(self, reason: str, text: str = "") -> None:
        super().__init__(
            f"The model response could not be parsed: {reason}",
            detail=snippet(text) if text else None,
        )
        self.snippet = self.detail or ""


class UpstreamError(CatalogError):
    code = "upstream_error"
    http_status = 502
    retryable = True

    def __init__(self, status: int | None, *, detail: str | None = None) -> None:
        super().__init__(f"The model provider returned an error (status {status}).", detail=detail)
        self.status = status


class NetworkError(CatalogError):
    code = "network_error"
    http_status = 504
    retryable = True

    def __init__(self, *, detail: str | None = None) -> None:
        super().__init__("The model provider could not be reached.", detail=detail)


class EmptyCatalog(CatalogError):
    code = "empty_catalog"
    http_status = 422
    retryable = False

    def __init__(self, target_url: str) -> None:
        super().__init__(
            "No products could be extracted from this page. The shop may block "
            "automated reading; try another link.",
            detail=snippet(target_url),
        )
        self.target_url = target_url


class InvalidImage(CatalogError):
    code = "invalid_image"
    http_status = 422
    retryable = False


class ImageTooLarge(InvalidImage):
    code = "image_too_large"
    http_status = 413


# === Session-level conditions (raised by the caller side, not the pipeline) ===


class SessionBusy(CatalogError):
    code = "session_busy"
    http_status = 409
    retryable = True

    def __init__(self, operation: str) -> None:
        super().__init__(f"A {operation} is already in progress for this session.")


class CooldownActive(CatalogError):
    """Scan refused while the post-quota cooldown runs; a UX policy only."""

    code = "cooldown_active"
    http_status = 429
    retryable = True

    def __init__(self, remaining_seconds: int) -> None:
        super().__init__(f"Please wait {remaining_seconds}s before scanning again.")
        self.retry_after_seconds = remaining_seconds

    def to_response(self) -> ErrorResponse:
        response = super().to_response()
        response.retry_after_seconds = self.retry_after_seconds
        return response


class NoCatalog(CatalogError):
    code = "no_catalog"
    http_status = 409

    def __init__(self) -> None:
        super().__init__("Scan a shop before searching by photo.")


class Superseded(CatalogError):
    """A newer request (or a reset) replaced this one; its result was dropped."""

    code = "superseded"
    http_status = 409

    def __init__(self, operation: str) -> None:
        super().__init__(f"This {operation} was replaced by a newer request.")


# === Classification ===


def _is_quota(code: int | None, status: str | None) -> bool:
    return code == 429 or (status or "").upper() in _QUOTA_STATUSES


def _is_auth_rejection(code: int | None, status: str | None, message: str) -> bool:
    if code in _AUTH_CODES or (status or "").upper() in _AUTH_STATUSES:
        return True
    return any(marker in message for marker in _INVALID_KEY_MARKERS)


def classify_error(
    exc: BaseException,
    *,
    retry_after_seconds: int = DEFAULT_RETRY_AFTER_SECONDS,
) -> CatalogError:
    """Map a gateway/transport exception onto the failure taxonomy.

    Rules, in priority order: rate limit, credential rejection, local parse
    failure, other provider errors (status kept), transport failure.
    Already-classified errors pass through unchanged. Anything else is
    re-raised: it is a bug, not a provider outcome.
    """
    if isinstance(exc, CatalogError):
        return exc

    if isinstance(exc, genai_errors.APIError):
        message = str(exc.message or exc)
        if _is_quota(exc.code, exc.status):
            return QuotaExceeded(retry_after_seconds, detail=snippet(message))
        if _is_auth_rejection(exc.code, exc.status, message):
            return InvalidKey("rejected", detail=snippet(message))
        return UpstreamError(exc.code, detail=snippet(message))

    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return NetworkError(detail=f"{type(exc).__name__}: {snippet(str(exc))}")

    # Untyped SDK failures still carry the HTTP status in their text
    error_msg = str(exc)
    if "429" in error_msg or "RESOURCE_EXHAUSTED" in error_msg:
        return QuotaExceeded(retry_after_seconds, detail=snippet(error_msg))

    raise exc
