import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lens_inventory.api.routes import health, sessions
from lens_inventory.errors import CatalogError
from lens_inventory.logging import configure_logging
from lens_inventory.models.contracts import ErrorResponse

configure_logging()

logger = structlog.get_logger()

app = FastAPI(
    title="LensInventory API",
    version="0.1.0",
    docs_url="/docs",
    redoc_url=None,
)


def _with_request_id(request: Request, response: JSONResponse) -> JSONResponse:
    response.headers["X-Request-ID"] = getattr(
        request.state, "request_id", request.headers.get("X-Request-ID", "")
    )
    return response


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    """Attach a request ID to every request for log correlation.

    The ID is bound into structlog context vars and echoed in the
    X-Request-ID response header so clients can quote it in bug reports.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(CatalogError)
async def catalog_error_handler(request: Request, exc: CatalogError) -> JSONResponse:
    """Render a classified pipeline/session failure as ErrorResponse JSON."""
    body = exc.to_response()
    response = JSONResponse(status_code=exc.http_status, content=body.model_dump())
    if body.retry_after_seconds is not None:
        response.headers["Retry-After"] = str(body.retry_after_seconds)
    return _with_request_id(request, response)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Return ErrorResponse JSON for Pydantic validation errors.

    FastAPI's default 422 body ({"detail": [...]}) differs from every other
    error this API returns; clients get a single error shape instead.
    """
    messages = []
    for err in exc.errors():
        loc = " → ".join(str(part) for part in err["loc"])
        messages.append(f"{loc}: {err['msg']}")
    response = JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error="validation_error",
            message="; ".join(messages),
            retryable=False,
        ).model_dump(),
    )
    return _with_request_id(request, response)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return the ErrorResponse shape for unhandled exceptions instead of bare 500s."""
    logger.error(
        "unhandled_exception",
        path=request.url.path,
        method=request.method,
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    response = JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error="internal_error",
            message="An unexpected error occurred",
            retryable=True,
        ).model_dump(),
    )
    return _with_request_id(request, response)


app.include_router(health.router)
app.include_router(sessions.router, prefix="/api/v1")
