"""Exception handlers shaping every error into one JSON envelope."""

from typing import Any

import structlog
from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import AppException

logger = structlog.get_logger(__name__)


def _error_body(request: Request, error: str, message: Any, details: Any = None) -> dict[str, Any]:
    content = {"error": error, "message": message, "path": str(request.url)}
    if details:
        content["details"] = details
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    if request_id:
        content["requestId"] = request_id
    return content


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Handle custom application exceptions.

    Rejected bookings and transitions are logged at info; server-side
    failures (persistence) at error.

    Args:
        request: Request object
        exc: Application exception

    Returns:
        JSON error response
    """
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_rejected",
        path=request.url.path,
        status_code=exc.status_code,
        error=exc.__class__.__name__,
        message=exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, exc.__class__.__name__, exc.message, exc.details),
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    """Handle HTTP exceptions raised by dependencies (auth, role checks)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, "HTTPException", exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """
    Handle validation errors.

    Malformed or missing fields are a client input error and map to 400.
    """
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(
            request, "ValidationError", "Request validation failed", jsonable_encoder(exc.errors())
        ),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions without leaking internals."""
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(request, "InternalServerError", "An unexpected error occurred"),
    )
