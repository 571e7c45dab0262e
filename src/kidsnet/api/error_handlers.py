"""Global exception handlers — logs full details internally, returns sanitized errors to callers.

Access errors map to fixed status codes; collaborator messages are never
echoed because they may contain controller URLs.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from kidsnet.access.errors import (
    AccessError,
    AddressGroupNotFound,
    CollaboratorUnavailable,
    InvalidRequest,
    NoUpcomingWindow,
    RuleNotFound,
    SubjectNotFound,
)

logger = structlog.get_logger()

_STATUS_BY_ERROR: list[tuple[type[AccessError], int]] = [
    (InvalidRequest, 400),
    (SubjectNotFound, 404),
    (RuleNotFound, 404),
    (AddressGroupNotFound, 404),
    (NoUpcomingWindow, 409),
    (CollaboratorUnavailable, 502),
]


def status_for(exc: AccessError) -> int:
    """Status code for an access error; unknown subclasses are a server error."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AccessError)
    async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
        status_code = status_for(exc)
        if isinstance(exc, CollaboratorUnavailable):
            await logger.awarning(
                "collaborator_unavailable",
                path=request.url.path,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            detail = "Upstream controller unavailable"
        else:
            await logger.ainfo(
                "access_request_rejected",
                path=request.url.path,
                error_type=type(exc).__name__,
                status_code=status_code,
            )
            detail = str(exc) if status_code < 500 else "Internal server error"
        return JSONResponse(
            status_code=status_code,
            content={"detail": detail, "error": type(exc).__name__},
        )

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
        await logger.awarning(
            "validation_error",
            path=request.url.path,
            errors=exc.error_count(),
        )
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": exc.errors(include_url=False, include_context=False)},
        )

    @app.exception_handler(Exception)
    async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
        await logger.aerror(
            "unhandled_exception",
            path=request.url.path,
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )
