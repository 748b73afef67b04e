"""Exception handlers rendering the shared error envelope.

Every error leaving the API has the shape
``{error_code, message, details, request_id}``.
"""

from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException

from examcore.common.request_id import request_id_of
from examcore.core.app_exceptions import AppError
from examcore.core.config import settings
from examcore.core.logging import get_logger

logger = get_logger(__name__)


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    details: Any | None = None
    request_id: str | None = None


def _envelope(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    body = ErrorResponse(
        error_code=error_code,
        message=message,
        details=details,
        request_id=request_id_of(request),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Domain errors carry their own code and status."""
    if exc.status_code >= 500:
        logger.error("app_error", extra={"error_code": exc.code, "path": request.url.path})
    return _envelope(request, exc.status_code, exc.code, exc.message, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ())),
            "issue": error.get("msg", "Validation error"),
            "type": error.get("type", "validation_error"),
        }
        for error in exc.errors()
    ]
    return _envelope(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "VALIDATION_ERROR",
        "Invalid request data",
        problems,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Framework and dependency errors (missing identity, unknown route)."""
    detail = exc.detail
    if isinstance(detail, dict):
        return _envelope(
            request,
            exc.status_code,
            detail.get("code", "HTTP_ERROR"),
            detail.get("message", "An error occurred"),
            detail.get("details"),
        )
    return _envelope(request, exc.status_code, "HTTP_ERROR", str(detail))


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        extra={
            "request_id": request_id_of(request),
            "path": request.url.path,
            "type": type(exc).__name__,
        },
        exc_info=exc,
    )
    if settings.ENV == "prod":
        return _envelope(
            request,
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "INTERNAL_ERROR",
            "An internal server error occurred",
        )
    return _envelope(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        str(exc),
        {"type": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
