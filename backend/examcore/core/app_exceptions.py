"""Errors raised by the session engine.

Each carries a stable ``code`` for callers. ``AppError`` is also an
``HTTPException``, so the API renders these without translation; subclasses
only pick the HTTP status and a fallback code.
"""

from typing import Any

from fastapi import HTTPException, status

Details = dict[str, Any] | list[Any] | None


class AppError(HTTPException):
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Details = None):
        self.code = code or self.default_code
        self.message = message
        self.details = details
        super().__init__(
            status_code=self.http_status,
            detail={"code": self.code, "message": message, "details": details},
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class InvalidInputError(AppError):
    """Malformed or missing input, e.g. an unusable question id list."""

    http_status = status.HTTP_400_BAD_REQUEST
    default_code = "INVALID_INPUT"


class ForbiddenError(AppError):
    http_status = status.HTTP_403_FORBIDDEN
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    http_status = status.HTTP_404_NOT_FOUND
    default_code = "NOT_FOUND"


class InvalidStateError(AppError):
    """The session is not in a status that allows the operation."""

    http_status = status.HTTP_409_CONFLICT
    default_code = "INVALID_STATE"


class ConflictError(AppError):
    """Another writer changed the record between read and write."""

    http_status = status.HTTP_409_CONFLICT
    default_code = "CONCURRENT_MODIFICATION"
