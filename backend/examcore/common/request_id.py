"""Request correlation: every request gets an id, echoed back and logged."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from examcore.core.logging import get_logger

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


def request_id_of(request: Request) -> str:
    """The id assigned by ``RequestIDMiddleware``, or a fresh one outside it."""
    return getattr(request.state, "request_id", None) or str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Assigns ``request.state.request_id`` and logs one line per request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        context = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "user_id": request.headers.get("X-User-Id"),
        }
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_failed",
                extra={**context, "latency_ms": round((time.perf_counter() - started) * 1000)},
            )
            raise

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "request_completed",
            extra={
                **context,
                "status_code": response.status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000),
            },
        )
        return response
