"""Liveness and readiness probes."""

from typing import Literal

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from examcore.common.request_id import request_id_of
from examcore.core.logging import get_logger
from examcore.db.session import get_db

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])

CheckStatus = Literal["ok", "down"]


class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"


class ReadinessCheck(BaseModel):
    status: CheckStatus
    message: str | None = None


class ReadinessResponse(BaseModel):
    status: CheckStatus
    checks: dict[str, ReadinessCheck]
    request_id: str


def _check_database(db: Session, request_id: str) -> ReadinessCheck:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning("readiness_db_down", extra={"request_id": request_id, "error": str(e)})
        return ReadinessCheck(status="down", message=type(e).__name__)
    return ReadinessCheck(status="ok")


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health_check() -> HealthResponse:
    return HealthResponse()


@router.get(
    "/ready",
    response_model=ReadinessResponse,
    summary="Readiness probe",
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ReadinessResponse}},
)
async def readiness_check(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
) -> ReadinessResponse:
    """Ready once the session store answers a trivial query; 503 otherwise."""
    request_id = request_id_of(request)
    checks = {"db": _check_database(db, request_id)}
    overall: CheckStatus = "ok" if all(c.status == "ok" for c in checks.values()) else "down"
    if overall == "down":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return ReadinessResponse(status=overall, checks=checks, request_id=request_id)
