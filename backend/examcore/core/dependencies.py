"""FastAPI dependencies: caller identity, clock and session managers."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from examcore.core.app_exceptions import ForbiddenError
from examcore.core.clock import Clock, system_clock
from examcore.db.session import get_db
from examcore.models.session import StudySession, TestSession
from examcore.services.study_sessions import StudySessionManager
from examcore.services.test_sessions import TestSessionManager


def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """Caller identity as asserted by the upstream gateway."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header missing",
        )
    return x_user_id.strip()


def get_clock() -> Clock:
    return system_clock


def get_study_manager(
    db: Annotated[Session, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> StudySessionManager:
    return StudySessionManager(db, clock=clock)


def get_test_manager(
    db: Annotated[Session, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> TestSessionManager:
    return TestSessionManager(db, clock=clock)


def ensure_owner(session: StudySession | TestSession, user_id: str) -> None:
    """Reject access to another user's session."""
    if session.user_id != user_id:
        raise ForbiddenError(
            "Not authorized to access this session",
            details={"session_id": str(session.id)},
        )


CurrentUserId = Annotated[str, Depends(get_current_user_id)]
StudyManager = Annotated[StudySessionManager, Depends(get_study_manager)]
TestManager = Annotated[TestSessionManager, Depends(get_test_manager)]
