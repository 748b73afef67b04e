"""Study session endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query

from examcore.core.dependencies import CurrentUserId, StudyManager, ensure_owner
from examcore.schemas.question import QuestionWithAnswers
from examcore.schemas.session import (
    BookmarkPage,
    StudyAnswerFeedback,
    StudyAnswerSubmit,
    StudyProgressUpdate,
    StudySessionOptions,
    StudySessionOut,
    StudySessionStart,
    StudySessionStartResponse,
    ToggleRequest,
)

router = APIRouter()


def _owned(manager, session_id: UUID, user_id: str):
    session = manager.get(session_id)
    ensure_owner(session, user_id)
    return session


@router.post("", response_model=StudySessionStartResponse)
async def start_study_session(
    payload: StudySessionStart,
    manager: StudyManager,
    user_id: CurrentUserId,
) -> StudySessionStartResponse:
    """
    Start a study session, or resume the caller's open one on this exam.

    Without explicit question ids the list comes from the exam's question
    bank, or from earlier sessions for the flagged/incorrect modes.
    """
    options = StudySessionOptions(
        max_questions=payload.max_questions,
        show_explanations=payload.show_explanations,
        show_timer=payload.show_timer,
        auto_advance=payload.auto_advance,
    )
    session, is_resuming = manager.start_or_resume(
        user_id,
        payload.exam_id,
        mode=payload.mode,
        question_ids=payload.question_ids,
        objective_ids=payload.objective_ids,
        options=options,
    )
    return StudySessionStartResponse(
        session=StudySessionOut.from_record(session),
        questions=manager.get_questions(session.id),
        is_resuming=is_resuming,
    )


@router.get("", response_model=list[StudySessionOut])
async def list_study_sessions(
    manager: StudyManager,
    user_id: CurrentUserId,
    exam_id: str | None = Query(None),
) -> list[StudySessionOut]:
    return [StudySessionOut.from_record(s) for s in manager.get_all_for_user(user_id, exam_id)]


@router.get("/active", response_model=StudySessionOut | None)
async def get_active_study_session(
    manager: StudyManager,
    user_id: CurrentUserId,
    exam_id: str | None = Query(None),
) -> StudySessionOut | None:
    session = manager.get_active(user_id, exam_id)
    return StudySessionOut.from_record(session) if session else None


@router.get("/bookmarks", response_model=BookmarkPage)
async def list_bookmarked_questions(
    manager: StudyManager,
    user_id: CurrentUserId,
    exam_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> BookmarkPage:
    """Bookmarks collected across all of the caller's study sessions."""
    return manager.get_bookmarked_questions(user_id, exam_id, limit=limit, offset=offset)


@router.get("/{session_id}", response_model=StudySessionOut)
async def get_study_session(session_id: UUID, manager: StudyManager, user_id: CurrentUserId):
    return StudySessionOut.from_record(_owned(manager, session_id, user_id))


@router.put("/{session_id}", response_model=StudySessionOut)
async def update_study_progress(
    session_id: UUID,
    update: StudyProgressUpdate,
    manager: StudyManager,
    user_id: CurrentUserId,
):
    """Partial progress update; fields left out of the body are untouched."""
    _owned(manager, session_id, user_id)
    return StudySessionOut.from_record(manager.update_progress(session_id, update))


@router.get("/{session_id}/questions", response_model=list[QuestionWithAnswers])
async def get_study_questions(session_id: UUID, manager: StudyManager, user_id: CurrentUserId):
    _owned(manager, session_id, user_id)
    return manager.get_questions(session_id)


@router.post("/{session_id}/answers", response_model=StudyAnswerFeedback)
async def answer_study_question(
    session_id: UUID,
    payload: StudyAnswerSubmit,
    manager: StudyManager,
    user_id: CurrentUserId,
):
    _owned(manager, session_id, user_id)
    return manager.record_answer(
        session_id,
        payload.question_id,
        payload.selected_answers,
        time_spent=payload.time_spent,
    )


@router.post("/{session_id}/bookmarks", response_model=StudySessionOut)
async def toggle_study_bookmark(
    session_id: UUID,
    payload: ToggleRequest,
    manager: StudyManager,
    user_id: CurrentUserId,
):
    _owned(manager, session_id, user_id)
    session = manager.toggle_bookmark(session_id, payload.question_id, payload.action)
    return StudySessionOut.from_record(session)


@router.post("/{session_id}/flags", response_model=StudySessionOut)
async def toggle_study_flag(
    session_id: UUID,
    payload: ToggleRequest,
    manager: StudyManager,
    user_id: CurrentUserId,
):
    _owned(manager, session_id, user_id)
    session = manager.toggle_flag(session_id, payload.question_id, payload.action)
    return StudySessionOut.from_record(session)


@router.post("/{session_id}/complete", response_model=StudySessionOut)
async def complete_study_session(session_id: UUID, manager: StudyManager, user_id: CurrentUserId):
    _owned(manager, session_id, user_id)
    return StudySessionOut.from_record(manager.complete(session_id))


@router.post("/{session_id}/abandon", response_model=StudySessionOut)
async def abandon_study_session(session_id: UUID, manager: StudyManager, user_id: CurrentUserId):
    _owned(manager, session_id, user_id)
    return StudySessionOut.from_record(manager.abandon(session_id))


@router.post("/{session_id}/pause", response_model=StudySessionOut)
async def pause_study_session(session_id: UUID, manager: StudyManager, user_id: CurrentUserId):
    _owned(manager, session_id, user_id)
    return StudySessionOut.from_record(manager.pause(session_id))


@router.post("/{session_id}/resume", response_model=StudySessionOut)
async def resume_study_session(session_id: UUID, manager: StudyManager, user_id: CurrentUserId):
    _owned(manager, session_id, user_id)
    return StudySessionOut.from_record(manager.resume(session_id))
