"""Pydantic schemas for study and test sessions."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from examcore.core.logging import get_logger
from examcore.models.session import StudyMode, StudySessionStatus, TestSessionStatus
from examcore.schemas.question import ExamSummary, QuestionPublic, QuestionWithAnswers
from examcore.services.collections import (
    decode_id_list,
    decode_map,
    decode_position_list,
    decode_selection_map,
)

logger = get_logger(__name__)


def _columns(schema: type[BaseModel], record: Any) -> dict[str, Any]:
    return {name: getattr(record, name) for name in schema.model_fields if hasattr(record, name)}

# ============================================================================
# Study Session Schemas
# ============================================================================


class StudySessionOptions(BaseModel):
    """Optional knobs for study session creation."""

    max_questions: int | None = Field(None, ge=1, le=500, description="Truncate the question list")
    show_explanations: bool = True
    show_timer: bool = True
    auto_advance: bool = False


class StudyAnswerRecord(BaseModel):
    """One stored study answer."""

    selected_answers: list[int]
    is_correct: bool
    time_spent: int = Field(0, ge=0)
    answered_at: int


def _study_answers(record: Any) -> dict[str, StudyAnswerRecord]:
    """Stored study answers; entries that no longer validate are dropped."""
    answers = {}
    for question_id, item in decode_map(record.answers, field="answers", record_id=record.id).items():
        try:
            answers[question_id] = StudyAnswerRecord.model_validate(item)
        except ValidationError:
            logger.error(
                "stored_collection_bad_item",
                extra={"field": "answers", "record_id": str(record.id), "key": question_id},
            )
    return answers


class StudyProgressUpdate(BaseModel):
    """Partial study progress update; unset fields are left untouched."""

    current_question_index: int | None = Field(None, ge=0)
    answers: dict[str, StudyAnswerRecord] | None = None
    correct_answers: int | None = Field(None, ge=0)
    incorrect_answers: int | None = Field(None, ge=0)
    skipped_answers: int | None = Field(None, ge=0)
    bookmarks: list[str] | None = None
    flags: list[str] | None = None
    time_spent_seconds: int | None = Field(None, ge=0)


class StudySessionOut(BaseModel):
    """Study session response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    exam_id: str
    status: StudySessionStatus
    mode: StudyMode
    questions_order: list[str]
    total_questions: int
    current_question_index: int
    correct_answers: int
    incorrect_answers: int
    skipped_answers: int
    answers: dict[str, StudyAnswerRecord]
    bookmarks: list[str]
    flags: list[str]
    started_at: int
    last_activity_at: int
    completed_at: int | None
    time_spent_seconds: int
    show_explanations: bool
    show_timer: bool
    auto_advance: bool

    @classmethod
    def from_record(cls, record: Any) -> "StudySessionOut":
        """Build from a stored row; corrupt collections read as empty."""
        data = _columns(cls, record)
        data["questions_order"] = decode_id_list(
            record.questions_order, field="questions_order", record_id=record.id
        )
        data["answers"] = _study_answers(record)
        data["bookmarks"] = decode_id_list(record.bookmarks, field="bookmarks", record_id=record.id)
        data["flags"] = decode_id_list(record.flags, field="flags", record_id=record.id)
        return cls.model_validate(data)


class StudyProgress(BaseModel):
    """Running study progress."""

    current: int
    total: int
    correct: int
    incorrect: int
    percentage: int


class StudyAnswerFeedback(BaseModel):
    """Immediate feedback returned after a study answer."""

    is_correct: bool
    correct_answers: list[int]
    explanation: str | None
    is_completed: bool
    progress: StudyProgress


class StudySessionStart(BaseModel):
    """Request to start (or resume) a study session."""

    exam_id: str = Field(..., min_length=1)
    mode: StudyMode = StudyMode.SEQUENTIAL
    question_ids: list[str] | None = Field(None, description="Explicit question ids, in order")
    objective_ids: list[str] | None = None
    max_questions: int | None = Field(None, ge=1, le=500)
    show_explanations: bool = True
    show_timer: bool = True
    auto_advance: bool = False


class StudySessionStartResponse(BaseModel):
    """Study session plus its questions (answers included)."""

    session: StudySessionOut
    questions: list[QuestionWithAnswers]
    is_resuming: bool


class StudyAnswerSubmit(BaseModel):
    """Answer one study question."""

    question_id: str
    selected_answers: list[int]
    time_spent: int = Field(0, ge=0)


class ToggleRequest(BaseModel):
    """Add or remove a question id from a bookmark/flag set."""

    question_id: str
    action: str = Field(..., pattern="^(add|remove)$")


class BookmarkedQuestion(BaseModel):
    question_id: str
    last_bookmarked_at: int
    question: QuestionWithAnswers
    exam: ExamSummary | None = None


class BookmarkPage(BaseModel):
    """A user's bookmarks across study sessions, most recent first."""

    data: list[BookmarkedQuestion]
    total: int
    limit: int
    offset: int
    has_more: bool


# ============================================================================
# Test Session Schemas
# ============================================================================


class FlagToggle(BaseModel):
    """Flag or unflag one test position."""

    question_id: str | None = None
    question_index: int = Field(..., ge=0)
    flagged: bool


class TestProgressUpdate(BaseModel):
    """Auto-save payload; ``answers`` is merged position by position."""

    __test__ = False  # not a pytest class

    current_question_index: int | None = Field(None, ge=0)
    answers: dict[int, list[int]] | None = None
    flag: FlagToggle | None = None
    client_time_remaining_seconds: int | None = Field(None, ge=0)

    @field_validator("answers")
    @classmethod
    def positions_non_negative(cls, value):
        if value is not None and any(position < 0 for position in value):
            raise ValueError("answer positions must be non-negative")
        return value


class SaveAnswer(BaseModel):
    """Record one test answer against its position."""

    question_id: str
    question_index: int = Field(..., ge=0)
    selected_answers: list[int]
    time_spent: int = Field(0, ge=0)


class TestSessionOut(BaseModel):
    """Test session response (never carries correctness data)."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str
    exam_id: str
    status: TestSessionStatus
    time_limit_seconds: int
    total_questions: int
    passing_score: float
    questions_order: list[str]
    current_question_index: int
    answered_count: int
    flagged_count: int
    answers: dict[str, list[int]]
    flagged: list[int]
    started_at: int
    last_activity_at: int
    submitted_at: int | None
    time_remaining_seconds: int
    score: float | None
    correct_count: int | None
    incorrect_count: int | None
    unanswered_count: int | None
    passed: bool | None
    last_auto_save_at: int | None
    auto_save_count: int

    @classmethod
    def from_record(cls, record: Any, **extra: Any):
        """Build from a stored row; corrupt collections read as empty."""
        data = _columns(cls, record)
        data["questions_order"] = decode_id_list(
            record.questions_order, field="questions_order", record_id=record.id
        )
        data["answers"] = decode_selection_map(record.answers, field="answers", record_id=record.id)
        data["flagged"] = decode_position_list(record.flagged, field="flagged", record_id=record.id)
        data.update(extra)
        return cls.model_validate(data)


class TestQuestionReview(BaseModel):
    """One position of a scored test, revealed after submission."""

    __test__ = False  # not a pytest class

    question_number: int
    question: QuestionWithAnswers
    selected_answers: list[int]
    correct_answers: list[int]
    is_correct: bool
    was_flagged: bool
    was_skipped: bool


class TestResults(BaseModel):
    """Stored results bundle of a scored test session."""

    __test__ = False  # not a pytest class

    session_id: UUID
    status: TestSessionStatus
    score: float
    passed: bool
    correct_count: int
    incorrect_count: int
    unanswered_count: int
    total_questions: int
    passing_score: float
    time_spent_seconds: int
    submitted_at: int
    details: list[TestQuestionReview] | None = None


class TestHistoryItem(BaseModel):
    """Summary projection of a test session for history listings."""

    __test__ = False  # not a pytest class

    id: UUID
    exam_id: str
    exam_code: str | None
    exam_name: str | None
    status: TestSessionStatus
    score: float | None
    correct_count: int | None
    incorrect_count: int | None
    unanswered_count: int | None
    total_questions: int
    passing_score: float
    passed: bool | None
    time_spent_seconds: int | None
    started_at: int
    submitted_at: int | None


class TestHistoryDetail(TestSessionOut):
    """Full projection of a test session for history listings."""

    exam_code: str | None = None
    exam_name: str | None = None


class TestHistoryPage(BaseModel):
    """One page of a user's test history."""

    __test__ = False  # not a pytest class

    data: list[TestHistoryDetail] | list[TestHistoryItem]
    total: int
    page: int
    limit: int
    total_pages: int


class TestSessionStart(BaseModel):
    """Request to start (or resume) a test session."""

    __test__ = False  # not a pytest class

    exam_id: str = Field(..., min_length=1)
    question_ids: list[str] | None = None
    time_limit_minutes: int | None = Field(None, ge=1, le=480)
    max_questions: int | None = Field(None, ge=1, le=200)


class TestSessionStartResponse(BaseModel):
    """Test session plus its questions (no answers)."""

    __test__ = False  # not a pytest class

    session: TestSessionOut
    questions: list[QuestionPublic]
    is_resuming: bool


class ExpireOverdueResult(BaseModel):
    """Outcome of a batch expiry run."""

    expired: list[UUID] = Field(default_factory=list)
    skipped: list[UUID] = Field(default_factory=list, description="Lost a concurrent write; retried next run")
