"""Test session manager: timed, graded attempts.

Correct answers never leave this module for an open session. Answers are
keyed by position in ``questions_order``; every progress call is an
auto-save and bumps ``auto_save_count``.
"""

import math
import random
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import desc, select

from examcore.core.app_exceptions import (
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from examcore.core.clock import Clock, system_clock
from examcore.core.config import settings
from examcore.core.logging import get_logger
from examcore.models.question import Exam
from examcore.models.session import (
    OPEN_TEST_STATUSES,
    SCORED_TEST_STATUSES,
    TestSession,
    TestSessionStatus,
)
from examcore.schemas.question import QuestionPublic
from examcore.schemas.session import (
    ExpireOverdueResult,
    SaveAnswer,
    TestHistoryDetail,
    TestHistoryItem,
    TestHistoryPage,
    TestProgressUpdate,
    TestQuestionReview,
    TestResults,
)
from examcore.services.answer_validator import validate
from examcore.services.collections import (
    coerce_question_ids,
    decode_id_list,
    decode_position_list,
    decode_selection_map,
    normalize_selection,
    unique_in_order,
)
from examcore.services.question_bank import QuestionBankReader
from examcore.services.scoring import ScoringEngine
from examcore.services.session_store import SessionStore, merge_answer_map

logger = get_logger(__name__)


def time_remaining(session: TestSession, now: int) -> int:
    """Seconds left on the clock, never negative."""
    elapsed = max(0, now - session.started_at)
    return max(0, session.time_limit_seconds - elapsed)


def _parse(schema, payload):
    if isinstance(payload, schema):
        return payload
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        raise InvalidInputError(
            f"Invalid {schema.__name__} payload",
            details={"errors": e.errors(include_url=False)},
        ) from e


def _require_open(session: TestSession) -> None:
    if session.status not in OPEN_TEST_STATUSES:
        raise InvalidStateError(
            f"Test session is {session.status.value}",
            code="SESSION_CLOSED",
            details={"session_id": str(session.id), "status": session.status.value},
        )


def _require_position(order: list[str], position: int) -> None:
    if position >= len(order):
        raise InvalidInputError(
            "Question index out of range",
            code="QUESTION_INDEX_OUT_OF_RANGE",
            details={"question_index": position, "total_questions": len(order)},
        )


class TestSessionManager:
    """Creates, auto-saves, scores and expires test sessions."""

    __test__ = False  # not a pytest class

    def __init__(
        self,
        db,
        clock: Clock = system_clock,
        question_bank: QuestionBankReader | None = None,
        rng: random.Random | None = None,
    ):
        self.db = db
        self.clock = clock
        self.store = SessionStore(db)
        self.question_bank = question_bank or QuestionBankReader(db)
        self.scoring = ScoringEngine(self.question_bank)
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create(
        self,
        user_id: str,
        exam_id: str,
        question_ids: Any,
        time_limit_seconds: int | None = None,
        passing_score: float | None = None,
        max_questions: int | None = None,
    ) -> TestSession:
        """
        Create a test session over a randomized question order.

        Time limit and passing score default to the exam's values, then to
        the configured defaults.

        Args:
            user_id: Owning user
            exam_id: Exam the questions belong to
            question_ids: Ordered ids (list or JSON text)
            time_limit_seconds: Time limit in seconds
            passing_score: Pass mark, 0-100
            max_questions: Keep at most this many questions after shuffling

        Returns:
            Created session

        Raises:
            InvalidInputError: Malformed ids or configuration
            NotFoundError: Unknown exam
            InvalidStateError: User already has an active test on this exam
        """
        ids = unique_in_order(coerce_question_ids(question_ids))
        exam = self.question_bank.get_exam(exam_id)
        if exam is None:
            raise NotFoundError("Exam not found", code="EXAM_NOT_FOUND", details={"exam_id": exam_id})

        if time_limit_seconds is None:
            time_limit_seconds = exam.duration_seconds or settings.DEFAULT_TIME_LIMIT_SECONDS
        if passing_score is None:
            passing_score = exam.passing_score if exam.passing_score is not None else settings.DEFAULT_PASSING_SCORE
        if time_limit_seconds <= 0:
            raise InvalidInputError(
                "Time limit must be positive",
                code="INVALID_TIME_LIMIT",
                details={"time_limit_seconds": time_limit_seconds},
            )
        if not 0 <= passing_score <= 100:
            raise InvalidInputError(
                "Passing score must be between 0 and 100",
                code="INVALID_PASSING_SCORE",
                details={"passing_score": passing_score},
            )

        self.rng.shuffle(ids)
        if max_questions and max_questions < len(ids):
            ids = ids[:max_questions]

        existing = self.store.find_active(TestSession, user_id, exam_id)
        if existing is not None:
            raise InvalidStateError(
                "An active test session already exists for this exam",
                code="ACTIVE_SESSION_EXISTS",
                details={"session_id": str(existing.id)},
            )

        now = self.clock.now()
        session = TestSession(
            user_id=user_id,
            exam_id=exam_id,
            status=TestSessionStatus.ACTIVE,
            time_limit_seconds=int(time_limit_seconds),
            total_questions=len(ids),
            passing_score=float(passing_score),
            questions_order=ids,
            current_question_index=0,
            answered_count=0,
            flagged_count=0,
            answers={},
            flagged=[],
            started_at=now,
            last_activity_at=now,
            time_remaining_seconds=int(time_limit_seconds),
            auto_save_count=0,
        )
        self.store.insert(session)

        logger.info(
            "session_created",
            extra={
                "session_type": "test",
                "session_id": str(session.id),
                "user_id": user_id,
                "exam_id": exam_id,
                "total_questions": session.total_questions,
                "time_limit_seconds": session.time_limit_seconds,
            },
        )
        return session

    def start_or_resume(
        self,
        user_id: str,
        exam_id: str,
        question_ids: Any = None,
        time_limit_seconds: int | None = None,
        passing_score: float | None = None,
        max_questions: int | None = None,
    ) -> tuple[TestSession, bool]:
        """Return the user's running test on this exam, or start a new one.

        An active session whose time is up is expired on the way.
        """
        existing = self.store.find_active(TestSession, user_id, exam_id)
        if existing is not None:
            existing = self.check_and_expire(existing.id)
            if existing.status == TestSessionStatus.ACTIVE:
                logger.info(
                    "session_resumed",
                    extra={"session_type": "test", "session_id": str(existing.id)},
                )
                return existing, True

        if question_ids is None:
            question_ids = self.question_bank.list_question_ids(exam_id)
        session = self.create(
            user_id,
            exam_id,
            question_ids,
            time_limit_seconds=time_limit_seconds,
            passing_score=passing_score,
            max_questions=max_questions,
        )
        return session, False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, session_id: UUID | str) -> TestSession:
        return self.store.require(TestSession, session_id)

    def get_active(self, user_id: str, exam_id: str | None = None) -> TestSession | None:
        return self.store.find_active(TestSession, user_id, exam_id)

    def get_questions(self, session_id: UUID | str) -> list[QuestionPublic]:
        """Questions in session order, never with correctness data."""
        session = self.store.require(TestSession, session_id)
        order = decode_id_list(session.questions_order, field="questions_order", record_id=session.id)
        return self.question_bank.get_by_ids(order, include_answers=False)

    def get_results(self, session_id: UUID | str, include_details: bool = False) -> TestResults:
        """
        Stored results of a submitted or expired session.

        With ``include_details`` every resolvable position is reviewed
        against the bank: the question with its correct answers, the
        recorded selection, and whether it was flagged.

        Raises:
            InvalidStateError: The session has not been scored
        """
        session = self.store.require(TestSession, session_id)
        if session.status not in SCORED_TEST_STATUSES:
            raise InvalidStateError(
                "Results are available once the test is submitted",
                code="RESULTS_NOT_AVAILABLE",
                details={"session_id": str(session.id), "status": session.status.value},
            )
        return TestResults(
            session_id=session.id,
            status=session.status,
            score=session.score,
            passed=session.passed,
            correct_count=session.correct_count,
            incorrect_count=session.incorrect_count,
            unanswered_count=session.unanswered_count,
            total_questions=session.total_questions,
            passing_score=session.passing_score,
            time_spent_seconds=max(0, session.submitted_at - session.started_at),
            submitted_at=session.submitted_at,
            details=self._review(session) if include_details else None,
        )

    def _review(self, session: TestSession) -> list[TestQuestionReview]:
        order = decode_id_list(session.questions_order, field="questions_order", record_id=session.id)
        answers = decode_selection_map(session.answers, field="answers", record_id=session.id)
        flagged = set(decode_position_list(session.flagged, field="flagged", record_id=session.id))
        by_id = {q.id: q for q in self.question_bank.get_by_ids(order, include_answers=True)}

        review = []
        for position, question_id in enumerate(order):
            question = by_id.get(question_id)
            if question is None:
                continue
            selected = answers.get(str(position), [])
            review.append(
                TestQuestionReview(
                    question_number=position + 1,
                    question=question,
                    selected_answers=selected,
                    correct_answers=question.correct_answers,
                    is_correct=validate(set(question.correct_answers), set(selected)),
                    was_flagged=position in flagged,
                    was_skipped=not selected,
                )
            )
        return review

    def get_user_history(
        self,
        user_id: str,
        page: int = 1,
        limit: int | None = None,
        exam_id: str | None = None,
        include_details: bool = False,
    ) -> TestHistoryPage:
        """
        One page of a user's test sessions, most recently started first.

        Args:
            user_id: Owning user
            page: 1-based page number
            limit: Page size, clamped to the configured maximum
            exam_id: Restrict to one exam
            include_details: Full records instead of summaries

        Returns:
            History page
        """
        page = max(1, page)
        limit = limit or settings.HISTORY_PAGE_SIZE
        limit = max(1, min(limit, settings.HISTORY_MAX_PAGE_SIZE))

        stmt = (
            select(TestSession, Exam.code, Exam.name)
            .outerjoin(Exam, Exam.id == TestSession.exam_id)
            .where(TestSession.user_id == user_id)
        )
        if exam_id:
            stmt = stmt.where(TestSession.exam_id == exam_id)
        stmt = (
            stmt.order_by(desc(TestSession.started_at), desc(TestSession.id))
            .offset((page - 1) * limit)
            .limit(limit)
        )
        rows = self.db.execute(stmt).all()
        total = self.store.count_for_user(TestSession, user_id, exam_id)

        items = []
        for session, exam_code, exam_name in rows:
            if include_details:
                items.append(TestHistoryDetail.from_record(session, exam_code=exam_code, exam_name=exam_name))
                continue
            time_spent = None
            if session.submitted_at is not None:
                time_spent = max(0, session.submitted_at - session.started_at)
            items.append(
                TestHistoryItem(
                    id=session.id,
                    exam_id=session.exam_id,
                    exam_code=exam_code,
                    exam_name=exam_name,
                    status=session.status,
                    score=session.score,
                    correct_count=session.correct_count,
                    incorrect_count=session.incorrect_count,
                    unanswered_count=session.unanswered_count,
                    total_questions=session.total_questions,
                    passing_score=session.passing_score,
                    passed=session.passed,
                    time_spent_seconds=time_spent,
                    started_at=session.started_at,
                    submitted_at=session.submitted_at,
                )
            )

        return TestHistoryPage(
            data=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def update_progress(
        self,
        session_id: UUID | str,
        update: TestProgressUpdate | Mapping[str, Any],
    ) -> TestSession:
        """
        Auto-save: apply a partial progress update.

        ``answers`` is merged position by position (an empty selection clears
        that position) and ``answered_count`` is the size of the merged map.
        ``flag`` toggles one position. Every call bumps ``auto_save_count``.

        Raises:
            NotFoundError: Unknown session
            InvalidInputError: Positions out of range or mismatched question id
            InvalidStateError: Session closed, or its time just ran out
        """
        update = _parse(TestProgressUpdate, update)
        self._expire_if_overdue(session_id)

        def apply(session: TestSession) -> None:
            _require_open(session)
            now = self.clock.now()
            order = decode_id_list(session.questions_order, field="questions_order", record_id=session.id)

            if update.current_question_index is not None:
                _require_position(order, update.current_question_index)
                session.current_question_index = update.current_question_index

            if update.answers is not None:
                partial = {}
                for position, selected in update.answers.items():
                    _require_position(order, position)
                    partial[position] = normalize_selection(selected)
                merged = merge_answer_map(session, partial)
                session.answered_count = len(merged)

            if update.flag is not None:
                flag = update.flag
                _require_position(order, flag.question_index)
                if flag.question_id is not None and order[flag.question_index] != flag.question_id:
                    raise InvalidInputError(
                        "Question id does not match its position",
                        code="QUESTION_POSITION_MISMATCH",
                        details={"question_id": flag.question_id, "question_index": flag.question_index},
                    )
                flagged = set(decode_position_list(session.flagged, field="flagged", record_id=session.id))
                if flag.flagged:
                    flagged.add(flag.question_index)
                else:
                    flagged.discard(flag.question_index)
                session.flagged = sorted(flagged)
                session.flagged_count = len(flagged)

            remaining = time_remaining(session, now)
            client_remaining = update.client_time_remaining_seconds
            if client_remaining is not None and abs(client_remaining - remaining) > settings.TIME_DRIFT_TOLERANCE_SECONDS:
                logger.warning(
                    "time_drift_detected",
                    extra={
                        "session_id": str(session.id),
                        "server_remaining": remaining,
                        "client_remaining": client_remaining,
                    },
                )

            session.time_remaining_seconds = remaining
            session.auto_save_count = (session.auto_save_count or 0) + 1
            session.last_auto_save_at = now
            session.last_activity_at = now

        session = self.store.mutate(TestSession, session_id, apply)
        logger.debug(
            "session_auto_saved",
            extra={"session_id": str(session.id), "auto_save_count": session.auto_save_count},
        )
        return session

    def save_answer(self, session_id: UUID | str, answer: SaveAnswer | Mapping[str, Any]) -> TestSession:
        """Record one answer at its position, then auto-save."""
        answer = _parse(SaveAnswer, answer)
        session = self.store.require(TestSession, session_id)
        order = decode_id_list(session.questions_order, field="questions_order", record_id=session.id)
        _require_position(order, answer.question_index)
        if order[answer.question_index] != answer.question_id:
            raise InvalidInputError(
                "Question id does not match its position",
                code="QUESTION_POSITION_MISMATCH",
                details={"question_id": answer.question_id, "question_index": answer.question_index},
            )
        return self.update_progress(
            session_id,
            TestProgressUpdate(answers={answer.question_index: answer.selected_answers}),
        )

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def _close(self, session_id: UUID | str, status: TestSessionStatus) -> TestSession:
        def apply(session: TestSession) -> None:
            if session.status in SCORED_TEST_STATUSES:
                return
            if session.status == TestSessionStatus.ABANDONED:
                raise InvalidStateError(
                    "Test session was abandoned",
                    code="SESSION_CLOSED",
                    details={"session_id": str(session.id), "status": session.status.value},
                )
            now = self.clock.now()
            result = self.scoring.score(session)
            session.status = status
            session.submitted_at = now
            session.last_activity_at = now
            session.time_remaining_seconds = time_remaining(session, now)
            session.score = result.score
            session.correct_count = result.correct_count
            session.incorrect_count = result.incorrect_count
            session.unanswered_count = result.unanswered_count
            session.passed = result.passed

        return self.store.mutate(TestSession, session_id, apply)

    def submit(self, session_id: UUID | str) -> TestSession:
        """
        Score and submit a test session.

        A session that already carries results is returned unchanged.

        Raises:
            NotFoundError: Unknown session
            InvalidStateError: Session was abandoned
        """
        session = self._close(session_id, TestSessionStatus.SUBMITTED)
        logger.info(
            "session_submitted",
            extra={
                "session_id": str(session.id),
                "status": session.status.value,
                "score": session.score,
                "passed": session.passed,
            },
        )
        return session

    def expire(self, session_id: UUID | str) -> TestSession:
        """
        Auto-grade whatever was recorded and mark the session expired.

        Results are scored exactly as ``submit`` would. A session that was
        already submitted keeps ``status=submitted`` and its stored results;
        submission is terminal and is never re-scored as an expiry.

        Raises:
            NotFoundError: Unknown session
            InvalidStateError: Session was abandoned
        """
        session = self._close(session_id, TestSessionStatus.EXPIRED)
        logger.info(
            "session_expired",
            extra={
                "session_id": str(session.id),
                "status": session.status.value,
                "score": session.score,
            },
        )
        return session

    def check_and_expire(self, session_id: UUID | str) -> TestSession:
        """Expire an active session whose time limit has elapsed."""
        session = self.store.require(TestSession, session_id)
        if session.status == TestSessionStatus.ACTIVE and time_remaining(session, self.clock.now()) <= 0:
            return self.expire(session.id)
        return session

    def _expire_if_overdue(self, session_id: UUID | str) -> None:
        session = self.check_and_expire(session_id)
        if session.status == TestSessionStatus.EXPIRED:
            raise InvalidStateError(
                "Time limit reached; the test has been submitted",
                code="SESSION_EXPIRED",
                details={"session_id": str(session.id)},
            )

    def expire_overdue(self, limit: int = 100) -> ExpireOverdueResult:
        """Expire active sessions whose time limit has elapsed, oldest first."""
        now = self.clock.now()
        stmt = (
            select(TestSession.id)
            .where(
                TestSession.status == TestSessionStatus.ACTIVE,
                TestSession.started_at + TestSession.time_limit_seconds <= now,
            )
            .order_by(TestSession.started_at)
            .limit(limit)
        )
        overdue = list(self.db.execute(stmt).scalars().all())

        result = ExpireOverdueResult()
        for session_id in overdue:
            try:
                self.expire(session_id)
            except ConflictError:
                logger.warning("overdue_expiry_conflict", extra={"session_id": str(session_id)})
                result.skipped.append(session_id)
                continue
            result.expired.append(session_id)

        logger.info(
            "overdue_sessions_expired",
            extra={"expired": len(result.expired), "skipped": len(result.skipped)},
        )
        return result
