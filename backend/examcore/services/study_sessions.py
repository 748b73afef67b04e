"""Study session manager: untimed practice with immediate feedback."""

import random
from collections.abc import Mapping
from typing import Any
from uuid import UUID

from pydantic import ValidationError

from examcore.core.app_exceptions import InvalidInputError, InvalidStateError, NotFoundError
from examcore.core.clock import Clock, system_clock
from examcore.core.config import settings
from examcore.core.logging import get_logger
from examcore.models.session import (
    OPEN_STUDY_STATUSES,
    StudyMode,
    StudySession,
    StudySessionStatus,
)
from examcore.schemas.question import ExamSummary, QuestionWithAnswers
from examcore.schemas.session import (
    BookmarkedQuestion,
    BookmarkPage,
    StudyAnswerFeedback,
    StudyProgress,
    StudyProgressUpdate,
    StudySessionOptions,
)
from examcore.services.answer_validator import validate
from examcore.services.collections import (
    coerce_question_ids,
    decode_id_list,
    decode_map,
    normalize_selection,
    unique_in_order,
)
from examcore.services.question_bank import QuestionBankReader
from examcore.services.session_store import SessionStore, merge_answer_map

logger = get_logger(__name__)


def can_resume(session: StudySession, now: int, window_seconds: int | None = None) -> bool:
    """An open session is resumable while its last activity is inside the window."""
    if window_seconds is None:
        window_seconds = settings.RESUME_WINDOW_SECONDS
    if session.status not in OPEN_STUDY_STATUSES:
        return False
    return now - session.last_activity_at < window_seconds


def _parse(schema, payload):
    if payload is None:
        return schema()
    if isinstance(payload, schema):
        return payload
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        raise InvalidInputError(
            f"Invalid {schema.__name__} payload",
            details={"errors": e.errors(include_url=False)},
        ) from e


def _coerce_mode(mode: StudyMode | str) -> StudyMode:
    try:
        return StudyMode(mode)
    except ValueError:
        raise InvalidInputError(
            f"Unknown study mode: {mode}",
            code="INVALID_MODE",
            details={"allowed": [m.value for m in StudyMode]},
        ) from None


def _require_open(session: StudySession) -> None:
    if session.status not in OPEN_STUDY_STATUSES:
        raise InvalidStateError(
            f"Study session is {session.status.value}",
            code="SESSION_CLOSED",
            details={"session_id": str(session.id), "status": session.status.value},
        )


def _require_member(session: StudySession, question_id: str) -> list[str]:
    order = decode_id_list(session.questions_order, field="questions_order", record_id=session.id)
    if question_id not in order:
        raise InvalidInputError(
            "Question is not part of this session",
            code="QUESTION_NOT_IN_SESSION",
            details={"question_id": question_id},
        )
    return order


class StudySessionManager:
    """Creates, advances and closes study sessions."""

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
        self.rng = rng or random.Random()

    def create(
        self,
        user_id: str,
        exam_id: str,
        mode: StudyMode | str,
        question_ids: Any,
        options: StudySessionOptions | Mapping[str, Any] | None = None,
    ) -> StudySession:
        """
        Create a study session over a fixed question order.

        ``options.max_questions`` truncates the list before any reordering;
        ``random`` mode then shuffles what is left.

        Args:
            user_id: Owning user
            exam_id: Exam the questions belong to
            mode: Study mode
            question_ids: Ordered ids (list or JSON text)
            options: Truncation and display settings

        Returns:
            Created session

        Raises:
            InvalidInputError: Malformed ids, mode or options
            NotFoundError: Unknown exam
            InvalidStateError: User already has an active study session on this exam
        """
        mode = _coerce_mode(mode)
        options = _parse(StudySessionOptions, options)
        ids = unique_in_order(coerce_question_ids(question_ids))

        if options.max_questions and options.max_questions < len(ids):
            ids = ids[: options.max_questions]
        if mode == StudyMode.RANDOM:
            self.rng.shuffle(ids)

        if self.question_bank.get_exam(exam_id) is None:
            raise NotFoundError("Exam not found", code="EXAM_NOT_FOUND", details={"exam_id": exam_id})

        existing = self.store.find_active(StudySession, user_id, exam_id)
        if existing is not None:
            raise InvalidStateError(
                "An active study session already exists for this exam",
                code="ACTIVE_SESSION_EXISTS",
                details={"session_id": str(existing.id)},
            )

        now = self.clock.now()
        session = StudySession(
            user_id=user_id,
            exam_id=exam_id,
            status=StudySessionStatus.ACTIVE,
            mode=mode,
            questions_order=ids,
            total_questions=len(ids),
            current_question_index=0,
            correct_answers=0,
            incorrect_answers=0,
            skipped_answers=0,
            answers={},
            bookmarks=[],
            flags=[],
            started_at=now,
            last_activity_at=now,
            time_spent_seconds=0,
            show_explanations=options.show_explanations,
            show_timer=options.show_timer,
            auto_advance=options.auto_advance,
        )
        self.store.insert(session)

        logger.info(
            "session_created",
            extra={
                "session_type": "study",
                "session_id": str(session.id),
                "user_id": user_id,
                "exam_id": exam_id,
                "mode": mode.value,
                "total_questions": session.total_questions,
            },
        )
        return session

    def start_or_resume(
        self,
        user_id: str,
        exam_id: str,
        mode: StudyMode | str = StudyMode.SEQUENTIAL,
        question_ids: Any = None,
        objective_ids: list[str] | None = None,
        options: StudySessionOptions | Mapping[str, Any] | None = None,
    ) -> tuple[StudySession, bool]:
        """
        Resume the user's study session on this exam, or start a new one.

        A stale active session (outside the resume window) is abandoned.
        Without explicit ids the question list comes from the mode:
        ``flagged`` and ``incorrect`` draw on earlier sessions, the rest on
        the exam's active questions.

        Returns:
            (session, is_resuming)
        """
        mode = _coerce_mode(mode)
        now = self.clock.now()
        existing = self.store.find_active(StudySession, user_id, exam_id)
        if existing is not None:
            if can_resume(existing, now):
                existing = self.store.update(existing, last_activity_at=now)
                logger.info(
                    "session_resumed",
                    extra={"session_type": "study", "session_id": str(existing.id)},
                )
                return existing, True
            self.abandon(existing.id)

        if question_ids is None:
            if mode == StudyMode.FLAGGED:
                question_ids = self._flagged_question_ids(user_id, exam_id)
            elif mode == StudyMode.INCORRECT:
                question_ids = self._incorrect_question_ids(user_id, exam_id)
            else:
                question_ids = self.question_bank.list_question_ids(exam_id, objective_ids)
        session = self.create(user_id, exam_id, mode, question_ids, options)
        return session, False

    def _flagged_question_ids(self, user_id: str, exam_id: str) -> list[str]:
        ids = []
        for session in self.store.list_for_user(StudySession, user_id, exam_id):
            ids.extend(decode_id_list(session.flags, field="flags", record_id=session.id))
        return unique_in_order(ids)

    def _incorrect_question_ids(self, user_id: str, exam_id: str) -> list[str]:
        # Latest attempt per question wins; sessions come newest first
        latest: dict[str, bool] = {}
        for session in self.store.list_for_user(StudySession, user_id, exam_id):
            answers = decode_map(session.answers, field="answers", record_id=session.id)
            for question_id, record in answers.items():
                if question_id not in latest and isinstance(record, dict):
                    latest[question_id] = bool(record.get("is_correct"))
        return [question_id for question_id, correct in latest.items() if not correct]

    def get(self, session_id: UUID | str) -> StudySession:
        return self.store.require(StudySession, session_id)

    def get_active(self, user_id: str, exam_id: str | None = None) -> StudySession | None:
        """Most recently active session of the user, if any."""
        return self.store.find_active(StudySession, user_id, exam_id)

    def get_all_for_user(self, user_id: str, exam_id: str | None = None) -> list[StudySession]:
        return self.store.list_for_user(StudySession, user_id, exam_id)

    def get_bookmarked_questions(
        self,
        user_id: str,
        exam_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> BookmarkPage:
        """
        Questions the user bookmarked in any study session, most recent first.

        A question bookmarked in several sessions appears once, dated by the
        latest activity of those sessions. Questions that no longer resolve
        are left out of the listing and the total.
        """
        limit = max(1, min(limit, settings.HISTORY_MAX_PAGE_SIZE))
        offset = max(0, offset)

        latest: dict[str, int] = {}
        for session in self.store.list_for_user(StudySession, user_id, exam_id):
            for question_id in decode_id_list(session.bookmarks, field="bookmarks", record_id=session.id):
                latest[question_id] = max(latest.get(question_id, 0), session.last_activity_at)

        questions = {q.id: q for q in self.question_bank.get_by_ids(list(latest), include_answers=True)}
        ranked = sorted(
            (question_id for question_id in latest if question_id in questions),
            key=lambda question_id: (-latest[question_id], question_id),
        )

        exams: dict[str, ExamSummary | None] = {}
        items = []
        for question_id in ranked[offset : offset + limit]:
            question = questions[question_id]
            if question.exam_id not in exams:
                exam = self.question_bank.get_exam(question.exam_id)
                exams[question.exam_id] = ExamSummary.model_validate(exam) if exam else None
            items.append(
                BookmarkedQuestion(
                    question_id=question_id,
                    last_bookmarked_at=latest[question_id],
                    question=question,
                    exam=exams[question.exam_id],
                )
            )

        return BookmarkPage(
            data=items,
            total=len(ranked),
            limit=limit,
            offset=offset,
            has_more=offset + limit < len(ranked),
        )

    def get_questions(self, session_id: UUID | str) -> list[QuestionWithAnswers]:
        """Questions in session order with answers and explanations."""
        session = self.store.require(StudySession, session_id)
        order = decode_id_list(session.questions_order, field="questions_order", record_id=session.id)
        if not order:
            return []
        return self.question_bank.get_by_ids(order, include_answers=True)

    def update_progress(
        self,
        session_id: UUID | str,
        update: StudyProgressUpdate | Mapping[str, Any],
    ) -> StudySession:
        """
        Apply a partial progress update.

        Fields left unset are untouched. ``answers`` is merged per question;
        ``bookmarks`` and ``flags`` replace the stored sets.
        ``last_activity_at`` is refreshed on every call.
        """
        update = _parse(StudyProgressUpdate, update)
        fields = update.model_dump(exclude_unset=True)

        def apply(session: StudySession) -> None:
            _require_open(session)
            index = fields.get("current_question_index")
            if index is not None:
                if index >= max(session.total_questions, 1):
                    raise InvalidInputError(
                        "Question index out of range",
                        code="QUESTION_INDEX_OUT_OF_RANGE",
                        details={"current_question_index": index, "total_questions": session.total_questions},
                    )
                session.current_question_index = index
            if update.answers is not None:
                merge_answer_map(session, {key: record.model_dump() for key, record in update.answers.items()})
            for name in ("correct_answers", "incorrect_answers", "skipped_answers", "time_spent_seconds"):
                if fields.get(name) is not None:
                    setattr(session, name, fields[name])
            for name in ("bookmarks", "flags"):
                if fields.get(name) is not None:
                    setattr(session, name, unique_in_order(fields[name]))
            session.last_activity_at = self.clock.now()

        return self.store.mutate(StudySession, session_id, apply)

    def record_answer(
        self,
        session_id: UUID | str,
        question_id: str,
        selected_answers: Any,
        time_spent: int = 0,
    ) -> StudyAnswerFeedback:
        """
        Check one answer, store it and return immediate feedback.

        Re-answering a question replaces its earlier record and moves the
        counters accordingly. Answering the last question in the order
        completes the session. ``auto_advance`` is a client display
        preference and does not change that.
        """
        selection = normalize_selection(selected_answers)
        question = self.question_bank.get_one(question_id)
        if question is None:
            raise NotFoundError(
                "Question not found", code="QUESTION_NOT_FOUND", details={"question_id": question_id}
            )
        is_correct = validate(set(question.correct_answers), set(selection))

        def apply(session: StudySession) -> None:
            if session.status == StudySessionStatus.PAUSED:
                raise InvalidStateError(
                    "Study session is paused",
                    code="SESSION_PAUSED",
                    details={"session_id": str(session.id)},
                )
            _require_open(session)
            order = _require_member(session, question_id)
            now = self.clock.now()

            previous = decode_map(session.answers, field="answers", record_id=session.id).get(question_id)
            if isinstance(previous, dict):
                if previous.get("is_correct"):
                    session.correct_answers = max(0, session.correct_answers - 1)
                else:
                    session.incorrect_answers = max(0, session.incorrect_answers - 1)
            if is_correct:
                session.correct_answers += 1
            else:
                session.incorrect_answers += 1

            merge_answer_map(
                session,
                {
                    question_id: {
                        "selected_answers": selection,
                        "is_correct": is_correct,
                        "time_spent": max(0, int(time_spent)),
                        "answered_at": now,
                    }
                },
            )
            position = order.index(question_id)
            session.current_question_index = min(position + 1, len(order) - 1)
            session.time_spent_seconds += max(0, int(time_spent))
            session.last_activity_at = now
            if position == len(order) - 1:
                session.status = StudySessionStatus.COMPLETED
                session.completed_at = now

        session = self.store.mutate(StudySession, session_id, apply)
        order = decode_id_list(session.questions_order, field="questions_order", record_id=session.id)
        answered = order.index(question_id) + 1
        progress = StudyProgress(
            current=answered,
            total=session.total_questions,
            correct=session.correct_answers,
            incorrect=session.incorrect_answers,
            percentage=round(session.correct_answers / max(1, session.correct_answers + session.incorrect_answers) * 100),
        )
        logger.info(
            "study_answer_recorded",
            extra={
                "session_id": str(session.id),
                "question_id": question_id,
                "is_correct": is_correct,
            },
        )
        return StudyAnswerFeedback(
            is_correct=is_correct,
            correct_answers=question.correct_answers,
            explanation=question.explanation if session.show_explanations else None,
            is_completed=session.status == StudySessionStatus.COMPLETED,
            progress=progress,
        )

    def _toggle(self, session_id: UUID | str, field: str, question_id: str, action: str) -> StudySession:
        if action not in ("add", "remove"):
            raise InvalidInputError("action must be 'add' or 'remove'", details={"action": action})

        def apply(session: StudySession) -> None:
            _require_open(session)
            _require_member(session, question_id)
            current = decode_id_list(getattr(session, field), field=field, record_id=session.id)
            if action == "add":
                current = unique_in_order([*current, question_id])
            else:
                current = [item for item in current if item != question_id]
            setattr(session, field, current)
            session.last_activity_at = self.clock.now()

        return self.store.mutate(StudySession, session_id, apply)

    def toggle_bookmark(self, session_id: UUID | str, question_id: str, action: str) -> StudySession:
        return self._toggle(session_id, "bookmarks", question_id, action)

    def toggle_flag(self, session_id: UUID | str, question_id: str, action: str) -> StudySession:
        return self._toggle(session_id, "flags", question_id, action)

    def _close(self, session_id: UUID | str, status: StudySessionStatus) -> StudySession:
        def apply(session: StudySession) -> None:
            if session.status not in (*OPEN_STUDY_STATUSES, status):
                raise InvalidStateError(
                    f"Study session is {session.status.value}",
                    code="SESSION_CLOSED",
                    details={"session_id": str(session.id), "status": session.status.value},
                )
            now = self.clock.now()
            session.status = status
            session.completed_at = now
            session.last_activity_at = now

        session = self.store.mutate(StudySession, session_id, apply)
        logger.info(
            "session_closed",
            extra={"session_type": "study", "session_id": str(session.id), "status": status.value},
        )
        return session

    def complete(self, session_id: UUID | str) -> StudySession:
        """Mark completed; repeating the call re-stamps the timestamps."""
        return self._close(session_id, StudySessionStatus.COMPLETED)

    def abandon(self, session_id: UUID | str) -> StudySession:
        return self._close(session_id, StudySessionStatus.ABANDONED)

    def pause(self, session_id: UUID | str) -> StudySession:
        def apply(session: StudySession) -> None:
            _require_open(session)
            session.status = StudySessionStatus.PAUSED
            session.last_activity_at = self.clock.now()

        return self.store.mutate(StudySession, session_id, apply)

    def resume(self, session_id: UUID | str) -> StudySession:
        """Reactivate a paused session inside the resume window."""
        session = self.store.require(StudySession, session_id)
        now = self.clock.now()
        if not can_resume(session, now):
            raise InvalidStateError(
                "Study session can no longer be resumed",
                code="SESSION_NOT_RESUMABLE",
                details={"session_id": str(session.id), "status": session.status.value},
            )
        if session.status == StudySessionStatus.ACTIVE:
            return self.store.update(session, last_activity_at=now)

        other = self.store.find_active(StudySession, session.user_id, session.exam_id)
        if other is not None:
            raise InvalidStateError(
                "Another study session is active for this exam",
                code="ACTIVE_SESSION_EXISTS",
                details={"session_id": str(other.id)},
            )
        return self.store.update(session, status=StudySessionStatus.ACTIVE, last_activity_at=now)
