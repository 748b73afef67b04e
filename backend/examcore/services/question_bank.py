"""Question bank reader: ordered, entitlement-aware question fetches."""

from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from examcore.core.logging import get_logger
from examcore.models.question import Exam, Question
from examcore.schemas.question import QuestionPublic, QuestionWithAnswers
from examcore.services.collections import decode_id_list, decode_position_list

logger = get_logger(__name__)


def _decode_options(question: Question) -> list[str]:
    return decode_id_list(question.options, field="options", record_id=question.id)


def _decode_correct(question: Question) -> set[int]:
    return set(decode_position_list(question.correct_answers, field="correct_answers", record_id=question.id))


class QuestionBankReader:
    """Reads questions for sessions, preserving the caller's order."""

    def __init__(self, db: Session):
        self.db = db

    def _fetch(self, question_ids: Sequence[str]) -> dict[str, Question]:
        unique_ids = list(dict.fromkeys(question_ids))
        if not unique_ids:
            return {}
        rows = self.db.execute(select(Question).where(Question.id.in_(unique_ids))).scalars().all()
        return {row.id: row for row in rows}

    def get_by_ids(
        self,
        question_ids: Sequence[str],
        include_answers: bool = False,
    ) -> list[QuestionPublic] | list[QuestionWithAnswers]:
        """
        Fetch questions aligned to the input order.

        Ids that no longer resolve are silently omitted. When
        ``include_answers`` is false the returned objects have no
        correct-answer or explanation fields at all.

        Args:
            question_ids: Ordered question ids
            include_answers: Whether the caller is entitled to correctness data

        Returns:
            Questions in input order
        """
        by_id = self._fetch(question_ids)
        result = []
        for question_id in question_ids:
            question = by_id.get(question_id)
            if question is None:
                continue
            public = {
                "id": question.id,
                "exam_id": question.exam_id,
                "objective_id": question.objective_id,
                "question_text": question.question_text,
                "question_type": question.question_type,
                "options": _decode_options(question),
            }
            if include_answers:
                result.append(
                    QuestionWithAnswers(
                        **public,
                        correct_answers=sorted(_decode_correct(question)),
                        explanation=question.explanation,
                    )
                )
            else:
                result.append(QuestionPublic(**public))

        missing = len(question_ids) - len(result)
        if missing:
            logger.warning(
                "questions_unresolved",
                extra={"requested": len(question_ids), "missing": missing},
            )
        return result

    def get_correct_answers(self, question_ids: Sequence[str]) -> dict[str, set[int]]:
        """Correct-answer sets for every resolvable id, fetched in one batch."""
        return {qid: _decode_correct(q) for qid, q in self._fetch(question_ids).items()}

    def get_one(self, question_id: str) -> QuestionWithAnswers | None:
        """Single question with correctness data (study feedback)."""
        found = self.get_by_ids([question_id], include_answers=True)
        return found[0] if found else None

    def list_question_ids(
        self,
        exam_id: str,
        objective_ids: Sequence[str] | None = None,
    ) -> list[str]:
        """Ids of an exam's active questions in stable bank order."""
        stmt = select(Question.id).where(Question.exam_id == exam_id, Question.is_active.is_(True))
        if objective_ids:
            stmt = stmt.where(Question.objective_id.in_(list(objective_ids)))
        stmt = stmt.order_by(Question.created_at, Question.id)
        return list(self.db.execute(stmt).scalars().all())

    def get_exam(self, exam_id: str) -> Exam | None:
        return self.db.get(Exam, exam_id)
