"""Scoring engine for test sessions."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from examcore.core.logging import get_logger
from examcore.models.session import TestSession
from examcore.services.answer_validator import validate
from examcore.services.collections import decode_id_list, decode_map
from examcore.services.question_bank import QuestionBankReader

logger = get_logger(__name__)


@dataclass(frozen=True)
class ScoreResult:
    """Outcome of scoring one test session."""

    score: float
    correct_count: int
    incorrect_count: int
    unanswered_count: int
    passed: bool


def _selection_at(answers: Mapping[str, Any], position: int) -> list[int]:
    selected = answers.get(str(position))
    if not isinstance(selected, list):
        return []
    return [item for item in selected if isinstance(item, int) and not isinstance(item, bool)]


def compute_score(
    questions_order: Sequence[str],
    answers: Mapping[str, Any],
    correct_sets: Mapping[str, set[int]],
    total_questions: int,
    passing_score: float,
) -> ScoreResult:
    """
    Score recorded answers against correct-answer sets.

    Positions are walked in ``questions_order``. A position with no (or an
    empty) recorded selection is unanswered. A position whose question no
    longer resolves in the bank counts as incorrect whether or not it was
    answered, so deleted questions can never inflate a score.

    Args:
        questions_order: Question ids in session order
        answers: Position (as string) -> selected option indices
        correct_sets: Question id -> correct option indices, for resolvable ids
        total_questions: Denominator captured at session creation
        passing_score: Pass mark as a percentage

    Returns:
        Score result
    """
    correct_count = 0
    incorrect_count = 0
    unanswered_count = 0

    for position, question_id in enumerate(questions_order):
        correct = correct_sets.get(question_id)
        if correct is None:
            incorrect_count += 1
            continue
        selected = _selection_at(answers, position)
        if not selected:
            unanswered_count += 1
        elif validate(correct, selected):
            correct_count += 1
        else:
            incorrect_count += 1

    score = (correct_count / total_questions) * 100 if total_questions > 0 else 0.0

    return ScoreResult(
        score=float(score),
        correct_count=correct_count,
        incorrect_count=incorrect_count,
        unanswered_count=unanswered_count,
        passed=score >= passing_score,
    )


class ScoringEngine:
    """Scores a test session against the question bank."""

    def __init__(self, question_bank: QuestionBankReader):
        self.question_bank = question_bank

    def score(self, session: TestSession) -> ScoreResult:
        questions_order = decode_id_list(
            session.questions_order, field="questions_order", record_id=session.id
        )
        answers = decode_map(session.answers, field="answers", record_id=session.id)
        # One batch for the whole order
        correct_sets = self.question_bank.get_correct_answers(questions_order)

        result = compute_score(
            questions_order,
            answers,
            correct_sets,
            total_questions=session.total_questions,
            passing_score=session.passing_score,
        )
        logger.info(
            "session_scored",
            extra={
                "session_id": str(session.id),
                "score": result.score,
                "correct": result.correct_count,
                "incorrect": result.incorrect_count,
                "unanswered": result.unanswered_count,
                "unresolved": len(questions_order) - len(correct_sets),
            },
        )
        return result
