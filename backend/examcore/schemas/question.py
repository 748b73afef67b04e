"""Pydantic schemas for question bank reads."""

from pydantic import BaseModel, ConfigDict, Field


class QuestionPublic(BaseModel):
    """Question as shown to a test-mode caller: no correctness data at all."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    exam_id: str
    objective_id: str | None = None
    question_text: str
    question_type: str
    options: list[str] = Field(default_factory=list)


class QuestionWithAnswers(QuestionPublic):
    """Question as shown to a study-mode caller."""

    correct_answers: list[int] = Field(default_factory=list)
    explanation: str | None = None


class ExamSummary(BaseModel):
    """Exam metadata used for display joins."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    name: str
    passing_score: float | None = None
    duration_seconds: int | None = None
    question_count: int | None = None
    is_active: bool = True
