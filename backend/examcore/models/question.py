"""Question bank models (read-only from the session engine's point of view)."""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from examcore.db.base import Base, JSONCollection


class Exam(Base):
    """Certification exam a question bank belongs to."""

    __tablename__ = "exams"

    id = Column(String(64), primary_key=True)
    code = Column(String(32), nullable=False, index=True)  # e.g. "N10-008"
    name = Column(String(255), nullable=False)
    passing_score = Column(Float, nullable=True)  # percentage, 0-100
    duration_seconds = Column(Integer, nullable=True)
    question_count = Column(Integer, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(BigInteger, nullable=True)

    questions = relationship("Question", back_populates="exam")


class Question(Base):
    """Question with its options and correct-answer set."""

    __tablename__ = "questions"

    id = Column(String(64), primary_key=True)
    exam_id = Column(String(64), ForeignKey("exams.id", onupdate="CASCADE"), nullable=False)
    objective_id = Column(String(64), nullable=True)

    question_text = Column(Text, nullable=False)
    question_type = Column(String(32), nullable=False, default="multiple-choice")
    options = Column(JSONCollection, nullable=False, default=list)  # ["opt A", "opt B", ...]

    # Sensitive: never serialized to a test-mode caller
    correct_answers = Column(JSONCollection, nullable=False, default=list)  # [0, 2]
    explanation = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(BigInteger, nullable=True)

    exam = relationship("Exam", back_populates="questions")

    __table_args__ = (
        Index("ix_questions_exam_active", "exam_id", "is_active"),
        Index("ix_questions_objective", "objective_id"),
    )
