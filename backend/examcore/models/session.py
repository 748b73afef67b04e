"""Study and test session models for the session engine.

Timestamps are unix seconds. ``questions_order`` is written once at creation
and defines the positional semantics of every later read.
"""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    text,
)
from sqlalchemy.orm import relationship

from examcore.db.base import Base, JSONCollection


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class StudySessionStatus(str, PyEnum):
    """Study session status."""

    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class TestSessionStatus(str, PyEnum):
    """Test session status."""

    __test__ = False  # not a pytest class

    ACTIVE = "active"
    PAUSED = "paused"
    SUBMITTED = "submitted"
    EXPIRED = "expired"
    ABANDONED = "abandoned"


class StudyMode(str, PyEnum):
    """How a study session's questions were chosen."""

    SEQUENTIAL = "sequential"
    RANDOM = "random"
    FLAGGED = "flagged"
    INCORRECT = "incorrect"
    WEAK_AREAS = "weak_areas"


# Statuses a session may still be mutated in
OPEN_STUDY_STATUSES = (StudySessionStatus.ACTIVE, StudySessionStatus.PAUSED)
OPEN_TEST_STATUSES = (TestSessionStatus.ACTIVE, TestSessionStatus.PAUSED)
# Statuses that carry a results bundle
SCORED_TEST_STATUSES = (TestSessionStatus.SUBMITTED, TestSessionStatus.EXPIRED)


class StudySession(Base):
    """Untimed practice attempt with immediate per-question feedback."""

    __tablename__ = "study_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    exam_id = Column(String(64), ForeignKey("exams.id", onupdate="CASCADE"), nullable=False)

    status = Column(
        Enum(
            StudySessionStatus,
            name="study_session_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=StudySessionStatus.ACTIVE,
    )
    mode = Column(
        Enum(StudyMode, name="study_mode", native_enum=False, values_callable=_enum_values),
        nullable=False,
        default=StudyMode.SEQUENTIAL,
    )

    # Ordering (immutable after creation)
    questions_order = Column(JSONCollection, nullable=False)  # [question_id, ...]
    total_questions = Column(Integer, nullable=False)
    current_question_index = Column(Integer, nullable=False, default=0)

    # Running counters
    correct_answers = Column(Integer, nullable=False, default=0)
    incorrect_answers = Column(Integer, nullable=False, default=0)
    skipped_answers = Column(Integer, nullable=False, default=0)

    # {question_id: {selected_answers, is_correct, time_spent, answered_at}}
    answers = Column(JSONCollection, nullable=False, default=dict)
    bookmarks = Column(JSONCollection, nullable=False, default=list)  # [question_id, ...]
    flags = Column(JSONCollection, nullable=False, default=list)  # [question_id, ...]

    started_at = Column(BigInteger, nullable=False)
    last_activity_at = Column(BigInteger, nullable=False)
    completed_at = Column(BigInteger, nullable=True)
    time_spent_seconds = Column(Integer, nullable=False, default=0)

    # Display settings
    show_explanations = Column(Boolean, nullable=False, default=True)
    show_timer = Column(Boolean, nullable=False, default=True)
    auto_advance = Column(Boolean, nullable=False, default=False)

    # Optimistic concurrency token
    version = Column(Integer, nullable=False)

    exam = relationship("Exam")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_study_sessions_user_activity", "user_id", "last_activity_at"),
        Index(
            "uq_study_sessions_one_active",
            "user_id",
            "exam_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )


class TestSession(Base):
    """Timed, graded attempt; correct answers are withheld until submission."""

    __test__ = False  # not a pytest class

    __tablename__ = "test_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    exam_id = Column(String(64), ForeignKey("exams.id", onupdate="CASCADE"), nullable=False)

    status = Column(
        Enum(
            TestSessionStatus,
            name="test_session_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=TestSessionStatus.ACTIVE,
    )

    # Configuration captured at creation
    time_limit_seconds = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    passing_score = Column(Float, nullable=False)  # percentage, 0-100

    # Ordering (randomized once, immutable after creation)
    questions_order = Column(JSONCollection, nullable=False)  # [question_id, ...]
    current_question_index = Column(Integer, nullable=False, default=0)

    # Progress; answers are keyed by position so no correctness data travels with them
    answered_count = Column(Integer, nullable=False, default=0)
    flagged_count = Column(Integer, nullable=False, default=0)
    answers = Column(JSONCollection, nullable=False, default=dict)  # {"0": [1, 3], ...}
    flagged = Column(JSONCollection, nullable=False, default=list)  # [position, ...]

    started_at = Column(BigInteger, nullable=False)
    last_activity_at = Column(BigInteger, nullable=False)
    submitted_at = Column(BigInteger, nullable=True)
    time_remaining_seconds = Column(Integer, nullable=False)

    # Results (write-once, null until submission)
    score = Column(Float, nullable=True)
    correct_count = Column(Integer, nullable=True)
    incorrect_count = Column(Integer, nullable=True)
    unanswered_count = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=True)

    # Auto-save bookkeeping
    last_auto_save_at = Column(BigInteger, nullable=True)
    auto_save_count = Column(Integer, nullable=False, default=0)

    # Optimistic concurrency token
    version = Column(Integer, nullable=False)

    exam = relationship("Exam")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_test_sessions_user_started", "user_id", "started_at"),
        Index("ix_test_sessions_status", "status"),
        Index(
            "uq_test_sessions_one_active",
            "user_id",
            "exam_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )
