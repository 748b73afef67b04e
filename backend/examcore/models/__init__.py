"""Database models."""

# Import all models here so metadata.create_all sees every table
from examcore.models.question import Exam, Question
from examcore.models.session import (
    StudyMode,
    StudySession,
    StudySessionStatus,
    TestSession,
    TestSessionStatus,
)

__all__ = [
    "Exam",
    "Question",
    "StudyMode",
    "StudySession",
    "StudySessionStatus",
    "TestSession",
    "TestSessionStatus",
]
