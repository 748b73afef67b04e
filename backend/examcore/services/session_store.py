"""Session store: persistence of study and test session records.

Every mutation is a single-record transaction. Structured blobs (answer
maps, flag sets) are merged under a row lock rather than written back
whole, and each row carries an optimistic ``version`` so an interleaved
writer surfaces as ``ConflictError`` instead of a silent lost update.
"""

from collections.abc import Callable, Mapping
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy import desc, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from examcore.core.app_exceptions import ConflictError, InvalidStateError, NotFoundError
from examcore.core.logging import get_logger
from examcore.models.session import StudySession, TestSession
from examcore.services.collections import decode_map

logger = get_logger(__name__)

SessionRecord = TypeVar("SessionRecord", StudySession, TestSession)

_LABELS = {StudySession: "Study session", TestSession: "Test session"}


def _as_uuid(session_id: UUID | str) -> UUID:
    if isinstance(session_id, UUID):
        return session_id
    try:
        return UUID(str(session_id))
    except ValueError:
        raise NotFoundError("Session not found", details={"session_id": str(session_id)}) from None


class SessionStore:
    """Reads and writes session rows for one database session."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, model: type[SessionRecord], session_id: UUID | str) -> SessionRecord | None:
        return self.db.get(model, _as_uuid(session_id), populate_existing=True)

    def require(self, model: type[SessionRecord], session_id: UUID | str) -> SessionRecord:
        """Fetch a session or raise ``NotFoundError``."""
        record = self.get(model, session_id)
        if record is None:
            raise NotFoundError(
                f"{_LABELS[model]} not found",
                code="SESSION_NOT_FOUND",
                details={"session_id": str(session_id)},
            )
        return record

    def lock(self, model: type[SessionRecord], session_id: UUID | str) -> SessionRecord:
        """Fetch a session for a read-modify-write, taking a row lock where supported."""
        stmt = (
            select(model)
            .where(model.id == _as_uuid(session_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        record = self.db.execute(stmt).scalar_one_or_none()
        if record is None:
            raise NotFoundError(
                f"{_LABELS[model]} not found",
                code="SESSION_NOT_FOUND",
                details={"session_id": str(session_id)},
            )
        return record

    def find_active(
        self,
        model: type[SessionRecord],
        user_id: str,
        exam_id: str | None = None,
    ) -> SessionRecord | None:
        """Most recently active ``active`` session of a user, optionally per exam."""
        stmt = select(model).where(model.user_id == user_id, model.status == "active")
        if exam_id:
            stmt = stmt.where(model.exam_id == exam_id)
        stmt = stmt.order_by(desc(model.last_activity_at)).limit(1)
        return self.db.execute(stmt).scalars().first()

    def list_for_user(
        self,
        model: type[SessionRecord],
        user_id: str,
        exam_id: str | None = None,
    ) -> list[SessionRecord]:
        stmt = select(model).where(model.user_id == user_id)
        if exam_id:
            stmt = stmt.where(model.exam_id == exam_id)
        stmt = stmt.order_by(desc(model.started_at))
        return list(self.db.execute(stmt).scalars().all())

    def count_for_user(self, model: type[SessionRecord], user_id: str, exam_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(model).where(model.user_id == user_id)
        if exam_id:
            stmt = stmt.where(model.exam_id == exam_id)
        return int(self.db.execute(stmt).scalar_one())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _commit(self, record: Any) -> None:
        try:
            self.db.commit()
        except StaleDataError as e:
            self.db.rollback()
            logger.warning(
                "session_write_conflict",
                extra={"session_id": str(getattr(record, "id", None))},
            )
            raise ConflictError(
                "Session was modified concurrently; reload and retry",
                details={"session_id": str(getattr(record, "id", None))},
            ) from e

    def insert(self, record: SessionRecord) -> SessionRecord:
        """Persist a new session row."""
        self.db.add(record)
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if "unique" in str(e.orig).lower():
                raise InvalidStateError(
                    "An active session already exists for this user and exam",
                    code="ACTIVE_SESSION_EXISTS",
                    details={"user_id": record.user_id, "exam_id": record.exam_id},
                ) from e
            raise
        self._commit(record)
        return record

    def update(self, record: SessionRecord, **fields: Any) -> SessionRecord:
        """Set plain fields on a loaded record and commit."""
        for name, value in fields.items():
            setattr(record, name, value)
        self._commit(record)
        return record

    def mutate(
        self,
        model: type[SessionRecord],
        session_id: UUID | str,
        apply: Callable[[SessionRecord], None],
    ) -> SessionRecord:
        """Locked read-modify-write: ``apply`` mutates the fresh row, then commit."""
        record = self.lock(model, session_id)
        try:
            apply(record)
        except Exception:
            self.db.rollback()
            raise
        self._commit(record)
        return record

    def merge_answers(
        self,
        model: type[SessionRecord],
        session_id: UUID | str,
        partial: Mapping[Any, Any],
    ) -> SessionRecord:
        """Transactionally merge a partial answer map into a session's stored map."""
        return self.mutate(model, session_id, lambda record: merge_answer_map(record, partial))


def merge_answer_map(record: StudySession | TestSession, partial: Mapping[Any, Any]) -> dict[str, Any]:
    """
    Merge a partial answer map into a record's stored map, in memory.

    Keys mapped to ``None`` or an empty selection are removed. Callers hold
    the row through ``SessionStore.mutate`` so the merge and the write are
    one transaction.

    Returns:
        The merged map, as assigned to ``record.answers``
    """
    merged = decode_map(record.answers, field="answers", record_id=record.id)
    for key, value in partial.items():
        if value is None or (isinstance(value, list) and not value):
            merged.pop(str(key), None)
        else:
            merged[str(key)] = value
    record.answers = merged
    return merged
