"""
Persistent session store for materialized attendance sessions.
"""
import logging
import uuid
from typing import List, Optional

from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from attendance_engine.exceptions.base import (
    ConflictError,
    DatabaseError,
    DuplicateSessionError,
    LockedError,
    NotFoundError,
)
from attendance_engine.repositories.mongo_repository import SESSIONS
from attendance_engine.schemas.models import AttendanceSession

logger = logging.getLogger(__name__)


class SessionRepository:
    """Repository for the `attendance` collection."""

    def __init__(self, db):
        self.collection = db[SESSIONS]

    def _find(self, query: dict) -> List[AttendanceSession]:
        try:
            docs = self.collection.find(query).sort("start_time", ASCENDING)
            return [AttendanceSession.from_document(doc) for doc in docs]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to query sessions: {e}") from e

    def get(self, session_id: str) -> AttendanceSession:
        try:
            doc = self.collection.find_one({"_id": session_id})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to load session {session_id}: {e}") from e
        if not doc:
            raise NotFoundError("Session not found", details={"session_id": session_id})
        return AttendanceSession.from_document(doc)

    def find_by_key(self, section_id: str, date: str, start_time: str) -> Optional[AttendanceSession]:
        try:
            doc = self.collection.find_one({"section_id": section_id, "date": date, "start_time": start_time})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to look up session: {e}") from e
        return AttendanceSession.from_document(doc) if doc else None

    def find_by_section_and_date(self, section_id: str, date: str) -> List[AttendanceSession]:
        return self._find({"section_id": section_id, "date": date})

    def find_by_room_and_date(self, room: str, date: str) -> List[AttendanceSession]:
        return self._find({"room": room, "date": date})

    def find_by_marker_and_date(self, marked_by: str, date: str) -> List[AttendanceSession]:
        return self._find({"marked_by": marked_by, "date": date})

    def find_by_student_and_date(self, student_id: str, date: str) -> List[AttendanceSession]:
        return self._find({"students.student_id": student_id, "date": date})

    def find_locked_for_student(self, student_id: str) -> List[AttendanceSession]:
        return self._find({"students.student_id": student_id, "is_locked": True})

    def create(self, session: AttendanceSession) -> AttendanceSession:
        """
        Insert a new session.

        Raises:
            DuplicateSessionError: the (section, date, start time) key is taken
            DatabaseError: any other storage failure
        """
        if session.id is None:
            session.id = uuid.uuid4().hex
        session.recompute_totals()
        try:
            self.collection.insert_one(session.to_document())
        except DuplicateKeyError as e:
            raise DuplicateSessionError(session.section_id, session.date, session.start_time) from e
        except PyMongoError as e:
            raise DatabaseError(f"Failed to create session: {e}") from e
        logger.info(f"Created session {session.id} for section {session.section_id} "
                    f"on {session.date} at {session.start_time}")
        return session

    def save(self, session: AttendanceSession, allow_locked: bool = False) -> AttendanceSession:
        """
        Persist a session with an optimistic version check.

        Locked sessions are rejected unless `allow_locked` is set, which only the
        lock state machine does for its own transitions. Totals are recomputed
        on every save.
        """
        if session.is_locked and not allow_locked:
            raise LockedError("Session is locked", session.id, session.locked_at, session.lock_deadline)

        session.recompute_totals()
        query = {"_id": session.id, "version": session.version}
        if not allow_locked:
            query["is_locked"] = False

        doc = session.to_document()
        doc.pop("_id", None)
        doc["version"] = session.version + 1

        try:
            result = self.collection.update_one(query, {"$set": doc})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to save session {session.id}: {e}") from e

        if result.matched_count == 0:
            current = self.get(session.id)
            if current.is_locked and not allow_locked:
                raise LockedError("Session is locked", current.id, current.locked_at, current.lock_deadline)
            raise ConflictError(
                "Session was modified concurrently, reload and retry",
                details={"session_id": session.id, "expected_version": session.version,
                         "current_version": current.version},
            )

        session.version += 1
        return session
