"""
Roster source: read-only access to student profiles.
"""
import logging
from typing import Dict, Iterable

from bson import ObjectId
from pymongo.errors import PyMongoError

from attendance_engine.exceptions.base import DatabaseError
from attendance_engine.repositories.mongo_repository import STUDENTS
from attendance_engine.schemas.models import Student

logger = logging.getLogger(__name__)


class StudentRepository:
    """Repository for the `students` collection."""

    def __init__(self, db):
        self.collection = db[STUDENTS]

    def get_many(self, student_ids: Iterable[str]) -> Dict[str, Student]:
        """Load students keyed by their string id. Unknown ids are skipped."""
        ids = list(dict.fromkeys(student_ids))
        if not ids:
            return {}

        lookup = []
        for sid in ids:
            lookup.append(sid)
            if ObjectId.is_valid(sid):
                lookup.append(ObjectId(sid))

        try:
            docs = self.collection.find({"_id": {"$in": lookup}})
            students = {str(doc["_id"]): Student.from_document(doc) for doc in docs}
        except PyMongoError as e:
            raise DatabaseError(f"Failed to load students: {e}") from e

        missing = [sid for sid in ids if sid not in students]
        if missing:
            logger.warning(f"{len(missing)} roster student(s) have no profile: {missing}")
        return students
