"""
Recurring schedule store: sections with their weekly slots and enrolled students.
"""
import logging
from typing import Any, Dict, List

from pymongo.errors import PyMongoError

from attendance_engine.exceptions.base import ConflictError, DatabaseError, NotFoundError
from attendance_engine.repositories.mongo_repository import SECTIONS, id_filter, ref_filter
from attendance_engine.schemas.models import Section

logger = logging.getLogger(__name__)


class SectionRepository:
    """Repository for the `sections` collection."""

    def __init__(self, db):
        self.collection = db[SECTIONS]

    def get_document(self, section_id: str) -> Dict[str, Any]:
        try:
            doc = self.collection.find_one(id_filter(section_id))
        except PyMongoError as e:
            raise DatabaseError(f"Failed to load section {section_id}: {e}") from e
        if not doc:
            raise NotFoundError(f"Section '{section_id}' not found", details={"section_id": section_id})
        return doc

    def get(self, section_id: str) -> Section:
        return Section.from_document(self.get_document(section_id))

    def get_slots(self, section_id: str):
        return self.get(section_id).slots

    def find_by_teacher_and_day(self, teacher_id: str, weekday: str) -> List[Section]:
        """Sections owned by a teacher that meet on the given weekday."""
        try:
            query = ref_filter("teacher_id", teacher_id)
            query["slots.days"] = weekday
            docs = self.collection.find(query)
            return [Section.from_document(doc) for doc in docs]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to query sections for teacher {teacher_id}: {e}") from e

    def find_by_student_and_day(self, student_id: str, weekday: str) -> List[Section]:
        """Sections a student is enrolled in that meet on the given weekday."""
        try:
            query = ref_filter("students", student_id)
            query["slots.days"] = weekday
            return [Section.from_document(doc) for doc in self.collection.find(query)]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to query sections for student {student_id}: {e}") from e

    def find_by_room_and_day(self, room: str, weekday: str) -> List[Section]:
        """Sections held in a room that meet on the given weekday."""
        try:
            docs = self.collection.find({"room": room, "slots.days": weekday})
            return [Section.from_document(doc) for doc in docs]
        except PyMongoError as e:
            raise DatabaseError(f"Failed to query sections for room {room}: {e}") from e

    def append_slots(self, section_id: str, expected_slots: List[dict], new_slots: List[dict]) -> None:
        """
        Append slots only if the stored slot list still equals `expected_slots`.

        The caller ran conflict detection against `expected_slots`; if another
        writer changed the timetable in between, nothing is written and a
        ConflictError is raised.
        """
        query = id_filter(section_id)
        if expected_slots:
            query["slots"] = expected_slots
        else:
            query["$or"] = [{"slots": {"$exists": False}}, {"slots": []}]

        try:
            result = self.collection.update_one(query, {"$push": {"slots": {"$each": new_slots}}})
        except PyMongoError as e:
            raise DatabaseError(f"Failed to update slots for section {section_id}: {e}") from e

        if result.matched_count == 0:
            # Distinguish a vanished section from a concurrent edit
            self.get_document(section_id)
            raise ConflictError(
                f"Timetable of section {section_id} changed concurrently, retry the request",
                details={"section_id": section_id},
            )
        logger.info(f"Added {len(new_slots)} permanent slot(s) to section {section_id}")
