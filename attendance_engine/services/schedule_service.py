"""
Schedule editing: permanent (recurring) slot insertion with conflict detection.
"""
import logging
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from attendance_engine.exceptions.base import ConflictError, ValidationError
from attendance_engine.repositories.section_repository import SectionRepository
from attendance_engine.schemas.models import Section, Slot
from attendance_engine.services import conflict_detector
from attendance_engine.services.conflict_detector import Booking

logger = logging.getLogger(__name__)


class ScheduleService:
    """Mutates a section's weekly timetable, keeping its slots non-overlapping."""

    def __init__(self, section_repository: SectionRepository):
        self.sections = section_repository

    def add_permanent_slot(self, section_id: str, days: List[str], start_time: str,
                           end_time: Optional[str] = None) -> Section:
        """
        Add a recurring slot on the given weekdays.

        The end time defaults to start + the standard class length. Either the
        slot is added for every requested day, or a ConflictError naming the
        colliding slot is raised and nothing is written.
        """
        try:
            slot = Slot(days=days, start_time=start_time, end_time=end_time)
        except PydanticValidationError as e:
            raise ValidationError("Invalid slot", details={"errors": [err["msg"] for err in e.errors()]}) from e
        doc = self.sections.get_document(section_id)
        section = Section.from_document(doc)

        existing = conflict_detector.slot_bookings(section)
        for day in slot.days:
            candidate = Booking.from_times(conflict_detector.section_day_scope(section.id, day),
                                           slot.start_time, slot.end_time)
            clash = conflict_detector.find_conflict(existing, candidate)
            if clash is not None:
                described = clash.describe()
                raise ConflictError(
                    f"Section {section.name or section.id} already meets on {day} "
                    f"from {described['start_time']} to {described['end_time']}",
                    booking=described,
                )

        self.sections.append_slots(section_id, doc.get("slots", []), [slot.model_dump()])
        logger.info(f"Added permanent slot {slot.start_time}-{slot.end_time} on {', '.join(slot.days)} "
                    f"to section {section.id}")
        section.slots.append(slot)
        return section
