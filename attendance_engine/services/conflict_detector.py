"""
Conflict detection for room and timetable bookings.

Bookings are half-open intervals [start, end) in minutes since midnight,
scoped by a key: room + date for one-off sessions, section + weekday for
permanent slots. Two bookings conflict iff they share the scope and
existing.start < candidate.end and existing.end > candidate.start, so a class
ending at 10:50 never collides with one starting at 10:50.
"""
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel

from attendance_engine.schemas.models import AttendanceSession, Section
from attendance_engine.utils.time_utils import format_minutes, parse_time


class Booking(BaseModel):
    scope: str
    start: int
    end: int
    reference: Dict[str, Any] = {}

    @classmethod
    def from_times(cls, scope: str, start_time: str, end_time: str, **reference) -> "Booking":
        return cls(scope=scope, start=parse_time(start_time), end=parse_time(end_time), reference=reference)

    def describe(self) -> Dict[str, Any]:
        return {
            **self.reference,
            "start_time": format_minutes(self.start),
            "end_time": format_minutes(self.end),
        }


def room_scope(room: str, date: str) -> str:
    return f"room:{room.strip()}|date:{date}"


def section_day_scope(section_id: str, weekday: str) -> str:
    return f"section:{section_id}|day:{weekday}"


def section_date_scope(section_id: str, date: str) -> str:
    return f"section:{section_id}|date:{date}"


def overlaps(a: Booking, b: Booking) -> bool:
    return a.scope == b.scope and a.start < b.end and a.end > b.start


def find_conflict(existing_bookings: Iterable[Booking], candidate: Booking) -> Optional[Booking]:
    """Return the first existing booking colliding with the candidate, if any."""
    for booking in existing_bookings:
        if overlaps(booking, candidate):
            return booking
    return None


def has_conflict(existing_bookings: Iterable[Booking], candidate: Booking) -> bool:
    return find_conflict(existing_bookings, candidate) is not None


def room_bookings(sessions: Iterable[AttendanceSession]) -> List[Booking]:
    """Room-scoped bookings for sessions already stored on a date."""
    return [
        Booking.from_times(
            room_scope(s.room, s.date), s.start_time, s.end_time,
            session_id=s.id, section_id=s.section_id, room=s.room, date=s.date,
        )
        for s in sessions
    ]


def section_date_bookings(sessions: Iterable[AttendanceSession]) -> List[Booking]:
    """Section-scoped bookings for sessions already stored on a date."""
    return [
        Booking.from_times(
            section_date_scope(s.section_id, s.date), s.start_time, s.end_time,
            session_id=s.id, section_id=s.section_id, room=s.room, date=s.date,
        )
        for s in sessions
    ]


def slot_bookings(section: Section) -> List[Booking]:
    """One booking per (slot, weekday) of a section's permanent timetable."""
    bookings = []
    for index, slot in enumerate(section.slots):
        for day in slot.days:
            bookings.append(Booking.from_times(
                section_day_scope(section.id, day), slot.start_time, slot.end_time,
                section_id=section.id, day=day, slot_index=index,
            ))
    return bookings
