"""
Session Materializer
Turns the recurring weekly timetable into dated attendance sessions.

Creation relies on the unique (section, date, start time) index: two callers
racing to create the same session both succeed, one by inserting and the
other by reading back the winner's document.
"""
import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union

from attendance_engine.exceptions.base import (
    ConflictError,
    DatabaseError,
    DuplicateSessionError,
    ForbiddenError,
    LockedError,
    ValidationError,
)
from attendance_engine.repositories.section_repository import SectionRepository
from attendance_engine.repositories.session_repository import SessionRepository
from attendance_engine.schemas.models import (
    AdHocOutcome,
    AttendanceSession,
    AttendanceStatus,
    RosterEntry,
    Section,
    Slot,
)
from attendance_engine.services import conflict_detector
from attendance_engine.services.conflict_detector import Booking
from attendance_engine.services.lock_state import LockStateMachine
from attendance_engine.utils.time_utils import (
    compute_end_time,
    local_instant,
    normalize_time,
    parse_date,
    utc_now,
    weekday_name,
)

logger = logging.getLogger(__name__)


class SessionMaterializer:
    """Creates and syncs the concrete sessions of a section for a date."""

    def __init__(self, section_repository: SectionRepository,
                 session_repository: SessionRepository,
                 lock_machine: LockStateMachine,
                 clock: Callable[[], datetime] = utc_now,
                 tz_name: Optional[str] = None):
        self.sections = section_repository
        self.sessions = session_repository
        self.lock_machine = lock_machine
        self.clock = clock
        self.tz_name = tz_name

    def resolve_date(self, value: Union[str, date, datetime, None]) -> date:
        return parse_date(value, self.tz_name, self.clock())

    def _build_session(self, section: Section, day: date, start_time: str, end_time: str,
                       room: str, marked_by: Optional[str], is_extra_class: bool = False,
                       topic: Optional[str] = None) -> AttendanceSession:
        now = self.clock()
        roster = [RosterEntry(student_id=sid, status=AttendanceStatus.ABSENT) for sid in section.students]
        return AttendanceSession(
            section_id=section.id,
            course_id=section.course_id,
            marked_by=marked_by,
            date=day.isoformat(),
            day=weekday_name(day),
            start_time=start_time,
            end_time=end_time,
            room=room,
            topic=topic,
            is_extra_class=is_extra_class,
            is_locked=False,
            lock_deadline=self.lock_machine.new_deadline(now),
            students=roster,
            created_at=now,
            updated_at=now,
        )

    def _create_or_get(self, session: AttendanceSession) -> AttendanceSession:
        try:
            return self.sessions.create(session)
        except DuplicateSessionError:
            existing = self.sessions.find_by_key(*session.key)
            if existing is None:
                raise DatabaseError("Session reported as duplicate but could not be read back",
                                    details={"key": list(session.key)})
            logger.info(f"Session for section {session.section_id} on {session.date} at "
                        f"{session.start_time} was created concurrently, reusing {existing.id}")
            return existing

    def _sync_with_slot(self, session: AttendanceSession, section: Section, slot: Slot) -> AttendanceSession:
        """Bring an open recurring session in line with the current timetable."""
        if session.is_extra_class or session.is_locked:
            return session

        changes: Dict[str, tuple] = {}
        if session.room != section.room:
            changes["room"] = (session.room, section.room)
        if session.end_time != slot.end_time:
            changes["end_time"] = (session.end_time, slot.end_time)
        if not changes:
            return session
        # Expiry is only enforced once something would actually be written
        if self.lock_machine.expire_if_due(session):
            return session

        session.room = section.room
        session.end_time = slot.end_time
        session.updated_at = self.clock()
        try:
            self.sessions.save(session)
        except (ConflictError, LockedError):
            logger.info(f"Session {session.id} changed while syncing, keeping stored state")
            return self.sessions.get(session.id)
        logger.info(f"Synced session {session.id} with timetable: {changes}")
        return session

    def ensure_sessions_for(self, section: Union[Section, str],
                            target_date: Union[str, date, datetime, None] = None) -> List[AttendanceSession]:
        """
        Return the sessions that should exist for `section` on `target_date`,
        creating missing ones. Safe to call repeatedly and concurrently.
        """
        if not isinstance(section, Section):
            section = self.sections.get(section)
        day = self.resolve_date(target_date)
        weekday = weekday_name(day)

        result = []
        for slot in section.slots_on(weekday):
            existing = self.sessions.find_by_key(section.id, day.isoformat(), slot.start_time)
            if existing is not None:
                result.append(self._sync_with_slot(existing, section, slot))
                continue

            session = self._build_session(section, day, slot.start_time, slot.end_time,
                                          section.room, section.teacher_id)
            result.append(self._create_or_get(session))

        result.sort(key=lambda s: s.start_time)
        return result

    def sessions_for_section(self, section_id: str,
                             target_date: Union[str, date, datetime, None] = None) -> List[AttendanceSession]:
        """Materialize recurring sessions, then list every session of the day including extra classes."""
        section = self.sections.get(section_id)
        day = self.resolve_date(target_date)
        self.ensure_sessions_for(section, day)
        return self.sessions.find_by_section_and_date(section.id, day.isoformat())

    def ensure_sessions_for_teacher(self, teacher_id: str,
                                    target_date: Union[str, date, datetime, None] = None) -> List[AttendanceSession]:
        """Materialize every section the teacher holds that day and list the teacher's sessions."""
        day = self.resolve_date(target_date)
        sessions: Dict[str, AttendanceSession] = {}

        sections = self.sections.find_by_teacher_and_day(teacher_id, weekday_name(day))
        logger.info(f"Materializing {len(sections)} section(s) for teacher {teacher_id} on {day.isoformat()}")
        for section in sections:
            for session in self.ensure_sessions_for(section, day):
                sessions[session.id] = session

        for session in self.sessions.find_by_marker_and_date(teacher_id, day.isoformat()):
            sessions.setdefault(session.id, session)

        return sorted(sessions.values(), key=lambda s: (s.start_time, s.section_id))

    def sessions_for_student(self, student_id: str,
                             target_date: Union[str, date, datetime, None] = None) -> List[AttendanceSession]:
        """Student schedule: materialize every enrolled section meeting that day, extra classes included."""
        day = self.resolve_date(target_date)
        sessions: Dict[str, AttendanceSession] = {}

        for section in self.sections.find_by_student_and_day(student_id, weekday_name(day)):
            for session in self.ensure_sessions_for(section, day):
                # Sessions materialized before the student enrolled do not list them
                if session.roster_entry(student_id) is None:
                    continue
                sessions[session.id] = session

        for session in self.sessions.find_by_student_and_date(student_id, day.isoformat()):
            sessions.setdefault(session.id, session)

        return sorted(sessions.values(), key=lambda s: (s.start_time, s.section_id))

    def student_view(self, session: AttendanceSession, student_id: str) -> Dict[str, Any]:
        """
        One student's own record in a session.

        Before the class starts the status reads "Not Started" whatever the
        stored roster entry says.
        """
        entry = session.roster_entry(student_id)
        if entry is None:
            raise ForbiddenError("Student is not enrolled in this session",
                                 details={"session_id": session.id, "student_id": student_id})

        starts_at = local_instant(session.date, session.start_time, self.tz_name)
        status = "Not Started" if self.clock() < starts_at else entry.status
        view = session.summary()
        view.update({
            "student_id": student_id,
            "my_status": status,
            "marked_at": entry.marked_at.isoformat() if entry.marked_at else None,
            "confidence": entry.confidence,
        })
        return view

    def _existing_bookings(self, section: Section, room: str, day: date) -> List[Booking]:
        """Everything already occupying the room or the section on a date."""
        iso = day.isoformat()
        weekday = weekday_name(day)

        room_sessions = self.sessions.find_by_room_and_date(room, iso)
        section_sessions = self.sessions.find_by_section_and_date(section.id, iso)
        bookings = conflict_detector.room_bookings(room_sessions)
        bookings += conflict_detector.section_date_bookings(section_sessions)

        # Recurring slots that have not been materialized yet still occupy their room
        stored = {(s.section_id, s.start_time) for s in room_sessions + section_sessions}
        room_sections = {s.id: s for s in self.sections.find_by_room_and_day(room, weekday)}
        room_sections.setdefault(section.id, section)
        for other in room_sections.values():
            for slot in other.slots_on(weekday):
                if (other.id, slot.start_time) in stored:
                    continue
                reference = dict(section_id=other.id, room=other.room, date=iso, recurring=True)
                if other.room == room:
                    bookings.append(Booking.from_times(conflict_detector.room_scope(room, iso),
                                                       slot.start_time, slot.end_time, **reference))
                if other.id == section.id:
                    bookings.append(Booking.from_times(conflict_detector.section_date_scope(section.id, iso),
                                                       slot.start_time, slot.end_time, **reference))
        return bookings

    def create_adhoc_sessions(self, section_id: str, target_date: Union[str, date, datetime, None],
                              time_slots: List[str], marked_by: Optional[str] = None,
                              room: Optional[str] = None, topic: Optional[str] = None,
                              duration_minutes: Optional[int] = None) -> List[AdHocOutcome]:
        """
        Create extra (non-recurring) sessions, one per requested start time.

        Each slot succeeds or fails on its own: a colliding slot is reported
        with the booking it collides with and nothing is written for it.
        """
        if not time_slots:
            raise ValidationError("At least one time slot is required")
        section = self.sections.get(section_id)
        day = self.resolve_date(target_date)
        room = (room or section.room).strip()
        marker = marked_by or section.teacher_id

        bookings = self._existing_bookings(section, room, day)
        outcomes = []
        for raw_start in time_slots:
            try:
                start_time = normalize_time(raw_start)
                end_time = compute_end_time(start_time, duration_minutes)
            except ValidationError as e:
                outcomes.append(AdHocOutcome(start_time=str(raw_start), error=e.message))
                continue

            candidates = [
                Booking.from_times(conflict_detector.room_scope(room, day.isoformat()), start_time, end_time),
                Booking.from_times(conflict_detector.section_date_scope(section.id, day.isoformat()),
                                   start_time, end_time),
            ]
            clash = next(
                (hit for hit in (conflict_detector.find_conflict(bookings, c) for c in candidates) if hit),
                None,
            )
            if clash is not None:
                described = clash.describe()
                logger.warning(f"Extra class for section {section.id} at {start_time}-{end_time} "
                               f"clashes with {described}")
                outcomes.append(AdHocOutcome(
                    start_time=start_time, end_time=end_time, conflict=described,
                    error=f"Clash: {room} is busy from {described['start_time']} to {described['end_time']}",
                ))
                continue

            session = self._build_session(section, day, start_time, end_time, room, marker,
                                          is_extra_class=True, topic=topic)
            try:
                session = self.sessions.create(session)
            except DuplicateSessionError:
                existing = self.sessions.find_by_key(*session.key)
                described = {"session_id": existing.id if existing else None,
                             "section_id": section.id, "date": day.isoformat(),
                             "start_time": start_time,
                             "end_time": existing.end_time if existing else end_time}
                outcomes.append(AdHocOutcome(start_time=start_time, end_time=end_time, conflict=described,
                                             error=f"A session already exists at {start_time}"))
                continue

            bookings += conflict_detector.room_bookings([session])
            bookings += conflict_detector.section_date_bookings([session])
            outcomes.append(AdHocOutcome(start_time=start_time, end_time=end_time, session_id=session.id))

        created = sum(1 for o in outcomes if o.created)
        logger.info(f"Created {created}/{len(outcomes)} extra class(es) for section {section.id} on {day.isoformat()}")
        return outcomes
