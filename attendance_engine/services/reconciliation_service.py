"""
Reconciliation Engine
Applies recognition output to a session roster and finalizes the session.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from attendance_engine.exceptions.base import (
    ConflictError,
    LockedError,
    NotFoundError,
    RequestCancelledError,
)
from attendance_engine.repositories.session_repository import SessionRepository
from attendance_engine.repositories.student_repository import StudentRepository
from attendance_engine.schemas.models import (
    AttendanceSession,
    AttendanceStatus,
    RecognitionResult,
    ReconciliationOutcome,
    RosterView,
)
from attendance_engine.services.lock_state import LockStateMachine
from attendance_engine.services.recognition_client import RecognitionClient
from attendance_engine.utils.error_handling import log_errors
from attendance_engine.utils.file_utils import staged_uploads
from attendance_engine.utils.metrics import metrics
from attendance_engine.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


def normalize_identity(value: Optional[str]) -> str:
    return value.lower().strip() if isinstance(value, str) else ""


def _best_confidence(pairs: Iterable[tuple]) -> Dict[str, float]:
    best: Dict[str, float] = {}
    for key, confidence in pairs:
        if key and (key not in best or confidence > best[key]):
            best[key] = confidence
    return best


class ReconciliationService:
    """Marks roster entries present or absent from a recognition batch."""

    def __init__(self, session_repository: SessionRepository,
                 student_repository: StudentRepository,
                 lock_machine: LockStateMachine,
                 recognition_client: Optional[RecognitionClient] = None,
                 clock: Callable[[], datetime] = utc_now):
        self.sessions = session_repository
        self.students = student_repository
        self.lock_machine = lock_machine
        self.recognition_client = recognition_client
        self.clock = clock

    def reconcile(self, session: AttendanceSession, recognition_result: RecognitionResult) -> ReconciliationOutcome:
        """
        Evaluate every eligible roster entry against the recognized identities,
        recompute the totals and lock the session, all in one versioned write.

        Matching prefers stable student ids when the service returns them and
        falls back to normalized display names. Entries overridden to
        not-considered are left alone.
        """
        self.lock_machine.ensure_mutable(session)

        by_id = _best_confidence((m.student_id, m.confidence) for m in recognition_result.matches if m.student_id)
        by_name = _best_confidence((normalize_identity(m.identity), m.confidence)
                                   for m in recognition_result.matches)

        working = session.model_copy(deep=True)
        profiles = self.students.get_many(entry.student_id for entry in working.students)
        now = self.clock()
        recognized: List[str] = []
        matched_ids = set()
        matched_names = set()

        for entry in working.students:
            if entry.status == AttendanceStatus.NOT_CONSIDERED:
                continue
            profile = profiles.get(entry.student_id)
            confidence = None
            for key in (entry.student_id, profile.reg_no if profile is not None else None):
                if key and key in by_id:
                    confidence = by_id[key]
                    matched_ids.add(key)
                    break
            if confidence is None and profile is not None:
                name = normalize_identity(profile.name)
                if name and name in by_name:
                    confidence = by_name[name]
                    matched_names.add(name)

            if confidence is not None:
                entry.status = AttendanceStatus.PRESENT.value
                entry.confidence = confidence
                entry.marked_at = now
                recognized.append(entry.student_id)
            else:
                entry.status = AttendanceStatus.ABSENT.value
                entry.confidence = None
                entry.marked_at = None

        working.recompute_totals()
        self.lock_machine.mark_locked(working)
        try:
            self.sessions.save(working, allow_locked=True)
        except ConflictError:
            current = self.sessions.get(session.id)
            if current.is_locked:
                raise LockedError("Attendance was finalized by another request",
                                  current.id, current.locked_at, current.lock_deadline)
            raise

        # Commit the persisted state back onto the caller's object
        for field in AttendanceSession.model_fields:
            setattr(session, field, getattr(working, field))

        unmatched = sorted({
            normalize_identity(m.identity) for m in recognition_result.matches
            if m.student_id not in matched_ids and normalize_identity(m.identity) not in matched_names
        } - {""})
        metrics.increment_counter("reconciliations")
        logger.info(f"Reconciled session {session.id}: {session.total_present}/{len(session.students)} present "
                    f"({session.attendance_percentage}%), {len(unmatched)} unmatched identities")
        if unmatched:
            logger.debug(f"Unmatched identities for session {session.id}: {unmatched}")

        return ReconciliationOutcome(
            session_id=session.id,
            roster=[RosterView.build(entry, profiles.get(entry.student_id)) for entry in session.students],
            present_count=session.total_present,
            absent_count=session.total_absent,
            not_considered_count=session.total_not_considered,
            percentage=session.attendance_percentage,
            recognized=recognized,
            unmatched=unmatched,
        )

    @log_errors
    def mark_with_images(self, session_id: str, uploads: list,
                         cancel_event: Optional[threading.Event] = None) -> ReconciliationOutcome:
        """
        Run the full face-attendance flow for one session.

        If the recognition call fails or is cancelled the roster is left
        untouched and the session stays open for another attempt.
        """
        if self.recognition_client is None:
            raise RuntimeError("ReconciliationService was built without a recognition client")

        session = self.sessions.get(session_id)
        self.lock_machine.ensure_mutable(session)

        with staged_uploads(uploads) as paths:
            result = self.recognition_client.submit_batch(
                paths,
                {"section_id": session.section_id, "session_id": session.id},
                cancel_event=cancel_event,
            )

        if cancel_event is not None and cancel_event.is_set():
            raise RequestCancelledError("Attendance marking cancelled, no changes were saved")

        # The recognition call can take minutes; reconcile against fresh state
        return self.reconcile(self.sessions.get(session_id), result)

    def set_student_status(self, session_id: str, student_id: str, status: AttendanceStatus) -> AttendanceSession:
        """Administrative override of one roster entry, e.g. to exclude a student as not-considered."""
        session = self.sessions.get(session_id)
        self.lock_machine.ensure_mutable(session)

        entry = session.roster_entry(student_id)
        if entry is None:
            raise NotFoundError("Student is not on this session's roster",
                                details={"session_id": session_id, "student_id": student_id})

        status = AttendanceStatus(status)
        entry.status = status.value
        entry.marked_at = self.clock() if status == AttendanceStatus.PRESENT else None
        if status != AttendanceStatus.PRESENT:
            entry.confidence = None
        session.updated_at = self.clock()
        self.sessions.save(session)
        logger.info(f"Session {session_id}: student {student_id} set to {status.value}")
        return session
