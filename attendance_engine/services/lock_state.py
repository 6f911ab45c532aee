"""
Lock state machine for attendance sessions.

    Open --lock / reconcile / deadline passed--> Locked
    Locked --unlock (authorized actor)--> Open

Reads are never restricted. Every mutation path calls `ensure_mutable`
first, which is also where passive expiry happens.
"""
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from attendance_engine.config.settings import Config
from attendance_engine.exceptions.base import ConflictError, ForbiddenError, LockedError
from attendance_engine.repositories.session_repository import SessionRepository
from attendance_engine.schemas.models import AttendanceSession
from attendance_engine.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class LockStateMachine:
    """Governs whether a session accepts further roster mutation."""

    def __init__(self, session_repository: SessionRepository,
                 clock: Callable[[], datetime] = utc_now,
                 admin_actors: Optional[Iterable[str]] = None,
                 lock_after_hours: Optional[float] = None):
        self.sessions = session_repository
        self.clock = clock
        self.admin_actors = set(Config.ADMIN_ACTORS if admin_actors is None else admin_actors)
        self.lock_after = timedelta(hours=Config.LOCK_AFTER_HOURS if lock_after_hours is None else lock_after_hours)

    def new_deadline(self, now: Optional[datetime] = None) -> datetime:
        return (now or self.clock()) + self.lock_after

    def is_expired(self, session: AttendanceSession, now: Optional[datetime] = None) -> bool:
        return (now or self.clock()) > session.lock_deadline

    def expire_if_due(self, session: AttendanceSession) -> bool:
        """
        Flip an open session past its deadline to Locked and persist it.

        Returns True when the session is (now) locked.
        """
        if session.is_locked:
            return True
        now = self.clock()
        if not self.is_expired(session, now):
            return False

        logger.info(f"Session {session.id} passed its lock deadline {session.lock_deadline.isoformat()}, locking")
        session.is_locked = True
        session.locked_at = now
        session.updated_at = now
        try:
            self.sessions.save(session, allow_locked=True)
        except ConflictError:
            # Someone else wrote first; reload so the caller sees stored state
            current = self.sessions.get(session.id)
            if not current.is_locked:
                current.is_locked = True
                current.locked_at = now
                current.updated_at = now
                self.sessions.save(current, allow_locked=True)
            session.version = current.version
            session.locked_at = current.locked_at
        return True

    def ensure_mutable(self, session: AttendanceSession) -> None:
        """
        Raise LockedError unless the session accepts mutation.

        An open session past its deadline is locked as a side effect before
        the error is raised.
        """
        if session.is_locked:
            raise LockedError("This session is locked. Changes are no longer allowed.",
                              session.id, session.locked_at, session.lock_deadline)
        if self.expire_if_due(session):
            raise LockedError("The lock deadline for this session has passed.",
                              session.id, session.locked_at, session.lock_deadline)

    def mark_locked(self, session: AttendanceSession) -> AttendanceSession:
        """Set the Locked state in memory without persisting it."""
        now = self.clock()
        session.is_locked = True
        session.locked_at = now
        session.updated_at = now
        return session

    def lock(self, session: AttendanceSession) -> AttendanceSession:
        """Explicit lock request. Locking an already locked session is a no-op."""
        if session.is_locked:
            return session
        self.mark_locked(session)
        self.sessions.save(session, allow_locked=True)
        logger.info(f"Session {session.id} locked")
        return session

    def can_unlock(self, session: AttendanceSession, actor: str) -> bool:
        return bool(actor) and (actor == session.marked_by or actor in self.admin_actors)

    def unlock(self, session: AttendanceSession, actor: str) -> AttendanceSession:
        """
        Reopen a locked session. Only the session's marker or an admin actor may
        unlock, and the deadline is pushed out so the session stays open.
        """
        if not self.can_unlock(session, actor):
            raise ForbiddenError("Only the responsible teacher or an administrator can unlock a session",
                                 details={"session_id": session.id, "actor": actor})
        now = self.clock()
        session.is_locked = False
        session.locked_at = None
        session.lock_deadline = self.new_deadline(now)
        session.updated_at = now
        self.sessions.save(session, allow_locked=True)
        logger.info(f"Session {session.id} unlocked by {actor}, new deadline {session.lock_deadline.isoformat()}")
        return session
