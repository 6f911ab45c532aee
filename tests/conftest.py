from datetime import datetime, timedelta
from unittest.mock import MagicMock

import mongomock
import pytest
import pytz

from attendance_engine.repositories.mongo_repository import SECTIONS, STUDENTS, ensure_indexes
from attendance_engine.repositories.section_repository import SectionRepository
from attendance_engine.repositories.session_repository import SessionRepository
from attendance_engine.repositories.student_repository import StudentRepository
from attendance_engine.services.lock_state import LockStateMachine
from attendance_engine.services.session_materializer import SessionMaterializer
from attendance_engine.utils.metrics import metrics

# Monday 2024-01-15, 09:30 in Asia/Kolkata
MONDAY = datetime(2024, 1, 15, 4, 0, tzinfo=pytz.utc)


class FakeClock:
    """Settable clock injected wherever the engine asks for "now"."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(MONDAY)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["attendance_test"]
    ensure_indexes(database)
    return database


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def students(db):
    db[STUDENTS].insert_many([
        {"_id": "s-alice", "name": "Alice", "reg_no": "REG001"},
        {"_id": "s-bob", "name": "Bob", "reg_no": "REG002"},
        {"_id": "s-carol", "name": "Carol", "reg_no": "REG003"},
    ])
    return ["s-alice", "s-bob", "s-carol"]


@pytest.fixture
def section(db, students):
    """CSE-A meets in Room 201 on Monday and Wednesday at 10:00."""
    doc = {
        "_id": "sec-a",
        "name": "CSE-A",
        "room": "Room 201",
        "course_id": "CS101",
        "teacher_id": "t-1",
        "students": list(students),
        "slots": [{"days": ["Monday", "Wednesday"], "start_time": "10:00", "end_time": "10:50"}],
    }
    db[SECTIONS].insert_one(doc)
    return doc


@pytest.fixture
def other_section(db, students):
    """CSE-B shares Room 201 on Mondays at 14:00."""
    doc = {
        "_id": "sec-b",
        "name": "CSE-B",
        "room": "Room 201",
        "course_id": "CS102",
        "teacher_id": "t-2",
        "students": ["s-bob"],
        "slots": [{"days": ["Monday"], "start_time": "14:00", "end_time": "14:50"}],
    }
    db[SECTIONS].insert_one(doc)
    return doc


@pytest.fixture
def section_repo(db):
    return SectionRepository(db)


@pytest.fixture
def session_repo(db):
    return SessionRepository(db)


@pytest.fixture
def student_repo(db):
    return StudentRepository(db)


@pytest.fixture
def lock_machine(session_repo, clock):
    return LockStateMachine(session_repo, clock=clock, admin_actors=["admin-1"], lock_after_hours=36)


@pytest.fixture
def materializer(section_repo, session_repo, lock_machine, clock):
    return SessionMaterializer(section_repo, session_repo, lock_machine, clock=clock, tz_name="Asia/Kolkata")


@pytest.fixture
def recognition_client():
    client = MagicMock()
    client.check_health.return_value = {"status": "healthy", "data": {"ok": True}}
    return client
