"""
Wires repositories and services around one database handle.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from flask import current_app

from attendance_engine.config.settings import Config
from attendance_engine.repositories.section_repository import SectionRepository
from attendance_engine.repositories.session_repository import SessionRepository
from attendance_engine.repositories.student_repository import StudentRepository
from attendance_engine.services.attendance_stats_service import AttendanceStatsService
from attendance_engine.services.lock_state import LockStateMachine
from attendance_engine.services.recognition_client import RecognitionClient
from attendance_engine.services.reconciliation_service import ReconciliationService
from attendance_engine.services.schedule_service import ScheduleService
from attendance_engine.services.session_materializer import SessionMaterializer
from attendance_engine.utils.time_utils import utc_now

logger = logging.getLogger(__name__)

EXTENSION_KEY = "attendance_engine"


class ServiceContainer:
    def __init__(self, db, recognition_client: Optional[RecognitionClient] = None,
                 clock: Callable[[], datetime] = utc_now, tz_name: Optional[str] = None):
        self.db = db
        self.clock = clock
        self.section_repository = SectionRepository(db)
        self.student_repository = StudentRepository(db)
        self.session_repository = SessionRepository(db)

        self.lock_machine = LockStateMachine(self.session_repository, clock=clock)
        self.recognition_client = recognition_client or RecognitionClient()
        self.materializer = SessionMaterializer(self.section_repository, self.session_repository,
                                                self.lock_machine, clock=clock,
                                                tz_name=tz_name or Config.TIMEZONE)
        self.schedule_service = ScheduleService(self.section_repository)
        self.reconciliation_service = ReconciliationService(self.session_repository, self.student_repository,
                                                           self.lock_machine, self.recognition_client,
                                                           clock=clock)
        self.stats_service = AttendanceStatsService(self.session_repository)


def get_services() -> ServiceContainer:
    """Services of the current Flask application."""
    return current_app.extensions[EXTENSION_KEY]
