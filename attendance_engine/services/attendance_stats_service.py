"""
Per-student attendance summaries over finalized sessions.
"""
import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from attendance_engine.config.settings import Config
from attendance_engine.repositories.session_repository import SessionRepository
from attendance_engine.schemas.models import AttendanceStatus

logger = logging.getLogger(__name__)

SAFE = "Safe"
LOW_ATTENDANCE = "Low Attendance"


class AttendanceStatsService:
    def __init__(self, session_repository: SessionRepository, threshold: Optional[float] = None):
        self.sessions = session_repository
        self.threshold = Config.LOW_ATTENDANCE_THRESHOLD if threshold is None else threshold

    def student_summary(self, student_id: str) -> Dict[str, Any]:
        """
        Attendance per course for one student, counted over locked sessions only.

        Sessions where the student was excused (not-considered) do not count
        towards either the total or the present count.
        """
        per_course: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for session in self.sessions.find_locked_for_student(student_id):
            entry = session.roster_entry(student_id)
            if entry is None or entry.status == AttendanceStatus.NOT_CONSIDERED:
                continue
            course_key = session.course_id or session.section_id
            stats = per_course.setdefault(course_key, {
                "course_id": course_key,
                "section_id": session.section_id,
                "total_classes": 0,
                "present": 0,
                "absent": 0,
            })
            stats["total_classes"] += 1
            if entry.status == AttendanceStatus.PRESENT:
                stats["present"] += 1
            else:
                stats["absent"] += 1

        courses: List[Dict[str, Any]] = []
        for stats in per_course.values():
            percentage = round(stats["present"] / stats["total_classes"] * 100, 1) if stats["total_classes"] else 0.0
            stats["percentage"] = percentage
            stats["status"] = SAFE if percentage >= self.threshold else LOW_ATTENDANCE
            courses.append(stats)

        total = sum(c["total_classes"] for c in courses)
        present = sum(c["present"] for c in courses)
        overall = round(present / total * 100, 1) if total else 0.0
        logger.debug(f"Attendance summary for student {student_id}: {len(courses)} course(s), {overall}% overall")
        return {
            "student_id": student_id,
            "courses": courses,
            "total_classes": total,
            "present": present,
            "overall_percentage": overall,
            "status": SAFE if overall >= self.threshold or not total else LOW_ATTENDANCE,
        }
