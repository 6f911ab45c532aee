"""
Session API Resources.
Dashboard listings, extra classes and the lock lifecycle of a session.
"""
import logging

from flask import request
from flask_restful import Resource

from attendance_engine.middleware.error_handler import require_json, resource_errors
from attendance_engine.schemas.models import AdHocSessionRequest, RosterView, UnlockRequest
from attendance_engine.services.container import get_services
from attendance_engine.utils.response_utils import success_response, error_response

logger = logging.getLogger(__name__)


def _session_list(sessions):
    return [s.summary() for s in sessions]


class SectionSessionsResource(Resource):
    method_decorators = [resource_errors]

    def get(self, section_id):
        """Materialize and list a section's sessions for a date (default today)."""
        services = get_services()
        target_date = request.args.get("date")
        sessions = services.materializer.sessions_for_section(section_id, target_date)
        day = services.materializer.resolve_date(target_date)
        return success_response("Sessions retrieved", {
            "section_id": section_id,
            "date": day.isoformat(),
            "sessions": _session_list(sessions),
        })


class TeacherSessionsResource(Resource):
    method_decorators = [resource_errors]

    def get(self, teacher_id):
        """Teacher dashboard: every session the teacher holds on a date."""
        services = get_services()
        target_date = request.args.get("date")
        sessions = services.materializer.ensure_sessions_for_teacher(teacher_id, target_date)
        day = services.materializer.resolve_date(target_date)
        return success_response("Sessions retrieved", {
            "teacher_id": teacher_id,
            "date": day.isoformat(),
            "sessions": _session_list(sessions),
        })


class StudentSessionsResource(Resource):
    method_decorators = [resource_errors]

    def get(self, student_id):
        """Student dashboard: the day's classes across every enrolled section."""
        services = get_services()
        target_date = request.args.get("date")
        sessions = services.materializer.sessions_for_student(student_id, target_date)
        day = services.materializer.resolve_date(target_date)
        return success_response("Sessions retrieved", {
            "student_id": student_id,
            "date": day.isoformat(),
            "count": len(sessions),
            "sessions": [services.materializer.student_view(s, student_id) for s in sessions],
        })


class AdHocSessionResource(Resource):
    method_decorators = [resource_errors]

    @require_json
    def post(self):
        """Create extra classes; each requested slot is reported separately."""
        payload = AdHocSessionRequest.model_validate(request.get_json())
        outcomes = get_services().materializer.create_adhoc_sessions(
            payload.section_id,
            payload.date,
            payload.time_slots,
            marked_by=payload.marked_by,
            room=payload.room,
            topic=payload.topic,
            duration_minutes=payload.duration_minutes,
        )
        results = [o.model_dump(mode="json") for o in outcomes]
        created = sum(1 for o in outcomes if o.created)

        if created == 0:
            first = next((o for o in outcomes if o.conflict), None)
            if first is not None:
                return error_response(first.error, 409, {"results": results}, code="CONFLICT")
            return error_response(outcomes[0].error or "No session created", 400,
                                  {"results": results}, code="VALIDATION_ERROR")

        status_code = 201 if created == len(outcomes) else 207
        return success_response(f"Created {created} of {len(outcomes)} extra class(es)",
                                {"results": results}, status_code)


class SessionResource(Resource):
    method_decorators = [resource_errors]

    def get(self, session_id):
        """
        Session details with student names. With `?student_id=` only that
        student's own record is returned.
        """
        services = get_services()
        session = services.session_repository.get(session_id)
        student_id = request.args.get("student_id")
        if student_id:
            return success_response("Session retrieved", services.materializer.student_view(session, student_id))

        profiles = services.student_repository.get_many(entry.student_id for entry in session.students)
        data = session.model_dump(mode="json")
        data["students"] = [RosterView.build(entry, profiles.get(entry.student_id)).model_dump(mode="json")
                            for entry in session.students]
        return success_response("Session retrieved", data)


class SessionStatusResource(Resource):
    method_decorators = [resource_errors]

    def get(self, session_id):
        """
        Lock status of a session. A session past its deadline reports as
        locked even before a mutation attempt has persisted the flip.
        """
        services = get_services()
        session = services.session_repository.get(session_id)
        expired = not session.is_locked and services.lock_machine.is_expired(session)
        return success_response("Session status retrieved", {
            "session_id": session.id,
            "is_locked": session.is_locked or expired,
            "expired": expired,
            "locked_at": session.locked_at.isoformat() if session.locked_at else None,
            "lock_deadline": session.lock_deadline.isoformat(),
            "total_present": session.total_present,
            "total_absent": session.total_absent,
            "total_not_considered": session.total_not_considered,
            "attendance_percentage": session.attendance_percentage,
            "version": session.version,
        })


class SessionLockResource(Resource):
    method_decorators = [resource_errors]

    def post(self, session_id):
        services = get_services()
        session = services.lock_machine.lock(services.session_repository.get(session_id))
        return success_response("Session locked", session.model_dump(mode="json"))


class SessionUnlockResource(Resource):
    method_decorators = [resource_errors]

    @require_json
    def post(self, session_id):
        payload = UnlockRequest.model_validate(request.get_json())
        services = get_services()
        session = services.session_repository.get(session_id)
        if not services.lock_machine.expire_if_due(session):
            return success_response("Session is already open", session.model_dump(mode="json"))
        session = services.lock_machine.unlock(session, payload.actor)
        return success_response("Session unlocked", session.model_dump(mode="json"))
