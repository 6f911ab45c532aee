"""
Attendance API Resources.
Face-based marking, roster overrides and student summaries.
"""
import logging
import threading
from typing import Dict

from flask import request
from flask_restful import Resource

from attendance_engine.config.settings import Config
from attendance_engine.middleware.error_handler import require_json, resource_errors
from attendance_engine.schemas.models import StatusOverrideRequest
from attendance_engine.services.container import get_services
from attendance_engine.utils.response_utils import success_response, error_response

logger = logging.getLogger(__name__)

# Cancel events of recognition calls currently running, by session id
_in_flight: Dict[str, threading.Event] = {}
_in_flight_lock = threading.Lock()


class MarkFaceResource(Resource):
    method_decorators = [resource_errors]

    def post(self, session_id):
        """
        Mark attendance from classroom photos.
        """
        images = request.files.getlist('images')
        if not images:
            return error_response("No images uploaded", 400, code="VALIDATION_ERROR")
        if len(images) > Config.RECOGNITION_MAX_IMAGES:
            return error_response(f"At most {Config.RECOGNITION_MAX_IMAGES} images are allowed", 400,
                                  code="VALIDATION_ERROR")

        cancel_event = threading.Event()
        with _in_flight_lock:
            if session_id in _in_flight:
                return error_response("Attendance is already being marked for this session", 409,
                                      code="CONFLICT")
            _in_flight[session_id] = cancel_event
        try:
            outcome = get_services().reconciliation_service.mark_with_images(
                session_id, images, cancel_event=cancel_event
            )
        finally:
            with _in_flight_lock:
                _in_flight.pop(session_id, None)

        return success_response("Attendance marked", outcome.model_dump(mode="json"))

    def delete(self, session_id):
        """Cancel an in-flight recognition call for the session."""
        with _in_flight_lock:
            cancel_event = _in_flight.get(session_id)
        if cancel_event is None:
            return error_response("No attendance marking in progress for this session", 404, code="NOT_FOUND")
        cancel_event.set()
        logger.info(f"Cancellation requested for session {session_id}")
        return success_response("Cancellation requested", {"session_id": session_id}, 202)


class StudentStatusResource(Resource):
    method_decorators = [resource_errors]

    @require_json
    def patch(self, session_id, student_id):
        payload = StatusOverrideRequest.model_validate(request.get_json())
        session = get_services().reconciliation_service.set_student_status(session_id, student_id, payload.status)
        return success_response("Student status updated", {
            "session_id": session.id,
            "student": session.roster_entry(student_id).model_dump(mode="json"),
            "total_present": session.total_present,
            "total_absent": session.total_absent,
            "total_not_considered": session.total_not_considered,
            "attendance_percentage": session.attendance_percentage,
        })


class StudentAttendanceResource(Resource):
    method_decorators = [resource_errors]

    def get(self, student_id):
        summary = get_services().stats_service.student_summary(student_id)
        return success_response("Attendance retrieved", summary)
