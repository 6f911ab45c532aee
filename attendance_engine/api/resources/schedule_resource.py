"""
Schedule API Resource.
"""
import logging

from flask import request
from flask_restful import Resource

from attendance_engine.middleware.error_handler import require_json, resource_errors
from attendance_engine.schemas.models import PermanentSlotRequest
from attendance_engine.services.container import get_services
from attendance_engine.utils.response_utils import success_response

logger = logging.getLogger(__name__)


class SectionSlotsResource(Resource):
    method_decorators = [resource_errors]

    def get(self, section_id):
        slots = get_services().section_repository.get_slots(section_id)
        return success_response("Slots retrieved", {
            "section_id": section_id,
            "slots": [slot.model_dump() for slot in slots],
        })

    @require_json
    def post(self, section_id):
        """Add a permanent weekly slot to a section."""
        payload = PermanentSlotRequest.model_validate(request.get_json())
        section = get_services().schedule_service.add_permanent_slot(
            section_id, payload.days, payload.start_time, payload.end_time
        )
        return success_response("Permanent slot added", {
            "section_id": section.id,
            "slots": [slot.model_dump() for slot in section.slots],
        }, 201)
