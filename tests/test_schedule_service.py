import pytest

from attendance_engine.exceptions.base import ConflictError, NotFoundError, ValidationError
from attendance_engine.repositories.mongo_repository import SECTIONS
from attendance_engine.services.schedule_service import ScheduleService


@pytest.fixture
def schedule_service(section_repo):
    return ScheduleService(section_repo)


class TestAddPermanentSlot:
    def test_appends_slot_with_default_duration(self, schedule_service, section, db):
        updated = schedule_service.add_permanent_slot("sec-a", ["friday"], "11:00")

        assert updated.slots[-1].days == ["Friday"]
        assert updated.slots[-1].end_time == "11:50"
        stored = db[SECTIONS].find_one({"_id": "sec-a"})
        assert stored["slots"][-1] == {"days": ["Friday"], "start_time": "11:00", "end_time": "11:50"}

    def test_overlapping_slot_is_rejected_and_nothing_written(self, schedule_service, section, db):
        with pytest.raises(ConflictError) as exc:
            schedule_service.add_permanent_slot("sec-a", ["Monday"], "10:30")

        assert exc.value.status_code == 409
        assert exc.value.booking == {"section_id": "sec-a", "day": "Monday", "slot_index": 0,
                                     "start_time": "10:00", "end_time": "10:50"}
        assert len(db[SECTIONS].find_one({"_id": "sec-a"})["slots"]) == 1

    def test_conflict_on_any_requested_day_rejects_all(self, schedule_service, section, db):
        with pytest.raises(ConflictError):
            schedule_service.add_permanent_slot("sec-a", ["Tuesday", "Wednesday"], "10:40")
        assert len(db[SECTIONS].find_one({"_id": "sec-a"})["slots"]) == 1

    def test_adjacent_slot_is_accepted(self, schedule_service, section):
        updated = schedule_service.add_permanent_slot("sec-a", ["Monday"], "10:50", "11:40")
        assert [s.start_time for s in updated.slots] == ["10:00", "10:50"]

    def test_end_before_start_is_invalid(self, schedule_service, section):
        with pytest.raises(ValidationError):
            schedule_service.add_permanent_slot("sec-a", ["Monday"], "12:00", "11:00")

    def test_unknown_weekday_is_invalid(self, schedule_service, section):
        with pytest.raises(ValidationError):
            schedule_service.add_permanent_slot("sec-a", ["Funday"], "12:00")

    def test_unknown_section(self, schedule_service):
        with pytest.raises(NotFoundError):
            schedule_service.add_permanent_slot("missing", ["Monday"], "12:00")

    def test_concurrent_timetable_edit_surfaces_conflict(self, schedule_service, section, section_repo, db,
                                                         monkeypatch):
        real_get_document = section_repo.get_document

        def stale_read(section_id):
            doc = real_get_document(section_id)
            # Another writer adds a slot right after our read
            db[SECTIONS].update_one({"_id": section_id}, {"$push": {"slots": {
                "days": ["Saturday"], "start_time": "09:00", "end_time": "09:50"}}})
            return doc

        monkeypatch.setattr(section_repo, "get_document", stale_read)

        with pytest.raises(ConflictError):
            schedule_service.add_permanent_slot("sec-a", ["Friday"], "12:00")
