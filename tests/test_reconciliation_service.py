import os
import threading

import pytest

from attendance_engine.exceptions.base import (
    ConflictError,
    LockedError,
    NotFoundError,
    RequestCancelledError,
    UpstreamTransientError,
)
from attendance_engine.schemas.models import AttendanceStatus, RecognitionMatch, RecognitionResult
from attendance_engine.services.reconciliation_service import ReconciliationService, normalize_identity
from attendance_engine.utils.metrics import metrics

MONDAY = "2024-01-15"


def result(*identities, **by_id):
    matches = [RecognitionMatch(identity=name, confidence=0.9) for name in identities]
    matches += [RecognitionMatch(identity=sid, confidence=conf, student_id=sid) for sid, conf in by_id.items()]
    return RecognitionResult(matches=matches, shape="inline_list")


@pytest.fixture
def service(session_repo, student_repo, lock_machine, recognition_client, clock):
    return ReconciliationService(session_repo, student_repo, lock_machine, recognition_client, clock=clock)


@pytest.fixture
def session(materializer, section):
    return materializer.ensure_sessions_for("sec-a", MONDAY)[0]


def statuses(session):
    return {e.student_id: e.status for e in session.students}


class TestReconcile:
    def test_two_of_three_recognized(self, service, session, session_repo, clock):
        outcome = service.reconcile(session, result(" ALICE ", "carol"))

        assert (outcome.present_count, outcome.absent_count, outcome.percentage) == (2, 1, 66.7)
        assert sorted(outcome.recognized) == ["s-alice", "s-carol"]

        stored = session_repo.get(session.id)
        assert statuses(stored) == {"s-alice": "present", "s-bob": "absent", "s-carol": "present"}
        assert stored.is_locked
        assert stored.attendance_percentage == 66.7
        alice = stored.roster_entry("s-alice")
        assert alice.confidence == 0.9
        assert alice.marked_at == clock()

    def test_outcome_rows_carry_student_profiles(self, service, session):
        outcome = service.reconcile(session, result("Bob"))

        rows = [(row.name, row.reg_no, row.status) for row in outcome.roster]
        assert rows == [("Alice", "REG001", "absent"), ("Bob", "REG002", "present"), ("Carol", "REG003", "absent")]

    def test_aggregates_are_stable_across_reload(self, service, session, session_repo):
        service.reconcile(session, result("Alice"))
        stored = session_repo.get(session.id)
        before = (stored.total_present, stored.total_absent, stored.attendance_percentage)

        stored.recompute_totals()
        assert (stored.total_present, stored.total_absent, stored.attendance_percentage) == before == (1, 2, 33.3)

    def test_stable_ids_take_precedence(self, service, session):
        outcome = service.reconcile(session, result(**{"s-bob": 0.75}))
        assert outcome.recognized == ["s-bob"]
        assert session.roster_entry("s-bob").confidence == 0.75

    def test_registration_number_matches(self, service, session):
        outcome = service.reconcile(session, result(REG003=0.8))
        assert outcome.recognized == ["s-carol"]

    def test_not_considered_entries_are_untouched(self, service, session, session_repo):
        service.set_student_status(session.id, "s-alice", AttendanceStatus.NOT_CONSIDERED)
        fresh = session_repo.get(session.id)

        outcome = service.reconcile(fresh, result("Alice", "Bob"))

        assert statuses(fresh)["s-alice"] == "not-considered"
        assert (outcome.present_count, outcome.absent_count, outcome.not_considered_count) == (1, 1, 1)
        assert outcome.percentage == 33.3

    def test_unmatched_identities_are_reported(self, service, session):
        outcome = service.reconcile(session, result("Alice", "Mallory"))
        assert outcome.unmatched == ["mallory"]

    def test_locked_session_is_rejected(self, service, session, lock_machine, session_repo):
        lock_machine.lock(session)
        with pytest.raises(LockedError):
            service.reconcile(session_repo.get(session.id), result("Alice"))

    def test_expired_session_is_rejected_and_locked(self, service, session, session_repo, clock):
        clock.advance(hours=37)

        with pytest.raises(LockedError):
            service.reconcile(session, result("Alice"))

        stored = session_repo.get(session.id)
        assert stored.is_locked
        assert stored.total_present == 0

    def test_concurrent_reconciliation_has_one_winner(self, service, session, session_repo):
        first = session_repo.get(session.id)
        second = session_repo.get(session.id)

        service.reconcile(first, result("Alice"))
        with pytest.raises((ConflictError, LockedError)):
            service.reconcile(second, result("Bob", "Carol"))

        stored = session_repo.get(session.id)
        assert statuses(stored) == {"s-alice": "present", "s-bob": "absent", "s-carol": "absent"}
        # The losing caller's copy is left as it was
        assert not second.is_locked

    def test_counts_reconciliations(self, service, session):
        service.reconcile(session, result("Alice"))
        assert metrics.get_stats()["counters"]["reconciliations"] == 1


class TestMarkWithImages:
    uploads = [("class.jpg", b"fake-image-bytes")]

    def test_runs_recognition_then_reconciles(self, service, session, recognition_client, session_repo):
        recognition_client.submit_batch.return_value = result("Alice", "Carol")

        outcome = service.mark_with_images(session.id, self.uploads)

        assert outcome.percentage == 66.7
        paths, context = recognition_client.submit_batch.call_args[0][:2]
        assert len(paths) == 1
        assert context == {"section_id": "sec-a", "session_id": session.id}
        assert session_repo.get(session.id).is_locked

    def test_client_failure_leaves_session_open(self, service, session, recognition_client, session_repo):
        recognition_client.submit_batch.side_effect = UpstreamTransientError("HTTP 503", attempts=4)

        with pytest.raises(UpstreamTransientError):
            service.mark_with_images(session.id, self.uploads)

        stored = session_repo.get(session.id)
        assert not stored.is_locked
        assert stored.version == session.version

    def test_cancelled_request_writes_nothing(self, service, session, recognition_client, session_repo):
        cancel = threading.Event()

        def recognize(paths, context, cancel_event=None):
            cancel_event.set()
            return result("Alice")

        recognition_client.submit_batch.side_effect = recognize

        with pytest.raises(RequestCancelledError):
            service.mark_with_images(session.id, self.uploads, cancel_event=cancel)

        stored = session_repo.get(session.id)
        assert not stored.is_locked
        assert stored.total_present == 0

    def test_locked_session_is_rejected_before_upload(self, service, session, lock_machine, recognition_client):
        lock_machine.lock(session)
        with pytest.raises(LockedError):
            service.mark_with_images(session.id, self.uploads)
        recognition_client.submit_batch.assert_not_called()

    def test_staged_files_are_removed(self, service, session, recognition_client):
        seen = {}

        def recognize(paths, context, cancel_event=None):
            seen["paths"] = list(paths)
            return result()

        recognition_client.submit_batch.side_effect = recognize
        service.mark_with_images(session.id, self.uploads)

        assert seen["paths"] and not any(os.path.exists(p) for p in seen["paths"])


class TestStatusOverride:
    def test_sets_status_and_recounts(self, service, session, session_repo):
        updated = service.set_student_status(session.id, "s-bob", AttendanceStatus.PRESENT)

        assert updated.total_present == 1
        assert session_repo.get(session.id).roster_entry("s-bob").status == "present"

    def test_unknown_student(self, service, session):
        with pytest.raises(NotFoundError):
            service.set_student_status(session.id, "s-zed", AttendanceStatus.PRESENT)

    def test_rejected_when_locked(self, service, session, lock_machine):
        lock_machine.lock(session)
        with pytest.raises(LockedError):
            service.set_student_status(session.id, "s-bob", AttendanceStatus.PRESENT)


def test_normalize_identity():
    assert normalize_identity("  Alice Smith ") == "alice smith"
    assert normalize_identity(None) == ""
