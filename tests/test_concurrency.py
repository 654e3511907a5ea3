"""Races between staff members working on the same slots and requests."""

import threading

from conftest import PHONE, TEMPLATE
from consult_desk.consultations.database.connection import get_connection
from consult_desk.errors import (
    AlreadyBookedError,
    InvalidStateTransitionError,
    NoAvailableSlotError,
)


def run_concurrently(*calls):
    """Start all calls at the same moment; return (results, errors)."""
    barrier = threading.Barrier(len(calls))
    results, errors = [], []
    lock = threading.Lock()

    def worker(call):
        barrier.wait()
        try:
            result = call()
        except Exception as e:  # collected for assertions
            with lock:
                errors.append(e)
        else:
            with lock:
                results.append(result)

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results, errors


class TestDoubleBooking:
    def test_two_accepts_one_slot(self, dispatcher, add_slots, u1, u2):
        slot = add_slots(u1, "09:00-09:10")[0]
        first = dispatcher.intake_sms(PHONE, "Fever")
        second = dispatcher.intake_sms("+15555557001", "Cough")

        results, errors = run_concurrently(
            lambda: dispatcher.accept_request(u1, first.id, TEMPLATE),
            lambda: dispatcher.accept_request(u2, second.id, TEMPLATE),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], (AlreadyBookedError, NoAvailableSlotError))
        assert results[0].slot_id == slot.id
        assert dispatcher.ledger.get_by_id(slot.id).consultation_id == results[0].id

        conn = get_connection()
        try:
            count = conn.execute("SELECT COUNT(*) FROM consultations WHERE slot_id = ?", (slot.id,)).fetchone()[0]
        finally:
            conn.close()
        assert count == 1

    def test_loser_request_stays_pending(self, dispatcher, add_slots, u1, u2):
        add_slots(u1, "09:00-09:10")
        requests = [dispatcher.intake_sms(PHONE, "Fever"), dispatcher.intake_sms(PHONE, "Cough")]

        run_concurrently(
            lambda: dispatcher.accept_request(u1, requests[0].id, TEMPLATE),
            lambda: dispatcher.accept_request(u2, requests[1].id, TEMPLATE),
        )

        statuses = sorted(r.status for r in dispatcher.get_requests_by_status())
        assert statuses == ["accepted", "pending"]

    def test_direct_claims(self, dispatcher, add_slots, unclaimed_consultation, u1, u2):
        slot = add_slots(u1, "09:00-09:10")[0]
        consultation = unclaimed_consultation(slot)

        results, errors = run_concurrently(
            lambda: dispatcher.claim_slot(u1, slot.id, consultation.id),
            lambda: dispatcher.claim_slot(u2, slot.id, consultation.id),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], AlreadyBookedError)
        assert dispatcher.ledger.get_by_id(slot.id).consultation_id == consultation.id

    def test_many_accepts_two_slots(self, dispatcher, add_slots, u1, u2):
        add_slots(u1, "09:00-09:10", "10:00-10:10")
        requests = [dispatcher.intake_sms(PHONE, f"Symptom {i}") for i in range(4)]

        results, errors = run_concurrently(
            *[lambda r=r: dispatcher.accept_request(u2, r.id, TEMPLATE) for r in requests]
        )

        assert len(results) == 2
        assert all(isinstance(e, NoAvailableSlotError) for e in errors)
        assert len({c.slot_id for c in results}) == 2


class TestConcurrentTransitions:
    def test_accept_and_reject_race(self, dispatcher, add_slots, u1, u2, pending_request):
        add_slots(u1, "09:00-09:10")

        results, errors = run_concurrently(
            lambda: dispatcher.accept_request(u1, pending_request.id, TEMPLATE),
            lambda: dispatcher.reject_request(u2, pending_request.id),
        )

        assert len(results) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateTransitionError)
        final = dispatcher.workflow.requests.get_by_id(pending_request.id).status
        assert final in ("accepted", "rejected")
        if final == "rejected":
            assert len(list(dispatcher.list_free_slots())) == 1
