"""Tests for the slot ledger."""

import sqlite3
from datetime import datetime

import pytest
import pytz

from conftest import TODAY, TOMORROW, TZ
from consult_desk.consultations.database.connection import transaction
from consult_desk.consultations.database.slot_ledger import SlotLedger, generate_slot_windows
from consult_desk.consultations.database.unit_of_work import UnitOfWork
from consult_desk.errors import (
    AlreadyBookedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from consult_desk.settings import ConsultationConfig


def windows(slots):
    """(HH:MM, HH:MM) local pairs for comparison."""
    tz = pytz.timezone(TZ)
    return [
        (s.start_date_time.astimezone(tz).strftime("%H:%M"), s.end_date_time.astimezone(tz).strftime("%H:%M"))
        for s in slots
    ]


def specs(*pairs):
    return [{"start_time": start, "end_time": end} for start, end in pairs]


class TestBulkUpsert:
    def test_creates_slots_in_local_time(self, dispatcher, u1):
        slots = dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("09:00", "09:10"), ("08:00", "08:10")))
        assert windows(slots) == [("08:00", "08:10"), ("09:00", "09:10")]
        # Kinshasa is UTC+1
        assert slots[0].start_date_time == datetime(2030, 1, 15, 7, 0, tzinfo=pytz.utc)

    def test_replaces_free_slots_and_keeps_matches(self, dispatcher, u1):
        first = dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("09:00", "09:10"), ("10:00", "10:10")))
        second = dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("09:00", "09:10"), ("11:00", "11:10")))

        assert windows(second) == [("09:00", "09:10"), ("11:00", "11:10")]
        # The unchanged window is the same row
        assert second[0].id == first[0].id
        assert dispatcher.ledger.get_by_id(first[1].id) is None

    def test_other_days_untouched(self, dispatcher, u1):
        dispatcher.bulk_upsert_slots(u1, u1.user_id, TOMORROW, specs(("09:00", "09:10")))
        dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, [])
        assert len(dispatcher.ledger.get_slots_by_date(u1.user_id, TOMORROW)) == 1

    def test_booked_slots_are_preserved(self, dispatcher, consultation, u1):
        slots = dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("10:00", "10:10")))
        assert windows(slots) == [("10:00", "10:10")]

        booked = dispatcher.ledger.get_by_id(consultation.slot_id)
        assert booked.consultation_id == consultation.id

    def test_overlap_with_booked_slot(self, dispatcher, consultation, u1):
        with pytest.raises(ConflictError):
            dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("09:05", "09:15")))

    def test_conflict_leaves_existing_slots(self, dispatcher, consultation, u1, add_slots):
        add_slots(u1, "10:00-10:10", "11:00-11:10")
        with pytest.raises(ConflictError):
            dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("09:00", "09:10")))
        # booked 09:00 plus the two free slots
        assert len(dispatcher.ledger.get_slots_by_date(u1.user_id, TODAY)) == 3

    def test_proposed_windows_overlapping_each_other(self, dispatcher, u1):
        with pytest.raises(ConflictError):
            dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("09:00", "09:30"), ("09:20", "09:40")))

    def test_adjacent_windows_are_allowed(self, dispatcher, u1):
        slots = dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(("09:00", "09:10"), ("09:10", "09:20")))
        assert len(slots) == 2

    @pytest.mark.parametrize("window", [("9am", "09:10"), ("09:00", "24:00"), ("09:10", "09:00"), ("09:00", "09:00")])
    def test_invalid_windows(self, dispatcher, u1, window):
        with pytest.raises(ValidationError):
            dispatcher.bulk_upsert_slots(u1, u1.user_id, TODAY, specs(window))

    def test_invalid_date(self, dispatcher, u1):
        with pytest.raises(ValidationError):
            dispatcher.bulk_upsert_slots(u1, u1.user_id, "15/01/2030", specs(("09:00", "09:10")))

    def test_unknown_owner(self, dispatcher, admin):
        with pytest.raises(NotFoundError):
            dispatcher.bulk_upsert_slots(admin, 999, TODAY, specs(("09:00", "09:10")))

    def test_owner_without_availability(self, dispatcher, admin):
        with pytest.raises(ValidationError):
            dispatcher.bulk_upsert_slots(admin, admin.user_id, TODAY, specs(("09:00", "09:10")))

    def test_clinician_cannot_edit_colleague(self, dispatcher, u1, u2):
        with pytest.raises(PermissionDeniedError):
            dispatcher.bulk_upsert_slots(u1, u2.user_id, TODAY, specs(("09:00", "09:10")))

    def test_admin_can_edit_anyone(self, dispatcher, admin, u2):
        slots = dispatcher.bulk_upsert_slots(admin, u2.user_id, TODAY, specs(("09:00", "09:10")))
        assert slots[0].owner_user_id == u2.user_id


class TestClaimSlot:
    def test_claim_free_slot(self, add_slots, unclaimed_consultation, u1):
        slot = add_slots(u1, "09:00-09:10")[0]
        consultation = unclaimed_consultation(slot)
        ledger = SlotLedger(tz_name=TZ)
        with transaction() as conn:
            claimed = ledger.claim_slot(UnitOfWork(conn), slot.id, consultation.id)
        assert claimed.consultation_id == consultation.id
        assert not claimed.is_free

    def test_claim_booked_slot(self, dispatcher, consultation, u1):
        with pytest.raises(AlreadyBookedError) as exc:
            dispatcher.claim_slot(u1, consultation.slot_id, consultation.id)
        assert exc.value.retryable

    def test_claim_unknown_slot(self, dispatcher, u1):
        with pytest.raises(NotFoundError):
            dispatcher.claim_slot(u1, 12345, 1)

    def test_unknown_consultation_cannot_claim(self, dispatcher, add_slots, u1):
        slot = add_slots(u1, "09:00-09:10")[0]
        with pytest.raises(NotFoundError):
            dispatcher.claim_slot(u1, slot.id, 999999)
        assert dispatcher.ledger.get_by_id(slot.id).is_free
        assert [s.id for s in dispatcher.list_free_slots()] == [slot.id]

    def test_consultation_of_another_slot(self, dispatcher, add_slots, unclaimed_consultation, u1):
        bound, other = add_slots(u1, "09:00-09:10", "10:00-10:10")
        consultation = unclaimed_consultation(bound)
        with pytest.raises(ConflictError):
            dispatcher.claim_slot(u1, other.id, consultation.id)
        assert dispatcher.ledger.get_by_id(other.id).is_free

    def test_slot_keeps_foreign_key(self, add_slots, u1):
        slot = add_slots(u1, "09:00-09:10")[0]
        with pytest.raises(sqlite3.IntegrityError):
            with transaction() as conn:
                conn.execute("UPDATE slots SET consultation_id = 999999 WHERE id = ?", (slot.id,))


class TestAvailability:
    def test_admin_turns_availability_off(self, dispatcher, add_slots, admin, u1):
        add_slots(u1, "09:00-09:10")
        user = dispatcher.set_availability(admin, u1.user_id, False)
        assert not user.can_have_availability
        with pytest.raises(ValidationError):
            add_slots(u1, "10:00-10:10")

    def test_clinician_cannot_change_availability(self, dispatcher, u1, u2):
        with pytest.raises(PermissionDeniedError):
            dispatcher.set_availability(u1, u2.user_id, False)
        assert dispatcher.workflow.slots.users.get_by_id(u2.user_id).can_have_availability

    def test_unknown_user(self, dispatcher, admin):
        with pytest.raises(NotFoundError):
            dispatcher.set_availability(admin, 404, True)

    def test_change_is_audited(self, dispatcher, admin, u1):
        dispatcher.set_availability(admin, u1.user_id, False)
        entry = dispatcher.get_audit_logs_for_entity("User", u1.user_id)[0]
        assert entry.actor_user_id == admin.user_id
        assert entry.changes == {"can_have_availability": 0}


class TestListFreeSlots:
    def test_ordered_by_start_then_id(self, add_slots, dispatcher, u1, u2):
        add_slots(u2, "09:00-09:10")
        add_slots(u1, "08:00-08:10", "09:00-09:10")

        slots = list(dispatcher.list_free_slots())
        assert windows(slots) == [("08:00", "08:10"), ("09:00", "09:10"), ("09:00", "09:10")]
        assert slots[1].owner_user_id == u2.user_id
        assert slots[1].id < slots[2].id

    def test_filters(self, add_slots, dispatcher, u1, u2):
        add_slots(u1, "09:00-09:10")
        add_slots(u1, "09:00-09:10", date=TOMORROW)
        add_slots(u2, "10:00-10:10")

        assert len(list(dispatcher.list_free_slots(owner_user_id=u1.user_id))) == 2
        assert len(list(dispatcher.list_free_slots(date_from=TOMORROW))) == 1
        assert len(list(dispatcher.list_free_slots(date_from=TODAY, date_to=TODAY))) == 2

    def test_lazy_and_restartable(self, add_slots, dispatcher, u1, pending_request):
        add_slots(u1, "09:00-09:10", "10:00-10:10")
        free = dispatcher.list_free_slots()

        assert len(list(free)) == 2
        dispatcher.accept_request(u1, pending_request.id)
        # A new pass sees the booking
        assert len(list(free)) == 1

    def test_booked_slot_not_listed(self, dispatcher, consultation):
        assert consultation.slot_id not in [s.id for s in dispatcher.list_free_slots()]


class TestDeleteSlot:
    def test_delete_free_slot(self, add_slots, dispatcher, u1):
        slot = add_slots(u1, "09:00-09:10")[0]
        dispatcher.delete_slot(u1, slot.id)
        assert dispatcher.ledger.get_by_id(slot.id) is None

    def test_delete_booked_slot(self, dispatcher, consultation, u1):
        with pytest.raises(ConflictError):
            dispatcher.delete_slot(u1, consultation.slot_id)

    def test_delete_colleague_slot(self, add_slots, dispatcher, u1, u2):
        slot = add_slots(u2, "09:00-09:10")[0]
        with pytest.raises(PermissionDeniedError):
            dispatcher.delete_slot(u1, slot.id)


class TestGenerateSlotWindows:
    def test_duration_and_break(self):
        config = ConsultationConfig(consultation_duration_minutes=10, break_duration_minutes=5)
        assert generate_slot_windows("09:00", "09:40", config) == [
            {"start_time": "09:00", "end_time": "09:10"},
            {"start_time": "09:15", "end_time": "09:25"},
            {"start_time": "09:30", "end_time": "09:40"},
        ]

    def test_partial_window_dropped(self):
        config = ConsultationConfig(consultation_duration_minutes=30, break_duration_minutes=0)
        assert len(generate_slot_windows("09:00", "10:20", config)) == 2
