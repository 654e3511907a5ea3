"""Slot ledger: bookable windows on each staff member's calendar."""

from dataclasses import dataclass
from datetime import datetime, timedelta

from consult_desk import settings
from consult_desk.actors import StaffActor
from consult_desk.errors import (
    AlreadyBookedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from consult_desk.timeutils import from_iso, local_day_bounds, local_to_utc, to_iso, utc_now

from .connection import connect, get_connection
from .unit_of_work import UnitOfWork
from .user_repository import UserRepository


@dataclass
class Slot:
    id: int
    owner_user_id: int
    start_date_time: datetime
    end_date_time: datetime
    consultation_id: int | None = None
    created_at: str | None = None

    @property
    def is_free(self) -> bool:
        return self.consultation_id is None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end_date_time and self.start_date_time < end


class FreeSlots:
    """Free slots matching a query, earliest first.

    Rows are fetched lazily while iterating. Every new iteration runs the
    query again, so the sequence reflects bookings made in between.
    """

    def __init__(self, ledger: "SlotLedger", query: str, params: list):
        self._ledger = ledger
        self._query = query
        self._params = params

    def __iter__(self):
        conn = get_connection()
        try:
            for row in conn.execute(self._query, self._params):
                yield self._ledger._row_to_slot(row)
        finally:
            conn.close()


class SlotLedger:
    """Tracks free and booked slots per staff member and day."""

    def __init__(self, tz_name: str | None = None, users: UserRepository | None = None):
        self.tz_name = tz_name or settings.TIMEZONE
        self.users = users or UserRepository()

    def bulk_upsert_slots(
        self,
        uow: UnitOfWork,
        owner_user_id: int,
        date: str,
        slot_specs: list[dict],
        actor=None,
    ) -> list[Slot]:
        """Replace an owner's free slots on date with slot_specs.

        Each entry is {"start_time": "HH:MM", "end_time": "HH:MM"}. Free slots
        whose window is proposed again are kept, other free slots that day
        are removed, and booked slots are never touched.
        """
        owner = self.users.get_by_id(owner_user_id, conn=uow.conn)
        if owner is None:
            raise NotFoundError(f"User {owner_user_id} not found")
        if isinstance(actor, StaffActor) and actor.user_id != owner_user_id and not actor.is_admin:
            raise PermissionDeniedError("Only admins can manage another user's availability")
        if not owner.can_have_availability:
            raise ValidationError("This user cannot manage availability.")

        windows = self._parse_windows(date, slot_specs)
        existing = self.get_slots_by_date(owner_user_id, date, conn=uow.conn)

        booked = [slot for slot in existing if not slot.is_free]
        for start, end in windows:
            for slot in booked:
                if slot.overlaps(start, end):
                    raise ConflictError(
                        f"Window {to_iso(start)} - {to_iso(end)} overlaps booked slot {slot.id}"
                    )

        wanted = {(to_iso(start), to_iso(end)) for start, end in windows}
        kept = set()
        for slot in existing:
            if not slot.is_free:
                continue
            key = (to_iso(slot.start_date_time), to_iso(slot.end_date_time))
            if key in wanted and key not in kept:
                kept.add(key)
            else:
                uow.delete("slots", "id = ? AND consultation_id IS NULL", (slot.id,))

        now = to_iso(utc_now())
        for start, end in windows:
            if (to_iso(start), to_iso(end)) in kept:
                continue
            uow.insert("slots", {
                "owner_user_id": owner_user_id,
                "start_date_time": to_iso(start),
                "end_date_time": to_iso(end),
                "consultation_id": None,
                "created_at": now,
            })

        return self.get_slots_by_date(owner_user_id, date, conn=uow.conn, free_only=True)

    def set_availability(self, uow: UnitOfWork, user_id: int, can_have_availability: bool, actor=None):
        """Allow or stop a user from offering slots.

        Free slots of a user without availability are never booked.
        """
        if isinstance(actor, StaffActor) and not actor.is_admin:
            raise PermissionDeniedError("Only admins can change who has availability")
        if not self.users.set_availability(uow, user_id, can_have_availability):
            raise NotFoundError(f"User {user_id} not found")
        return self.users.get_by_id(user_id, conn=uow.conn)

    def claim_slot(self, uow: UnitOfWork, slot_id: int, consultation_id: int) -> Slot:
        """Mark a free slot as booked by consultation_id.

        A single conditional update: it only matches while the slot is free,
        so two concurrent claims cannot both succeed. Only the consultation
        bound to the slot may claim it.
        """
        if uow.read("slots", slot_id) is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        consultation = uow.read("consultations", consultation_id)
        if consultation is None:
            raise NotFoundError(f"Consultation {consultation_id} not found")
        if consultation["slot_id"] != slot_id:
            raise ConflictError(
                f"Consultation {consultation_id} is bound to slot {consultation['slot_id']}, not {slot_id}"
            )
        claimed = uow.update(
            "slots", slot_id, {"consultation_id": consultation_id},
            condition="consultation_id IS NULL",
        )
        if not claimed:
            raise AlreadyBookedError(f"Slot {slot_id} is already booked")
        return self.get_by_id(slot_id, conn=uow.conn)

    def delete_slot(self, uow: UnitOfWork, slot_id: int, actor=None) -> Slot:
        """Remove a free slot."""
        slot = self.get_by_id(slot_id, conn=uow.conn)
        if slot is None:
            raise NotFoundError(f"Slot {slot_id} not found")
        if isinstance(actor, StaffActor) and actor.user_id != slot.owner_user_id and not actor.is_admin:
            raise PermissionDeniedError("Only admins can delete another user's slots")
        if not slot.is_free:
            raise ConflictError("Cannot delete a slot that has a consultation")
        uow.delete("slots", "id = ? AND consultation_id IS NULL", (slot_id,))
        return slot

    def list_free_slots(
        self,
        owner_user_id: int | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> FreeSlots:
        """Free slots between two local dates (inclusive), earliest first."""
        query = "SELECT * FROM slots WHERE consultation_id IS NULL"
        params = []

        if owner_user_id is not None:
            query += " AND owner_user_id = ?"
            params.append(owner_user_id)
        if date_from:
            start, _ = local_day_bounds(date_from, self.tz_name)
            query += " AND start_date_time >= ?"
            params.append(to_iso(start))
        if date_to:
            _, end = local_day_bounds(date_to, self.tz_name)
            query += " AND start_date_time < ?"
            params.append(to_iso(end))

        query += " ORDER BY start_date_time, id"
        return FreeSlots(self, query, params)

    def find_nearest_free_slot(
        self,
        conn,
        not_before: datetime,
        owner_user_id: int | None = None,
    ) -> Slot | None:
        """Earliest free slot starting at or after not_before.

        Only users who can have availability are considered. Ties on start
        time go to the lowest slot id.
        """
        query = """SELECT s.* FROM slots s
                   JOIN users u ON u.id = s.owner_user_id
                   WHERE s.consultation_id IS NULL
                     AND u.can_have_availability = 1
                     AND s.start_date_time >= ?"""
        params = [to_iso(not_before)]

        if owner_user_id is not None:
            query += " AND s.owner_user_id = ?"
            params.append(owner_user_id)

        query += " ORDER BY s.start_date_time, s.id LIMIT 1"
        row = conn.execute(query, params).fetchone()
        return self._row_to_slot(row) if row else None

    def get_by_id(self, slot_id: int, conn=None) -> Slot | None:
        """Get a slot by ID."""
        with connect(conn) as conn:
            row = conn.execute("SELECT * FROM slots WHERE id = ?", (slot_id,)).fetchone()
        return self._row_to_slot(row) if row else None

    def get_slots_by_date(
        self,
        owner_user_id: int,
        date: str,
        conn=None,
        free_only: bool = False,
    ) -> list[Slot]:
        """All of an owner's slots starting on a local date."""
        start, end = local_day_bounds(date, self.tz_name)
        query = """SELECT * FROM slots
                   WHERE owner_user_id = ?
                     AND start_date_time >= ?
                     AND start_date_time < ?"""
        if free_only:
            query += " AND consultation_id IS NULL"
        query += " ORDER BY start_date_time, id"

        with connect(conn) as conn:
            rows = conn.execute(query, (owner_user_id, to_iso(start), to_iso(end))).fetchall()
        return [self._row_to_slot(row) for row in rows]

    def _parse_windows(self, date: str, slot_specs: list[dict]) -> list[tuple[datetime, datetime]]:
        """Validate slot entries and return (start, end) pairs sorted by start."""
        windows = []
        for entry in slot_specs:
            start_time = entry.get("start_time")
            end_time = entry.get("end_time")
            if not start_time or not end_time:
                raise ValidationError("Start time and end time are required")

            start = local_to_utc(date, start_time, self.tz_name)
            end = local_to_utc(date, end_time, self.tz_name)
            if end <= start:
                raise ValidationError("End time must be after start time")
            windows.append((start, end))

        windows.sort()
        for (_, previous_end), (next_start, _) in zip(windows, windows[1:]):
            if next_start < previous_end:
                raise ConflictError("Proposed slot windows overlap each other")
        return windows

    def _row_to_slot(self, row) -> Slot:
        """Convert a database row to a Slot object."""
        return Slot(
            id=row["id"],
            owner_user_id=row["owner_user_id"],
            start_date_time=from_iso(row["start_date_time"]),
            end_date_time=from_iso(row["end_date_time"]),
            consultation_id=row["consultation_id"],
            created_at=row["created_at"],
        )


def generate_slot_windows(start_time: str, end_time: str, config) -> list[dict]:
    """Split a working period into consultation-sized windows.

    Windows last consultation_duration_minutes and are separated by
    break_duration_minutes. A trailing window that would run past end_time
    is dropped.
    """
    start = local_to_utc("2000-01-01", start_time, "UTC")
    end = local_to_utc("2000-01-01", end_time, "UTC")
    duration = timedelta(minutes=config.consultation_duration_minutes)
    step = duration + timedelta(minutes=config.break_duration_minutes)

    windows = []
    current = start
    while current + duration <= end:
        windows.append({
            "start_time": current.strftime("%H:%M"),
            "end_time": (current + duration).strftime("%H:%M"),
        })
        current += step
    return windows
