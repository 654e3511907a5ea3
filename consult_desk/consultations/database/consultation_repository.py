"""Consultation and consultation call repository."""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime

from consult_desk.errors import AlreadyBookedError, InvalidStateTransitionError
from consult_desk.state_machine import OUTCOME_FIELDS
from consult_desk.timeutils import to_iso

from .connection import connect
from .unit_of_work import UnitOfWork


@dataclass
class ConsultationCall:
    id: int
    consultation_id: int
    conducted_by_user_id: int
    status: str
    patient_id: int | None = None
    confirmations: list[str] | None = None
    chief_complaint: str | None = None
    review_of_systems: str | None = None
    past_medical_history: str | None = None
    diagnosis: str | None = None
    lab_tests: str | None = None
    prescriptions: str | None = None
    safety_netting: str | None = None
    follow_up: str | None = None
    additional_notes: str | None = None
    created_at: str | None = None


@dataclass
class Consultation:
    id: int
    consultation_request_id: int
    assigned_user_id: int
    slot_id: int
    patient_id: int | None = None
    created_at: str | None = None

    # Populated by detail queries
    slot: object | None = None
    request: object | None = None
    patient: object | None = None
    calls: list[ConsultationCall] = field(default_factory=list)
    messages: list = field(default_factory=list)


class ConsultationRepository:
    """Repository for consultations and their calls."""

    def create(
        self,
        uow: UnitOfWork,
        consultation_request_id: int,
        assigned_user_id: int,
        slot_id: int,
        now: datetime,
    ) -> Consultation:
        """Create a consultation bound to a slot and a request."""
        try:
            consultation_id = uow.insert("consultations", {
                "consultation_request_id": consultation_request_id,
                "assigned_user_id": assigned_user_id,
                "slot_id": slot_id,
                "patient_id": None,
                "created_at": to_iso(now),
            })
        except sqlite3.IntegrityError as e:
            # Unique indexes back up the slot claim and the status check
            if "consultations.slot_id" in str(e):
                raise AlreadyBookedError(f"Slot {slot_id} is already booked")
            if "consultations.consultation_request_id" in str(e):
                raise InvalidStateTransitionError(
                    f"Consultation request {consultation_request_id} already has a consultation"
                )
            raise
        return self._row_to_consultation(uow.read("consultations", consultation_id))

    def set_patient(self, uow: UnitOfWork, consultation_id: int, patient_id: int | None) -> bool:
        return uow.update("consultations", consultation_id, {"patient_id": patient_id})

    def get_by_id(self, consultation_id: int, conn=None) -> Consultation | None:
        """Get a consultation by ID."""
        with connect(conn) as conn:
            row = conn.execute(
                "SELECT * FROM consultations WHERE id = ?", (consultation_id,)
            ).fetchone()
        return self._row_to_consultation(row) if row else None

    def get_by_request_ids(self, request_ids: list[int]) -> dict[int, Consultation]:
        """Consultations keyed by their request id."""
        if not request_ids:
            return {}
        placeholders = ", ".join("?" for _ in request_ids)
        with connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM consultations WHERE consultation_request_id IN ({placeholders})",
                request_ids,
            ).fetchall()
        return {row["consultation_request_id"]: self._row_to_consultation(row) for row in rows}

    def create_call(
        self,
        uow: UnitOfWork,
        consultation_id: int,
        conducted_by_user_id: int,
        status: str,
        patient_id: int | None,
        outcome: dict,
        additional_notes: str | None,
        now: datetime,
    ) -> ConsultationCall:
        """Persist a call attempt. Outcome values are stored verbatim."""
        values = {
            "consultation_id": consultation_id,
            "conducted_by_user_id": conducted_by_user_id,
            "status": status,
            "patient_id": patient_id,
            "additional_notes": additional_notes,
            "created_at": to_iso(now),
        }
        for field_name in OUTCOME_FIELDS:
            value = outcome.get(field_name)
            if field_name == "confirmations" and value is not None:
                value = json.dumps(value)
            values[field_name] = value

        call_id = uow.insert("consultation_calls", values)
        return self._row_to_call(uow.read("consultation_calls", call_id))

    def get_calls(self, consultation_id: int, conn=None) -> list[ConsultationCall]:
        """Calls for a consultation, oldest first."""
        with connect(conn) as conn:
            rows = conn.execute(
                """SELECT * FROM consultation_calls
                   WHERE consultation_id = ?
                   ORDER BY created_at, id""",
                (consultation_id,),
            ).fetchall()
        return [self._row_to_call(row) for row in rows]

    def _row_to_consultation(self, row) -> Consultation:
        """Convert a database row to a Consultation object."""
        return Consultation(
            id=row["id"],
            consultation_request_id=row["consultation_request_id"],
            assigned_user_id=row["assigned_user_id"],
            slot_id=row["slot_id"],
            patient_id=row["patient_id"],
            created_at=row["created_at"],
        )

    def _row_to_call(self, row) -> ConsultationCall:
        """Convert a database row to a ConsultationCall object."""
        return ConsultationCall(
            id=row["id"],
            consultation_id=row["consultation_id"],
            conducted_by_user_id=row["conducted_by_user_id"],
            status=row["status"],
            patient_id=row["patient_id"],
            confirmations=json.loads(row["confirmations"]) if row["confirmations"] else None,
            chief_complaint=row["chief_complaint"],
            review_of_systems=row["review_of_systems"],
            past_medical_history=row["past_medical_history"],
            diagnosis=row["diagnosis"],
            lab_tests=row["lab_tests"],
            prescriptions=row["prescriptions"],
            safety_netting=row["safety_netting"],
            follow_up=row["follow_up"],
            additional_notes=row["additional_notes"],
            created_at=row["created_at"],
        )
