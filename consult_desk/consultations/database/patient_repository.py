"""Patient repository with lookup by phone number and date of birth."""

from dataclasses import dataclass
from datetime import datetime

from consult_desk.errors import ConflictError, ValidationError
from consult_desk.timeutils import DATE_FORMAT, to_iso

from .connection import connect
from .unit_of_work import UnitOfWork


@dataclass
class Patient:
    id: int
    name: str
    date_of_birth: str
    created_at: str | None = None
    phone_number_matches: bool = False


class PatientRepository:
    """Repository for patient records."""

    def create(self, uow: UnitOfWork, name: str, date_of_birth: str, now: datetime) -> Patient:
        """Create a patient; name + date of birth must be unique."""
        name = (name or "").strip()
        if not name:
            raise ValidationError("Patient name is required")
        if not date_of_birth or not DATE_FORMAT.match(date_of_birth):
            raise ValidationError("Date of birth must be in YYYY-MM-DD format")

        existing = uow.conn.execute(
            "SELECT id FROM patients WHERE name = ? AND date_of_birth = ?",
            (name, date_of_birth),
        ).fetchone()
        if existing:
            raise ConflictError(f"Patient {name} born {date_of_birth} already exists")

        patient_id = uow.insert("patients", {
            "name": name,
            "date_of_birth": date_of_birth,
            "created_at": to_iso(now),
        })
        return self._row_to_patient(uow.read("patients", patient_id))

    def get_by_id(self, patient_id: int, conn=None) -> Patient | None:
        """Get a patient by ID."""
        with connect(conn) as conn:
            row = conn.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone()
        return self._row_to_patient(row) if row else None

    def search(
        self,
        phone_number: str | None = None,
        date_of_birth: str | None = None,
    ) -> list[Patient]:
        """Find patients by the phone number of past requests and/or DOB.

        Patients found through the phone number are flagged with
        phone_number_matches so staff can tell a strong match from a DOB-only
        one.
        """
        conditions = []
        params = []
        phone_matches = False

        with connect() as conn:
            if phone_number:
                rows = conn.execute(
                    """SELECT DISTINCT c.patient_id FROM consultations c
                       JOIN consultation_requests r ON r.id = c.consultation_request_id
                       WHERE r.phone_number = ? AND c.patient_id IS NOT NULL""",
                    (phone_number,),
                ).fetchall()
                patient_ids = [row["patient_id"] for row in rows]
                if patient_ids:
                    placeholders = ", ".join("?" for _ in patient_ids)
                    conditions.append(f"id IN ({placeholders})")
                    params.extend(patient_ids)
                    phone_matches = True
                elif not date_of_birth:
                    return []

            if date_of_birth:
                conditions.append("date_of_birth = ?")
                params.append(date_of_birth)

            if not conditions:
                return []

            rows = conn.execute(
                f"SELECT * FROM patients WHERE {' AND '.join(conditions)} ORDER BY created_at DESC, id DESC",
                params,
            ).fetchall()

        patients = [self._row_to_patient(row) for row in rows]
        for patient in patients:
            patient.phone_number_matches = phone_matches
        return patients

    def _row_to_patient(self, row) -> Patient:
        """Convert a database row to a Patient object."""
        return Patient(
            id=row["id"],
            name=row["name"],
            date_of_birth=row["date_of_birth"],
            created_at=row["created_at"],
        )
