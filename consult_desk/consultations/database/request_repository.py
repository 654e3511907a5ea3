"""Consultation request repository with status transitions."""

from dataclasses import dataclass
from datetime import datetime

from consult_desk.errors import InvalidStateTransitionError, NotFoundError, ValidationError
from consult_desk.state_machine import RequestStatus, get_next_status
from consult_desk.timeutils import to_iso

from .connection import connect
from .unit_of_work import UnitOfWork


@dataclass
class ConsultationRequest:
    id: int
    phone_number: str
    symptom_text: str
    status: str = "pending"
    status_actioned_by_user_id: int | None = None
    status_actioned_at: str | None = None
    created_at: str | None = None
    consultation: object | None = None


class RequestRepository:
    """Repository for consultation requests."""

    def create(
        self,
        uow: UnitOfWork,
        phone_number: str,
        symptom_text: str,
        now: datetime,
    ) -> ConsultationRequest:
        """Create a pending request."""
        request_id = uow.insert("consultation_requests", {
            "phone_number": phone_number,
            "symptom_text": symptom_text,
            "status": RequestStatus.PENDING.value,
            "created_at": to_iso(now),
        })
        return self._row_to_request(uow.read("consultation_requests", request_id))

    def get_by_id(self, request_id: int, conn=None) -> ConsultationRequest | None:
        """Get a request by ID."""
        with connect(conn) as conn:
            row = conn.execute(
                "SELECT * FROM consultation_requests WHERE id = ?", (request_id,)
            ).fetchone()
        return self._row_to_request(row) if row else None

    def transition(
        self,
        uow: UnitOfWork,
        request_id: int,
        action: str,
        actor_user_id: int | None,
        now: datetime,
    ) -> ConsultationRequest:
        """Apply accept/reject to a request.

        The status is read again right before writing and the write only
        succeeds if it is still the status that was read.
        """
        current = self.get_by_id(request_id, conn=uow.conn)
        if current is None:
            raise NotFoundError(f"Consultation request {request_id} not found")

        next_status = get_next_status(current.status, action)
        updated = uow.update(
            "consultation_requests",
            request_id,
            {
                "status": next_status.value,
                "status_actioned_by_user_id": actor_user_id,
                "status_actioned_at": to_iso(now),
            },
            condition="status = ?",
            params=(current.status,),
        )
        if not updated:
            raise InvalidStateTransitionError(
                f"Consultation request {request_id} changed status concurrently"
            )
        return self.get_by_id(request_id, conn=uow.conn)

    def find_by_status(self, status: str | None = None) -> list[ConsultationRequest]:
        """Requests in creation order, optionally filtered by status."""
        query = "SELECT * FROM consultation_requests"
        params = []
        if status:
            try:
                params.append(RequestStatus(status).value)
            except ValueError:
                raise ValidationError(f"Invalid request status: {status}")
            query += " WHERE status = ?"
        query += " ORDER BY created_at, id"

        with connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_request(row) for row in rows]

    def _row_to_request(self, row) -> ConsultationRequest:
        """Convert a database row to a ConsultationRequest object."""
        return ConsultationRequest(
            id=row["id"],
            phone_number=row["phone_number"],
            symptom_text=row["symptom_text"],
            status=row["status"],
            status_actioned_by_user_id=row["status_actioned_by_user_id"],
            status_actioned_at=row["status_actioned_at"],
            created_at=row["created_at"],
        )
