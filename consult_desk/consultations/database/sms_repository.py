"""SMS transport log and outbox."""

from dataclasses import dataclass
from datetime import datetime

from consult_desk.errors import NotFoundError
from consult_desk.timeutils import to_iso, utc_now

from .connection import connect
from .unit_of_work import UnitOfWork


@dataclass
class SmsMessage:
    id: int
    phone_number: str
    body: str
    direction: str = "incoming"
    created_at: str | None = None


@dataclass
class OutgoingSms:
    id: int
    phone_number: str
    body: str
    consultation_id: int | None = None
    sent_by_user_id: int | None = None
    state: str = "sending"
    sent_message_id: int | None = None
    created_at: str | None = None


class SmsRepository:
    """Repository for inbound/outbound SMS rows."""

    def log_incoming(self, uow: UnitOfWork, phone_number: str, body: str, created_at: datetime) -> SmsMessage:
        """Store an inbound message as received."""
        message_id = uow.insert("sms_messages", {
            "phone_number": phone_number,
            "body": body,
            "direction": "incoming",
            "created_at": to_iso(created_at),
        })
        return self._row_to_message(uow.read("sms_messages", message_id))

    def create_outgoing(
        self,
        uow: UnitOfWork,
        phone_number: str,
        body: str,
        consultation_id: int | None = None,
        sent_by_user_id: int | None = None,
    ) -> OutgoingSms:
        """Queue a rendered message in the outbox."""
        message_id = uow.insert("outgoing_sms_messages", {
            "phone_number": phone_number,
            "body": body,
            "consultation_id": consultation_id,
            "sent_by_user_id": sent_by_user_id,
            "state": "sending",
            "created_at": to_iso(utc_now()),
        })
        return self._row_to_outgoing(uow.read("outgoing_sms_messages", message_id))

    def mark_outgoing_sent(self, uow: UnitOfWork, message_id: int, success: bool) -> OutgoingSms:
        """Record the provider's delivery report for an outbox message.

        A successful send is also logged in sms_messages and linked back.
        """
        row = uow.read("outgoing_sms_messages", message_id)
        if row is None:
            raise NotFoundError(f"Outgoing message {message_id} not found")

        if success:
            sent_message_id = uow.insert("sms_messages", {
                "phone_number": row["phone_number"],
                "body": row["body"],
                "direction": "outgoing",
                "created_at": to_iso(utc_now()),
            })
            uow.update("outgoing_sms_messages", message_id, {
                "state": "sent",
                "sent_message_id": sent_message_id,
            })
        else:
            uow.update("outgoing_sms_messages", message_id, {"state": "failed"})

        return self._row_to_outgoing(uow.read("outgoing_sms_messages", message_id))

    def pending_outgoing(self) -> list[OutgoingSms]:
        """Outbox messages still waiting for the provider, oldest first."""
        with connect() as conn:
            rows = conn.execute(
                "SELECT * FROM outgoing_sms_messages WHERE state = 'sending' ORDER BY id"
            ).fetchall()
        return [self._row_to_outgoing(row) for row in rows]

    def get_outgoing_for_consultation(self, consultation_id: int, conn=None) -> list[OutgoingSms]:
        with connect(conn) as conn:
            rows = conn.execute(
                "SELECT * FROM outgoing_sms_messages WHERE consultation_id = ? ORDER BY id",
                (consultation_id,),
            ).fetchall()
        return [self._row_to_outgoing(row) for row in rows]

    def _row_to_message(self, row) -> SmsMessage:
        return SmsMessage(
            id=row["id"],
            phone_number=row["phone_number"],
            body=row["body"],
            direction=row["direction"],
            created_at=row["created_at"],
        )

    def _row_to_outgoing(self, row) -> OutgoingSms:
        return OutgoingSms(
            id=row["id"],
            phone_number=row["phone_number"],
            body=row["body"],
            consultation_id=row["consultation_id"],
            sent_by_user_id=row["sent_by_user_id"],
            state=row["state"],
            sent_message_id=row["sent_message_id"],
            created_at=row["created_at"],
        )
