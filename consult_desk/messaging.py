"""Outbound SMS: outbox bookkeeping and the HTTP gateway client."""

import logging
import sqlite3
from dataclasses import dataclass

import requests

from consult_desk import settings
from consult_desk.actors import SYSTEM, actor_user_id
from consult_desk.consultations.database.sms_repository import OutgoingSms, SmsRepository
from consult_desk.consultations.database.unit_of_work import UnitOfWork
from consult_desk.errors import ConsultDeskError, SmsDeliveryError
from consult_desk.logging_config import get_alert_logger

logger = logging.getLogger(__name__)


@dataclass
class DeliveryHandle:
    message_id: int | None
    state: str


class SmsGateway:
    """Posts outbox messages to an HTTP SMS provider.

    Without a configured URL nothing is sent and messages stay in the
    outbox as "sending" until a polling provider picks them up.
    """

    def __init__(self, url: str | None = None, api_key: str | None = None, timeout: float = 10):
        self.url = url if url is not None else settings.SMS_GATEWAY_URL
        self.api_key = api_key if api_key is not None else settings.SMS_API_KEY
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def deliver(self, message: OutgoingSms) -> str:
        """Hand a message to the provider and return its new outbox state."""
        if not self.configured:
            return "sending"

        payload = {"id": message.id, "to": message.phone_number, "body": message.body}
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        try:
            response = requests.post(self.url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise SmsDeliveryError("SMS gateway request timed out")
        except requests.exceptions.ConnectionError:
            raise SmsDeliveryError("Failed to connect to SMS gateway")
        except requests.exceptions.RequestException as e:
            raise SmsDeliveryError(f"SMS gateway request failed: {e}")

        if response.status_code in (401, 403):
            raise SmsDeliveryError("SMS gateway rejected the API key")
        elif response.status_code >= 400:
            raise SmsDeliveryError(f"SMS gateway error: {response.status_code}")

        return "sent"


class OutboundMessenger:
    """Keeps the outbox and passes queued messages to the gateway.

    Outbox writes run through the operation dispatcher, so every queued
    message and delivery report lands in the audit trail; the dispatcher
    binds itself on construction. Queueing and delivery never raise: a
    message that cannot be queued or delivered is logged on the alert
    logger and reported through its state.
    """

    def __init__(self, repository: SmsRepository | None = None, gateway: SmsGateway | None = None):
        self.repository = repository or SmsRepository()
        self.gateway = gateway or SmsGateway()
        self._dispatch = None

    def bind(self, dispatch) -> None:
        """Use dispatch(actor, operation, *args) for outbox writes."""
        self._dispatch = dispatch

    def queue(
        self,
        uow: UnitOfWork,
        phone_number: str,
        body: str,
        consultation_id: int | None = None,
        sent_by_user_id: int | None = None,
    ) -> OutgoingSms | None:
        """Add a message to the outbox within the caller's transaction.

        Delivery starts once that transaction has committed.
        """
        try:
            message = self.repository.create_outgoing(
                uow, phone_number, body, consultation_id, sent_by_user_id,
            )
        except sqlite3.Error as e:
            get_alert_logger().error(
                "Could not queue SMS for consultation %s: %s", consultation_id, e,
            )
            return None
        uow.after_commit(lambda: self.deliver(message))
        return message

    def enqueue(
        self,
        phone_number: str,
        body: str,
        consultation_id: int | None = None,
        actor=SYSTEM,
    ) -> DeliveryHandle:
        """Queue a message as actor and deliver it right away."""
        try:
            message = self._run(
                actor, self.repository.create_outgoing,
                phone_number, body, consultation_id, actor_user_id(actor),
            )
        except (ConsultDeskError, sqlite3.Error) as e:
            get_alert_logger().error(
                "Could not queue SMS for consultation %s: %s", consultation_id, e,
            )
            return DeliveryHandle(message_id=None, state="failed")
        return self.deliver(message)

    def deliver(self, message: OutgoingSms) -> DeliveryHandle:
        """Hand a queued message to the gateway and record the result."""
        try:
            state = self.gateway.deliver(message)
        except SmsDeliveryError as e:
            get_alert_logger().warning(
                "SMS %s to %s failed: %s", message.id, message.phone_number, e.message,
                extra={"error_type": e.code},
            )
            state = "failed"

        if state in ("sent", "failed"):
            try:
                self.mark_outgoing_sent(message.id, success=state == "sent")
            except (ConsultDeskError, sqlite3.Error) as e:
                get_alert_logger().error("Could not update outbox row %s: %s", message.id, e)

        logger.info("SMS %s for consultation %s is %s", message.id, message.consultation_id, state)
        return DeliveryHandle(message_id=message.id, state=state)

    def pending_outgoing(self) -> list[OutgoingSms]:
        return self.repository.pending_outgoing()

    def mark_outgoing_sent(self, message_id: int, success: bool, actor=SYSTEM) -> OutgoingSms:
        """Apply a provider's delivery report."""
        return self._run(actor, self.repository.mark_outgoing_sent, message_id, success)

    def _run(self, actor, operation, *args):
        if self._dispatch is None:
            raise RuntimeError("OutboundMessenger is not bound to a dispatcher")
        return self._dispatch(actor, operation, *args)
