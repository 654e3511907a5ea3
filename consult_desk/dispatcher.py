"""Operation dispatcher: the single entry point for mutating operations.

dispatch() runs an operation inside one write transaction under an actor.
Once the transaction commits, each entity the operation created or changed
is reported to the audit recorder exactly once, in the order it was first
touched, and only then are after-commit hooks (outbound SMS) run. A failing
operation is rolled back and produces no audit entries.
"""

import logging

from consult_desk.actors import SYSTEM, StaffActor, SystemActor
from consult_desk.audit import AuditRecorder
from consult_desk.consultations.database.connection import transaction
from consult_desk.consultations.database.consultation_repository import Consultation
from consult_desk.consultations.database.request_repository import ConsultationRequest
from consult_desk.consultations.database.slot_ledger import SlotLedger
from consult_desk.consultations.database.unit_of_work import UnitOfWork
from consult_desk.errors import ValidationError
from consult_desk.logging_config import get_alert_logger
from consult_desk.settings import ConsultationConfig, load_config
from consult_desk.templates import find_template
from consult_desk.timeutils import utc_now
from consult_desk.workflow import ConsultationWorkflow

logger = logging.getLogger(__name__)


class OperationDispatcher:
    """Runs workflow and ledger operations under an actor identity."""

    def __init__(
        self,
        workflow: ConsultationWorkflow | None = None,
        recorder: AuditRecorder | None = None,
        config: ConsultationConfig | None = None,
        clock=utc_now,
    ):
        self.config = config or load_config()
        self.workflow = workflow or ConsultationWorkflow(
            slots=SlotLedger(tz_name=self.config.timezone), clock=clock,
        )
        self.recorder = recorder or AuditRecorder(clock=clock)
        self.workflow.messenger.bind(self.dispatch)

    @property
    def ledger(self) -> SlotLedger:
        return self.workflow.slots

    def dispatch(self, actor, operation, /, *args, **kwargs):
        """Run operation(uow, *args, **kwargs) as actor and audit its writes."""
        if not isinstance(actor, (StaffActor, SystemActor)):
            raise ValidationError(f"Not an actor: {actor!r}")

        with transaction() as conn:
            uow = UnitOfWork(conn)
            result = operation(uow, *args, **kwargs)

        for change in uow.collapse():
            self.recorder.record(
                change.entity_type,
                change.entity_id,
                change.event_type,
                change.before,
                change.after,
                actor,
            )

        for callback in uow.pending_callbacks():
            try:
                callback()
            except Exception:
                get_alert_logger().exception(
                    "After-commit hook of %s failed", getattr(operation, "__name__", operation),
                )
        return result

    # -------------------------------------------------------------------------
    # Mutating operations
    # -------------------------------------------------------------------------

    def intake_sms(self, sender: str, text: str, received_at=None) -> ConsultationRequest:
        """Inbound SMS from a patient; always attributed to the system."""
        return self.dispatch(SYSTEM, self.workflow.receive_sms, sender, text, received_at, actor=SYSTEM)

    def create_request(self, actor, phone_number: str, symptom_text: str) -> ConsultationRequest:
        return self.dispatch(actor, self.workflow.create_request, phone_number, symptom_text, actor=actor)

    def accept_request(
        self,
        actor,
        request_id: int,
        template_body: str | None = None,
        assign_to_only_me: bool = False,
        config: ConsultationConfig | None = None,
        template_name: str | None = None,
    ) -> Consultation:
        """Accept a request using template_body, or a configured template.

        Without a body the template named template_name is used, falling
        back to the first configured template.
        """
        config = config or self.config
        if template_body is None:
            if template_name is not None:
                template_body = find_template(config.sms_templates, template_name).body
            else:
                template_body = config.sms_templates[0].body
        return self.dispatch(
            actor, self.workflow.accept_request,
            request_id, template_body, assign_to_only_me, actor, config,
        )

    def reject_request(self, actor, request_id: int) -> ConsultationRequest:
        return self.dispatch(actor, self.workflow.reject_request, request_id, actor)

    def create_patient(self, actor, name: str, date_of_birth: str):
        return self.dispatch(actor, self.workflow.create_patient, name, date_of_birth, actor)

    def assign_patient(self, actor, consultation_id: int, patient_id: int, date_of_birth: str | None = None):
        return self.dispatch(
            actor, self.workflow.assign_patient,
            consultation_id, patient_id, actor, date_of_birth=date_of_birth,
        )

    def clear_patient(self, actor, consultation_id: int):
        return self.dispatch(actor, self.workflow.clear_patient, consultation_id, actor)

    def create_call(
        self,
        actor,
        consultation_id: int,
        status: str,
        patient_id: int | None = None,
        outcome: dict | None = None,
        additional_notes: str | None = None,
    ):
        return self.dispatch(
            actor, self.workflow.create_call,
            consultation_id, status, patient_id, outcome,
            actor=actor, additional_notes=additional_notes,
        )

    def send_consultation_sms(self, actor, consultation_id: int, body: str, phone_number: str | None = None):
        return self.dispatch(
            actor, self.workflow.send_consultation_sms,
            consultation_id, body, actor, phone_number=phone_number,
        )

    def bulk_upsert_slots(self, actor, owner_user_id: int, date: str, slot_specs: list[dict]):
        return self.dispatch(
            actor, self.ledger.bulk_upsert_slots,
            owner_user_id, date, slot_specs, actor=actor,
        )

    def claim_slot(self, actor, slot_id: int, consultation_id: int):
        return self.dispatch(actor, self.ledger.claim_slot, slot_id, consultation_id)

    def delete_slot(self, actor, slot_id: int):
        return self.dispatch(actor, self.ledger.delete_slot, slot_id, actor=actor)

    def set_availability(self, actor, user_id: int, can_have_availability: bool):
        return self.dispatch(
            actor, self.ledger.set_availability,
            user_id, can_have_availability, actor=actor,
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_requests_by_status(self, status: str | None = None) -> list[ConsultationRequest]:
        """Requests in creation order with their consultation and its slot."""
        requests = self.workflow.requests.find_by_status(status)
        consultations = self.workflow.consultations.get_by_request_ids([r.id for r in requests])
        for request in requests:
            consultation = consultations.get(request.id)
            if consultation is not None:
                consultation.slot = self.ledger.get_by_id(consultation.slot_id)
            request.consultation = consultation
        return requests

    def get_consultation_with_calls(self, consultation_id: int) -> Consultation | None:
        """A consultation with its slot, request, patient, calls and messages."""
        workflow = self.workflow
        consultation = workflow.consultations.get_by_id(consultation_id)
        if consultation is None:
            return None
        consultation.slot = self.ledger.get_by_id(consultation.slot_id)
        consultation.request = workflow.requests.get_by_id(consultation.consultation_request_id)
        if consultation.patient_id is not None:
            consultation.patient = workflow.patients.get_by_id(consultation.patient_id)
        consultation.calls = workflow.consultations.get_calls(consultation.id)
        consultation.messages = workflow.sms.get_outgoing_for_consultation(consultation.id)
        return consultation

    def search_patients(self, phone_number: str | None = None, date_of_birth: str | None = None):
        """Patients known by a request phone number and/or date of birth."""
        return self.workflow.patients.search(phone_number=phone_number, date_of_birth=date_of_birth)

    def get_audit_logs_by_user(self, user_id: int, limit: int = 100):
        return self.recorder.query_by_user(user_id, limit=limit)

    def get_recent_audit_logs(self, limit: int = 50):
        return self.recorder.query_recent(limit=limit)

    def get_audit_logs_for_entity(self, entity_type: str, entity_id: int):
        return self.recorder.query_by_entity(entity_type, entity_id)

    def list_free_slots(self, owner_user_id: int | None = None, date_from: str | None = None, date_to: str | None = None):
        return self.ledger.list_free_slots(owner_user_id, date_from, date_to)

    def pending_outgoing(self):
        return self.workflow.messenger.pending_outgoing()

    def mark_outgoing_sent(self, message_id: int, success: bool):
        return self.workflow.messenger.mark_outgoing_sent(message_id, success)
