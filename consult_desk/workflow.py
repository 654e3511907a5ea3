"""Consultation workflow: requests, consultations, patients and calls.

Every operation receives the UnitOfWork of the transaction it runs in and
the actor performing it. Operations only mutate state; attributing the
mutations to the actor is the dispatcher's job.
"""

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from consult_desk.actors import StaffActor, actor_user_id
from consult_desk.consultations.database.consultation_repository import (
    Consultation,
    ConsultationCall,
    ConsultationRepository,
)
from consult_desk.consultations.database.patient_repository import Patient, PatientRepository
from consult_desk.consultations.database.request_repository import (
    ConsultationRequest,
    RequestRepository,
)
from consult_desk.consultations.database.slot_ledger import SlotLedger
from consult_desk.consultations.database.sms_repository import SmsRepository
from consult_desk.consultations.database.unit_of_work import UnitOfWork
from consult_desk.errors import (
    NoAvailableSlotError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from consult_desk.messaging import OutboundMessenger
from consult_desk.settings import ConsultationConfig
from consult_desk.state_machine import CallStatus, get_next_status, validate_call_outcome
from consult_desk.templates import consultation_context, render_template
from consult_desk.timeutils import utc_now

logger = logging.getLogger(__name__)


class CallOutcome(BaseModel):
    """Clinical data captured when the patient answered."""

    model_config = ConfigDict(extra="forbid")

    confirmations: list[str] | None = None
    chief_complaint: str | None = None
    review_of_systems: str | None = None
    past_medical_history: str | None = None
    diagnosis: str | None = None
    lab_tests: str | None = None
    prescriptions: str | None = None
    safety_netting: str | None = None
    follow_up: str | None = None


def _require_staff(actor, action: str) -> StaffActor:
    if not isinstance(actor, StaffActor):
        raise PermissionDeniedError(f"Only staff members can {action}")
    return actor


class ConsultationWorkflow:
    """Lifecycle operations for consultation requests and consultations."""

    def __init__(
        self,
        requests: RequestRepository | None = None,
        slots: SlotLedger | None = None,
        consultations: ConsultationRepository | None = None,
        patients: PatientRepository | None = None,
        sms: SmsRepository | None = None,
        messenger: OutboundMessenger | None = None,
        clock=utc_now,
    ):
        self.requests = requests or RequestRepository()
        self.slots = slots or SlotLedger()
        self.consultations = consultations or ConsultationRepository()
        self.patients = patients or PatientRepository()
        self.sms = sms or SmsRepository()
        self.messenger = messenger or OutboundMessenger()
        self.clock = clock

    # -------------------------------------------------------------------------
    # Consultation requests
    # -------------------------------------------------------------------------

    def receive_sms(
        self,
        uow: UnitOfWork,
        sender: str,
        text: str,
        received_at: datetime | None = None,
        actor=None,
    ) -> ConsultationRequest:
        """Log an inbound SMS and turn it into a pending request."""
        self.sms.log_incoming(uow, sender, text, received_at or self.clock())
        return self.create_request(uow, sender, text, actor=actor)

    def create_request(
        self,
        uow: UnitOfWork,
        phone_number: str,
        symptom_text: str,
        actor=None,
    ) -> ConsultationRequest:
        phone_number = (phone_number or "").strip()
        symptom_text = (symptom_text or "").strip()
        if not phone_number:
            raise ValidationError("Phone number is required")
        if not symptom_text:
            raise ValidationError("Symptom text is required")

        request = self.requests.create(uow, phone_number, symptom_text, self.clock())
        logger.info("Created consultation request %s from %s", request.id, phone_number)
        return request

    def accept_request(
        self,
        uow: UnitOfWork,
        request_id: int,
        template_body: str,
        assign_to_only_me: bool,
        actor,
        config: ConsultationConfig,
    ) -> Consultation:
        """Book the nearest free slot for a pending request.

        Creates the consultation, claims its slot, marks the request accepted
        and queues the confirmation SMS in the caller's transaction. The SMS
        is delivered only after that transaction has committed, and its
        outcome never affects the acceptance.
        """
        actor = _require_staff(actor, "accept consultation requests")

        request = self.requests.get_by_id(request_id, conn=uow.conn)
        if request is None:
            raise NotFoundError(f"Consultation request {request_id} not found")
        get_next_status(request.status, "accept")

        now = self.clock()
        not_before = now + timedelta(minutes=config.buffer_time_minutes)
        owner_user_id = actor.user_id if assign_to_only_me else None
        slot = self.slots.find_nearest_free_slot(uow.conn, not_before, owner_user_id=owner_user_id)
        if slot is None:
            raise NoAvailableSlotError()

        consultation = self.consultations.create(uow, request_id, slot.owner_user_id, slot.id, now)
        slot = self.slots.claim_slot(uow, slot.id, consultation.id)
        request = self.requests.transition(uow, request_id, "accept", actor.user_id, now)

        body = render_template(template_body, consultation_context(slot, now, config.timezone))
        self.messenger.queue(uow, request.phone_number, body, consultation.id, actor.user_id)

        consultation.slot = slot
        consultation.request = request
        logger.info(
            "Request %s accepted by user %s: consultation %s in slot %s",
            request_id, actor.user_id, consultation.id, slot.id,
        )
        return consultation

    def reject_request(self, uow: UnitOfWork, request_id: int, actor) -> ConsultationRequest:
        actor = _require_staff(actor, "reject consultation requests")
        request = self.requests.transition(uow, request_id, "reject", actor.user_id, self.clock())
        logger.info("Request %s rejected by user %s", request_id, actor.user_id)
        return request

    # -------------------------------------------------------------------------
    # Patients
    # -------------------------------------------------------------------------

    def create_patient(self, uow: UnitOfWork, name: str, date_of_birth: str, actor) -> Patient:
        _require_staff(actor, "register patients")
        return self.patients.create(uow, name, date_of_birth, self.clock())

    def assign_patient(
        self,
        uow: UnitOfWork,
        consultation_id: int,
        patient_id: int,
        actor,
        date_of_birth: str | None = None,
    ) -> Consultation:
        """Link a consultation to a patient, replacing any previous one.

        When date_of_birth is given it must match the patient's record.
        """
        _require_staff(actor, "assign patients")
        consultation = self._get_consultation(uow, consultation_id)

        patient = self.patients.get_by_id(patient_id, conn=uow.conn)
        if patient is None:
            raise NotFoundError(f"Patient {patient_id} not found")
        if date_of_birth is not None and date_of_birth != patient.date_of_birth:
            raise ValidationError("Date of birth does not match the patient's record")

        self.consultations.set_patient(uow, consultation.id, patient.id)
        consultation = self.consultations.get_by_id(consultation.id, conn=uow.conn)
        consultation.patient = patient
        return consultation

    def clear_patient(self, uow: UnitOfWork, consultation_id: int, actor) -> Consultation:
        _require_staff(actor, "unassign patients")
        consultation = self._get_consultation(uow, consultation_id)
        self.consultations.set_patient(uow, consultation.id, None)
        return self.consultations.get_by_id(consultation.id, conn=uow.conn)

    # -------------------------------------------------------------------------
    # Calls and messages
    # -------------------------------------------------------------------------

    def create_call(
        self,
        uow: UnitOfWork,
        consultation_id: int,
        status: str,
        patient_id: int | None = None,
        outcome: dict | None = None,
        actor=None,
        additional_notes: str | None = None,
    ) -> ConsultationCall:
        """Record a call attempt.

        Outcome fields are only accepted for patient_answered calls, and a
        patient_answered call needs a patient, either given here or already
        assigned to the consultation.
        """
        actor = _require_staff(actor, "record calls")
        try:
            parsed = CallOutcome(**(outcome or {}))
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e)
        outcome = parsed.model_dump()

        call_status = validate_call_outcome(status, outcome)
        consultation = self._get_consultation(uow, consultation_id)

        if patient_id is not None and self.patients.get_by_id(patient_id, conn=uow.conn) is None:
            raise NotFoundError(f"Patient {patient_id} not found")
        patient_id = patient_id if patient_id is not None else consultation.patient_id
        if call_status == CallStatus.PATIENT_ANSWERED and patient_id is None:
            raise ValidationError("A patient must be identified before recording an answered call")

        call = self.consultations.create_call(
            uow,
            consultation_id=consultation.id,
            conducted_by_user_id=actor.user_id,
            status=call_status.value,
            patient_id=patient_id,
            outcome=outcome,
            additional_notes=additional_notes,
            now=self.clock(),
        )
        logger.info("Call %s (%s) recorded for consultation %s", call.id, call.status, consultation.id)
        return call

    def send_consultation_sms(
        self,
        uow: UnitOfWork,
        consultation_id: int,
        body: str,
        actor,
        phone_number: str | None = None,
    ) -> Consultation:
        """Queue a free-text SMS to the consultation's patient."""
        _require_staff(actor, "send messages")
        if not body or not body.strip():
            raise ValidationError("Message body is required")

        consultation = self._get_consultation(uow, consultation_id)
        if phone_number is None:
            request = self.requests.get_by_id(consultation.consultation_request_id, conn=uow.conn)
            phone_number = request.phone_number

        self.messenger.queue(uow, phone_number, body.strip(), consultation.id, actor_user_id(actor))
        return consultation

    def _get_consultation(self, uow: UnitOfWork, consultation_id: int) -> Consultation:
        consultation = self.consultations.get_by_id(consultation_id, conn=uow.conn)
        if consultation is None:
            raise NotFoundError(f"Consultation {consultation_id} not found")
        return consultation

