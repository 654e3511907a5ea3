"""State machine for consultation requests and call outcomes."""

from enum import Enum

from consult_desk.errors import InvalidStateTransitionError, ValidationError


class RequestStatus(Enum):
    """States of a consultation request."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class CallStatus(Enum):
    """Outcome of a consultation call attempt."""
    PATIENT_ANSWERED = "patient_answered"
    PATIENT_NO_ANSWER = "patient_no_answer"
    CLINICIAN_DID_NOT_CALL = "clinician_did_not_call"


# Allowed transitions: state -> {action: next state}
TRANSITIONS = {
    RequestStatus.PENDING: {
        "accept": RequestStatus.ACCEPTED,
        "reject": RequestStatus.REJECTED,
    },
    RequestStatus.ACCEPTED: {},
    RequestStatus.REJECTED: {},
}

TERMINAL_STATES = {status for status, actions in TRANSITIONS.items() if not actions}

# Clinical data only recorded when the patient was reached
OUTCOME_FIELDS = [
    "confirmations",
    "chief_complaint",
    "review_of_systems",
    "past_medical_history",
    "diagnosis",
    "lab_tests",
    "prescriptions",
    "safety_netting",
    "follow_up",
]


def get_next_status(current: RequestStatus | str, action: str) -> RequestStatus:
    """Return the state reached by applying action to current."""
    current = RequestStatus(current)
    next_status = TRANSITIONS[current].get(action)
    if next_status is None:
        raise InvalidStateTransitionError(
            f"Cannot {action} a request that is {current.value}"
        )
    return next_status


def is_terminal(status: RequestStatus | str) -> bool:
    return RequestStatus(status) in TERMINAL_STATES


def parse_call_status(status: CallStatus | str) -> CallStatus:
    try:
        return CallStatus(status)
    except ValueError:
        raise ValidationError(f"Invalid call status: {status}")


def validate_call_outcome(status: CallStatus | str, outcome: dict) -> CallStatus:
    """Outcome fields are allowed iff the patient answered."""
    call_status = parse_call_status(status)
    provided = [f for f in OUTCOME_FIELDS if outcome.get(f) not in (None, "", [])]
    if provided and call_status != CallStatus.PATIENT_ANSWERED:
        raise ValidationError("outcome fields require patient_answered status")
    return call_status
