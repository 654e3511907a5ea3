"""Error kinds raised by the consultation workflow."""


class ConsultDeskError(Exception):
    """Base class for structured workflow failures."""

    code = "CONSULT_DESK_ERROR"
    retryable = False

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    default_message = "Consultation workflow error"

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "retryable": self.retryable}


class NotFoundError(ConsultDeskError):
    """Raised when an id does not match any record."""

    code = "NOT_FOUND"
    default_message = "Record not found"


class InvalidStateTransitionError(ConsultDeskError):
    """Raised when a request is moved out of a terminal state."""

    code = "CONSULTATION_REQUEST_ALREADY_ACTIONED"
    default_message = "Request has already been accepted or rejected"


class NoAvailableSlotError(ConsultDeskError):
    """Raised when no free slot matches the assignment policy."""

    code = "NO_AVAILABLE_SLOTS"
    default_message = "No availability"


class AlreadyBookedError(ConsultDeskError):
    """Raised when a slot was claimed by someone else first.

    Callers may retry with a different slot.
    """

    code = "SLOT_ALREADY_BOOKED"
    default_message = "Slot is already booked"
    retryable = True


class ValidationError(ConsultDeskError):
    """Raised for malformed input or a violated outcome-field rule."""

    code = "VALIDATION_ERROR"
    default_message = "Invalid input"

    @classmethod
    def from_pydantic(cls, error) -> "ValidationError":
        """Collapse a pydantic error into one message with field paths."""
        return cls("; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in error.errors()
        ))


class ConflictError(ConsultDeskError):
    """Raised when a write collides with existing data, such as a booked slot."""

    code = "CONFLICT"
    default_message = "Conflicts with existing data"


class PermissionDeniedError(ConsultDeskError):
    """Raised when an actor may not perform an operation."""

    code = "PERMISSION_DENIED"
    default_message = "Operation not permitted for this actor"


class AuditRecordingError(ConsultDeskError):
    """Raised when an audit entry could not be persisted."""

    code = "AUDIT_RECORDING_FAILED"
    default_message = "Failed to record audit entry"


class SmsDeliveryError(ConsultDeskError):
    """Raised when the SMS gateway rejects or cannot receive a message."""

    code = "SMS_DELIVERY_FAILED"
    default_message = "SMS delivery failed"
