from .connection import get_connection, init_database, transaction
from .consultation_repository import ConsultationRepository
from .patient_repository import PatientRepository
from .request_repository import RequestRepository
from .slot_ledger import SlotLedger
from .sms_repository import SmsRepository
from .unit_of_work import UnitOfWork
from .user_repository import UserRepository

__all__ = [
    "get_connection",
    "init_database",
    "transaction",
    "ConsultationRepository",
    "PatientRepository",
    "RequestRepository",
    "SlotLedger",
    "SmsRepository",
    "UnitOfWork",
    "UserRepository",
]
