"""Shared pytest fixtures."""

from datetime import datetime

import pytest
import pytz

from consult_desk.actors import SYSTEM, StaffActor
from consult_desk.audit import AuditRecorder
from consult_desk.consultations.database import connection
from consult_desk.consultations.database.slot_ledger import SlotLedger
from consult_desk.consultations.database.unit_of_work import UnitOfWork
from consult_desk.consultations.database.user_repository import UserRepository
from consult_desk.dispatcher import OperationDispatcher
from consult_desk.messaging import OutboundMessenger, SmsGateway
from consult_desk.settings import ConsultationConfig
from consult_desk.workflow import ConsultationWorkflow

TZ = "Africa/Kinshasa"  # UTC+1, no DST
NOW = datetime(2030, 1, 15, 6, 0, tzinfo=pytz.utc)  # 07:00 local
TODAY = "2030-01-15"
TOMORROW = "2030-01-16"
PHONE = "+15555557000"
TEMPLATE = "Your consultation is scheduled for {consultationTime}."


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    """Fresh SQLite file per test."""
    monkeypatch.setattr(connection, "DB_PATH", tmp_path / "consult_desk.db")
    connection.init_database()
    yield tmp_path / "consult_desk.db"


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def config():
    return ConsultationConfig(timezone=TZ)


@pytest.fixture
def users():
    """Staff users keyed by a short name."""
    repo = UserRepository()
    with connection.transaction() as conn:
        uow = UnitOfWork(conn)
        created = {
            "system": repo.create(uow, "SMS intake", "system", can_have_availability=False),
            "admin": repo.create(uow, "Desk Admin", "admin", can_have_availability=False),
            "u1": repo.create(uow, "Dr. One", "clinician"),
            "u2": repo.create(uow, "Dr. Two", "clinician"),
        }
    return created


@pytest.fixture
def admin(users):
    return StaffActor(users["admin"].id, "admin")


@pytest.fixture
def u1(users):
    return StaffActor(users["u1"].id)


@pytest.fixture
def u2(users):
    return StaffActor(users["u2"].id)


@pytest.fixture
def messenger():
    """Messenger with no gateway URL: messages stay queued as 'sending'."""
    return OutboundMessenger(gateway=SmsGateway(url=""))


@pytest.fixture
def recorder(clock):
    recorder = AuditRecorder(clock=clock)
    yield recorder
    recorder.close()


@pytest.fixture
def dispatcher(config, clock, messenger, recorder):
    workflow = ConsultationWorkflow(
        slots=SlotLedger(tz_name=TZ),
        messenger=messenger,
        clock=clock,
    )
    return OperationDispatcher(workflow=workflow, recorder=recorder, config=config, clock=clock)


@pytest.fixture
def add_slots(dispatcher, admin):
    """Create free slots for a user: add_slots(actor, "09:00-09:10", ...)."""
    def _add(owner, *windows, date=TODAY):
        specs = []
        for window in windows:
            start_time, end_time = window.split("-")
            specs.append({"start_time": start_time, "end_time": end_time})
        return dispatcher.bulk_upsert_slots(admin, owner.user_id, date, specs)
    return _add


@pytest.fixture
def pending_request(dispatcher):
    return dispatcher.intake_sms(PHONE, "Fever and cough since Monday")


@pytest.fixture
def consultation(dispatcher, add_slots, u1, pending_request):
    """An accepted request booked in U1's 09:00 slot."""
    add_slots(u1, "09:00-09:10")
    return dispatcher.accept_request(u1, pending_request.id, TEMPLATE)


@pytest.fixture
def unclaimed_consultation(dispatcher, pending_request):
    """A consultation bound to slot whose slot has not been claimed yet."""
    def _create(slot):
        return dispatcher.dispatch(
            SYSTEM, dispatcher.workflow.consultations.create,
            pending_request.id, slot.owner_user_id, slot.id, NOW,
        )
    return _create
