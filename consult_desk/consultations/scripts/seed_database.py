"""Seed the database with staff users, calendars and a few inbound requests."""

from datetime import timedelta

from consult_desk.actors import SYSTEM, StaffActor
from consult_desk.consultations.database import UserRepository, get_connection, init_database
from consult_desk.consultations.database.slot_ledger import generate_slot_windows
from consult_desk.dispatcher import OperationDispatcher
from consult_desk.timeutils import to_local, utc_now

MOCK_USERS = [
    # name, role, can_have_availability
    ("SMS intake", "system", False),
    ("Desk Admin", "admin", False),
    ("Dr. Amani Mbala", "clinician", True),
    ("Dr. Joseph Kabila", "clinician", True),
    ("Nurse Grace Ilunga", "clinician", True),
]

# Working periods per clinician, cut into consultation windows
WORKING_PERIODS = [("08:00", "12:00"), ("14:00", "17:00")]

MOCK_REQUESTS = [
    ("+243810000001", "Fever and headache for three days"),
    ("+243810000002", "Persistent cough, worse at night"),
    ("+243810000003", "Stomach pain after meals"),
]


def seed_database(days: int = 7):
    """Initialize and seed the database with mock data."""
    print("Initializing database...")
    init_database()

    conn = get_connection()
    existing = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0]
    conn.close()
    if existing:
        print(f"  Skipping seed ({existing} users already exist)")
        return

    dispatcher = OperationDispatcher()
    users = UserRepository()

    print("Creating users...")
    created = []
    for name, role, can_have_availability in MOCK_USERS:
        user = dispatcher.dispatch(SYSTEM, users.create, name, role, can_have_availability)
        created.append(user)
        print(f"  Created {user.name} ({user.role})")

    admin = next(u for u in created if u.role == "admin")
    admin_actor = StaffActor(admin.id, "admin")

    print("Creating slots...")
    total_slots = 0
    today = to_local(utc_now(), dispatcher.config.timezone).date()
    for user in created:
        if not user.can_have_availability:
            continue
        for offset in range(days):
            date = (today + timedelta(days=offset)).isoformat()
            specs = []
            for start_time, end_time in WORKING_PERIODS:
                specs.extend(generate_slot_windows(start_time, end_time, dispatcher.config))
            slots = dispatcher.bulk_upsert_slots(admin_actor, user.id, date, specs)
            total_slots += len(slots)
        print(f"  Created slots for {user.name}")

    print("Creating inbound requests...")
    for phone_number, text in MOCK_REQUESTS:
        request = dispatcher.intake_sms(phone_number, text)
        print(f"  Created request {request.id} from {phone_number}")

    dispatcher.recorder.close()

    print("\nDatabase seeded successfully!")
    print(f"  - {len(MOCK_USERS)} users")
    print(f"  - {total_slots} slots")
    print(f"  - {len(MOCK_REQUESTS)} consultation requests")


if __name__ == "__main__":
    seed_database()
