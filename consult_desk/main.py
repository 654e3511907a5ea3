"""Staff console for the consultation desk."""

import argparse
import shlex
import sys
from dataclasses import dataclass

from rich.console import Console
from rich.markdown import Markdown

from consult_desk import settings
from consult_desk.actors import StaffActor, resolve_actor
from consult_desk.consultations.database.connection import init_database
from consult_desk.consultations.database.slot_ledger import generate_slot_windows
from consult_desk.consultations.database.user_repository import UserRepository
from consult_desk.dispatcher import OperationDispatcher
from consult_desk.errors import ConsultDeskError, NotFoundError, ValidationError
from consult_desk.logging_config import setup_logging
from consult_desk.state_machine import OUTCOME_FIELDS
from consult_desk.timeutils import to_local

console = Console()

HELP_TEXT = """**Commands**

- `requests [status]` - list consultation requests
- `intake <phone> <text>` - record an inbound SMS
- `accept <id> [template] [--mine]` - book the nearest free slot
- `reject <id>` - reject a pending request
- `slots <date> HH:MM-HH:MM ... [--split] [--user <id>]` - set free slots for a day
- `free [date]` - list free slots
- `availability <user id> on|off` - allow or stop a user offering slots (admins)
- `patient <date of birth> <name>` - register a patient
- `patients [--phone <phone>] [--dob <date of birth>]` - find patients
- `assign <consultation> <patient> [date of birth]` - link a patient
- `call <consultation> <status> [field=value ...]` - record a call
- `show <consultation>` - consultation details
- `audit [user id]` - audit trail
- `quit` - leave
"""


@dataclass
class Session:
    dispatcher: OperationDispatcher
    actor: StaffActor

    @property
    def tz_name(self) -> str:
        return self.dispatcher.config.timezone

    def local(self, moment) -> str:
        return to_local(moment, self.tz_name).strftime("%Y-%m-%d %H:%M")


def _int(value: str, label: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"{label} must be a number, got {value!r}")


def _pop_option(args: list[str], name: str) -> str | None:
    """Remove `name value` from args and return value."""
    if name not in args:
        return None
    index = args.index(name)
    if index + 1 >= len(args):
        raise ValidationError(f"{name} needs a value")
    value = args[index + 1]
    del args[index:index + 2]
    return value


def handle_requests(session: Session, args: list[str]) -> str:
    """List requests, optionally filtered by status."""
    requests = session.dispatcher.get_requests_by_status(args[0] if args else None)
    if not requests:
        return "No consultation requests."

    lines = ["| ID | Phone | Status | Slot | Symptoms |", "|---|---|---|---|---|"]
    for request in requests:
        slot = ""
        if request.consultation and request.consultation.slot:
            slot = session.local(request.consultation.slot.start_date_time)
        lines.append(
            f"| {request.id} | {request.phone_number} | {request.status} | {slot} | {request.symptom_text} |"
        )
    return "\n".join(lines)


def handle_intake(session: Session, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: intake <phone> <text>")
    request = session.dispatcher.intake_sms(args[0], " ".join(args[1:]))
    return f"Created request **{request.id}** from {request.phone_number}."


def handle_accept(session: Session, args: list[str]) -> str:
    mine = "--mine" in args
    args = [arg for arg in args if arg != "--mine"]
    if not args:
        raise ValidationError("Usage: accept <id> [template] [--mine]")

    request_id = _int(args[0], "Request id")
    template_name = " ".join(args[1:]) or None
    consultation = session.dispatcher.accept_request(
        session.actor, request_id,
        assign_to_only_me=mine,
        template_name=template_name,
    )
    return (
        f"Request {request_id} accepted. Consultation **{consultation.id}** "
        f"with user {consultation.assigned_user_id} at {session.local(consultation.slot.start_date_time)}."
    )


def handle_reject(session: Session, args: list[str]) -> str:
    if not args:
        raise ValidationError("Usage: reject <id>")
    request = session.dispatcher.reject_request(session.actor, _int(args[0], "Request id"))
    return f"Request {request.id} rejected."


def handle_slots(session: Session, args: list[str]) -> str:
    """Replace the free slots of a day with the given windows.

    With --split each period is cut into consultation-sized windows.
    """
    owner = _pop_option(args, "--user")
    owner_user_id = _int(owner, "User id") if owner else session.actor.user_id
    split = "--split" in args
    args = [arg for arg in args if arg != "--split"]
    if len(args) < 1:
        raise ValidationError("Usage: slots <date> HH:MM-HH:MM ...")

    date, periods = args[0], args[1:]
    specs = []
    for period in periods:
        start_time, _, end_time = period.partition("-")
        if split:
            specs.extend(generate_slot_windows(start_time, end_time, session.dispatcher.config))
        else:
            specs.append({"start_time": start_time, "end_time": end_time})

    slots = session.dispatcher.bulk_upsert_slots(session.actor, owner_user_id, date, specs)
    return f"User {owner_user_id} has {len(slots)} free slot(s) on {date}."


def handle_free(session: Session, args: list[str]) -> str:
    date = args[0] if args else None
    slots = list(session.dispatcher.list_free_slots(date_from=date, date_to=date))
    if not slots:
        return "No free slots."
    lines = ["| Slot | User | Start | End |", "|---|---|---|---|"]
    for slot in slots:
        lines.append(
            f"| {slot.id} | {slot.owner_user_id} | {session.local(slot.start_date_time)} | {session.local(slot.end_date_time)} |"
        )
    return "\n".join(lines)


def handle_availability(session: Session, args: list[str]) -> str:
    if len(args) != 2 or args[1] not in ("on", "off"):
        raise ValidationError("Usage: availability <user id> on|off")
    user = session.dispatcher.set_availability(
        session.actor, _int(args[0], "User id"), args[1] == "on",
    )
    state = "can" if user.can_have_availability else "cannot"
    return f"{user.name} {state} offer slots."


def handle_patient(session: Session, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: patient <date of birth> <name>")
    patient = session.dispatcher.create_patient(session.actor, " ".join(args[1:]), args[0])
    return f"Registered patient **{patient.id}** ({patient.name}, born {patient.date_of_birth})."


def handle_patients(session: Session, args: list[str]) -> str:
    """Find patients by a past request phone number and/or date of birth."""
    phone_number = _pop_option(args, "--phone")
    date_of_birth = _pop_option(args, "--dob")
    if args or not (phone_number or date_of_birth):
        raise ValidationError("Usage: patients [--phone <phone>] [--dob <date of birth>]")

    patients = session.dispatcher.search_patients(phone_number, date_of_birth)
    if not patients:
        return "No matching patients."
    lines = ["| ID | Name | Born | Phone match |", "|---|---|---|---|"]
    for patient in patients:
        match = "yes" if patient.phone_number_matches else ""
        lines.append(f"| {patient.id} | {patient.name} | {patient.date_of_birth} | {match} |")
    return "\n".join(lines)


def handle_assign(session: Session, args: list[str]) -> str:
    if len(args) < 2:
        raise ValidationError("Usage: assign <consultation> <patient> [date of birth]")
    consultation = session.dispatcher.assign_patient(
        session.actor,
        _int(args[0], "Consultation id"),
        _int(args[1], "Patient id"),
        date_of_birth=args[2] if len(args) > 2 else None,
    )
    return f"Consultation {consultation.id} is now for patient {consultation.patient_id}."


def handle_call(session: Session, args: list[str]) -> str:
    """Record a call: call <consultation> <status> [field=value ...].

    confirmations takes a comma-separated list; patient and notes are also
    accepted.
    """
    if len(args) < 2:
        raise ValidationError("Usage: call <consultation> <status> [field=value ...]")

    consultation_id = _int(args[0], "Consultation id")
    status = args[1]
    outcome = {}
    patient_id = None
    notes = None
    for pair in args[2:]:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValidationError(f"Expected field=value, got {pair!r}")
        if key == "patient":
            patient_id = _int(value, "Patient id")
        elif key == "notes":
            notes = value
        elif key == "confirmations":
            outcome[key] = [item.strip() for item in value.split(",") if item.strip()]
        elif key in OUTCOME_FIELDS:
            outcome[key] = value
        else:
            raise ValidationError(f"Unknown call field: {key}")

    call = session.dispatcher.create_call(
        session.actor, consultation_id, status,
        patient_id=patient_id, outcome=outcome, additional_notes=notes,
    )
    return f"Call {call.id} recorded as {call.status}."


def handle_show(session: Session, args: list[str]) -> str:
    if not args:
        raise ValidationError("Usage: show <consultation>")
    consultation_id = _int(args[0], "Consultation id")
    consultation = session.dispatcher.get_consultation_with_calls(consultation_id)
    if consultation is None:
        raise NotFoundError(f"Consultation {consultation_id} not found")

    patient = consultation.patient.name if consultation.patient else "not identified"
    lines = [
        f"**Consultation {consultation.id}**",
        "",
        f"- Phone: {consultation.request.phone_number}",
        f"- Symptoms: {consultation.request.symptom_text}",
        f"- Clinician: user {consultation.assigned_user_id}",
        f"- Slot: {session.local(consultation.slot.start_date_time)} - {session.local(consultation.slot.end_date_time)}",
        f"- Patient: {patient}",
        "",
        f"**Calls ({len(consultation.calls)})**",
        "",
    ]
    for call in consultation.calls:
        details = f" - diagnosis: {call.diagnosis}" if call.diagnosis else ""
        lines.append(f"- {call.created_at}: {call.status} by user {call.conducted_by_user_id}{details}")

    if consultation.messages:
        lines += ["", "**Messages**", ""]
        for message in consultation.messages:
            lines.append(f"- [{message.state}] {message.body}")
    return "\n".join(lines)


def handle_audit(session: Session, args: list[str]) -> str:
    if args:
        entries = session.dispatcher.get_audit_logs_by_user(_int(args[0], "User id"))
    else:
        entries = session.dispatcher.get_recent_audit_logs()
    if not entries:
        return "No audit entries."

    lines = ["| When | Actor | Event | Entity | Fields |", "|---|---|---|---|---|"]
    for entry in entries:
        actor = "system" if entry.is_system else f"user {entry.actor_user_id}"
        fields = ", ".join(sorted(entry.changes))
        lines.append(
            f"| {entry.timestamp} | {actor} | {entry.event_type} | {entry.entity_type} #{entry.entity_id} | {fields} |"
        )
    return "\n".join(lines)


def handle_help(session: Session, args: list[str]) -> str:
    return HELP_TEXT


COMMAND_HANDLERS = {
    "requests": handle_requests,
    "intake": handle_intake,
    "accept": handle_accept,
    "reject": handle_reject,
    "slots": handle_slots,
    "free": handle_free,
    "availability": handle_availability,
    "patient": handle_patient,
    "patients": handle_patients,
    "assign": handle_assign,
    "call": handle_call,
    "show": handle_show,
    "audit": handle_audit,
    "help": handle_help,
}


def process_command(session: Session, line: str) -> str:
    """Run one console command and return its Markdown output."""
    try:
        parts = shlex.split(line)
    except ValueError as e:
        raise ValidationError(f"Could not parse command: {e}")
    if not parts:
        return ""

    command, args = parts[0].lower(), parts[1:]
    handler = COMMAND_HANDLERS.get(command)
    if handler is None:
        return f"Unknown command `{command}`. Type `help` for the list of commands."
    return handler(session, args)


def main(argv: list[str] | None = None):
    """Main console loop."""
    parser = argparse.ArgumentParser(description="Consultation desk staff console")
    parser.add_argument("--user", type=int, required=True, help="id of the staff member using the console")
    options = parser.parse_args(argv)

    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    init_database()

    user = UserRepository().get_by_id(options.user)
    actor = resolve_actor({"id": user.id, "role": user.role}) if user else None
    if not isinstance(actor, StaffActor):
        console.print(f"[bold red]Error:[/bold red] no staff member with id {options.user}")
        return 1

    session = Session(dispatcher=OperationDispatcher(), actor=actor)

    console.print(f"[bold blue]Consultation desk[/bold blue] - signed in as {user.name} ({user.role})")
    console.print("Type 'help' for commands, 'quit' or 'exit' to leave.\n")

    is_tty = sys.stdin.isatty()

    while True:
        try:
            line = console.input("[bold green]desk>[/bold green] ").strip()
            # Echo input when stdin is piped (not interactive)
            if not is_tty and line:
                console.print(f"[dim]{line}[/dim]")
        except (EOFError, KeyboardInterrupt):
            console.print("\n[bold blue]Goodbye![/bold blue]")
            break

        if not line:
            continue

        if line.lower() in ("quit", "exit"):
            console.print("[bold blue]Goodbye![/bold blue]")
            break

        try:
            output = process_command(session, line)
            console.print(Markdown(output), "\n")
        except ConsultDeskError as e:
            console.print(f"[bold red]Error:[/bold red] {e.message}\n")

    session.dispatcher.recorder.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
