"""SMS template rendering for consultation notifications."""

from datetime import datetime

from consult_desk.errors import ValidationError
from consult_desk.settings import SmsTemplate
from consult_desk.timeutils import to_local

RELATIVE_DAY_LABELS = {
    -1: "Yesterday",
    0: "Today",
    1: "Tomorrow",
}


def render_template(body: str, context: dict) -> str:
    """Replace each {key} in body with its value from context.

    Placeholders without a value are left as they are.
    """
    result = body
    for key, value in context.items():
        result = result.replace("{" + key + "}", str(value))
    return result


def find_template(templates: list[SmsTemplate], name: str) -> SmsTemplate:
    """Look up a template by exact name."""
    for template in templates:
        if template.name == name:
            return template
    raise ValidationError(f"Unknown SMS template: {name}")


def format_relative(moment: datetime, now: datetime, tz_name: str) -> str:
    """Format like "Today 14:30" or "10/11/2025 14:30"."""
    local = to_local(moment, tz_name)
    today = to_local(now, tz_name).date()
    time_string = local.strftime("%H:%M")

    label = RELATIVE_DAY_LABELS.get((local.date() - today).days)
    if label:
        return f"{label} {time_string}"
    return f"{local.strftime('%d/%m/%Y')} {time_string}"


def consultation_context(slot, now: datetime, tz_name: str) -> dict:
    """Placeholder values available to consultation templates."""
    start = to_local(slot.start_date_time, tz_name)
    end = to_local(slot.end_date_time, tz_name)
    return {
        "consultationTime": format_relative(slot.start_date_time, now, tz_name),
        "consultationDate": start.strftime("%d/%m/%Y"),
        "consultationStart": start.strftime("%H:%M"),
        "consultationEnd": end.strftime("%H:%M"),
    }
