"""Datetime helpers.

Timestamps are stored as UTC ISO-8601 strings. Dates and HH:MM times typed by
staff are wall-clock values in the clinic's timezone.
"""

import re
from datetime import datetime, timedelta

import pytz

from consult_desk.errors import ValidationError

TIME_FORMAT = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
DATE_FORMAT = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_now() -> datetime:
    return datetime.now(pytz.utc)


def to_iso(moment: datetime) -> str:
    """Serialize as a UTC ISO string."""
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(pytz.utc).isoformat()


def from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment


def to_local(moment: datetime, tz_name: str) -> datetime:
    """Convert a datetime to the clinic's timezone."""
    if moment.tzinfo is None:
        moment = pytz.utc.localize(moment)
    return moment.astimezone(pytz.timezone(tz_name))


def parse_date(date: str) -> datetime:
    if not date or not DATE_FORMAT.match(date):
        raise ValidationError("Invalid date format. Expected YYYY-MM-DD format")
    try:
        return datetime.strptime(date, "%Y-%m-%d")
    except ValueError:
        raise ValidationError(f"Invalid date: {date}")


def local_to_utc(date: str, time: str, tz_name: str) -> datetime:
    """Interpret date + HH:MM as wall-clock time in tz_name."""
    if not time or not TIME_FORMAT.match(time):
        raise ValidationError("Invalid time format. Expected HH:mm format")
    day = parse_date(date)
    hours, minutes = (int(part) for part in time.split(":"))
    naive = day.replace(hour=hours, minute=minutes)
    return pytz.timezone(tz_name).localize(naive).astimezone(pytz.utc)


def local_day_bounds(date: str, tz_name: str) -> tuple[datetime, datetime]:
    """UTC [start, end) of a calendar day in tz_name."""
    day = parse_date(date)
    tz = pytz.timezone(tz_name)
    start = tz.localize(day).astimezone(pytz.utc)
    end = tz.localize(day + timedelta(days=1)).astimezone(pytz.utc)
    return start, end
