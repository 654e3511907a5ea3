"""Environment settings and the scheduling configuration snapshot."""

import json
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
import pytz

load_dotenv(override=True)

DB_PATH = Path(
    os.environ.get(
        "CONSULT_DESK_DB_PATH",
        Path(__file__).parent / "consultations" / "consult_desk.db",
    )
)
TIMEZONE = os.environ.get("CONSULT_DESK_TIMEZONE", "Africa/Kinshasa")
SMS_GATEWAY_URL = os.environ.get("SMS_GATEWAY_URL")
SMS_API_KEY = os.environ.get("SMS_API_KEY")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "rich")

DEFAULT_SMS_TEMPLATES = [
    {"name": "English", "body": "Your consultation is scheduled for {consultationTime}."},
    {"name": "Français", "body": "Votre consultation est prévue pour {consultationTime}."},
]


class SmsTemplate(BaseModel):
    """A named SMS body with {placeholder} fields."""

    name: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1, max_length=500)


class ConsultationConfig(BaseModel):
    """Read-only scheduling and messaging parameters for one operation."""

    model_config = {"frozen": True}

    consultation_duration_minutes: int = Field(10, ge=1, le=120)
    break_duration_minutes: int = Field(5, ge=0, le=60)
    buffer_time_minutes: int = Field(5, ge=0)
    sms_templates: list[SmsTemplate] = Field(
        default_factory=lambda: [SmsTemplate(**t) for t in DEFAULT_SMS_TEMPLATES],
        min_length=1,
    )
    timezone: str = TIMEZONE

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, v):
        """Reject timezone names pytz does not know."""
        if v not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {v}")
        return v


def load_config() -> ConsultationConfig:
    """Build a configuration snapshot from the environment."""
    values = {}
    for key, env_name in (
        ("consultation_duration_minutes", "CONSULTATION_DURATION_MINUTES"),
        ("break_duration_minutes", "BREAK_DURATION_MINUTES"),
        ("buffer_time_minutes", "BUFFER_TIME_MINUTES"),
    ):
        raw = os.environ.get(env_name)
        if raw:
            values[key] = int(raw)

    templates = os.environ.get("CONSULTATION_SMS_TEMPLATES")
    if templates:
        values["sms_templates"] = json.loads(templates)

    values["timezone"] = os.environ.get("CONSULT_DESK_TIMEZONE", TIMEZONE)
    return ConsultationConfig(**values)
