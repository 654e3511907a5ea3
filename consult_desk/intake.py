"""Inbound SMS intake: provider payloads become pending consultation requests."""

import logging
from datetime import datetime

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from consult_desk.errors import ValidationError

logger = logging.getLogger(__name__)


class InboundSms(BaseModel):
    """One message as delivered by the SMS provider."""

    sender: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    created_at: datetime

    @field_validator("sender", "text")
    @classmethod
    def strip_whitespace(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class InboundBatch(BaseModel):
    messages: list[InboundSms]


def parse_inbound_batch(payload: dict | list) -> list[InboundSms]:
    """Validate a provider payload.

    Accepts {"messages": [...]} or a bare list of messages.
    """
    if isinstance(payload, list):
        payload = {"messages": payload}
    try:
        return InboundBatch(**payload).messages
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e)
    except TypeError:
        raise ValidationError("Inbound payload must be an object or a list")


class IntakeService:
    """Feeds inbound messages through the dispatcher as the system actor."""

    def __init__(self, dispatcher):
        self.dispatcher = dispatcher

    def receive(self, payload: dict | list) -> list:
        messages = parse_inbound_batch(payload)
        requests = [
            self.dispatcher.intake_sms(message.sender, message.text, message.created_at)
            for message in messages
        ]
        logger.info("Received %d inbound SMS", len(requests))
        return requests
