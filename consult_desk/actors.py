"""Actors on whose behalf operations run.

An operation is either performed by an authenticated staff member or by the
system itself (unattended SMS intake). Audit entries written for the system
carry no user id.
"""

from dataclasses import dataclass

from consult_desk.errors import ValidationError

STAFF_ROLES = ("admin", "clinician")


@dataclass(frozen=True)
class StaffActor:
    user_id: int
    role: str = "clinician"

    def __post_init__(self):
        if self.user_id is None or isinstance(self.user_id, bool) or not isinstance(self.user_id, int):
            raise ValidationError("Staff actor requires an integer user id")
        if self.role not in STAFF_ROLES:
            raise ValidationError(f"Unknown staff role: {self.role}")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


@dataclass(frozen=True)
class SystemActor:
    name: str = "system"


Actor = StaffActor | SystemActor

SYSTEM = SystemActor()


def actor_user_id(actor: Actor) -> int | None:
    """User id to attribute a mutation to, None for the system."""
    if isinstance(actor, StaffActor):
        return actor.user_id
    if isinstance(actor, SystemActor):
        return None
    raise ValidationError(f"Not an actor: {actor!r}")


def resolve_actor(user: dict | None) -> Actor:
    """Convert an authenticated user record into an actor.

    None means the call was not made by a person.
    """
    if user is None:
        return SYSTEM
    role = user.get("role", "clinician")
    if role == "system":
        return SYSTEM
    return StaffActor(user_id=user.get("id"), role=role)
