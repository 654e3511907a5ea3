"""Staff user repository."""

from dataclasses import dataclass

from consult_desk.timeutils import to_iso, utc_now

from .connection import connect
from .unit_of_work import UnitOfWork


@dataclass
class User:
    id: int
    name: str
    role: str = "clinician"
    can_have_availability: bool = True
    created_at: str | None = None


class UserRepository:
    """Repository for staff users."""

    def create(
        self,
        uow: UnitOfWork,
        name: str,
        role: str = "clinician",
        can_have_availability: bool = True,
    ) -> User:
        """Create a user."""
        user_id = uow.insert("users", {
            "name": name,
            "role": role,
            "can_have_availability": int(can_have_availability),
            "created_at": to_iso(utc_now()),
        })
        return self._row_to_user(uow.read("users", user_id))

    def set_availability(self, uow: UnitOfWork, user_id: int, can_have_availability: bool) -> bool:
        return uow.update("users", user_id, {"can_have_availability": int(can_have_availability)})

    def get_by_id(self, user_id: int, conn=None) -> User | None:
        """Get a user by ID."""
        with connect(conn) as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def _row_to_user(self, row) -> User:
        return User(
            id=row["id"],
            name=row["name"],
            role=row["role"],
            can_have_availability=bool(row["can_have_availability"]),
            created_at=row["created_at"],
        )
