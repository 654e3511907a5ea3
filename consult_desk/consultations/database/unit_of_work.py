"""Write-tracking wrapper around a transaction's connection.

Every insert or update of an audited table goes through a UnitOfWork, which
reads the row before and after the statement. The dispatcher turns the
collected changes into audit entries once the transaction has committed.
"""

import sqlite3
from dataclasses import dataclass, field

from .schema import AUDITED_TABLES


@dataclass
class EntityChange:
    entity_type: str
    entity_id: int
    event_type: str
    before: dict = field(default_factory=dict)
    after: dict = field(default_factory=dict)

    @property
    def is_noop(self) -> bool:
        return self.event_type == "UPDATE" and self.before == self.after


class UnitOfWork:
    """Tracks mutations made within one transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.changes: list[EntityChange] = []
        self._after_commit = []

    def read(self, table: str, entity_id: int) -> dict | None:
        """The entity's current row as a plain dict."""
        row = self.conn.execute(
            f"SELECT * FROM {table} WHERE id = ?", (entity_id,)
        ).fetchone()
        return dict(row) if row else None

    def insert(self, table: str, values: dict) -> int:
        """Insert a row and return its id."""
        columns = ", ".join(values)
        placeholders = ", ".join("?" for _ in values)
        cursor = self.conn.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            list(values.values()),
        )
        entity_id = cursor.lastrowid
        self._track(table, entity_id, "CREATE", {}, self.read(table, entity_id))
        return entity_id

    def update(
        self,
        table: str,
        entity_id: int,
        values: dict,
        condition: str | None = None,
        params: tuple = (),
    ) -> bool:
        """Update one row; False when it is missing or condition fails.

        condition is an extra SQL predicate checked atomically with the write.
        """
        before = self.read(table, entity_id)
        if before is None:
            return False

        set_clause = ", ".join(f"{column} = ?" for column in values)
        query = f"UPDATE {table} SET {set_clause} WHERE id = ?"
        if condition:
            query += f" AND ({condition})"
        cursor = self.conn.execute(query, [*values.values(), entity_id, *params])
        if cursor.rowcount == 0:
            return False

        self._track(table, entity_id, "UPDATE", before, self.read(table, entity_id))
        return True

    def delete(self, table: str, condition: str, params: tuple = ()) -> int:
        """Delete matching rows. Deletions are not audited."""
        cursor = self.conn.execute(f"DELETE FROM {table} WHERE {condition}", params)
        return cursor.rowcount

    def after_commit(self, callback) -> None:
        """Run callback once the transaction has committed."""
        self._after_commit.append(callback)

    def pending_callbacks(self) -> list:
        return list(self._after_commit)

    def collapse(self) -> list[EntityChange]:
        """One change per entity, in order of first mutation.

        Repeated writes to an entity merge into a single change spanning the
        first before-state and the last after-state. Updates that left the
        row unchanged are dropped.
        """
        merged: dict[tuple, EntityChange] = {}
        for change in self.changes:
            key = (change.entity_type, change.entity_id)
            if key not in merged:
                merged[key] = EntityChange(
                    change.entity_type, change.entity_id, change.event_type,
                    dict(change.before), dict(change.after),
                )
            else:
                merged[key].after = dict(change.after)
        return [change for change in merged.values() if not change.is_noop]

    def _track(self, table, entity_id, event_type, before, after) -> None:
        entity_type = AUDITED_TABLES.get(table)
        if entity_type is None:
            return
        self.changes.append(EntityChange(entity_type, entity_id, event_type, before, after))
