"""Append-only storage for audit entries."""

import json
from dataclasses import dataclass

from .connection import connect


@dataclass
class AuditLogEntry:
    id: int
    entity_type: str
    entity_id: int
    event_type: str
    changed_fields: dict
    actor_user_id: int | None
    timestamp: str

    @property
    def changes(self) -> dict:
        return self.changed_fields.get("changes", {})

    @property
    def is_system(self) -> bool:
        return self.actor_user_id is None


class AuditRepository:
    """Inserts and reads audit_events. Rows are never updated or deleted."""

    def insert(
        self,
        entity_type: str,
        entity_id: int,
        event_type: str,
        changed_fields: dict,
        actor_user_id: int | None,
        timestamp: str,
    ) -> AuditLogEntry:
        with connect() as conn:
            cursor = conn.execute(
                """INSERT INTO audit_events
                   (event_timestamp, actor_user_id, event_type, entity_type, entity_id, changed_fields)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (timestamp, actor_user_id, event_type, entity_type, entity_id,
                 json.dumps(changed_fields, default=str)),
            )
            conn.commit()
            entry_id = cursor.lastrowid

        return AuditLogEntry(
            id=entry_id,
            entity_type=entity_type,
            entity_id=entity_id,
            event_type=event_type,
            changed_fields=changed_fields,
            actor_user_id=actor_user_id,
            timestamp=timestamp,
        )

    def find(
        self,
        actor_user_id: int | None = None,
        entity_type: str | None = None,
        entity_id: int | None = None,
        limit: int | None = None,
    ) -> list[AuditLogEntry]:
        """Entries matching the filters, most recent first."""
        query = "SELECT * FROM audit_events WHERE 1 = 1"
        params = []

        if actor_user_id is not None:
            query += " AND actor_user_id = ?"
            params.append(actor_user_id)
        if entity_type is not None:
            query += " AND entity_type = ?"
            params.append(entity_type)
        if entity_id is not None:
            query += " AND entity_id = ?"
            params.append(entity_id)

        query += " ORDER BY event_timestamp DESC, id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row) -> AuditLogEntry:
        return AuditLogEntry(
            id=row["id"],
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            event_type=row["event_type"],
            changed_fields=json.loads(row["changed_fields"]) if row["changed_fields"] else {},
            actor_user_id=row["actor_user_id"],
            timestamp=row["event_timestamp"],
        )
