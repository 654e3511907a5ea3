"""Audit recorder: turns before/after snapshots into attributed log entries.

Entries are written after the triggering transaction has committed, in a
connection of their own, so a failed audit write can never undo the change
it describes. Failures go to the alert logger and the optional on_failure
hook instead of the caller.

By default record() writes before returning. With asynchronous=True writes
are handed to a single worker thread, which keeps them in submission order;
call flush() when the entries must be visible.
"""

import logging
import sqlite3
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from consult_desk.actors import actor_user_id
from consult_desk.consultations.database.audit_repository import AuditLogEntry, AuditRepository
from consult_desk.errors import AuditRecordingError, ValidationError
from consult_desk.logging_config import get_alert_logger
from consult_desk.timeutils import to_iso, utc_now

logger = logging.getLogger(__name__)

EVENT_TYPES = ("CREATE", "UPDATE")


def compute_changes(before: dict | None, after: dict) -> dict:
    """Fields of after that are new or differ from before."""
    before = before or {}
    return {
        key: value
        for key, value in after.items()
        if key not in before or before[key] != value
    }


class AuditRecorder:
    """Persists one AuditLogEntry per mutated entity."""

    def __init__(
        self,
        repository: AuditRepository | None = None,
        asynchronous: bool = False,
        on_failure=None,
        clock=utc_now,
    ):
        self.repository = repository or AuditRepository()
        self.on_failure = on_failure
        self.clock = clock
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit") if asynchronous else None
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    @property
    def asynchronous(self) -> bool:
        return self._executor is not None

    @property
    def backlog(self) -> int:
        """Asynchronous writes not finished yet."""
        with self._lock:
            return len(self._pending)

    def record(self, entity_type, entity_id, event_type, before, after, actor):
        """Record a mutation of one entity.

        Returns the entry (synchronous mode), a Future resolving to it
        (asynchronous mode), or None when the write failed.
        """
        if event_type not in EVENT_TYPES:
            raise ValidationError(f"Unknown audit event type: {event_type}")
        if event_type == "CREATE":
            before = {}

        data = {
            "entity_type": entity_type,
            "entity_id": entity_id,
            "event_type": event_type,
            "changed_fields": {"changes": compute_changes(before, after)},
            "actor_user_id": actor_user_id(actor),
            "timestamp": to_iso(self.clock()),
        }

        if self._executor is None:
            return self._write(data)

        future = self._executor.submit(self._write, data)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def flush(self, timeout: float | None = None) -> None:
        """Wait for queued asynchronous writes."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def close(self) -> None:
        if self._executor is not None:
            self.flush()
            self._executor.shutdown(wait=True)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def query_by_user(self, user_id: int, limit: int = 100) -> list[AuditLogEntry]:
        """Entries attributed to a user, most recent first."""
        return self.repository.find(actor_user_id=user_id, limit=limit)

    def query_recent(self, limit: int = 50) -> list[AuditLogEntry]:
        """Latest entries across all actors."""
        return self.repository.find(limit=limit)

    def query_by_entity(self, entity_type: str, entity_id: int) -> list[AuditLogEntry]:
        """History of one entity, most recent first."""
        return self.repository.find(entity_type=entity_type, entity_id=entity_id)

    def _write(self, data: dict) -> AuditLogEntry | None:
        try:
            entry = self.repository.insert(**data)
        except sqlite3.Error as e:
            self._alert(AuditRecordingError(f"Failed to record audit entry: {e}"), data)
            return None
        logger.debug(
            "Recorded %s %s#%s", entry.event_type, entry.entity_type, entry.entity_id,
        )
        return entry

    def _alert(self, error: AuditRecordingError, data: dict) -> None:
        get_alert_logger().error(
            "%s for %s#%s", error.message, data["entity_type"], data["entity_id"],
            extra={"audit_data": data, "error_type": error.code},
        )
        if self.on_failure is not None:
            self.on_failure(error, data)
