"""
Audit trail of lifecycle mutations.

Each entry stores before/after snapshots. Like notifications, a failing
audit sink is logged and swallowed.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from ..lifecycle.schema import Actor, AuditAction, AuditEntry, utc_now
from ..storage.lifecycle_store import LifecycleStore

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    def record(self, entry: AuditEntry) -> None:
        ...


class StoreAuditSink:
    """Appends audit entries to the lifecycle store."""

    def __init__(self, store: LifecycleStore):
        self.store = store

    def record(self, entry: AuditEntry) -> None:
        self.store.add_audit_entry(entry)


class RecordingAuditSink:
    """Keeps audit entries in memory."""

    def __init__(self):
        self.entries: List[AuditEntry] = []

    def record(self, entry: AuditEntry) -> None:
        self.entries.append(entry)


class AuditTrail:
    """Writes CREATE/UPDATE entries. Never raises."""

    def __init__(self, sink: AuditSink, clock: Optional[Callable[[], datetime]] = None):
        self.sink = sink
        self.clock = clock or utc_now

    def log(
        self,
        actor: Actor,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        try:
            self.sink.record(
                AuditEntry(
                    actor_id=actor.id,
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    before=before,
                    after=after,
                    metadata={"role": actor.role.value, **(metadata or {})},
                    at=self.clock(),
                )
            )
            return True
        except Exception as e:
            logger.error(f"Audit {action.value} {entity_type} {entity_id} failed: {e}")
            return False

    def log_create(self, actor: Actor, entity_type: str, entity_id: str, after: Dict[str, Any], **metadata) -> bool:
        return self.log(actor, AuditAction.CREATE, entity_type, entity_id, after=after, metadata=metadata)

    def log_update(
        self,
        actor: Actor,
        entity_type: str,
        entity_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        **metadata,
    ) -> bool:
        return self.log(actor, AuditAction.UPDATE, entity_type, entity_id, before=before, after=after, metadata=metadata)
