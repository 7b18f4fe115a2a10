"""
Audit log persistence on top of any DocumentStore.

Events go to the `audit_log` collection keyed by event ID, so a retried
append overwrites instead of duplicating.
"""

from uuid import UUID

from homeledger.models.audit import AuditEvent
from homeledger.services.storage.interface import (
    AuditStorageInterface,
    DocumentStore,
    Query,
    limit as limit_clause,
    order_by,
    where,
)


AUDIT_COLLECTION = "audit_log"


class DocumentAuditStorage(AuditStorageInterface):
    """Append-only audit storage. Reads are always household-scoped."""

    def __init__(self, store: DocumentStore):
        self._store = store

    async def append_event(self, event: AuditEvent) -> bool:
        await self._store.set(AUDIT_COLLECTION, str(event.event_id), event.to_document())
        return True

    async def get_events_by_correlation_id(
        self,
        household_id: str,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        snaps = await self._store.query(Query(AUDIT_COLLECTION, (
            where("householdId", "==", household_id),
            where("correlationId", "==", str(correlation_id)),
        )))
        events = [AuditEvent.from_document(s.data) for s in snaps]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, household_id: str, limit: int = 100) -> list[AuditEvent]:
        snaps = await self._store.query(Query(AUDIT_COLLECTION, (
            where("householdId", "==", household_id),
            order_by("timestamp", descending=True),
            limit_clause(limit),
        )))
        return [AuditEvent.from_document(s.data) for s in snaps]
