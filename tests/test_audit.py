"""
Tests for the audit logger and its document storage.
"""

from uuid import uuid4

import pytest

from homeledger.audit import AuditLogger, create_correlation_id
from homeledger.models.audit import AuditEvent, AuditEventType
from homeledger.services.storage import AUDIT_COLLECTION, BackendUnavailableError


class TestAuditLogger:
    """Local logging plus persistence."""

    @pytest.mark.asyncio
    async def test_events_persisted_by_event_id(self, audit_logger, store):
        event = AuditEvent(
            event_type=AuditEventType.MEMBER_JOINED,
            household_id="h1",
            description="Member joined household",
        )

        assert await audit_logger.log(event) is True
        assert await audit_logger.log(event) is True

        assert list(store.documents(AUDIT_COLLECTION)) == [str(event.event_id)]

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self, audit_logger, store):
        """An audit write failing never fails the action being audited."""
        store.fail_next_commit(BackendUnavailableError("offline"))

        ok = await audit_logger.log(AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            description="System error: Boom",
        ))

        assert ok is False

    @pytest.mark.asyncio
    async def test_without_storage(self):
        logger = AuditLogger()

        assert await logger.log(AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="x")) is True


class TestAuditQueries:
    """Reads are household-scoped."""

    @pytest.mark.asyncio
    async def test_by_correlation_id(self, audit_logger, audit_storage):
        correlation_id = create_correlation_id()
        await audit_logger.log_household_created("h1", "alice", "Home", correlation_id)
        await audit_logger.log_member_joined("h1", "bob", correlation_id)
        await audit_logger.log_member_joined("h1", "carol", uuid4())
        await audit_logger.log_member_joined("h2", "dave", correlation_id)

        events = await audit_storage.get_events_by_correlation_id("h1", correlation_id)

        assert [e.event_type for e in events] == [
            AuditEventType.HOUSEHOLD_CREATED,
            AuditEventType.MEMBER_JOINED,
        ]

    @pytest.mark.asyncio
    async def test_recent_events_limited(self, audit_logger, audit_storage):
        for index in range(5):
            await audit_logger.log_error("Boom", f"failure {index}", household_id="h1")

        events = await audit_storage.get_recent_events("h1", limit=3)

        assert len(events) == 3
        assert events[0].timestamp >= events[-1].timestamp

    @pytest.mark.asyncio
    async def test_scope_violation_logged(self, audit_logger, store):
        await audit_logger.log_scope_violation("goals", "user ID is required", "bob")

        (doc,) = store.documents(AUDIT_COLLECTION).values()
        assert doc["eventType"] == "scope_violation"
        assert doc["severity"] == "critical"
        assert doc["userId"] == "bob"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
