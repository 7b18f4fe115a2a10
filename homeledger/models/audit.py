"""
Audit Models for Home Ledger

Household writes, recurring runs, trip syncs and refused scopes each
leave an event in the audit_log collection, giving:
1. Complete traceability of ledger writes, including automated ones
2. Debugging information when things go wrong
3. Visibility into blocked cross-household access attempts

DESIGN DECISION: Events are keyed by event ID and only ever appended.
"""

from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from homeledger.models.base import UtcDateTime, utc_now


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Households and membership
    HOUSEHOLD_CREATED = "household_created"
    MEMBER_JOINED = "member_joined"

    # Ledger writes
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    RECURRING_TEMPLATE_CREATED = "recurring_template_created"

    # Recurring processing
    RECURRING_BATCH_PROCESSED = "recurring_batch_processed"
    RECURRING_CONFLICT = "recurring_conflict"
    RECURRING_FAILED = "recurring_failed"

    # Trips
    TRIP_SYNCED = "trip_synced"

    # Security
    SCOPE_VIOLATION = "scope_violation"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    Stored under its event ID, so re-logging the same event is a no-op.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: UtcDateTime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Tenant and actor
    household_id: Optional[str] = Field(
        default=None,
        description="Household the event belongs to"
    )
    user_id: Optional[str] = Field(
        default=None,
        description="Member (or system actor) that caused the event"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'recurring_template')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Document ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one session load)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "household_id": self.household_id,
            "user_id": self.user_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_document(self) -> dict:
        """
        Convert to a document for the audit_log collection.

        Field names follow the store's camelCase convention so the
        audit log can be read through the same secure queries.
        """
        return {
            "eventId": str(self.event_id),
            "timestamp": self.timestamp,
            "eventType": self.event_type.value,
            "severity": self.severity.value,
            "householdId": self.household_id,
            "userId": self.user_id,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "correlationId": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
            "isUserAction": self.is_user_action,
        }

    @classmethod
    def from_document(cls, data: dict) -> "AuditEvent":
        return cls(
            event_id=UUID(data["eventId"]),
            timestamp=data["timestamp"],
            event_type=AuditEventType(data["eventType"]),
            severity=AuditSeverity(data["severity"]),
            household_id=data.get("householdId"),
            user_id=data.get("userId"),
            entity_type=data.get("entityType"),
            entity_id=data.get("entityId"),
            correlation_id=UUID(data["correlationId"]) if data.get("correlationId") else None,
            description=data["description"],
            details=data.get("details") or {},
            error_code=data.get("errorCode"),
            error_message=data.get("errorMessage"),
            is_user_action=bool(data.get("isUserAction")),
        )


class AuditEventBuilder:
    """
    Named constructors for the events the services emit.

    Usage:
        event = AuditEventBuilder.household_created(household_id, user_id, name)
        event = AuditEventBuilder.recurring_batch_processed(household_id, ...)
    """

    @staticmethod
    def household_created(
        household_id: str,
        user_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.HOUSEHOLD_CREATED,
            household_id=household_id,
            user_id=user_id,
            entity_type="household",
            entity_id=household_id,
            correlation_id=correlation_id,
            description=f"Household created: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def member_joined(
        household_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.MEMBER_JOINED,
            household_id=household_id,
            user_id=user_id,
            entity_type="household",
            entity_id=household_id,
            correlation_id=correlation_id,
            description="Member joined household",
            is_user_action=True,
        )

    @staticmethod
    def transaction_written(
        event_type: AuditEventType,
        household_id: str,
        user_id: str,
        transaction_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.rsplit("_", 1)[-1]
        return AuditEvent(
            event_type=event_type,
            household_id=household_id,
            user_id=user_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction {verb}: {amount}",
            details={"amount": amount},
            is_user_action=True,
        )

    @staticmethod
    def recurring_template_created(
        household_id: str,
        user_id: str,
        template_id: str,
        interval: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_TEMPLATE_CREATED,
            household_id=household_id,
            user_id=user_id,
            entity_type="recurring_template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Recurring {interval} template created",
            details={"interval": interval},
            is_user_action=True,
        )

    @staticmethod
    def recurring_batch_processed(
        household_id: str,
        user_id: str,
        template_ids: list[str],
        transaction_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_BATCH_PROCESSED,
            household_id=household_id,
            user_id=user_id,
            entity_type="recurring_template",
            correlation_id=correlation_id,
            description=f"Processed {len(transaction_ids)} recurring transactions",
            details={
                "template_ids": template_ids,
                "transaction_ids": transaction_ids,
            },
        )

    @staticmethod
    def recurring_conflict(
        household_id: str,
        attempt: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_CONFLICT,
            severity=AuditSeverity.WARNING,
            household_id=household_id,
            correlation_id=correlation_id,
            description="Recurring batch rejected: templates changed concurrently",
            error_message=error_message,
            details={"attempt": attempt},
        )

    @staticmethod
    def recurring_failed(
        household_id: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_FAILED,
            severity=AuditSeverity.ERROR,
            household_id=household_id,
            correlation_id=correlation_id,
            description=f"Recurring processing failed: {error_type}",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def trip_synced(
        household_id: str,
        user_id: str,
        trip_id: str,
        months: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRIP_SYNCED,
            household_id=household_id,
            user_id=user_id,
            entity_type="trip",
            entity_id=trip_id,
            correlation_id=correlation_id,
            description=f"Trip expenses synced for {len(months)} months",
            details={"months": months},
        )

    @staticmethod
    def scope_violation(
        collection: str,
        reason: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCOPE_VIOLATION,
            severity=AuditSeverity.CRITICAL,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Blocked unscoped access to {collection}",
            error_message=reason,
            details={"collection": collection},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        household_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            household_id=household_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
