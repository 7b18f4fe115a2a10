"""
Audit Logger

DESIGN DECISION: Every write to a household ledger leaves a trail entry.
This provides:
1. Complete traceability of ledger writes, including automated ones
2. Debugging capability for the recurring processor
3. A record of blocked cross-household access attempts

The audit logger:
- Is awaited after the audited write has committed
- Gracefully handles failures (doesn't crash the session if logging fails)
- Groups a session's events under one correlation ID
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from homeledger.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from homeledger.models.reports import RecurringRunResult
from homeledger.services.storage.interface import AuditStorageInterface


# JSON lines to stdlib logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Writes audit events for one store.

    Logs events both to:
    1. The structured process log
    2. The audit_log collection (for persistence), when storage is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Where events are appended.
                    Without one events only reach the process log.
        """
        self._storage = storage
        self._logger = structlog.get_logger("homeledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Emitted to the process log first, then appended to audit_log.

        Returns False only when the append failed.
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # audit failures never fail the audited write
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_household_created(
        self,
        household_id: str,
        user_id: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.household_created(
            household_id=household_id,
            user_id=user_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_member_joined(
        self,
        household_id: str,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.member_joined(
            household_id=household_id,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_written(
        self,
        event_type: AuditEventType,
        household_id: str,
        user_id: str,
        transaction_id: str,
        amount: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a create, update or delete of a ledger entry."""
        await self.log(AuditEventBuilder.transaction_written(
            event_type=event_type,
            household_id=household_id,
            user_id=user_id,
            transaction_id=transaction_id,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_recurring_template_created(
        self,
        household_id: str,
        user_id: str,
        template_id: str,
        interval: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_template_created(
            household_id=household_id,
            user_id=user_id,
            template_id=template_id,
            interval=interval,
            correlation_id=correlation_id,
        ))

    async def log_recurring_processed(
        self,
        result: RecurringRunResult,
        user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a processor run that created at least one transaction."""
        await self.log(AuditEventBuilder.recurring_batch_processed(
            household_id=result.household_id,
            user_id=user_id,
            template_ids=result.processed_template_ids,
            transaction_ids=result.created_transaction_ids,
            correlation_id=correlation_id,
        ))

    async def log_recurring_conflict(
        self,
        household_id: str,
        attempt: int,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_conflict(
            household_id=household_id,
            attempt=attempt,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_recurring_failed(
        self,
        household_id: str,
        error_type: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.recurring_failed(
            household_id=household_id,
            error_type=error_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_trip_synced(
        self,
        household_id: str,
        user_id: str,
        trip_id: str,
        months: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.trip_synced(
            household_id=household_id,
            user_id=user_id,
            trip_id=trip_id,
            months=months,
            correlation_id=correlation_id,
        ))

    async def log_scope_violation(
        self,
        collection: str,
        reason: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.scope_violation(
            collection=collection,
            reason=reason,
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        household_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            household_id=household_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    A fresh correlation ID for one session or sweep.

    Use this at the start of a new user action (e.g., a session load).
    Pass it through all subsequent operations.
    """
    return uuid4()
