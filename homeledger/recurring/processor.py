"""
Recurring Transaction Processor

Materializes due recurring templates into ledger transactions and
advances each template's schedule.

CRITICAL: For every due template the new transaction(s) and the schedule
advance go into ONE atomic batch. Either all of a template's writes land
or none do, so a failure can neither lose an obligation nor duplicate one
on retry: the next run simply finds the same templates still due. Many
due templates are packed into as few batches as the backend's write
limit allows (`max_batch_writes`); a template is never split.

Concurrent runs (two sessions, or a session and the scheduler) are safe:
each batch carries a precondition per template asserting it is still
active and its `nextRunDate` is still the value we read. The backend
re-checks that inside the atomic write. If another run got there first
that batch is rejected and we re-scan, which then finds nothing (or
only what is still due).

Flow:
1. Query templates: householdId == H, active == true, nextRunDate <= now
2. Nothing due → return without writing
3. Per template: transaction dated at the scheduled nextRunDate (plus its
   budget aggregate change for expenses), schedule advanced by one
   interval, precondition on the snapshot values
4. Commit each batch atomically; re-scan after a conflict
"""

from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from homeledger.audit import AuditLogger
from homeledger.config import RecurringSettings, get_settings
from homeledger.ledger.budgets import BudgetService
from homeledger.models.ledger import Household, RecurringTransactionTemplate, Transaction, TransactionType
from homeledger.models.reports import RecurringRunResult
from homeledger.queries.collections import Collections
from homeledger.queries.secure import secure_query
from homeledger.recurring.schedule import occurrences_due
from homeledger.services.storage.interface import (
    DocumentSnapshot,
    DocumentStore,
    PreconditionFailedError,
    SERVER_TIMESTAMP,
    WriteBatch,
    order_by,
    where,
)

logger = structlog.get_logger(__name__)


class RecurringProcessor:
    """
    Processes due recurring templates for one household at a time.

    Args:
        store: Document backend
        settings: Recurring settings (loaded from the environment when None)
        default_currency: Used when the household document is missing
        audit_logger: Optional audit trail
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[RecurringSettings] = None,
        default_currency: Optional[str] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().recurring
        self._default_currency = default_currency or get_settings().app.default_currency
        self._audit = audit_logger
        self._budgets = BudgetService(store)

    async def due_templates(self, household_id: str) -> list[DocumentSnapshot]:
        """Active templates of the household whose nextRunDate has passed."""
        now = self._store.now()
        query = secure_query(
            Collections.RECURRING_TRANSACTIONS,
            household_id,
            [
                where("active", "==", True),
                where("nextRunDate", "<=", now),
                order_by("nextRunDate"),
            ],
        )
        return await self._store.query(query)

    async def process(
        self,
        household_id: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRunResult:
        """
        Run the processor once for a household.

        Args:
            household_id: Household to process
            user_id: Member the generated transactions are attributed to;
                     the configured system user when None

        Raises:
            ScopeViolationError: Missing household ID
            StorageError: Backend failure (the failing batch and the ones
                          after it were not committed)
        """
        user_id = user_id or self._settings.system_user_id
        result = RecurringRunResult(household_id=household_id)

        for attempt in range(self._settings.max_conflict_retries + 1):
            snapshots = await self.due_templates(household_id)
            if not snapshots:
                break

            currency = await self._household_currency(household_id)
            chunks = self._build_batches(household_id, user_id, currency, snapshots, result)
            if not chunks:
                break

            conflicted = False
            for batch, template_ids, transaction_ids in chunks:
                try:
                    await self._store.commit(batch)
                except PreconditionFailedError as e:
                    conflicted = True
                    result.conflicts += 1
                    logger.warning(
                        "recurring_batch_conflict",
                        household_id=household_id,
                        attempt=attempt + 1,
                        path=e.path,
                    )
                    if self._audit:
                        await self._audit.log_recurring_conflict(
                            household_id, attempt + 1, str(e), correlation_id
                        )
                    continue

                result.processed_template_ids.extend(template_ids)
                result.created_transaction_ids.extend(transaction_ids)
                logger.info(
                    "recurring_batch_committed",
                    household_id=household_id,
                    templates=len(template_ids),
                    transactions=len(transaction_ids),
                    writes=len(batch),
                )

            if not conflicted:
                break
        else:
            result.error = f"Conflicts exhausted after {result.conflicts} attempts"
            logger.warning(
                "recurring_conflicts_exhausted",
                household_id=household_id,
                conflicts=result.conflicts,
            )

        if result.created_transaction_ids and self._audit:
            await self._audit.log_recurring_processed(result, user_id, correlation_id)
        return result

    async def run_safely(
        self,
        household_id: str,
        user_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> RecurringRunResult:
        """
        Top-level entry for sessions and the scheduler.

        Failures are logged and audited and come back on the result;
        they never propagate to the caller. Templates whose batch failed
        stay due, so the next run retries them.
        """
        try:
            return await self.process(household_id, user_id, correlation_id)
        except Exception as e:
            logger.error(
                "recurring_processing_failed",
                household_id=household_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            if self._audit:
                await self._audit.log_recurring_failed(
                    household_id or "", type(e).__name__, str(e), correlation_id
                )
            return RecurringRunResult(household_id=household_id or "", error=f"{type(e).__name__}: {e}")

    # ------------------------------------------------------------------

    async def _household_currency(self, household_id: str) -> str:
        snap = await self._store.get(Collections.HOUSEHOLDS, household_id)
        if snap is None:
            return self._default_currency
        try:
            return Household.from_document(snap.id, snap.data).currency
        except ValidationError:
            logger.warning("household_document_invalid", household_id=household_id)
            return self._default_currency

    def _build_batches(
        self,
        household_id: str,
        user_id: str,
        currency: str,
        snapshots: list[DocumentSnapshot],
        result: RecurringRunResult,
    ) -> list[tuple[WriteBatch, list[str], list[str]]]:
        """
        Stage every due template, packing whole templates into batches
        that stay within `max_batch_writes`.
        """
        now = self._store.now()
        chunks: list[tuple[WriteBatch, list[str], list[str]]] = []
        batch: Optional[WriteBatch] = None

        for snap in snapshots:
            try:
                template = RecurringTransactionTemplate.from_document(snap.id, snap.data)
            except ValidationError as e:
                logger.error("recurring_template_invalid", template_id=snap.id, error=str(e))
                if snap.id not in result.skipped_template_ids:
                    result.skipped_template_ids.append(snap.id)
                continue

            dates, next_run = occurrences_due(
                template.next_run_date,
                template.interval,
                now,
                template.anchor_day,
                self._settings.max_occurrences_per_run,
            )
            if not dates:
                continue

            writes_per_occurrence = 2 if template.type == TransactionType.EXPENSE.value else 1
            needed = len(dates) * writes_per_occurrence + 1
            if batch is None or len(batch) + needed > self._settings.max_batch_writes:
                batch = self._store.batch()
                chunks.append((batch, [], []))
            _, template_ids, transaction_ids = chunks[-1]

            for occurrence in dates:
                transaction = Transaction(
                    household_id=household_id,
                    user_id=user_id,
                    type=template.type,
                    amount=template.amount,
                    currency=template.currency or currency,
                    category_id=template.category_id,
                    category_name=template.category_name,
                    date=occurrence,
                    description=template.description,
                    attachments=[],
                    is_recurring=True,
                )
                document: dict[str, Any] = transaction.to_document()
                document["createdAt"] = SERVER_TIMESTAMP
                transaction.id = batch.create(Collections.TRANSACTIONS, document)
                transaction_ids.append(transaction.id)
                self._budgets.stage_aggregate(batch, transaction, "add")

            schedule_update: dict[str, Any] = {"nextRunDate": next_run}
            if "anchorDay" not in snap.data:
                # pin the day-of-month before the first clamped advance loses it
                schedule_update["anchorDay"] = template.anchor_day
            batch.update(Collections.RECURRING_TRANSACTIONS, snap.id, schedule_update)
            batch.expect(
                Collections.RECURRING_TRANSACTIONS,
                snap.id,
                {"active": True, "nextRunDate": snap.data["nextRunDate"]},
            )
            template_ids.append(snap.id)

        return chunks
