"""
Ledger Transactions

Every write of a ledger entry goes through here:
1. Stamp tenant and author (callers can't choose the household)
2. Validate (errors block, warnings are logged)
3. Write the entry and its budget aggregate change in one batch
4. Audit

Recurring templates are created here too; materializing them is the
recurring processor's job.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from homeledger.audit import AuditLogger
from homeledger.config import AppSettings, get_settings
from homeledger.ledger.budgets import BudgetService
from homeledger.ledger.repository import to_aliases, without_none
from homeledger.models.audit import AuditEventType
from homeledger.models.ledger import (
    Category,
    Household,
    RecurrenceInterval,
    RecurringTransactionTemplate,
    Transaction,
)
from homeledger.queries.collections import Collections
from homeledger.queries.secure import ScopeViolationError, owner_query, secure_query, shared_query
from homeledger.recurring.schedule import advance
from homeledger.services.storage.interface import (
    DocumentStore,
    NotFoundError,
    Query,
    SERVER_TIMESTAMP,
    WriteBatch,
    limit,
    order_by,
    where,
)
from homeledger.validation import TransactionValidator

logger = structlog.get_logger(__name__)

# Fields a caller never sets on an existing entry
_FIXED_ON_UPDATE = ("householdId", "userId", "createdAt", "isRecurring", "linkedTripId")


class TransactionService:
    """
    Creates, changes and removes ledger entries for a household.

    Args:
        store: Document backend
        validator: Input validation (one bound to `store` when None)
        budgets: Aggregate maintenance (one bound to `store` when None)
        audit_logger: Optional audit trail
        settings: App settings (loaded from the environment when None)
    """

    def __init__(
        self,
        store: DocumentStore,
        validator: Optional[TransactionValidator] = None,
        budgets: Optional[BudgetService] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().app
        self._validator = validator or TransactionValidator(store, self._settings)
        self._budgets = budgets or BudgetService(store)
        self._audit = audit_logger

    # ------------------------------------------------------------------
    # Lookups used while validating
    # ------------------------------------------------------------------

    async def _household_currency(self, household_id: str) -> str:
        snap = await self._store.get(Collections.HOUSEHOLDS, household_id)
        if snap is None:
            return self._settings.default_currency
        return Household.from_document(snap.id, snap.data).currency

    async def _category(self, category_id: Optional[str]) -> Optional[Category]:
        if not category_id:
            return None
        snap = await self._store.get(Collections.CATEGORIES, category_id)
        if snap is None:
            return None
        try:
            return Category.from_document(snap.id, snap.data)
        except ValidationError:
            logger.warning("category_document_invalid", category_id=category_id)
            return None

    async def _validated(self, document: dict[str, Any], household_currency: str) -> Transaction:
        category = await self._category(document.get("categoryId"))
        if category is not None and not document.get("categoryName"):
            document["categoryName"] = category.name
        transaction, _ = await self._validator.validate_or_raise(
            document,
            category=category,
            household_currency=household_currency,
            check_duplicates=True,
        )
        return transaction

    async def get_transaction(self, household_id: str, transaction_id: str) -> Transaction:
        """
        Raises:
            NotFoundError: No such entry
            ScopeViolationError: It belongs to another household
        """
        snap = await self._store.get(Collections.TRANSACTIONS, transaction_id)
        if snap is None:
            raise NotFoundError(f"Transaction not found: {transaction_id}")
        if snap.data.get("householdId") != household_id:
            raise ScopeViolationError(Collections.TRANSACTIONS, "transaction belongs to another household")
        return Transaction.from_document(snap.id, snap.data)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_transaction(
        self,
        household_id: str,
        user_id: str,
        data: dict[str, Any],
        interval: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Record a new entry.

        `spentBy` defaults to the creator. When `interval` is given a
        recurring template starting one interval after the entry's date is
        created in the same batch.

        Raises:
            ValidationFailedError: The input has blocking errors
        """
        currency = await self._household_currency(household_id)
        document = without_none(to_aliases(Transaction, data))
        document.update({"householdId": household_id, "userId": user_id})
        document.setdefault("spentBy", user_id)
        document.setdefault("currency", currency)
        document["isRecurring"] = False
        document.pop("id", None)

        transaction = await self._validated(document, currency)

        batch = self._store.batch()
        transaction_id = batch.create(Collections.TRANSACTIONS, {
            **transaction.to_document(),
            "createdAt": SERVER_TIMESTAMP,
        })
        transaction.id = transaction_id
        self._budgets.stage_aggregate(batch, transaction, "add")
        template_id = None
        if interval:
            template_id = self._stage_template(batch, transaction, interval)
        await self._store.commit(batch)

        logger.info(
            "transaction_added",
            household_id=household_id,
            transaction_id=transaction_id,
            type=transaction.type,
            amount=str(transaction.amount),
        )
        if self._audit:
            await self._audit.log_transaction_written(
                AuditEventType.TRANSACTION_CREATED,
                household_id,
                user_id,
                transaction_id,
                str(transaction.amount),
                correlation_id,
            )
            if template_id:
                await self._audit.log_recurring_template_created(
                    household_id, user_id, template_id, interval, correlation_id
                )
        return transaction

    async def update_transaction(
        self,
        household_id: str,
        user_id: str,
        transaction_id: str,
        changes: dict[str, Any],
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Change an entry's financial fields.

        The old amount is taken out of its month's aggregate and the new
        one added, in the same batch as the update.
        """
        previous = await self.get_transaction(household_id, transaction_id)
        update = {
            key: value
            for key, value in without_none(to_aliases(Transaction, changes)).items()
            if key not in _FIXED_ON_UPDATE and key != "id"
        }
        document = {**previous.to_document(), **update, "id": transaction_id}
        if "categoryId" in update and "categoryName" not in update:
            document.pop("categoryName", None)
        transaction = await self._validated(document, await self._household_currency(household_id))

        batch = self._store.batch()
        batch.set(Collections.TRANSACTIONS, transaction_id, {
            **transaction.to_document(),
            "updatedAt": SERVER_TIMESTAMP,
        }, merge=True)
        self._budgets.stage_aggregate(batch, previous, "remove")
        self._budgets.stage_aggregate(batch, transaction, "add")
        await self._store.commit(batch)

        logger.info("transaction_updated", household_id=household_id, transaction_id=transaction_id)
        if self._audit:
            await self._audit.log_transaction_written(
                AuditEventType.TRANSACTION_UPDATED,
                household_id,
                user_id,
                transaction_id,
                str(transaction.amount),
                correlation_id,
            )
        return transaction

    async def delete_transaction(
        self,
        household_id: str,
        user_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        previous = await self.get_transaction(household_id, transaction_id)

        batch = self._store.batch()
        batch.delete(Collections.TRANSACTIONS, transaction_id)
        self._budgets.stage_aggregate(batch, previous, "remove")
        await self._store.commit(batch)

        logger.info("transaction_deleted", household_id=household_id, transaction_id=transaction_id)
        if self._audit:
            await self._audit.log_transaction_written(
                AuditEventType.TRANSACTION_DELETED,
                household_id,
                user_id,
                transaction_id,
                str(previous.amount),
                correlation_id,
            )

    # ------------------------------------------------------------------
    # Recurring templates
    # ------------------------------------------------------------------

    def _stage_template(self, batch: WriteBatch, transaction: Transaction, interval: str) -> str:
        interval = RecurrenceInterval(interval).value
        template = RecurringTransactionTemplate(
            household_id=transaction.household_id,
            type=transaction.type,
            amount=transaction.amount,
            currency=transaction.currency,
            category_id=transaction.category_id,
            category_name=transaction.category_name,
            description=transaction.description,
            interval=interval,
            next_run_date=advance(transaction.date, interval, transaction.date.day),
            anchor_day=transaction.date.day,
            active=True,
        )
        return batch.create(Collections.RECURRING_TRANSACTIONS, {
            **template.to_document(),
            "createdAt": SERVER_TIMESTAMP,
        })

    async def add_recurring_transaction(
        self,
        household_id: str,
        user_id: str,
        data: dict[str, Any],
        interval: str,
        correlation_id: Optional[UUID] = None,
    ) -> str:
        """
        Create a recurring template from entry data.

        The entry's date is the first occurrence (recorded by the caller);
        the template's first run is one interval later.

        Returns:
            The template ID
        """
        currency = await self._household_currency(household_id)
        document = without_none(to_aliases(Transaction, data))
        document.update({"householdId": household_id, "userId": user_id})
        document.setdefault("currency", currency)
        transaction = await self._validated(document, currency)

        batch = self._store.batch()
        template_id = self._stage_template(batch, transaction, interval)
        await self._store.commit(batch)

        logger.info("recurring_template_created", household_id=household_id, template_id=template_id, interval=interval)
        if self._audit:
            await self._audit.log_recurring_template_created(
                household_id, user_id, template_id, interval, correlation_id
            )
        return template_id

    async def list_active_templates(self, household_id: str) -> list[RecurringTransactionTemplate]:
        """Active subscriptions and bills, next due first."""
        snapshots = await self._store.query(secure_query(
            Collections.RECURRING_TRANSACTIONS,
            household_id,
            [where("active", "==", True), order_by("nextRunDate")],
        ))
        return [RecurringTransactionTemplate.from_document(s.id, s.data) for s in snapshots]

    async def delete_recurring_template(self, household_id: str, template_id: str) -> None:
        snap = await self._store.get(Collections.RECURRING_TRANSACTIONS, template_id)
        if snap is None:
            raise NotFoundError(f"Recurring template not found: {template_id}")
        if snap.data.get("householdId") != household_id:
            raise ScopeViolationError(Collections.RECURRING_TRANSACTIONS, "template belongs to another household")
        await self._store.delete(Collections.RECURRING_TRANSACTIONS, template_id)
        logger.info("recurring_template_deleted", household_id=household_id, template_id=template_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def recent_transactions_query(
        self,
        household_id: str,
        user_id: Optional[str] = None,
        page_size: Optional[int] = None,
    ) -> Query:
        """
        Query for the most recent entries.

        With a user ID only that member's entries are returned (personal
        view); without one the whole household ledger is.
        """
        clauses = [order_by("date", descending=True), limit(page_size or self._settings.transactions_page_size)]
        if user_id:
            return owner_query(Collections.TRANSACTIONS, household_id, user_id, clauses)
        return shared_query(Collections.TRANSACTIONS, household_id, clauses)

    async def list_month(self, household_id: str, year: int, month: int) -> list[Transaction]:
        """All household entries dated within one calendar month."""
        start = datetime(year, month, 1, tzinfo=timezone.utc)
        end = datetime(year + month // 12, month % 12 + 1, 1, tzinfo=timezone.utc)
        snapshots = await self._store.query(secure_query(
            Collections.TRANSACTIONS,
            household_id,
            [where("date", ">=", start), where("date", "<", end), order_by("date")],
        ))
        return [Transaction.from_document(s.id, s.data) for s in snapshots]
