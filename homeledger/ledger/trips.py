"""
Trips

A trip and its funds, expenses and returns. Sub-items live under the
trip document and carry the household ID like every other record.

Trip spending reaches the main ledger as one roll-up expense per trip and
calendar month (`linkedTripId` + `month`), re-computed from the trip's
expenses on every sync, so the ledger never double-counts an expense.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from homeledger.audit import AuditLogger
from homeledger.ledger.budgets import BudgetService
from homeledger.ledger.repository import to_aliases, without_none
from homeledger.models.ledger import Household, Transaction, TransactionType
from homeledger.models.trips import EXPENSES, FUNDS, RETURNS, Trip, TripExpense, TripFund, TripReturn
from homeledger.queries.collections import Collections, trip_items
from homeledger.queries.secure import ScopeViolationError, secure_query
from homeledger.services.storage.interface import (
    DocumentStore,
    NotFoundError,
    SERVER_TIMESTAMP,
    order_by,
    where,
)

logger = structlog.get_logger(__name__)

TripItem = Union[TripFund, TripExpense, TripReturn]

ITEM_MODELS: dict[str, type] = {
    FUNDS: TripFund,
    EXPENSES: TripExpense,
    RETURNS: TripReturn,
}

LEDGER_CATEGORY_ID = "travel"
LEDGER_CATEGORY_NAME = "Travel"


def month_key(moment: datetime) -> str:
    """YYYY-MM bucket of a date."""
    return f"{moment.year:04d}-{moment.month:02d}"


def _item_model(kind: str) -> type:
    try:
        return ITEM_MODELS[kind]
    except KeyError:
        raise ValueError(f"Unknown trip item kind: {kind}") from None


class TripService:
    """Trips, their money movements, and their ledger roll-ups."""

    def __init__(
        self,
        store: DocumentStore,
        budgets: Optional[BudgetService] = None,
        audit_logger: Optional[AuditLogger] = None,
        default_currency: str = "USD",
    ):
        self._store = store
        self._budgets = budgets or BudgetService(store)
        self._audit = audit_logger
        self._default_currency = default_currency

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    async def create_trip(self, household_id: str, user_id: str, data: dict[str, Any]) -> Trip:
        """Create a trip; the creator is always one of its participants."""
        document = without_none(to_aliases(Trip, data))
        participants = list(document.get("participantIds", []))
        document.update({
            "householdId": household_id,
            "createdBy": user_id,
            "participantIds": list(dict.fromkeys(participants + [user_id])),
        })
        document.pop("id", None)
        document.pop("createdAt", None)

        trip = Trip.model_validate(document)
        trip_id = await self._store.add(Collections.TRIPS, {
            **trip.to_document(),
            "createdAt": SERVER_TIMESTAMP,
        })
        logger.info("trip_created", household_id=household_id, trip_id=trip_id)
        return await self.get_trip(household_id, trip_id)

    async def get_trip(self, household_id: str, trip_id: str) -> Trip:
        snap = await self._store.get(Collections.TRIPS, trip_id)
        if snap is None:
            raise NotFoundError(f"Trip not found: {trip_id}")
        if snap.data.get("householdId") != household_id:
            raise ScopeViolationError(Collections.TRIPS, "trip belongs to another household")
        return Trip.from_document(snap.id, snap.data)

    async def list_trips(self, household_id: str, participant_id: Optional[str] = None) -> list[Trip]:
        clauses = [order_by("startDate", descending=True)]
        if participant_id:
            clauses.insert(0, where("participantIds", "array-contains", participant_id))
        snapshots = await self._store.query(secure_query(Collections.TRIPS, household_id, clauses))
        return [Trip.from_document(s.id, s.data) for s in snapshots]

    async def delete_trip(self, household_id: str, trip_id: str) -> None:
        """Delete a trip with all of its items. Ledger roll-ups stay."""
        await self.get_trip(household_id, trip_id)
        batch = self._store.batch()
        for kind in ITEM_MODELS:
            for snap in await self._store.query(secure_query(trip_items(trip_id, kind), household_id)):
                batch.delete(trip_items(trip_id, kind), snap.id)
        batch.delete(Collections.TRIPS, trip_id)
        await self._store.commit(batch)
        logger.info("trip_deleted", household_id=household_id, trip_id=trip_id)

    # ------------------------------------------------------------------
    # Funds / expenses / returns
    # ------------------------------------------------------------------

    async def add_item(
        self,
        household_id: str,
        trip_id: str,
        kind: str,
        data: dict[str, Any],
        user_id: Optional[str] = None,
    ) -> TripItem:
        """
        Add a fund, expense or return to a trip.

        Adding an expense with a user ID re-syncs the ledger roll-ups.
        """
        model = _item_model(kind)
        await self.get_trip(household_id, trip_id)

        document = without_none(to_aliases(model, data))
        document.update({"householdId": household_id, "tripId": trip_id})
        document.pop("id", None)
        item = model.model_validate(document)

        item_id = await self._store.add(trip_items(trip_id, kind), {
            **item.to_document(),
            "createdAt": SERVER_TIMESTAMP,
        })
        item.id = item_id
        if kind == EXPENSES and user_id:
            await self.sync_trip_expenses_to_ledger(household_id, user_id, trip_id)
        return item

    async def update_item(
        self,
        household_id: str,
        trip_id: str,
        kind: str,
        item_id: str,
        changes: dict[str, Any],
        user_id: Optional[str] = None,
    ) -> TripItem:
        """Change an item; the base amount is re-derived unless given."""
        model = _item_model(kind)
        current = await self._get_item(household_id, trip_id, kind, item_id)

        update = {
            key: value
            for key, value in without_none(to_aliases(model, changes)).items()
            if key not in ("householdId", "tripId", "id", "createdAt")
        }
        document = {**current.to_document(), **update}
        if ("amount" in update or "conversionRate" in update) and "baseAmount" not in update:
            document.pop("baseAmount", None)
        item = model.model_validate({**document, "id": item_id})

        written = item.to_document()
        changed = {key: written[key] for key in list(update) + ["baseAmount"] if key in written}
        await self._store.update(trip_items(trip_id, kind), item_id, changed)
        if kind == EXPENSES and user_id:
            await self.sync_trip_expenses_to_ledger(household_id, user_id, trip_id)
        return item

    async def delete_item(
        self,
        household_id: str,
        trip_id: str,
        kind: str,
        item_id: str,
        user_id: Optional[str] = None,
    ) -> None:
        await self._get_item(household_id, trip_id, kind, item_id)
        await self._store.delete(trip_items(trip_id, kind), item_id)
        if kind == EXPENSES and user_id:
            await self.sync_trip_expenses_to_ledger(household_id, user_id, trip_id)

    async def list_items(self, household_id: str, trip_id: str, kind: str) -> list[TripItem]:
        model = _item_model(kind)
        snapshots = await self._store.query(secure_query(
            trip_items(trip_id, kind),
            household_id,
            [order_by("date")],
        ))
        return [model.from_document(s.id, s.data) for s in snapshots]

    async def _get_item(self, household_id: str, trip_id: str, kind: str, item_id: str) -> TripItem:
        model = _item_model(kind)
        snap = await self._store.get(trip_items(trip_id, kind), item_id)
        if snap is None:
            raise NotFoundError(f"{trip_items(trip_id, kind)}/{item_id} not found")
        if snap.data.get("householdId") != household_id:
            raise ScopeViolationError(trip_items(trip_id, kind), "item belongs to another household")
        return model.from_document(snap.id, snap.data)

    # ------------------------------------------------------------------
    # Ledger roll-up
    # ------------------------------------------------------------------

    async def sync_trip_expenses_to_ledger(
        self,
        household_id: str,
        user_id: str,
        trip_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, Decimal]:
        """
        Bring the trip's monthly roll-up expenses in line with its items.

        Existing roll-ups are updated to the month's total (zero when the
        month no longer has expenses); new ones are created only for a
        positive total. Everything, including the budget aggregate
        changes, is written in one batch.

        Returns:
            {"YYYY-MM": total in the household currency}
        """
        trip = await self.get_trip(household_id, trip_id)
        expenses = await self.list_items(household_id, trip_id, EXPENSES)

        totals: dict[str, Decimal] = defaultdict(Decimal)
        for expense in expenses:
            totals[month_key(expense.date)] += expense.base_amount or Decimal("0")

        existing: dict[str, Transaction] = {}
        for snap in await self._store.query(secure_query(
            Collections.TRANSACTIONS,
            household_id,
            [where("linkedTripId", "==", trip_id)],
        )):
            linked = Transaction.from_document(snap.id, snap.data)
            if linked.month:
                existing.setdefault(linked.month, linked)

        currency = await self._household_currency(household_id)
        batch = self._store.batch()
        touched: list[str] = []

        for month in sorted(set(totals) | set(existing)):
            amount = totals.get(month, Decimal("0"))
            previous = existing.get(month)
            description = f"Aggregated expenses for {trip.trip_name}"

            if previous is not None:
                if previous.amount == amount:
                    continue
                updated = previous.model_copy(update={"amount": amount, "description": description})
                batch.update(Collections.TRANSACTIONS, previous.id, {
                    "amount": float(amount),
                    "description": description,
                    "updatedAt": SERVER_TIMESTAMP,
                })
                self._budgets.stage_aggregate(batch, previous, "remove")
                self._budgets.stage_aggregate(batch, updated, "add")
                touched.append(month)
            elif amount > 0:
                year, month_number = (int(part) for part in month.split("-"))
                rollup = Transaction(
                    household_id=household_id,
                    user_id=user_id,
                    type=TransactionType.EXPENSE,
                    amount=amount,
                    currency=currency,
                    category_id=LEDGER_CATEGORY_ID,
                    category_name=LEDGER_CATEGORY_NAME,
                    date=datetime(year, month_number, 1, tzinfo=timezone.utc),
                    description=description,
                    spent_by=user_id,
                    linked_trip_id=trip_id,
                    month=month,
                )
                rollup.id = batch.create(Collections.TRANSACTIONS, {
                    **rollup.to_document(),
                    "createdAt": SERVER_TIMESTAMP,
                })
                self._budgets.stage_aggregate(batch, rollup, "add")
                touched.append(month)

        if len(batch):
            await self._store.commit(batch)

        logger.info("trip_synced", household_id=household_id, trip_id=trip_id, months=touched)
        if self._audit and touched:
            await self._audit.log_trip_synced(household_id, user_id, trip_id, touched, correlation_id)
        return dict(totals)

    async def _household_currency(self, household_id: str) -> str:
        snap = await self._store.get(Collections.HOUSEHOLDS, household_id)
        if snap is None:
            return self._default_currency
        return Household.from_document(snap.id, snap.data).currency
