"""
Budgets

Two kinds of data live here:
- Budget settings on categories (default monthly budget, per-member
  budgets, per-year overrides)
- Monthly spending aggregates, one document per household month, kept
  up to date as expenses are written so budget screens don't have to
  scan the whole ledger

Aggregate updates are staged into the caller's batch, so an expense and
its aggregate change commit together.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from homeledger.models.ledger import Category, MonthlyBudgetAggregate, Transaction, TransactionType
from homeledger.queries.collections import Collections
from homeledger.queries.secure import ScopeViolationError, secure_query
from homeledger.services.storage.interface import (
    DocumentStore,
    Increment,
    NotFoundError,
    SERVER_TIMESTAMP,
    WriteBatch,
    where,
)

logger = structlog.get_logger(__name__)


def monthly_budget_doc_id(household_id: str, when: datetime) -> str:
    """`{household}_{year}_{monthIndex}`, month index zero-based."""
    return f"{household_id}_{when.year}_{when.month - 1}"


def _year_bounds(year: int) -> tuple[datetime, datetime]:
    return (
        datetime(year, 1, 1, tzinfo=timezone.utc),
        datetime(year + 1, 1, 1, tzinfo=timezone.utc),
    )


class BudgetService:
    """Category budgets and monthly spending aggregates for one store."""

    def __init__(self, store: DocumentStore):
        self._store = store

    # ------------------------------------------------------------------
    # Category budgets
    # ------------------------------------------------------------------

    async def _owned_category(self, household_id: str, category_id: str) -> Category:
        snap = await self._store.get(Collections.CATEGORIES, category_id)
        if snap is None:
            raise NotFoundError(f"Category not found: {category_id}")
        category = Category.from_document(snap.id, snap.data)
        if category.household_id != household_id:
            raise ScopeViolationError(Collections.CATEGORIES, "category belongs to another household")
        return category

    async def update_category_budget(
        self,
        household_id: str,
        category_id: str,
        user_budgets: dict[str, Decimal],
        total_budget: Decimal,
    ) -> None:
        """Set the per-member monthly budgets and the category total."""
        await self._owned_category(household_id, category_id)
        await self._store.update(Collections.CATEGORIES, category_id, {
            "userBudgets": {uid: float(amount) for uid, amount in user_budgets.items()},
            "budgetMonthly": float(total_budget),
        })

    async def update_category_yearly_budget(
        self,
        household_id: str,
        category_id: str,
        year: int,
        amount: Decimal,
    ) -> None:
        """Override the monthly budget for one year."""
        await self._owned_category(household_id, category_id)
        await self._store.update(Collections.CATEGORIES, category_id, {
            f"budgets.{year}": float(amount),
        })

    # ------------------------------------------------------------------
    # Spending aggregates
    # ------------------------------------------------------------------

    def stage_aggregate(self, batch: WriteBatch, transaction: Transaction, action: str) -> bool:
        """
        Stage an aggregate change for an expense into `batch`.

        Args:
            action: "add" or "remove" (an update is remove(old) + add(new))

        Returns:
            True if anything was staged (income is not tracked)
        """
        if action not in ("add", "remove"):
            raise ValueError(f"Unknown aggregate action: {action}")
        if transaction.type != TransactionType.EXPENSE.value:
            return False

        change = float(transaction.amount) if action == "add" else -float(transaction.amount)
        batch.set(
            Collections.MONTHLY_BUDGETS,
            monthly_budget_doc_id(transaction.household_id, transaction.date),
            {
                "householdId": transaction.household_id,
                "year": transaction.date.year,
                "month": transaction.date.month - 1,
                "categorySpending": {transaction.category_id: Increment(change)},
                "lastUpdated": SERVER_TIMESTAMP,
            },
            merge=True,
        )
        return True

    async def update_budget_aggregate(self, transaction: Transaction, action: str) -> None:
        """Apply one aggregate change on its own."""
        batch = self._store.batch()
        if self.stage_aggregate(batch, transaction, action):
            await self._store.commit(batch)

    async def recalculate_aggregates_for_year(self, household_id: str, year: int) -> dict[int, dict[str, Decimal]]:
        """
        Rebuild all twelve aggregates of a year from the ledger.

        Each month's document is replaced outright, so categories that no
        longer have spending disappear.

        Returns:
            {month_index: {category_id: total}}
        """
        start, end = _year_bounds(year)
        snapshots = await self._store.query(secure_query(
            Collections.TRANSACTIONS,
            household_id,
            [
                where("type", "==", TransactionType.EXPENSE.value),
                where("date", ">=", start),
                where("date", "<", end),
            ],
        ))

        monthly: dict[int, dict[str, Decimal]] = {m: defaultdict(Decimal) for m in range(12)}
        for snap in snapshots:
            tx = Transaction.from_document(snap.id, snap.data)
            monthly[tx.date.month - 1][tx.category_id] += tx.amount

        batch = self._store.batch()
        for month_index, spending in monthly.items():
            batch.set(
                Collections.MONTHLY_BUDGETS,
                f"{household_id}_{year}_{month_index}",
                {
                    "householdId": household_id,
                    "year": year,
                    "month": month_index,
                    "categorySpending": {cat: float(total) for cat, total in spending.items()},
                    "lastUpdated": SERVER_TIMESTAMP,
                },
            )
        await self._store.commit(batch)

        logger.info("budget_aggregates_recalculated", household_id=household_id, year=year, transactions=len(snapshots))
        return {m: dict(s) for m, s in monthly.items()}

    async def aggregates_for_year(self, household_id: str, year: int) -> list[MonthlyBudgetAggregate]:
        snapshots = await self._store.query(secure_query(
            Collections.MONTHLY_BUDGETS,
            household_id,
            [where("year", "==", year)],
        ))
        aggregates = [MonthlyBudgetAggregate.from_document(s.id, s.data) for s in snapshots]
        return sorted(aggregates, key=lambda a: a.month)

    async def aggregate_for_month(self, household_id: str, when: datetime) -> Optional[MonthlyBudgetAggregate]:
        snap = await self._store.get(Collections.MONTHLY_BUDGETS, monthly_budget_doc_id(household_id, when))
        if snap is None:
            return None
        aggregate = MonthlyBudgetAggregate.from_document(snap.id, snap.data)
        if aggregate.household_id != household_id:
            raise ScopeViolationError(Collections.MONTHLY_BUDGETS, "aggregate belongs to another household")
        return aggregate
