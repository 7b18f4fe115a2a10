"""
Monthly Statement

Income and expenses of one calendar month, grouped by the denormalized
category name. Percentages are shares of their own side's total.
"""

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from homeledger.models.ledger import Transaction, TransactionType
from homeledger.models.reports import GroupedCategory, MonthlyStatement
from homeledger.queries.collections import Collections
from homeledger.queries.secure import secure_query
from homeledger.services.storage.interface import DocumentStore, order_by, where

UNCATEGORIZED = "Uncategorized"


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """[first instant of the month, first instant of the next month)"""
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    end = datetime(year + month // 12, month % 12 + 1, 1, tzinfo=timezone.utc)
    return start, end


def _percent(part: Decimal, total: Decimal) -> float:
    if total <= 0:
        return 0.0
    return float(part / total * 100)


def _grouped(amounts: dict[str, Decimal], total: Decimal) -> list[GroupedCategory]:
    groups = [
        GroupedCategory(category=name, amount=amount, percentage=_percent(amount, total))
        for name, amount in amounts.items()
    ]
    return sorted(groups, key=lambda g: g.amount, reverse=True)


def monthly_statement(transactions: Iterable[Transaction], year: int, month: int) -> MonthlyStatement:
    """
    Build the statement from already-loaded entries.

    Entries outside the month are ignored. Anything that isn't income
    counts as an expense.
    """
    start, end = month_bounds(year, month)
    income: dict[str, Decimal] = defaultdict(Decimal)
    expense: dict[str, Decimal] = defaultdict(Decimal)

    for tx in transactions:
        if not (start <= tx.date < end):
            continue
        bucket = income if tx.type == TransactionType.INCOME.value else expense
        bucket[tx.category_name or UNCATEGORIZED] += tx.amount

    total_income = sum(income.values(), Decimal("0"))
    total_expense = sum(expense.values(), Decimal("0"))
    net = total_income - total_expense

    return MonthlyStatement(
        year=year,
        month=month,
        income=_grouped(income, total_income),
        expense=_grouped(expense, total_expense),
        total_income=total_income,
        total_expense=total_expense,
        net=net,
        savings_rate=_percent(net, total_income) if total_income > 0 else 0.0,
    )


async def load_monthly_statement(
    store: DocumentStore,
    household_id: str,
    year: int,
    month: int,
    user_id: Optional[str] = None,
) -> MonthlyStatement:
    """Query the month (one member's entries when user_id is given) and build its statement."""
    start, end = month_bounds(year, month)
    snapshots = await store.query(secure_query(
        Collections.TRANSACTIONS,
        household_id,
        [where("date", ">=", start), where("date", "<", end), order_by("date", descending=True)],
        user_id=user_id,
    ))
    return monthly_statement(
        (Transaction.from_document(s.id, s.data) for s in snapshots),
        year,
        month,
    )
