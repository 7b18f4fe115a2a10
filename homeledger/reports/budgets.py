"""
Budget Status

Annual and month-by-month budget views computed from the monthly
spending aggregates.

The month-by-month view carries the whole difference between budget and
spending into the next month, surplus and deficit alike.
"""

import calendar
from collections import defaultdict
from decimal import Decimal
from typing import Iterable

from homeledger.models.ledger import Category, MonthlyBudgetAggregate
from homeledger.models.reports import BudgetStatusItem, MonthlyBudgetStatus

MONTH_NAMES = tuple(calendar.month_name[1:])


def _percent(spent: Decimal, budget: Decimal) -> float:
    """Share of the budget used; 100 when there's spending but no budget."""
    if budget > 0:
        return float(spent / budget * 100)
    return 100.0 if spent > 0 else 0.0


def _item(category: Category, spent: Decimal, budget: Decimal) -> BudgetStatusItem:
    return BudgetStatusItem(
        category_id=category.id or "",
        name=category.name,
        spent=spent,
        budget=budget,
        percent=_percent(spent, budget),
        color=category.color or "#cbd5e1",
    )


def annual_status(
    aggregates: Iterable[MonthlyBudgetAggregate],
    categories: Iterable[Category],
    year: int,
) -> list[BudgetStatusItem]:
    """
    Spending against twelve times the monthly budget, per category.

    Sorted by spending, highest first.
    """
    spent_by_category: dict[str, Decimal] = defaultdict(Decimal)
    for aggregate in aggregates:
        if aggregate.year != year:
            continue
        for category_id, amount in aggregate.category_spending.items():
            spent_by_category[category_id] += amount

    items = [
        _item(category, spent_by_category.get(category.id, Decimal("0")), category.monthly_budget_for(year) * 12)
        for category in categories
    ]
    return sorted(items, key=lambda item: item.spent, reverse=True)


def monthly_status(
    aggregates: Iterable[MonthlyBudgetAggregate],
    categories: Iterable[Category],
    year: int,
) -> list[MonthlyBudgetStatus]:
    """
    Twelve months of budget vs. spending with rollover.

    Returns one entry per month, January first. Categories without a
    budget still show up in the items (budget 0).
    """
    categories = list(categories)
    spending: dict[int, dict[str, Decimal]] = {m: {} for m in range(12)}
    for aggregate in aggregates:
        if aggregate.year != year:
            continue
        spending[aggregate.month].update(aggregate.category_spending)

    total_budget = sum((c.monthly_budget_for(year) for c in categories), Decimal("0"))
    rollover = Decimal("0")
    months = []

    for month_index in range(12):
        month_spending = spending[month_index]
        spent = sum(month_spending.values(), Decimal("0"))
        available = total_budget + rollover - spent

        items = [
            _item(category, month_spending.get(category.id, Decimal("0")), category.monthly_budget_for(year))
            for category in categories
        ]
        months.append(MonthlyBudgetStatus(
            month=month_index + 1,
            month_name=MONTH_NAMES[month_index],
            spent=spent,
            budget=total_budget,
            rollover=rollover,
            available=available,
            items=sorted(items, key=lambda item: item.spent, reverse=True),
        ))
        rollover = available

    return months
