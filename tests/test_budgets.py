"""
Tests for category budgets, spending aggregates and budget status views.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from homeledger.ledger import BudgetService, TransactionService, monthly_budget_doc_id
from homeledger.models.ledger import Category, MonthlyBudgetAggregate
from homeledger.queries import ScopeViolationError
from homeledger.queries.collections import Collections
from homeledger.reports import annual_status, monthly_status
from homeledger.services.storage import NotFoundError


def utc(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc)


def aggregate(month_index, spending, year=2024):
    return MonthlyBudgetAggregate(
        household_id="h1",
        year=year,
        month=month_index,
        category_spending={k: Decimal(v) for k, v in spending.items()},
    )


@pytest.fixture
def budgets(store):
    return BudgetService(store)


class TestCategoryBudgets:
    """Budget settings on categories."""

    def test_doc_id_uses_zero_based_month(self):
        assert monthly_budget_doc_id("h1", utc(2024, 1, 5)) == "h1_2024_0"
        assert monthly_budget_doc_id("h1", utc(2024, 12, 31)) == "h1_2024_11"

    @pytest.mark.asyncio
    async def test_update_category_budget(self, budgets, categories, store):
        await budgets.update_category_budget(
            "h1", "groceries", {"alice": Decimal("3000"), "bob": Decimal("2500")}, Decimal("5500")
        )

        stored = store.documents(Collections.CATEGORIES)["groceries"]
        assert stored["userBudgets"] == {"alice": 3000.0, "bob": 2500.0}
        assert stored["budgetMonthly"] == 5500.0

    @pytest.mark.asyncio
    async def test_yearly_override(self, budgets, categories, store):
        await budgets.update_category_yearly_budget("h1", "groceries", 2025, Decimal("6000"))

        category = Category.from_document("groceries", store.documents(Collections.CATEGORIES)["groceries"])
        assert category.monthly_budget_for(2025) == Decimal("6000")
        assert category.monthly_budget_for(2024) == Decimal("5000")

    @pytest.mark.asyncio
    async def test_other_household_category_refused(self, budgets, categories):
        with pytest.raises(ScopeViolationError):
            await budgets.update_category_yearly_budget("h2", "groceries", 2024, Decimal("1"))
        with pytest.raises(NotFoundError):
            await budgets.update_category_yearly_budget("h1", "nope", 2024, Decimal("1"))

    def test_monthly_budget_fallbacks(self):
        bare = Category(household_id="h1", name="Misc")
        assert bare.monthly_budget_for(2024) == Decimal("0")


class TestAggregates:
    """Maintaining and rebuilding the monthly spending aggregates."""

    @pytest.mark.asyncio
    async def test_recalculate_replaces_spending(self, budgets, categories, store, app_settings):
        """A rebuild drops stale categories and restores the true totals."""
        transactions = TransactionService(store, budgets=budgets, settings=app_settings)
        await transactions.add_transaction("h1", "alice", {
            "type": "expense", "amount": Decimal("700"), "category_id": "groceries", "date": utc(2024, 3, 3),
        })
        await transactions.add_transaction("h1", "alice", {
            "type": "expense", "amount": Decimal("20000"), "category_id": "rent", "date": utc(2024, 1, 1),
        })
        await store.set(Collections.MONTHLY_BUDGETS, "h1_2024_2", {
            "householdId": "h1", "year": 2024, "month": 2, "categorySpending": {"stale": 99.0},
        })

        totals = await budgets.recalculate_aggregates_for_year("h1", 2024)

        assert totals[2] == {"groceries": Decimal("700")}
        assert totals[0] == {"rent": Decimal("20000")}
        assert totals[5] == {}
        docs = store.documents(Collections.MONTHLY_BUDGETS)
        assert len(docs) == 12
        assert docs["h1_2024_2"]["categorySpending"] == {"groceries": 700.0}

    @pytest.mark.asyncio
    async def test_aggregates_sorted_and_scoped(self, budgets, store, household):
        for month_index in (5, 1, 3):
            await store.set(Collections.MONTHLY_BUDGETS, f"h1_2024_{month_index}", {
                "householdId": "h1", "year": 2024, "month": month_index, "categorySpending": {},
            })
        await store.set(Collections.MONTHLY_BUDGETS, "h2_2024_1", {
            "householdId": "h2", "year": 2024, "month": 1, "categorySpending": {},
        })

        result = await budgets.aggregates_for_year("h1", 2024)

        assert [a.month for a in result] == [1, 3, 5]

    @pytest.mark.asyncio
    async def test_aggregate_for_month(self, budgets, store, household):
        assert await budgets.aggregate_for_month("h1", utc(2024, 3, 1)) is None

        await store.set(Collections.MONTHLY_BUDGETS, "h1_2024_2", {
            "householdId": "h1", "year": 2024, "month": 2, "categorySpending": {"rent": 10.0},
        })
        found = await budgets.aggregate_for_month("h1", utc(2024, 3, 20))

        assert found.spent("rent") == Decimal("10")
        assert found.spent("groceries") == Decimal("0")


class TestAnnualStatus:
    """Spending against twelve monthly budgets."""

    def test_uses_year_override(self, categories):
        items = annual_status(
            [aggregate(0, {"rent": "25000"}), aggregate(1, {"groceries": "4000", "rent": "25000"})],
            categories.values(),
            2024,
        )

        by_id = {item.category_id: item for item in items}
        assert by_id["rent"].budget == Decimal("300000")
        assert by_id["rent"].spent == Decimal("50000")
        assert by_id["groceries"].budget == Decimal("60000")
        assert [item.category_id for item in items][0] == "rent"

    def test_spending_without_budget_is_full(self, categories):
        items = annual_status([aggregate(0, {"salary": "10"})], categories.values(), 2024)

        salary = next(item for item in items if item.category_id == "salary")
        assert salary.percent == 100.0

    def test_other_years_ignored(self, categories):
        items = annual_status([aggregate(0, {"rent": "100"}, year=2023)], categories.values(), 2024)

        assert all(item.spent == 0 for item in items)


class TestMonthlyStatus:
    """Month-by-month view with rollover."""

    def test_surplus_and_deficit_roll_over(self):
        categories = [Category(id="food", household_id="h1", name="Food", budget_monthly=Decimal("1000"))]
        months = monthly_status(
            [aggregate(0, {"food": "600"}), aggregate(1, {"food": "1500"})],
            categories,
            2024,
        )

        assert len(months) == 12
        january, february, march = months[:3]
        assert january.month == 1
        assert january.month_name == "January"
        assert january.rollover == Decimal("0")
        assert january.available == Decimal("400")
        assert february.rollover == Decimal("400")
        assert february.available == Decimal("-100")
        assert march.rollover == Decimal("-100")
        assert march.available == Decimal("900")

    def test_items_per_category(self, categories):
        months = monthly_status([aggregate(2, {"groceries": "2500"})], categories.values(), 2024)

        march = months[2]
        assert march.budget == Decimal("30000")
        groceries = next(item for item in march.items if item.category_id == "groceries")
        assert groceries.percent == 50.0
        assert groceries.color == "#22c55e"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
