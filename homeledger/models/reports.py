"""
Result Models

Outputs of the reporting calculations and the recurring processor.
These are never persisted; they are what callers get back.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from homeledger.models.base import SignedMoney


# =============================================================================
# STATEMENTS & BUDGETS
# =============================================================================

class GroupedCategory(BaseModel):
    category: str
    amount: SignedMoney
    percentage: float = Field(ge=0.0, description="Share of the group total (0-100)")


class MonthlyStatement(BaseModel):
    """Income and expenses of one calendar month, grouped by category."""

    year: int
    month: int = Field(ge=1, le=12)
    income: list[GroupedCategory] = Field(default_factory=list)
    expense: list[GroupedCategory] = Field(default_factory=list)
    total_income: SignedMoney = Decimal("0")
    total_expense: SignedMoney = Decimal("0")
    net: SignedMoney = Decimal("0")
    savings_rate: float = Field(
        default=0.0,
        description="Net as a percentage of income; 0 when there is no income"
    )


class BudgetStatusItem(BaseModel):
    category_id: str
    name: str
    spent: SignedMoney
    budget: SignedMoney = Field(description="Annual budget for annual status, monthly otherwise")
    percent: float
    color: str = "#cbd5e1"


class MonthlyBudgetStatus(BaseModel):
    """
    One month of the budget year.

    `rollover` is what carried in from the previous months (may be
    negative); `available` is budget + rollover - spent.
    """

    month: int = Field(ge=1, le=12)
    month_name: str
    spent: SignedMoney
    budget: SignedMoney
    rollover: SignedMoney
    available: SignedMoney
    items: list[BudgetStatusItem] = Field(default_factory=list)


# =============================================================================
# SAVINGS & TRIPS
# =============================================================================

class SavingsStats(BaseModel):
    total_invested: SignedMoney
    total_current: SignedMoney
    gain: SignedMoney
    gain_percent: float


class TripTotals(BaseModel):
    total_funds: SignedMoney
    total_expenses: SignedMoney
    total_returns: SignedMoney
    net_cost: SignedMoney
    remaining_funds: SignedMoney


class MemberBalance(BaseModel):
    """Positive balance: the member put more into the pot than they took out."""

    contributed: SignedMoney = Decimal("0")
    spent: SignedMoney = Decimal("0")
    received: SignedMoney = Decimal("0")

    @property
    def balance(self) -> Decimal:
        return self.contributed - self.spent - self.received


class SourceBreakdown(BaseModel):
    total_base: SignedMoney = Decimal("0")
    count: int = 0


# =============================================================================
# RECURRING PROCESSING
# =============================================================================

class RecurringRunResult(BaseModel):
    """What one processor invocation did for one household."""

    household_id: str
    processed_template_ids: list[str] = Field(default_factory=list)
    created_transaction_ids: list[str] = Field(default_factory=list)
    skipped_template_ids: list[str] = Field(
        default_factory=list,
        description="Due templates whose documents failed validation"
    )
    conflicts: int = Field(default=0, ge=0, description="Batches rejected by a concurrent run")
    error: Optional[str] = None

    @property
    def created_count(self) -> int:
        return len(self.created_transaction_ids)

    @property
    def succeeded(self) -> bool:
        return self.error is None
