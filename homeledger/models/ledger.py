"""
Core Data Models for Home Ledger

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Round-trip cleanly through the document store
4. Keep every financial record tied to exactly one household

DESIGN DECISION: Every household-scoped record carries `household_id`
as a required field. A record without a tenant cannot be constructed,
so it cannot be written either.
"""

from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from homeledger.models.base import DocumentModel, Money, SignedMoney, UtcDateTime, utc_now


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Role(str, Enum):
    """Role of a member inside their household."""
    ADMIN = "admin"
    USER = "user"


class TransactionType(str, Enum):
    """Direction of money movement."""
    INCOME = "income"
    EXPENSE = "expense"


class RecurrenceInterval(str, Enum):
    """
    How often a recurring template fires.

    Each value advances the schedule by exactly one calendar unit.
    """
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class AssetType(str, Enum):
    """Kinds of savings the household tracks."""
    GOLD = "Gold"
    FD = "FD"
    MONTHLY_SAVING = "MonthlySaving"
    PROPERTY = "Property"
    STOCK = "Stock"
    CRYPTO = "Crypto"
    JEWELLERY = "Jewellery"
    BANK = "Bank"


class GoalHorizon(str, Enum):
    SHORT_TERM = "short-term"
    MEDIUM_TERM = "medium-term"
    LONG_TERM = "long-term"


class GoalPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# =============================================================================
# TENANCY MODELS
# =============================================================================

class Household(DocumentModel):
    """
    The tenant boundary.

    `member_ids` is the authorization source: only listed members
    may read or write the household's records.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Display name"
    )
    name_lower: Optional[str] = Field(
        default=None,
        description="Lowercased name for case-insensitive uniqueness checks"
    )
    currency: str = Field(
        ...,
        min_length=3,
        max_length=3,
        description="ISO currency code used for the ledger"
    )
    member_ids: list[str] = Field(
        default_factory=list,
        alias="memberIds",
    )
    encrypted_keys: dict[str, str] = Field(
        default_factory=dict,
        alias="encryptedKeys",
        description="Household key wrapped once per member, keyed by user ID"
    )
    created_at: Optional[UtcDateTime] = Field(default=None, alias="createdAt")

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator('member_ids')
    @classmethod
    def dedupe_members(cls, v: list[str]) -> list[str]:
        """Membership has set semantics; keep first-seen order."""
        return list(dict.fromkeys(v))

    @model_validator(mode='after')
    def fill_name_lower(self) -> 'Household':
        if not self.name_lower:
            self.name_lower = self.name.lower()
        return self

    def is_member(self, user_id: str) -> bool:
        return user_id in self.member_ids


class UserProfile(DocumentModel):
    """
    A signed-in person.

    A profile without `household_id` is pending onboarding and has
    no access to household-scoped collections.
    """

    uid: str = Field(..., min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    photo_url: Optional[str] = Field(default=None, alias="photoURL")
    role: Role = Role.USER
    household_id: Optional[str] = Field(default=None, alias="householdId")
    created_at: Optional[UtcDateTime] = Field(default=None, alias="createdAt")
    last_seen: Optional[UtcDateTime] = Field(default=None, alias="lastSeen")

    @property
    def is_pending_onboarding(self) -> bool:
        return not self.household_id


# =============================================================================
# LEDGER MODELS
# =============================================================================

class Attachment(BaseModel):
    """A file attached to a transaction or asset."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    url: str
    mime_type: str = Field(..., alias="mimeType")
    name: str
    is_encrypted: bool = Field(default=False, alias="isEncrypted")


class Transaction(DocumentModel):
    """
    A single ledger entry.

    Created by a member directly or by the recurring processor.
    Identity never changes; financial fields change only through an
    explicit update.
    """

    household_id: str = Field(..., min_length=1, alias="householdId")
    user_id: str = Field(..., min_length=1, alias="userId")
    type: TransactionType
    amount: Money
    currency: str = Field(..., min_length=3, max_length=3)
    category_id: str = Field(..., min_length=1, alias="categoryId")
    category_name: Optional[str] = Field(
        default=None,
        alias="categoryName",
        description="Denormalized for display and reports"
    )
    date: UtcDateTime
    description: str = Field(default="", max_length=500)
    payment_method_id: Optional[str] = Field(default=None, alias="paymentMethodId")
    attachments: list[Attachment] = Field(default_factory=list)
    is_recurring: bool = Field(default=False, alias="isRecurring")
    is_personal: bool = Field(default=False, alias="isPersonal")
    spent_by: Optional[str] = Field(default=None, alias="spentBy")
    linked_trip_id: Optional[str] = Field(
        default=None,
        alias="linkedTripId",
        description="Set on the monthly roll-up transaction of a trip"
    )
    month: Optional[str] = Field(
        default=None,
        pattern=r"^\d{4}-\d{2}$",
        description="YYYY-MM bucket of a trip roll-up transaction"
    )
    created_at: Optional[UtcDateTime] = Field(default=None, alias="createdAt")

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class RecurringTransactionTemplate(DocumentModel):
    """
    A persisted rule for a repeating obligation.

    CRITICAL: `next_run_date` only ever moves forward, and only the
    recurring processor moves it. Inactive templates are never processed.
    """

    household_id: str = Field(..., min_length=1, alias="householdId")
    type: TransactionType
    amount: Money
    currency: Optional[str] = Field(
        default=None,
        min_length=3,
        max_length=3,
        description="Overrides the household currency when set"
    )
    category_id: str = Field(..., min_length=1, alias="categoryId")
    category_name: Optional[str] = Field(default=None, alias="categoryName")
    description: str = Field(default="", max_length=500)
    interval: RecurrenceInterval
    next_run_date: UtcDateTime = Field(..., alias="nextRunDate")
    active: bool = True
    anchor_day: Optional[int] = Field(
        default=None,
        ge=1,
        le=31,
        alias="anchorDay",
        description="Day of month the schedule was created on"
    )
    created_at: Optional[UtcDateTime] = Field(default=None, alias="createdAt")

    @model_validator(mode='after')
    def fill_anchor_day(self) -> 'RecurringTransactionTemplate':
        if self.anchor_day is None:
            self.anchor_day = self.next_run_date.day
        return self


class Category(DocumentModel):
    """Spending/income category with optional budgets."""

    household_id: str = Field(..., min_length=1, alias="householdId")
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType = TransactionType.EXPENSE
    color: str = "#cbd5e1"
    budget_monthly: Optional[Money] = Field(default=None, alias="budgetMonthly")
    user_budgets: dict[str, Money] = Field(
        default_factory=dict,
        alias="userBudgets",
        description="Monthly budget per member, keyed by user ID"
    )
    budgets: dict[str, Money] = Field(
        default_factory=dict,
        description="Monthly budget override per year, keyed by year"
    )

    def monthly_budget_for(self, year: int) -> Decimal:
        """Year override first, then the default monthly budget, then zero."""
        override = self.budgets.get(str(year))
        if override is not None:
            return override
        if self.budget_monthly is not None:
            return self.budget_monthly
        return Decimal("0")


class Goal(DocumentModel):
    """A savings goal owned by one member."""

    household_id: str = Field(..., min_length=1, alias="householdId")
    user_id: str = Field(..., min_length=1, alias="userId")
    name: str = Field(..., min_length=1, max_length=200)
    target_amount: Money = Field(..., alias="targetAmount")
    current_amount: Money = Field(default=Decimal("0"), alias="currentAmount")
    color: str = "#3b82f6"
    deadline: Optional[UtcDateTime] = None
    category: GoalHorizon = GoalHorizon.MEDIUM_TERM
    priority: GoalPriority = GoalPriority.MEDIUM
    monthly_contribution: Optional[Money] = Field(default=None, alias="monthlyContribution")
    risk_level: Optional[str] = Field(
        default=None,
        alias="riskLevel",
        pattern="^(conservative|moderate|aggressive)$"
    )
    funding_source_ids: list[str] = Field(default_factory=list, alias="fundingSourceIds")
    created_at: Optional[UtcDateTime] = Field(default=None, alias="createdAt")

    @property
    def progress_percent(self) -> float:
        if self.target_amount <= 0:
            return 0.0
        return float(self.current_amount / self.target_amount * 100)


class Asset(DocumentModel):
    """A savings or investment holding."""

    household_id: str = Field(..., min_length=1, alias="householdId")
    owner_user_id: str = Field(..., min_length=1, alias="ownerUserId")
    owner_ids: list[str] = Field(default_factory=list, alias="ownerIds")
    type: AssetType
    name: str = Field(..., min_length=2, max_length=200)
    amount_invested: Money = Field(..., alias="amountInvested")
    current_value: Optional[Money] = Field(default=None, alias="currentValue")
    currency: str = Field(..., min_length=3, max_length=3)
    buy_date: UtcDateTime = Field(..., alias="buyDate")
    source: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=1000)
    is_encrypted: bool = Field(default=False, alias="isEncrypted")
    attachments: list[Attachment] = Field(default_factory=list)
    meta: dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific details (gold weight, FD maturity, ...)"
    )
    created_at: Optional[UtcDateTime] = Field(default=None, alias="createdAt")

    @property
    def effective_value(self) -> Decimal:
        """Current value, or the invested amount when no valuation exists."""
        return self.current_value if self.current_value else self.amount_invested


class PaymentMethod(DocumentModel):
    """A card, account or cash pot used to pay for things."""

    household_id: str = Field(..., min_length=1, alias="householdId")
    name: str = Field(..., min_length=1, max_length=100)
    type: str = Field(default="card", max_length=30)
    owner_user_id: Optional[str] = Field(default=None, alias="ownerUserId")
    last_four: Optional[str] = Field(default=None, alias="lastFour", pattern=r"^\d{4}$")


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'future_date', 'suspicious_value')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """
    Result of the two-stage validation.

    Stage 1: Schema validation (types, required fields)
    Stage 2: Semantic validation (logic checks)
    """

    validated_at: UtcDateTime = Field(default_factory=utc_now)
    schema_valid: bool
    semantic_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.schema_valid and self.semantic_valid

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @property
    def warnings(self) -> list[str]:
        return [i.message for i in self.issues if i.severity == "warning"]


class MonthlyBudgetAggregate(DocumentModel):
    """
    Running expense totals per category for one household month.

    Document ID is `{householdId}_{year}_{monthIndex}` with a zero-based
    month index (January is 0), matching the `month` field.
    """

    household_id: str = Field(..., min_length=1, alias="householdId")
    year: int
    month: int = Field(..., ge=0, le=11)
    category_spending: dict[str, SignedMoney] = Field(
        default_factory=dict,
        alias="categorySpending"
    )
    last_updated: Optional[UtcDateTime] = Field(default=None, alias="lastUpdated")

    def spent(self, category_id: str) -> Decimal:
        return self.category_spending.get(category_id, Decimal("0"))
