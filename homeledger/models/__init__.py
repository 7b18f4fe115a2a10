"""
Data Models Package

This package contains all Pydantic models used in Home Ledger.
All data flowing through the system must conform to these schemas.
"""

from homeledger.models.base import DocumentModel, Money, SignedMoney, UtcDateTime, utc_now
from homeledger.models.ledger import (
    Asset,
    AssetType,
    Attachment,
    Category,
    Goal,
    GoalHorizon,
    GoalPriority,
    MonthlyBudgetAggregate,
    Household,
    PaymentMethod,
    RecurrenceInterval,
    RecurringTransactionTemplate,
    Role,
    Transaction,
    TransactionType,
    UserProfile,
    ValidationIssue,
    ValidationResult,
)
from homeledger.models.trips import (
    Trip,
    TripAccommodation,
    TripExpense,
    TripFund,
    TripReturn,
)
from homeledger.models.reports import (
    BudgetStatusItem,
    GroupedCategory,
    MemberBalance,
    MonthlyBudgetStatus,
    MonthlyStatement,
    RecurringRunResult,
    SavingsStats,
    SourceBreakdown,
    TripTotals,
)
from homeledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Base
    "DocumentModel",
    "Money",
    "SignedMoney",
    "UtcDateTime",
    "utc_now",
    # Ledger models
    "Asset",
    "AssetType",
    "Attachment",
    "Category",
    "Goal",
    "GoalHorizon",
    "GoalPriority",
    "MonthlyBudgetAggregate",
    "Household",
    "PaymentMethod",
    "RecurrenceInterval",
    "RecurringTransactionTemplate",
    "Role",
    "Transaction",
    "TransactionType",
    "UserProfile",
    "ValidationIssue",
    "ValidationResult",
    # Trip models
    "Trip",
    "TripAccommodation",
    "TripExpense",
    "TripFund",
    "TripReturn",
    # Results
    "BudgetStatusItem",
    "GroupedCategory",
    "MemberBalance",
    "MonthlyBudgetStatus",
    "MonthlyStatement",
    "RecurringRunResult",
    "SavingsStats",
    "SourceBreakdown",
    "TripTotals",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
