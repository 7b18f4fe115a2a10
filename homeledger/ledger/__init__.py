"""
Ledger services.

Household-scoped writes: onboarding, transactions, budgets, trips and
the simple collections (goals, assets, payment methods, categories).
"""

from homeledger.ledger.budgets import BudgetService, monthly_budget_doc_id
from homeledger.ledger.households import (
    HouseholdNameTakenError,
    HouseholdService,
    PendingOnboardingError,
    require_household,
)
from homeledger.ledger.repository import (
    ScopedRepository,
    assets_repository,
    categories_repository,
    goals_repository,
    payment_methods_repository,
)
from homeledger.ledger.transactions import TransactionService
from homeledger.ledger.trips import TripService, month_key

__all__ = [
    "BudgetService",
    "HouseholdNameTakenError",
    "HouseholdService",
    "PendingOnboardingError",
    "ScopedRepository",
    "TransactionService",
    "TripService",
    "assets_repository",
    "categories_repository",
    "goals_repository",
    "month_key",
    "monthly_budget_doc_id",
    "payment_methods_repository",
    "require_household",
]
