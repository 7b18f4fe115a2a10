"""
Shared test fixtures for Home Ledger.

Everything runs against the in-memory document store with a fixed
clock, so tests never touch the network and "now" never moves unless a
test moves it.
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from homeledger.audit import AuditLogger
from homeledger.config import AppSettings, RecurringSettings
from homeledger.models.ledger import Category, Household, TransactionType
from homeledger.queries.collections import Collections
from homeledger.services.identity import AuthenticatedUser
from homeledger.services.storage import DocumentAuditStorage, InMemoryDocumentStore

NOW = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    """A clock tests can move."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store(clock):
    return InMemoryDocumentStore(clock=clock)


@pytest.fixture
def audit_storage(store):
    return DocumentAuditStorage(store)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def app_settings():
    return AppSettings(default_currency="EUR", transactions_page_size=50)


@pytest.fixture
def recurring_settings():
    return RecurringSettings(max_occurrences_per_run=1, max_conflict_retries=2)


@pytest.fixture
def alice():
    return AuthenticatedUser(uid="alice", email="alice@example.com", display_name="Alice")


@pytest.fixture
def bob():
    return AuthenticatedUser(uid="bob", email="bob@example.com", display_name="Bob")


@pytest_asyncio.fixture
async def household(store):
    """Household "h1" in INR with alice as admin and bob as member."""
    record = Household(id="h1", name="Sharma Home", currency="INR", member_ids=["alice", "bob"])
    await store.set(Collections.HOUSEHOLDS, "h1", record.to_document())
    await store.set(Collections.USERS, "alice", {"uid": "alice", "householdId": "h1", "role": "admin"})
    await store.set(Collections.USERS, "bob", {"uid": "bob", "householdId": "h1", "role": "user"})
    return record


@pytest_asyncio.fixture
async def categories(store, household):
    """Groceries and Rent (expense), Salary (income) in h1."""
    records = {
        "groceries": Category(
            id="groceries", household_id="h1", name="Groceries",
            budget_monthly=Decimal("5000"), color="#22c55e",
        ),
        "rent": Category(
            id="rent", household_id="h1", name="Rent",
            budget_monthly=Decimal("20000"), budgets={"2024": Decimal("25000")},
        ),
        "salary": Category(
            id="salary", household_id="h1", name="Salary", type=TransactionType.INCOME,
        ),
    }
    for cat_id, record in records.items():
        await store.set(Collections.CATEGORIES, cat_id, record.to_document())
    return records
