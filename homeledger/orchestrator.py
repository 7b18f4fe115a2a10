"""
Main Orchestrator for Home Ledger

Ties the components together and defines the end-to-end flows for a
signed-in member:
1. Session load (token → profile → household → recurring catch-up)
2. Ledger writes (validated, scoped, audited)
3. Live list views (subscriptions owned by the caller)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing household-scoped happens before the member has a household
- The household ID always comes from the member's profile, never from input
- Every write and every refused scope is audited

Recurring catch-up runs once per session load and never fails the load;
the scheduler covers households nobody opens.
"""

from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import UUID

import structlog

from homeledger.audit import AuditLogger, create_correlation_id
from homeledger.config import get_settings
from homeledger.ledger import (
    BudgetService,
    HouseholdService,
    ScopedRepository,
    TransactionService,
    TripService,
    assets_repository,
    categories_repository,
    goals_repository,
    payment_methods_repository,
    require_household,
)
from homeledger.models.ledger import Asset, Category, Goal, Household, PaymentMethod, Transaction, UserProfile
from homeledger.models.reports import RecurringRunResult
from homeledger.queries import LiveCollection, ScopeViolationError
from homeledger.recurring import RecurringProcessor
from homeledger.services.identity import AuthenticatedUser, IdentityProvider
from homeledger.services.storage import DocumentAuditStorage, DocumentStore, InMemoryDocumentStore

logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything a session needs, bound to one store."""

    store: DocumentStore
    audit_logger: AuditLogger
    households: HouseholdService
    transactions: TransactionService
    budgets: BudgetService
    trips: TripService
    recurring: RecurringProcessor
    goals: ScopedRepository[Goal]
    assets: ScopedRepository[Asset]
    payment_methods: ScopedRepository[PaymentMethod]
    categories: ScopedRepository[Category]
    identity: Optional[IdentityProvider] = None


@dataclass
class HouseholdSession:
    """
    One signed-in member's view of their household.

    Create with `open()` (or `from_token()`), which loads the profile and
    runs the recurring catch-up. A member who hasn't joined a household
    yet gets a session whose scoped operations raise
    PendingOnboardingError.
    """

    components: AppComponents
    user: AuthenticatedUser
    correlation_id: UUID = field(default_factory=create_correlation_id)
    profile: Optional[UserProfile] = None
    household: Optional[Household] = None
    recurring_result: Optional[RecurringRunResult] = None

    @classmethod
    async def from_token(cls, components: AppComponents, id_token: str) -> "HouseholdSession":
        """
        Raises:
            AuthenticationError: The token didn't verify
        """
        if components.identity is None:
            raise RuntimeError("No identity provider configured")
        user = components.identity.verify_token(id_token)
        return await cls.open(components, user)

    @classmethod
    async def open(cls, components: AppComponents, user: AuthenticatedUser) -> "HouseholdSession":
        session = cls(components=components, user=user)
        await session.reload()
        return session

    async def reload(self) -> None:
        """Refresh profile and household; run due recurring templates."""
        self.profile = await self.components.households.ensure_profile(self.user)
        if self.profile.is_pending_onboarding:
            logger.info("session_pending_onboarding", user_id=self.user.uid)
            return

        self.household = await self.components.households.get_household(self.profile.household_id)
        self.recurring_result = await self.components.recurring.run_safely(
            self.profile.household_id,
            self.user.uid,
            self.correlation_id,
        )
        logger.info(
            "session_loaded",
            user_id=self.user.uid,
            household_id=self.profile.household_id,
            recurring_created=self.recurring_result.created_count,
        )

    @property
    def household_id(self) -> str:
        return require_household(self.profile)

    @property
    def uid(self) -> str:
        return self.user.uid

    async def _audit_scope(self, error: ScopeViolationError) -> None:
        await self.components.audit_logger.log_scope_violation(
            error.collection, error.reason, self.uid, self.correlation_id
        )

    # ------------------------------------------------------------------
    # Onboarding
    # ------------------------------------------------------------------

    async def create_household(self, name: str, currency: str, member_secret: Optional[str] = None) -> Household:
        household = await self.components.households.create_household(
            name, currency, self.user, member_secret, self.correlation_id
        )
        await self.reload()
        return household

    async def join_household(self, household_id: str, wrapped_key: Optional[str] = None) -> Household:
        household = await self.components.households.join_household(
            household_id, self.user, wrapped_key, self.correlation_id
        )
        await self.reload()
        return household

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    async def add_transaction(self, data: dict[str, Any], interval: Optional[str] = None) -> Transaction:
        try:
            return await self.components.transactions.add_transaction(
                self.household_id, self.uid, data, interval, self.correlation_id
            )
        except ScopeViolationError as e:
            await self._audit_scope(e)
            raise

    async def update_transaction(self, transaction_id: str, changes: dict[str, Any]) -> Transaction:
        try:
            return await self.components.transactions.update_transaction(
                self.household_id, self.uid, transaction_id, changes, self.correlation_id
            )
        except ScopeViolationError as e:
            await self._audit_scope(e)
            raise

    async def delete_transaction(self, transaction_id: str) -> None:
        try:
            await self.components.transactions.delete_transaction(
                self.household_id, self.uid, transaction_id, self.correlation_id
            )
        except ScopeViolationError as e:
            await self._audit_scope(e)
            raise

    async def sync_trip(self, trip_id: str) -> dict:
        try:
            return await self.components.trips.sync_trip_expenses_to_ledger(
                self.household_id, self.uid, trip_id, self.correlation_id
            )
        except ScopeViolationError as e:
            await self._audit_scope(e)
            raise

    # ------------------------------------------------------------------
    # Live views
    # ------------------------------------------------------------------

    def live_transactions(self, personal: bool = False, page_size: Optional[int] = None) -> LiveCollection[Transaction]:
        """
        Recent entries as a live collection; use with `async with`.

        personal=True shows only this member's entries.
        """
        query = self.components.transactions.recent_transactions_query(
            self.household_id,
            self.uid if personal else None,
            page_size,
        )
        return LiveCollection(self.components.store, query, Transaction)


def create_app_components(
    use_firestore: bool = True,
    store: Optional[DocumentStore] = None,
    identity: Optional[IdentityProvider] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        use_firestore: Connect to Firestore (and verify tokens with
                       Firebase Auth). Set to False for local runs and
                       tests; an in-memory store is used instead.
        store: Use this store instead of building one
        identity: Use this identity provider instead of building one

    Returns:
        AppComponents bound to one store
    """
    if use_firestore and (store is None or identity is None):
        # Imported here so in-memory setups never load the Firestore SDK
        from homeledger.services.identity import FirebaseIdentityProvider
        from homeledger.services.storage.firestore import FirestoreClient, FirestoreDocumentStore

        client = FirestoreClient()
        app = client.connect()
        store = store or FirestoreDocumentStore(client)
        identity = identity or FirebaseIdentityProvider(app)
    elif store is None:
        store = InMemoryDocumentStore()

    settings = get_settings()
    audit_logger = AuditLogger(DocumentAuditStorage(store))
    budgets = BudgetService(store)

    return AppComponents(
        store=store,
        audit_logger=audit_logger,
        households=HouseholdService(store, audit_logger),
        transactions=TransactionService(store, budgets=budgets, audit_logger=audit_logger, settings=settings.app),
        budgets=budgets,
        trips=TripService(store, budgets, audit_logger, default_currency=settings.app.default_currency),
        recurring=RecurringProcessor(
            store,
            settings=settings.recurring,
            default_currency=settings.app.default_currency,
            audit_logger=audit_logger,
        ),
        goals=goals_repository(store),
        assets=assets_repository(store),
        payment_methods=payment_methods_repository(store),
        categories=categories_repository(store),
        identity=identity,
    )
