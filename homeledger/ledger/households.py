"""
Households and Membership

The household is the tenant boundary. A member's profile points at
exactly one household; a profile without one is pending onboarding and
gets no access to household-scoped data (require_household enforces that
before any scoped query is built).

Creating or joining a household writes the household document and the
member's profile in one atomic batch, so a profile never points at a
household that doesn't list it as a member.
"""

from typing import Optional
from uuid import UUID

import structlog

from homeledger.audit import AuditLogger
from homeledger.models.ledger import Household, Role, UserProfile
from homeledger.queries.collections import Collections
from homeledger.services.encryption import generate_household_key, wrap_household_key
from homeledger.services.identity import AuthenticatedUser
from homeledger.services.storage.interface import (
    ArrayUnion,
    DocumentStore,
    DuplicateError,
    NotFoundError,
    Query,
    SERVER_TIMESTAMP,
    limit,
    where,
)

logger = structlog.get_logger(__name__)


class PendingOnboardingError(Exception):
    """The profile has no household yet."""

    def __init__(self, uid: str):
        self.uid = uid
        super().__init__(f"User {uid} has not joined a household yet")


class HouseholdNameTakenError(DuplicateError):
    """A household with this name already exists."""
    pass


def require_household(profile: Optional[UserProfile]) -> str:
    """
    Return the profile's household ID.

    Raises:
        PendingOnboardingError: No profile, or no household on it
    """
    if profile is None:
        raise PendingOnboardingError("<unknown>")
    if profile.is_pending_onboarding:
        raise PendingOnboardingError(profile.uid)
    return profile.household_id


class HouseholdService:
    """Onboarding: profiles, household creation and joining."""

    def __init__(self, store: DocumentStore, audit_logger: Optional[AuditLogger] = None):
        self._store = store
        self._audit = audit_logger

    async def check_availability(self, name: str) -> Optional[Household]:
        """
        Find an existing household by name.

        Matches case-insensitively on `name_lower` first, then falls back
        to the exact `name` for documents written without it.

        Returns:
            The existing household, or None if the name is free
        """
        name = name.strip()
        for field_name, value in (("name_lower", name.lower()), ("name", name)):
            snaps = await self._store.query(Query(Collections.HOUSEHOLDS, (
                where(field_name, "==", value),
                limit(1),
            )))
            if snaps:
                return Household.from_document(snaps[0].id, snaps[0].data)
        return None

    async def create_household(
        self,
        name: str,
        currency: str,
        user: AuthenticatedUser,
        member_secret: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Household:
        """
        Create a household with the user as its admin and only member.

        When member_secret is given, a fresh household key is generated
        and stored wrapped for the creator.

        Raises:
            HouseholdNameTakenError: The name is already in use
        """
        existing = await self.check_availability(name)
        if existing is not None:
            raise HouseholdNameTakenError(f"Household name already taken: {name}")

        encrypted_keys = {}
        if member_secret:
            encrypted_keys[user.uid] = wrap_household_key(generate_household_key(), member_secret)

        household = Household(
            id=self._store.new_id(Collections.HOUSEHOLDS),
            name=name,
            currency=currency,
            member_ids=[user.uid],
            encrypted_keys=encrypted_keys,
        )

        batch = self._store.batch()
        batch.create(
            Collections.HOUSEHOLDS,
            {**household.to_document(), "createdAt": SERVER_TIMESTAMP},
            doc_id=household.id,
        )
        batch.set(
            Collections.USERS,
            user.uid,
            {"uid": user.uid, "householdId": household.id, "role": Role.ADMIN.value},
            merge=True,
        )
        await self._store.commit(batch)

        logger.info("household_created", household_id=household.id, user_id=user.uid)
        if self._audit:
            await self._audit.log_household_created(household.id, user.uid, household.name, correlation_id)
        return await self.get_household(household.id)

    async def join_household(
        self,
        household_id: str,
        user: AuthenticatedUser,
        wrapped_key: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Household:
        """
        Add the user to an existing household as a regular member.

        Membership is added with an array-union, so joining twice is
        harmless. `wrapped_key` is the household key already wrapped for
        this member by someone who holds it.

        Raises:
            NotFoundError: The household doesn't exist
        """
        if await self.get_household(household_id) is None:
            raise NotFoundError(f"Household not found: {household_id}")

        household_update = {"memberIds": ArrayUnion([user.uid])}
        if wrapped_key:
            household_update[f"encryptedKeys.{user.uid}"] = wrapped_key

        batch = self._store.batch()
        batch.update(Collections.HOUSEHOLDS, household_id, household_update)
        batch.set(
            Collections.USERS,
            user.uid,
            {"uid": user.uid, "householdId": household_id, "role": Role.USER.value},
            merge=True,
        )
        await self._store.commit(batch)

        logger.info("member_joined", household_id=household_id, user_id=user.uid)
        if self._audit:
            await self._audit.log_member_joined(household_id, user.uid, correlation_id)
        return await self.get_household(household_id)

    async def get_household(self, household_id: str) -> Optional[Household]:
        snap = await self._store.get(Collections.HOUSEHOLDS, household_id)
        if snap is None:
            return None
        return Household.from_document(snap.id, snap.data)

    async def get_profile(self, uid: str) -> Optional[UserProfile]:
        snap = await self._store.get(Collections.USERS, uid)
        if snap is None:
            return None
        return UserProfile.from_document(snap.id, snap.data)

    async def ensure_profile(self, user: AuthenticatedUser) -> UserProfile:
        """
        Load the user's profile, creating a pending one on first sign-in.

        Existing profiles get `lastSeen` bumped.
        """
        profile = await self.get_profile(user.uid)
        if profile is None:
            new_profile = UserProfile(
                uid=user.uid,
                email=user.email,
                display_name=user.display_name,
                photo_url=user.photo_url,
                role=Role.USER,
            )
            await self._store.set(Collections.USERS, user.uid, {
                **new_profile.to_document(),
                "createdAt": SERVER_TIMESTAMP,
                "lastSeen": SERVER_TIMESTAMP,
            })
            logger.info("profile_created", user_id=user.uid)
        else:
            await self._store.update(Collections.USERS, user.uid, {"lastSeen": SERVER_TIMESTAMP})
        return await self.get_profile(user.uid)
