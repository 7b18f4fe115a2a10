"""
Scoped Repositories

Generic CRUD over one household-scoped collection. Every read goes
through secure_query; every write is stamped with the caller's household
(and owner, where the collection has one) and re-checked against the
stored document before an update or delete touches it.
"""

from typing import Any, Generic, Optional, Sequence, TypeVar

import structlog

from homeledger.models.base import DocumentModel
from homeledger.models.ledger import Asset, Category, Goal, PaymentMethod
from homeledger.queries.collections import Collections
from homeledger.queries.secure import ScopeViolationError, secure_query
from homeledger.services.storage.interface import (
    Clause,
    DocumentStore,
    NotFoundError,
    SERVER_TIMESTAMP,
    order_by,
)

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=DocumentModel)

IMMUTABLE_FIELDS = ("householdId", "createdAt", "createdBy")


def to_aliases(model: type[DocumentModel], data: dict[str, Any]) -> dict[str, Any]:
    """Rename snake_case attribute names to their document (camelCase) keys."""
    aliases = {
        name: (field.alias or name)
        for name, field in model.model_fields.items()
    }
    return {aliases.get(key, key): value for key, value in data.items()}


def without_none(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


class ScopedRepository(Generic[M]):
    """
    CRUD for one household-scoped collection.

    Args:
        store: Document backend
        collection: Collection name
        model: Document model class
        owner_field: Document key holding the owning member, if any
        owner_scoped: Reads are restricted to the caller's own documents
                      and the owner is always the caller
        ordering: Clauses applied to list()
    """

    def __init__(
        self,
        store: DocumentStore,
        collection: str,
        model: type[M],
        owner_field: Optional[str] = None,
        owner_scoped: bool = False,
        ordering: Sequence[Clause] = (),
    ):
        if owner_scoped and not owner_field:
            raise ValueError("owner_scoped repositories need an owner_field")
        self._store = store
        self.collection = collection
        self.model = model
        self.owner_field = owner_field
        self.owner_scoped = owner_scoped
        self._ordering = tuple(ordering)

    async def add(
        self,
        household_id: str,
        user_id: str,
        data: dict[str, Any],
        defaults: Optional[dict[str, Any]] = None,
    ) -> M:
        """
        Create a document for the household.

        `None` values are dropped before anything is written.

        Raises:
            ValidationError: The stamped document doesn't fit the model
        """
        document = {**(defaults or {}), **without_none(to_aliases(self.model, data))}
        document["householdId"] = household_id
        if self.owner_field:
            if self.owner_scoped:
                document[self.owner_field] = user_id
            else:
                document.setdefault(self.owner_field, user_id)

        record = self.model.model_validate(document)
        doc_id = await self._store.add(self.collection, {
            **record.to_document(),
            "createdAt": SERVER_TIMESTAMP,
        })
        logger.info("document_added", collection=self.collection, doc_id=doc_id, household_id=household_id)
        return await self.get(household_id, doc_id)

    async def get(self, household_id: str, doc_id: str) -> M:
        """
        Raises:
            NotFoundError: No such document
            ScopeViolationError: It belongs to another household
        """
        snap = await self._store.get(self.collection, doc_id)
        if snap is None:
            raise NotFoundError(f"{self.collection}/{doc_id} not found")
        if snap.data.get("householdId") != household_id:
            raise ScopeViolationError(self.collection, "document belongs to another household")
        return self.model.from_document(snap.id, snap.data)

    async def update(self, household_id: str, doc_id: str, changes: dict[str, Any]) -> M:
        """Apply a partial update; tenant and creation fields can't change."""
        current = await self.get(household_id, doc_id)

        immutable = set(IMMUTABLE_FIELDS)
        if self.owner_scoped:
            immutable.add(self.owner_field)
        update = {
            key: value
            for key, value in without_none(to_aliases(self.model, changes)).items()
            if key not in immutable
        }
        if not update:
            return current

        # Validate the would-be document before writing anything
        document = self.model.model_validate({**current.to_document(), **update}).to_document()
        await self._store.update(self.collection, doc_id, {
            key: document[key] for key in update if key in document
        })
        return await self.get(household_id, doc_id)

    async def delete(self, household_id: str, doc_id: str) -> None:
        await self.get(household_id, doc_id)
        await self._store.delete(self.collection, doc_id)
        logger.info("document_deleted", collection=self.collection, doc_id=doc_id, household_id=household_id)

    async def query(
        self,
        household_id: str,
        clauses: Sequence[Clause] = (),
        user_id: Optional[str] = None,
    ) -> list[M]:
        """Run a scoped query; owner-scoped collections need user_id."""
        snapshots = await self._store.query(secure_query(
            self.collection,
            household_id,
            clauses,
            user_id=user_id if self.owner_scoped else None,
            owner_scoped=self.owner_scoped,
        ))
        return [self.model.from_document(s.id, s.data) for s in snapshots]

    # Defined last: the method name shadows the builtin in the class body
    async def list(self, household_id: str, user_id: Optional[str] = None) -> list[M]:
        return await self.query(household_id, self._ordering, user_id=user_id)


def goals_repository(store: DocumentStore) -> ScopedRepository[Goal]:
    """Goals are private to their owner, soonest deadline first."""
    return ScopedRepository(
        store,
        Collections.GOALS,
        Goal,
        owner_field="userId",
        owner_scoped=True,
        ordering=(order_by("deadline"),),
    )


def assets_repository(store: DocumentStore) -> ScopedRepository[Asset]:
    return ScopedRepository(store, Collections.ASSETS, Asset, owner_field="ownerUserId")


def payment_methods_repository(store: DocumentStore) -> ScopedRepository[PaymentMethod]:
    return ScopedRepository(store, Collections.PAYMENT_METHODS, PaymentMethod)


def categories_repository(store: DocumentStore) -> ScopedRepository[Category]:
    return ScopedRepository(store, Collections.CATEGORIES, Category, ordering=(order_by("name"),))
