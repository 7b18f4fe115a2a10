"""
Storage Services Package

Provides the abstract document store interface and its implementations.
Firestore is the production backend; the in-memory store backs tests and
local development. Business logic only ever sees DocumentStore.

The Firestore backend is imported lazily by callers that need it
(homeledger.services.storage.firestore) so the SDK is not loaded just to
use the interface.
"""

from homeledger.services.storage.interface import (
    ArrayUnion,
    AuditStorageInterface,
    BackendUnavailableError,
    DocumentSnapshot,
    DocumentStore,
    DuplicateError,
    FieldFilter,
    Increment,
    Limit,
    NotFoundError,
    OrderBy,
    Precondition,
    PreconditionFailedError,
    Query,
    SERVER_TIMESTAMP,
    StorageError,
    Subscription,
    WriteBatch,
    limit,
    order_by,
    where,
)
from homeledger.services.storage.memory import InMemoryDocumentStore
from homeledger.services.storage.audit import AUDIT_COLLECTION, DocumentAuditStorage

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStore",
    # Queries and batches
    "DocumentSnapshot",
    "FieldFilter",
    "Limit",
    "OrderBy",
    "Precondition",
    "Query",
    "Subscription",
    "WriteBatch",
    "limit",
    "order_by",
    "where",
    # Sentinels
    "ArrayUnion",
    "Increment",
    "SERVER_TIMESTAMP",
    # Exceptions
    "BackendUnavailableError",
    "DuplicateError",
    "NotFoundError",
    "PreconditionFailedError",
    "StorageError",
    # Implementations
    "AUDIT_COLLECTION",
    "DocumentAuditStorage",
    "InMemoryDocumentStore",
]
