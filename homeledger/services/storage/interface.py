"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for the managed backend.
This allows us to:
1. Run against Firestore in production
2. Use in-memory storage for testing and local development
3. Keep the query builder and recurring processor decoupled from any SDK

The interface is intentionally small - we're not building an ORM or a
query planner. It mirrors what the managed backend gives us: document
CRUD, compound filter/order/limit queries, live subscriptions, atomic
batches, server timestamps and array-union updates.

Documents are plain dicts with camelCase keys. Collections are addressed
by slash-separated paths ("trips/abc/expenses").
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Union
from uuid import uuid4


# =============================================================================
# SENTINELS - resolved by the backend at write time
# =============================================================================

class _ServerTimestamp:
    """Placeholder replaced with the backend's commit time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class ArrayUnion:
    """Add values to an array field, skipping ones already present."""
    values: tuple

    def __init__(self, values):
        object.__setattr__(self, "values", tuple(values))


@dataclass(frozen=True)
class Increment:
    """Add a number to a numeric field (missing counts as zero)."""
    amount: float


# =============================================================================
# QUERIES
# =============================================================================

FILTER_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in", "array-contains"})


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in FILTER_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass(frozen=True)
class Limit:
    count: int

    def __post_init__(self):
        if self.count < 1:
            raise ValueError("Limit must be at least 1")


Clause = Union[FieldFilter, OrderBy, Limit]


def where(field_path: str, op: str, value: Any) -> FieldFilter:
    return FieldFilter(field_path, op, value)


def order_by(field_path: str, descending: bool = False) -> OrderBy:
    return OrderBy(field_path, descending)


def limit(count: int) -> Limit:
    return Limit(count)


@dataclass(frozen=True)
class Query:
    """
    An immutable query over one collection.

    Clauses are kept in the order they were given; backends apply
    filters, then ordering, then the limit.
    """
    collection: str
    clauses: tuple[Clause, ...] = ()

    @property
    def filters(self) -> list[FieldFilter]:
        return [c for c in self.clauses if isinstance(c, FieldFilter)]

    @property
    def orderings(self) -> list[OrderBy]:
        return [c for c in self.clauses if isinstance(c, OrderBy)]

    @property
    def limit(self) -> Optional[int]:
        limits = [c.count for c in self.clauses if isinstance(c, Limit)]
        return limits[-1] if limits else None


@dataclass(frozen=True)
class DocumentSnapshot:
    """A document as read from the store."""
    id: str
    collection: str
    data: dict[str, Any]

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.id}"


# =============================================================================
# ATOMIC BATCHES
# =============================================================================

@dataclass(frozen=True)
class WriteOperation:
    kind: str  # create | set | update | delete
    collection: str
    doc_id: str
    data: Optional[dict[str, Any]] = None
    merge: bool = False


@dataclass(frozen=True)
class Precondition:
    """Document must exist and each listed field must equal the given value."""
    collection: str
    doc_id: str
    expected: dict[str, Any] = field(default_factory=dict)


class WriteBatch:
    """
    A set of writes applied all-or-nothing.

    Preconditions are re-checked by the backend inside the same atomic
    step as the writes; if any fails, nothing is applied and
    PreconditionFailedError is raised from commit.
    """

    def __init__(self, id_factory: Optional[Callable[[str], str]] = None):
        self._id_factory = id_factory or (lambda _collection: uuid4().hex)
        self.operations: list[WriteOperation] = []
        self.preconditions: list[Precondition] = []

    def __len__(self) -> int:
        return len(self.operations)

    def create(
        self,
        collection: str,
        data: dict[str, Any],
        doc_id: Optional[str] = None,
    ) -> str:
        """Queue creation of a new document; returns its ID."""
        doc_id = doc_id or self._id_factory(collection)
        self.operations.append(WriteOperation("create", collection, doc_id, dict(data)))
        return doc_id

    def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        self.operations.append(WriteOperation("set", collection, doc_id, dict(data), merge))

    def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        self.operations.append(WriteOperation("update", collection, doc_id, dict(data)))

    def delete(self, collection: str, doc_id: str) -> None:
        self.operations.append(WriteOperation("delete", collection, doc_id))

    def expect(self, collection: str, doc_id: str, expected: dict[str, Any]) -> None:
        """Only commit if the document still has these field values."""
        self.preconditions.append(Precondition(collection, doc_id, dict(expected)))


# =============================================================================
# SUBSCRIPTIONS
# =============================================================================

SnapshotCallback = Callable[[list[DocumentSnapshot]], None]
ErrorCallback = Callable[[Exception], None]


class Subscription:
    """
    Handle of a live query.

    cancel() is idempotent; after it returns no further callbacks fire.
    """

    def __init__(self, unsubscribe: Callable[[], None]):
        self._unsubscribe = unsubscribe
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._unsubscribe()


# =============================================================================
# THE STORE
# =============================================================================

class DocumentStore(ABC):
    """
    Abstract interface for the document backend.

    Any backend (Firestore, in-memory, ...) must implement these methods.
    """

    @abstractmethod
    def new_id(self, collection: str) -> str:
        """Generate a fresh document ID for a collection."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as the backend sees it (UTC)."""

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        """
        Read one document.

        Returns:
            The snapshot, or None if the document does not exist
        """

    @abstractmethod
    async def add(self, collection: str, data: dict[str, Any]) -> str:
        """
        Create a document with a generated ID.

        Returns:
            The new document ID
        """

    @abstractmethod
    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        """Create or overwrite a document (or merge into it)."""

    @abstractmethod
    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        """
        Update fields of an existing document.

        Keys may be dotted paths into nested maps ("budgets.2024").

        Raises:
            NotFoundError: If the document doesn't exist
        """

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """Delete a document. Deleting a missing document is not an error."""

    @abstractmethod
    async def query(self, query: Query) -> list[DocumentSnapshot]:
        """Run a query once and return matching documents."""

    @abstractmethod
    def subscribe(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Start a live query.

        on_snapshot receives the full current result set, first right
        after subscribing and then after every change.
        """

    def batch(self) -> WriteBatch:
        """Start an atomic batch."""
        return WriteBatch(id_factory=self.new_id)

    @abstractmethod
    async def commit(self, batch: WriteBatch) -> None:
        """
        Apply a batch atomically.

        Raises:
            PreconditionFailedError: If any precondition no longer holds
            BackendUnavailableError: If the backend could not be reached
        """


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """

    @abstractmethod
    async def get_events_by_correlation_id(self, household_id: str, correlation_id) -> list:
        """Events of one correlation ID within a household, oldest first."""

    @abstractmethod
    async def get_recent_events(self, household_id: str, limit: int = 100) -> list:
        """The household's most recent events, newest first."""


# =============================================================================
# EXCEPTIONS
# =============================================================================

class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to create a document that already exists."""
    pass


class BackendUnavailableError(StorageError):
    """Could not reach the storage backend."""
    pass


class PreconditionFailedError(StorageError):
    """A batch precondition no longer held; nothing was written."""

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(message)
