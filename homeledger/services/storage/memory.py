"""
In-Memory Document Store

A complete, dependency-free implementation of DocumentStore used by the
test suite and for local development without a Firebase project.

It follows the managed backend's semantics where they matter to us:
- documents missing a filtered or ordered field never match
- batches are validated and staged in full before anything is published
- server timestamps resolve to the store clock at commit time
- live queries receive the full result set after every commit
"""

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import uuid4

import structlog

from homeledger.services.storage.interface import (
    ArrayUnion,
    BackendUnavailableError,
    DocumentSnapshot,
    DocumentStore,
    DuplicateError,
    ErrorCallback,
    FieldFilter,
    Increment,
    NotFoundError,
    PreconditionFailedError,
    Query,
    SERVER_TIMESTAMP,
    SnapshotCallback,
    Subscription,
    WriteBatch,
)

logger = structlog.get_logger(__name__)

_MISSING = object()


def _get_path(data: dict[str, Any], field_path: str) -> Any:
    current: Any = data
    for part in field_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _set_path(data: dict[str, Any], field_path: str, value: Any) -> None:
    parts = field_path.split(".")
    current = data
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def _matches(data: dict[str, Any], flt: FieldFilter) -> bool:
    actual = _get_path(data, flt.field)
    if actual is _MISSING:
        return False
    try:
        if flt.op == "==":
            return actual == flt.value
        if flt.op == "!=":
            return actual != flt.value
        if flt.op == "<":
            return actual < flt.value
        if flt.op == "<=":
            return actual <= flt.value
        if flt.op == ">":
            return actual > flt.value
        if flt.op == ">=":
            return actual >= flt.value
        if flt.op == "in":
            return actual in flt.value
        if flt.op == "array-contains":
            return isinstance(actual, list) and flt.value in actual
    except TypeError:
        # Mixed types never compare, same as the managed backend
        return False
    return False


class InMemoryDocumentStore(DocumentStore):
    """
    Document store kept in process memory.

    Args:
        clock: Source of "now" for queries and server timestamps.
               Defaults to the wall clock in UTC.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._subscriptions: list[tuple[Query, SnapshotCallback, Optional[ErrorCallback], Subscription]] = []
        self._fail_next: Optional[Exception] = None
        self.commit_count = 0

    # ------------------------------------------------------------------
    # Test hooks
    # ------------------------------------------------------------------

    def fail_next_commit(self, error: Optional[Exception] = None) -> None:
        """Make the next commit fail without applying anything."""
        self._fail_next = error or BackendUnavailableError("Simulated backend failure")

    def set_clock(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock

    def documents(self, collection: str) -> dict[str, dict[str, Any]]:
        """Raw copy of a collection (for assertions)."""
        return copy.deepcopy(self._collections.get(collection, {}))

    # ------------------------------------------------------------------
    # DocumentStore
    # ------------------------------------------------------------------

    def new_id(self, collection: str) -> str:
        return uuid4().hex

    def now(self) -> datetime:
        return self._clock()

    async def get(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        data = self._collections.get(collection, {}).get(doc_id)
        if data is None:
            return None
        return DocumentSnapshot(doc_id, collection, copy.deepcopy(data))

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        batch = self.batch()
        doc_id = batch.create(collection, data)
        await self.commit(batch)
        return doc_id

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        batch = self.batch()
        batch.set(collection, doc_id, data, merge=merge)
        await self.commit(batch)

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        batch = self.batch()
        batch.update(collection, doc_id, data)
        await self.commit(batch)

    async def delete(self, collection: str, doc_id: str) -> None:
        batch = self.batch()
        batch.delete(collection, doc_id)
        await self.commit(batch)

    async def query(self, query: Query) -> list[DocumentSnapshot]:
        return self._evaluate(query)

    def subscribe(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        entry: list = []

        def _unsubscribe() -> None:
            self._subscriptions[:] = [s for s in self._subscriptions if s[3] is not subscription]

        subscription = Subscription(_unsubscribe)
        entry = (query, on_snapshot, on_error, subscription)
        self._subscriptions.append(entry)
        self._deliver(entry)
        return subscription

    async def commit(self, batch: WriteBatch) -> None:
        if self._fail_next is not None:
            error, self._fail_next = self._fail_next, None
            raise error

        now = self._clock()
        staged: dict[tuple[str, str], Optional[dict[str, Any]]] = {}

        def current(collection: str, doc_id: str) -> Optional[dict[str, Any]]:
            key = (collection, doc_id)
            if key in staged:
                return staged[key]
            existing = self._collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(existing) if existing is not None else None

        for pre in batch.preconditions:
            doc = current(pre.collection, pre.doc_id)
            path = f"{pre.collection}/{pre.doc_id}"
            if doc is None:
                raise PreconditionFailedError(path, f"Document no longer exists: {path}")
            for field_path, expected in pre.expected.items():
                actual = _get_path(doc, field_path)
                if actual is _MISSING or actual != expected:
                    raise PreconditionFailedError(
                        path,
                        f"Field '{field_path}' of {path} changed: expected {expected!r}, found "
                        f"{None if actual is _MISSING else actual!r}",
                    )

        for op in batch.operations:
            path = f"{op.collection}/{op.doc_id}"
            doc = current(op.collection, op.doc_id)

            if op.kind == "create":
                if doc is not None:
                    raise DuplicateError(f"Document already exists: {path}")
                staged[(op.collection, op.doc_id)] = self._apply_fields({}, op.data, now)
            elif op.kind == "set":
                base = doc if (op.merge and doc is not None) else {}
                staged[(op.collection, op.doc_id)] = self._apply_fields(base, op.data, now, merge=op.merge)
            elif op.kind == "update":
                if doc is None:
                    raise NotFoundError(f"Document not found: {path}")
                staged[(op.collection, op.doc_id)] = self._apply_fields(doc, op.data, now)
            elif op.kind == "delete":
                staged[(op.collection, op.doc_id)] = None
            else:
                raise ValueError(f"Unknown write operation: {op.kind}")

        # Everything validated: publish
        for (collection, doc_id), data in staged.items():
            docs = self._collections.setdefault(collection, {})
            if data is None:
                docs.pop(doc_id, None)
            else:
                docs[doc_id] = data
        self.commit_count += 1

        for entry in list(self._subscriptions):
            self._deliver(entry)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _apply_fields(
        self,
        base: dict[str, Any],
        data: dict[str, Any],
        now: datetime,
        merge: bool = False,
    ) -> dict[str, Any]:
        result = copy.deepcopy(base)
        for key, value in data.items():
            if merge and isinstance(value, dict):
                existing = _get_path(result, key)
                merged = existing if isinstance(existing, dict) else {}
                _set_path(result, key, self._apply_fields(merged, value, now, merge=True))
                continue
            existing = _get_path(result, key)
            _set_path(result, key, self._resolve(value, existing, now))
        return result

    def _resolve(self, value: Any, existing: Any, now: datetime) -> Any:
        if value is SERVER_TIMESTAMP:
            return now
        if isinstance(value, ArrayUnion):
            items = list(existing) if isinstance(existing, list) else []
            for item in value.values:
                if item not in items:
                    items.append(item)
            return items
        if isinstance(value, Increment):
            start = existing if isinstance(existing, (int, float)) else 0
            return start + value.amount
        if isinstance(value, dict):
            return {k: self._resolve(v, _MISSING, now) for k, v in value.items()}
        return copy.deepcopy(value)

    def _evaluate(self, query: Query) -> list[DocumentSnapshot]:
        docs = self._collections.get(query.collection, {})
        rows = [
            (doc_id, data)
            for doc_id, data in docs.items()
            if all(_matches(data, f) for f in query.filters)
        ]

        orderings = query.orderings
        if orderings:
            rows = [
                row for row in rows
                if all(_get_path(row[1], o.field) is not _MISSING for o in orderings)
            ]
            # Stable sorts applied from the least to the most significant key
            for ordering in reversed(orderings):
                rows.sort(key=lambda row: _get_path(row[1], ordering.field), reverse=ordering.descending)

        if query.limit is not None:
            rows = rows[:query.limit]

        return [DocumentSnapshot(doc_id, query.collection, copy.deepcopy(data)) for doc_id, data in rows]

    def _deliver(self, entry) -> None:
        query, on_snapshot, on_error, subscription = entry
        if not subscription.active:
            return
        try:
            on_snapshot(self._evaluate(query))
        except Exception as e:
            if on_error is None:
                raise
            logger.warning("subscription_callback_failed", collection=query.collection, error=str(e))
            on_error(e)
