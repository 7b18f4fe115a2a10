"""
Firestore Storage Implementation

DESIGN DECISION: Cloud Firestore (through firebase-admin) is the production
backend because it gives us everything the ledger relies on out of the box:
1. Compound equality/range queries with ordering and limits
2. Live change subscriptions for every list view
3. Atomic multi-document writes (transactions)
4. Server-side timestamps and array-union updates

TRADEOFFS:
- Live watches only exist on the synchronous client and call back from a
  background thread; we hop those callbacks onto the event loop
- Batches with preconditions run as transactions so the re-check and the
  writes happen in one atomic step (plain batches cannot read)

The implementation follows the abstract interface, so the query builder
and recurring processor never import the SDK.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import firebase_admin
import structlog
from firebase_admin import credentials, firestore, firestore_async
from google.api_core import exceptions as gexc
from google.cloud.firestore_v1.base_query import FieldFilter as FirestoreFieldFilter
from tenacity import retry, stop_after_attempt, wait_exponential

from homeledger.config import get_settings
from homeledger.services.storage.interface import (
    ArrayUnion,
    BackendUnavailableError,
    DocumentSnapshot,
    DocumentStore,
    DuplicateError,
    ErrorCallback,
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


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles app initialization and hands out the async client (CRUD,
    transactions) and the sync client (live watches).
    """

    def __init__(self, app: Optional[firebase_admin.App] = None):
        self._app = app
        self._async_client = None
        self._sync_client = None
        self._settings = get_settings().firebase

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> firebase_admin.App:
        """
        Initialize (or reuse) the Firebase app.

        Uses service account credentials for authentication.
        """
        if self._app is None:
            if firebase_admin._apps:
                self._app = firebase_admin.get_app()
                return self._app
            try:
                cred = credentials.Certificate(self._settings.credentials_path)
                options = {}
                if self._settings.project_id:
                    options["projectId"] = self._settings.project_id
                self._app = firebase_admin.initialize_app(cred, options)
            except FileNotFoundError:
                raise BackendUnavailableError(
                    f"Firebase credentials file not found: {self._settings.credentials_path}"
                )
            except ValueError as e:
                raise BackendUnavailableError(f"Invalid Firebase credentials: {e}")
        return self._app

    @property
    def async_client(self):
        if self._async_client is None:
            self._async_client = firestore_async.client(
                app=self.connect(),
                database_id=self._settings.database_id,
            )
        return self._async_client

    @property
    def sync_client(self):
        if self._sync_client is None:
            self._sync_client = firestore.client(
                app=self.connect(),
                database_id=self._settings.database_id,
            )
        return self._sync_client


def _to_backend(value: Any) -> Any:
    """Translate our write sentinels into the SDK's."""
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, ArrayUnion):
        return firestore.ArrayUnion(list(value.values))
    if isinstance(value, Increment):
        return firestore.Increment(value.amount)
    if isinstance(value, dict):
        return {k: _to_backend(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_backend(v) for v in value]
    return value


def _build_query(root, query: Query):
    ref = root.collection(query.collection)
    for flt in query.filters:
        ref = ref.where(filter=FirestoreFieldFilter(flt.field, flt.op, flt.value))
    for ordering in query.orderings:
        direction = firestore.Query.DESCENDING if ordering.descending else firestore.Query.ASCENDING
        ref = ref.order_by(ordering.field, direction=direction)
    if query.limit is not None:
        ref = ref.limit(query.limit)
    return ref


def _snapshot(collection: str, snap) -> DocumentSnapshot:
    return DocumentSnapshot(snap.id, collection, snap.to_dict() or {})


def _translate(error: Exception, path: str) -> Exception:
    if isinstance(error, gexc.NotFound):
        return NotFoundError(f"Document not found: {path}")
    if isinstance(error, (gexc.AlreadyExists, gexc.Conflict)):
        return DuplicateError(f"Document already exists: {path}")
    return BackendUnavailableError(f"Firestore call failed for {path}: {error}")


_BACKEND_ERRORS = (gexc.GoogleAPICallError, gexc.RetryError)


class FirestoreDocumentStore(DocumentStore):
    """
    DocumentStore backed by Cloud Firestore.

    Every SDK error is mapped onto our storage exceptions; nothing from
    google.api_core leaks to callers.
    """

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    @property
    def _db(self):
        return self._client.async_client

    def new_id(self, collection: str) -> str:
        return self._db.collection(collection).document().id

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def get(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        try:
            snap = await self._db.collection(collection).document(doc_id).get()
        except _BACKEND_ERRORS as e:
            raise _translate(e, f"{collection}/{doc_id}") from e
        if not snap.exists:
            return None
        return _snapshot(collection, snap)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        try:
            _, ref = await self._db.collection(collection).add(_to_backend(data))
        except _BACKEND_ERRORS as e:
            raise _translate(e, collection) from e
        return ref.id

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> None:
        try:
            await self._db.collection(collection).document(doc_id).set(_to_backend(data), merge=merge)
        except _BACKEND_ERRORS as e:
            raise _translate(e, f"{collection}/{doc_id}") from e

    async def update(self, collection: str, doc_id: str, data: dict[str, Any]) -> None:
        try:
            await self._db.collection(collection).document(doc_id).update(_to_backend(data))
        except _BACKEND_ERRORS as e:
            raise _translate(e, f"{collection}/{doc_id}") from e

    async def delete(self, collection: str, doc_id: str) -> None:
        try:
            await self._db.collection(collection).document(doc_id).delete()
        except _BACKEND_ERRORS as e:
            raise _translate(e, f"{collection}/{doc_id}") from e

    async def query(self, query: Query) -> list[DocumentSnapshot]:
        try:
            return [
                _snapshot(query.collection, snap)
                async for snap in _build_query(self._db, query).stream()
            ]
        except _BACKEND_ERRORS as e:
            raise _translate(e, query.collection) from e

    def subscribe(
        self,
        query: Query,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """
        Start a live watch.

        The SDK calls back on its own thread; callbacks are re-scheduled
        onto the loop that was running when subscribe() was called.
        """
        loop = asyncio.get_running_loop()
        subscription: Optional[Subscription] = None

        def _deliver(docs: list[DocumentSnapshot]) -> None:
            if subscription is not None and not subscription.active:
                return
            try:
                on_snapshot(docs)
            except Exception as e:
                if on_error is None:
                    raise
                on_error(e)

        def _on_watch(snaps, _changes, _read_time) -> None:
            docs = [_snapshot(query.collection, s) for s in snaps]
            loop.call_soon_threadsafe(_deliver, docs)

        try:
            watch = _build_query(self._client.sync_client, query).on_snapshot(_on_watch)
        except _BACKEND_ERRORS as e:
            raise _translate(e, query.collection) from e

        subscription = Subscription(watch.unsubscribe)
        return subscription

    async def commit(self, batch: WriteBatch) -> None:
        if not batch.operations and not batch.preconditions:
            return
        try:
            if batch.preconditions:
                await self._commit_transaction(batch)
            else:
                await self._commit_batch(batch)
        except _BACKEND_ERRORS as e:
            raise _translate(e, "batch") from e

    async def _commit_batch(self, batch: WriteBatch) -> None:
        fs_batch = self._db.batch()
        for op in batch.operations:
            self._stage(fs_batch, op)
        await fs_batch.commit()

    async def _commit_transaction(self, batch: WriteBatch) -> None:
        db = self._db

        @firestore.async_transactional
        async def _run(transaction) -> None:
            # Reads must all happen before the first write
            for pre in batch.preconditions:
                path = f"{pre.collection}/{pre.doc_id}"
                snap = await db.collection(pre.collection).document(pre.doc_id).get(
                    transaction=transaction
                )
                if not snap.exists:
                    raise PreconditionFailedError(path, f"Document no longer exists: {path}")
                for field_path, expected in pre.expected.items():
                    try:
                        actual = snap.get(field_path)
                    except KeyError:
                        actual = None
                    if actual is None or actual != expected:
                        raise PreconditionFailedError(
                            path,
                            f"Field '{field_path}' of {path} changed: expected {expected!r}, found {actual!r}",
                        )
            for op in batch.operations:
                self._stage(transaction, op)

        await _run(db.transaction())

    def _stage(self, writer, op) -> None:
        ref = self._db.collection(op.collection).document(op.doc_id)
        if op.kind == "create":
            writer.create(ref, _to_backend(op.data))
        elif op.kind == "set":
            writer.set(ref, _to_backend(op.data), merge=op.merge)
        elif op.kind == "update":
            writer.update(ref, _to_backend(op.data))
        elif op.kind == "delete":
            writer.delete(ref)
        else:
            raise ValueError(f"Unknown write operation: {op.kind}")

