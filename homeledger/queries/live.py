"""
Live Collections

A live query bound to the lifetime of the code that consumes it.

DESIGN DECISION: Subscriptions are acquired with `async with` and always
cancelled on exit, including when the consumer raises. Nothing keeps a
process-wide registry of listeners, so a consumer that goes away cannot
leak one.

Each LiveCollection exposes the three-state view list screens need:
`data` (last delivered documents), `loading` (no snapshot yet) and
`error` (last failure, if any), plus `updates()` to await changes.

Usage:
    query = shared_query(Collections.TRANSACTIONS, household_id, [order_by("date", True)])
    async with LiveCollection(store, query, Transaction) as live:
        async for transactions in live.updates():
            render(transactions)
"""

import asyncio
from typing import AsyncIterator, Generic, Optional, TypeVar

import structlog
from pydantic import ValidationError

from homeledger.models.base import DocumentModel
from homeledger.services.storage.interface import DocumentSnapshot, DocumentStore, Query, Subscription

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=DocumentModel)

_NOTHING = object()


class LiveQueryError(Exception):
    """A live query delivered an error instead of documents."""
    pass


class LiveCollection(Generic[M]):
    """
    Live, typed view over one secure query.

    Args:
        store: Backend to subscribe on
        query: Query from the secure query builder
        model: Document model to parse each snapshot into
    """

    def __init__(self, store: DocumentStore, query: Query, model: type[M]):
        self._store = store
        self._query = query
        self._model = model
        self._subscription: Optional[Subscription] = None
        # only the newest undelivered result is kept
        self._pending: object = _NOTHING
        self._changed = asyncio.Event()
        self._closed = False
        self._loaded = asyncio.Event()

        self.data: list[M] = []
        self.loading: bool = True
        self.error: Optional[Exception] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def __aenter__(self) -> "LiveCollection[M]":
        self._subscription = self._store.subscribe(self._query, self._on_snapshot, self._on_error)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Cancel the subscription. Safe to call more than once."""
        if self._subscription is not None and self._subscription.active:
            self._subscription.cancel()
            self._closed = True
            self._changed.set()
            logger.debug("live_query_closed", collection=self._query.collection)

    async def wait_loaded(self, timeout: Optional[float] = None) -> list[M]:
        """Wait for the first snapshot (or error) and return the data."""
        await asyncio.wait_for(self._loaded.wait(), timeout)
        if self.error is not None:
            raise LiveQueryError(str(self.error)) from self.error
        return self.data

    async def updates(self) -> AsyncIterator[list[M]]:
        """
        Yield the full result set after every change.

        Changes that arrive while the consumer is busy are coalesced:
        only the newest result set is yielded. Ends when the collection
        is closed; raises LiveQueryError if the subscription reports an
        error.
        """
        while True:
            if self._pending is _NOTHING:
                if self._closed:
                    return
                self._changed.clear()
                await self._changed.wait()
                continue
            item, self._pending = self._pending, _NOTHING
            if isinstance(item, Exception):
                raise LiveQueryError(str(item)) from item
            yield item

    def _push(self, item: object) -> None:
        self._pending = item
        self._changed.set()

    def _on_snapshot(self, snapshots: list[DocumentSnapshot]) -> None:
        try:
            items = [self._model.from_document(s.id, s.data) for s in snapshots]
        except ValidationError as e:
            logger.error(
                "live_query_invalid_document",
                collection=self._query.collection,
                error=str(e),
            )
            self._on_error(e)
            return
        self.data = items
        self.error = None
        self.loading = False
        self._loaded.set()
        self._push(items)

    def _on_error(self, error: Exception) -> None:
        logger.error("live_query_failed", collection=self._query.collection, error=str(error))
        self.error = error
        self.loading = False
        self._loaded.set()
        self._push(error)
