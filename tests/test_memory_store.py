"""
Tests for the in-memory document store.

These pin down the backend semantics the rest of the code relies on:
atomic batches, preconditions, sentinels, query evaluation and live
subscriptions.
"""

import pytest

from homeledger.queries.collections import Collections
from homeledger.services.storage import (
    ArrayUnion,
    BackendUnavailableError,
    DuplicateError,
    Increment,
    InMemoryDocumentStore,
    NotFoundError,
    PreconditionFailedError,
    Query,
    SERVER_TIMESTAMP,
    limit,
    order_by,
    where,
)


class TestDocuments:
    """Single-document operations."""

    @pytest.mark.asyncio
    async def test_add_and_get(self, store):
        doc_id = await store.add("things", {"name": "a"})

        snap = await store.get("things", doc_id)

        assert snap.id == doc_id
        assert snap.data == {"name": "a"}
        assert snap.path == f"things/{doc_id}"
        assert await store.get("things", "missing") is None

    @pytest.mark.asyncio
    async def test_reads_are_copies(self, store):
        await store.set("things", "x", {"tags": ["a"]})

        snap = await store.get("things", "x")
        snap.data["tags"].append("b")

        assert (await store.get("things", "x")).data == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, store):
        with pytest.raises(NotFoundError):
            await store.update("things", "x", {"a": 1})

    @pytest.mark.asyncio
    async def test_set_merge_keeps_other_fields(self, store):
        await store.set("things", "x", {"a": 1, "nested": {"b": 2}})
        await store.set("things", "x", {"nested": {"c": 3}}, merge=True)

        assert (await store.get("things", "x")).data == {"a": 1, "nested": {"b": 2, "c": 3}}

    @pytest.mark.asyncio
    async def test_update_dotted_path(self, store):
        await store.set("things", "x", {"budgets": {"2024": 1}})
        await store.update("things", "x", {"budgets.2025": 2})

        assert (await store.get("things", "x")).data == {"budgets": {"2024": 1, "2025": 2}}

    @pytest.mark.asyncio
    async def test_sentinels(self, store, clock):
        await store.set("things", "x", {"members": ["a"], "count": 1})
        await store.update("things", "x", {
            "members": ArrayUnion(["a", "b"]),
            "count": Increment(2),
            "seen": SERVER_TIMESTAMP,
        })

        data = (await store.get("things", "x")).data
        assert data == {"members": ["a", "b"], "count": 3, "seen": clock.now}


class TestBatches:
    """All-or-nothing commits."""

    @pytest.mark.asyncio
    async def test_failed_operation_applies_nothing(self, store):
        await store.set("things", "taken", {"v": 1})
        batch = store.batch()
        batch.create("things", {"v": 2}, doc_id="fresh")
        batch.create("things", {"v": 3}, doc_id="taken")

        with pytest.raises(DuplicateError):
            await store.commit(batch)

        assert set(store.documents("things")) == {"taken"}

    @pytest.mark.asyncio
    async def test_precondition_checked(self, store):
        await store.set("templates", "t1", {"nextRunDate": 1, "active": True})
        batch = store.batch()
        batch.update("templates", "t1", {"nextRunDate": 2})
        batch.expect("templates", "t1", {"nextRunDate": 0})

        with pytest.raises(PreconditionFailedError) as exc_info:
            await store.commit(batch)

        assert exc_info.value.path == "templates/t1"
        assert store.documents("templates")["t1"]["nextRunDate"] == 1

    @pytest.mark.asyncio
    async def test_precondition_on_missing_document(self, store):
        batch = store.batch()
        batch.expect("templates", "gone", {"active": True})

        with pytest.raises(PreconditionFailedError):
            await store.commit(batch)

    @pytest.mark.asyncio
    async def test_injected_failure(self, store):
        store.fail_next_commit()

        with pytest.raises(BackendUnavailableError):
            await store.set("things", "x", {})
        await store.set("things", "x", {})

        assert store.commit_count == 1

    @pytest.mark.asyncio
    async def test_operations_see_earlier_ones(self, store):
        batch = store.batch()
        doc_id = batch.create("things", {"n": 1})
        batch.update("things", doc_id, {"n": Increment(1)})
        await store.commit(batch)

        assert store.documents("things")[doc_id] == {"n": 2}


class TestQueries:
    """Filters, ordering and limits."""

    @pytest.mark.asyncio
    async def test_filter_order_limit(self, store):
        for doc_id, amount in (("a", 5), ("b", 50), ("c", 20), ("d", 1)):
            await store.set("things", doc_id, {"h": "h1", "amount": amount})

        snaps = await store.query(Query("things", (
            where("h", "==", "h1"),
            where("amount", ">=", 5),
            order_by("amount", descending=True),
            limit(2),
        )))

        assert [s.id for s in snaps] == ["b", "c"]

    @pytest.mark.asyncio
    async def test_missing_field_never_matches(self, store):
        await store.set("things", "with", {"rank": 1, "tags": ["x"]})
        await store.set("things", "without", {})

        assert [s.id for s in await store.query(Query("things", (where("rank", "!=", 5),)))] == ["with"]
        assert [s.id for s in await store.query(Query("things", (order_by("rank"),)))] == ["with"]
        assert [s.id for s in await store.query(Query("things", (where("tags", "array-contains", "x"),)))] == ["with"]

    @pytest.mark.asyncio
    async def test_in_operator_and_mixed_types(self, store):
        await store.set("things", "a", {"kind": "gold"})
        await store.set("things", "b", {"kind": 3})

        assert [s.id for s in await store.query(Query("things", (where("kind", "in", ["gold", "fd"]),)))] == ["a"]
        assert [s.id for s in await store.query(Query("things", (where("kind", "<", "z"),)))] == ["a"]


class TestSubscriptions:
    """Live result sets."""

    @pytest.mark.asyncio
    async def test_initial_and_change_delivery(self, store):
        seen = []
        subscription = store.subscribe(Query(Collections.GOALS, ()), lambda snaps: seen.append(len(snaps)))

        await store.set(Collections.GOALS, "g1", {"name": "Car"})
        subscription.cancel()
        subscription.cancel()
        await store.set(Collections.GOALS, "g2", {"name": "Trip"})

        assert seen == [0, 1]
        assert not subscription.active

    @pytest.mark.asyncio
    async def test_callback_error_goes_to_error_handler(self, clock):
        store = InMemoryDocumentStore(clock=clock)
        errors = []

        def explode(_snaps):
            raise RuntimeError("render failed")

        store.subscribe(Query("things", ()), explode, errors.append)

        assert [str(e) for e in errors] == ["render failed"]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
