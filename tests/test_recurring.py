"""
Tests for recurring schedules and the recurring processor.

The processor must:
1. Create one transaction per due occurrence, dated at the scheduled date
2. Advance nextRunDate in the same atomic batch
3. Never double-create, whether re-run or raced by another run
4. Leave everything untouched when the commit fails
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from homeledger.config import RecurringSettings
from homeledger.models.audit import AuditEventType
from homeledger.models.ledger import RecurringTransactionTemplate
from homeledger.queries import ScopeViolationError
from homeledger.queries.collections import Collections
from homeledger.recurring import RecurringProcessor, advance, occurrences_due
from homeledger.services.storage import BackendUnavailableError, InMemoryDocumentStore


def utc(year, month, day):
    return datetime(year, month, day, tzinfo=timezone.utc)


async def add_template(store, template_id="t1", **overrides):
    fields = dict(
        household_id="h1",
        type="expense",
        amount=Decimal("499"),
        category_id="subscriptions",
        category_name="Subscriptions",
        description="Streaming",
        interval="monthly",
        next_run_date=utc(2024, 3, 1),
    )
    fields.update(overrides)
    template = RecurringTransactionTemplate(**fields)
    await store.set(Collections.RECURRING_TRANSACTIONS, template_id, template.to_document())
    return template


def processor_for(store, settings=None, audit_logger=None):
    return RecurringProcessor(
        store,
        settings=settings or RecurringSettings(),
        default_currency="EUR",
        audit_logger=audit_logger,
    )


class TestSchedule:
    """Calendar arithmetic of one interval step."""

    def test_weekly_adds_seven_days(self):
        assert advance(utc(2024, 2, 26), "weekly") == utc(2024, 3, 4)

    def test_monthly_clamps_to_month_end(self):
        """Jan 31 advances to Feb 29 in a leap year."""
        assert advance(utc(2024, 1, 31), "monthly") == utc(2024, 2, 29)

    def test_monthly_returns_to_anchor_day(self):
        """After a short month the schedule goes back to the anchor day."""
        assert advance(utc(2024, 2, 29), "monthly", anchor_day=31) == utc(2024, 3, 31)
        assert advance(utc(2024, 4, 30), "monthly", anchor_day=31) == utc(2024, 5, 31)

    def test_yearly_leap_day(self):
        """Feb 29 becomes Feb 28, then Feb 29 again in the next leap year."""
        assert advance(utc(2024, 2, 29), "yearly") == utc(2025, 2, 28)
        assert advance(utc(2027, 2, 28), "yearly", anchor_day=29) == utc(2028, 2, 29)

    def test_time_of_day_preserved(self):
        start = datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc)
        assert advance(start, "monthly") == datetime(2024, 2, 15, 8, 30, tzinfo=timezone.utc)

    def test_unknown_interval_rejected(self):
        with pytest.raises(ValueError):
            advance(utc(2024, 1, 1), "daily")

    def test_occurrences_due_caps_catch_up(self):
        """At most max_count occurrences; the rest stays due."""
        dates, next_run = occurrences_due(utc(2024, 2, 20), "weekly", utc(2024, 3, 15), max_count=3)
        assert dates == [utc(2024, 2, 20), utc(2024, 2, 27), utc(2024, 3, 5)]
        assert next_run == utc(2024, 3, 12)

    def test_nothing_due_in_future(self):
        dates, next_run = occurrences_due(utc(2024, 4, 1), "monthly", utc(2024, 3, 15))
        assert dates == []
        assert next_run == utc(2024, 4, 1)


class TestProcessor:
    """Materializing due templates."""

    @pytest.mark.asyncio
    async def test_due_template_creates_transaction_and_advances(self, store, household, audit_logger, audit_storage):
        """One due monthly template: one transaction, schedule moved a month."""
        await add_template(store)

        result = await processor_for(store, audit_logger=audit_logger).process("h1", "alice")

        assert result.succeeded
        assert result.processed_template_ids == ["t1"]
        assert result.created_count == 1

        transactions = store.documents(Collections.TRANSACTIONS)
        assert len(transactions) == 1
        tx = next(iter(transactions.values()))
        assert tx["householdId"] == "h1"
        assert tx["userId"] == "alice"
        assert tx["date"] == utc(2024, 3, 1)
        assert tx["amount"] == 499.0
        assert tx["isRecurring"] is True
        assert tx["attachments"] == []
        assert tx["createdAt"] == store.now()

        template = store.documents(Collections.RECURRING_TRANSACTIONS)["t1"]
        assert template["nextRunDate"] == utc(2024, 4, 1)

        events = await audit_storage.get_recent_events("h1")
        assert [e.event_type for e in events] == [AuditEventType.RECURRING_BATCH_PROCESSED]

    @pytest.mark.asyncio
    async def test_rerun_creates_nothing(self, store, household):
        """A second run right after the first finds nothing due."""
        await add_template(store)
        processor = processor_for(store)

        await processor.process("h1", "alice")
        commits = store.commit_count
        second = await processor.process("h1", "alice")

        assert second.created_count == 0
        assert len(store.documents(Collections.TRANSACTIONS)) == 1
        assert store.commit_count == commits

    @pytest.mark.asyncio
    async def test_weekly_household_scenario(self, store, clock, household):
        """Weekly 50 due Jan 1, processed on Jan 3, twice."""
        clock.now = utc(2024, 1, 3)
        await add_template(
            store, "gym", amount=Decimal("50"), interval="weekly", next_run_date=utc(2024, 1, 1)
        )
        processor = processor_for(store)

        await processor.process("h1", "alice")
        await processor.process("h1", "alice")

        (tx,) = store.documents(Collections.TRANSACTIONS).values()
        assert tx["date"] == utc(2024, 1, 1)
        assert tx["amount"] == 50.0
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["gym"]["nextRunDate"] == utc(2024, 1, 8)

    @pytest.mark.asyncio
    async def test_inactive_and_future_templates_ignored(self, store, household):
        await add_template(store, "paused", active=False)
        await add_template(store, "later", next_run_date=utc(2024, 4, 1))

        result = await processor_for(store).process("h1", "alice")

        assert result.created_count == 0
        assert store.documents(Collections.TRANSACTIONS) == {}

    @pytest.mark.asyncio
    async def test_other_households_untouched(self, store, household):
        await add_template(store, "theirs", household_id="h2")

        result = await processor_for(store).process("h1", "alice")

        assert result.created_count == 0
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["theirs"]["nextRunDate"] == utc(2024, 3, 1)

    @pytest.mark.asyncio
    async def test_failed_commit_leaves_everything(self, store, household, audit_logger, audit_storage):
        """Nothing is written when the batch fails; the next run retries."""
        await add_template(store)
        store.fail_next_commit(BackendUnavailableError("offline"))
        processor = processor_for(store, audit_logger=audit_logger)

        result = await processor.run_safely("h1", "alice")

        assert not result.succeeded
        assert "BackendUnavailableError" in result.error
        assert store.documents(Collections.TRANSACTIONS) == {}
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["t1"]["nextRunDate"] == utc(2024, 3, 1)
        events = await audit_storage.get_recent_events("h1")
        assert events[0].event_type == AuditEventType.RECURRING_FAILED

        retry = await processor.run_safely("h1", "alice")
        assert retry.created_count == 1

    @pytest.mark.asyncio
    async def test_month_end_schedule_pinned(self, store, clock, household):
        """Jan 31 → Feb 29 → Mar 31 across three runs."""
        await add_template(store, next_run_date=utc(2024, 1, 31))
        processor = processor_for(store)

        clock.now = utc(2024, 2, 1)
        await processor.process("h1", "alice")
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["t1"]["nextRunDate"] == utc(2024, 2, 29)

        clock.now = utc(2024, 3, 1)
        await processor.process("h1", "alice")
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["t1"]["nextRunDate"] == utc(2024, 3, 31)

        dates = sorted(tx["date"] for tx in store.documents(Collections.TRANSACTIONS).values())
        assert dates == [utc(2024, 1, 31), utc(2024, 2, 29)]

    @pytest.mark.asyncio
    async def test_month_end_kept_without_stored_anchor(self, store, clock, household):
        """Templates saved without anchorDay get it pinned on their first advance."""
        await store.set(Collections.RECURRING_TRANSACTIONS, "rent", {
            "householdId": "h1",
            "type": "expense",
            "amount": 25000.0,
            "categoryId": "rent",
            "interval": "monthly",
            "nextRunDate": utc(2024, 1, 31),
            "active": True,
        })
        processor = processor_for(store)

        clock.now = utc(2024, 2, 1)
        await processor.process("h1", "alice")
        stored = store.documents(Collections.RECURRING_TRANSACTIONS)["rent"]
        assert stored["nextRunDate"] == utc(2024, 2, 29)
        assert stored["anchorDay"] == 31

        clock.now = utc(2024, 3, 1)
        await processor.process("h1", "alice")
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["rent"]["nextRunDate"] == utc(2024, 3, 31)

    @pytest.mark.asyncio
    async def test_currency_from_household(self, store, household):
        """Templates without a currency use the household's."""
        await add_template(store, "plain")
        await add_template(store, "usd", currency="USD")

        await processor_for(store).process("h1", "alice")

        currencies = sorted(tx["currency"] for tx in store.documents(Collections.TRANSACTIONS).values())
        assert currencies == ["INR", "USD"]

    @pytest.mark.asyncio
    async def test_currency_falls_back_to_default(self, store):
        """Without a household document the configured default applies."""
        await add_template(store)

        await processor_for(store).process("h1", "alice")

        tx = next(iter(store.documents(Collections.TRANSACTIONS).values()))
        assert tx["currency"] == "EUR"

    @pytest.mark.asyncio
    async def test_catch_up_limited_per_run(self, store, household):
        """Missed weeks are materialized up to the configured cap."""
        await add_template(store, interval="weekly", next_run_date=utc(2024, 2, 20))
        settings = RecurringSettings(max_occurrences_per_run=3)

        result = await processor_for(store, settings).process("h1", "alice")

        assert result.created_count == 3
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["t1"]["nextRunDate"] == utc(2024, 3, 12)

    @pytest.mark.asyncio
    async def test_expense_updates_budget_aggregate(self, store, household):
        await add_template(store)

        await processor_for(store).process("h1", "alice")

        aggregate = store.documents(Collections.MONTHLY_BUDGETS)["h1_2024_2"]
        assert aggregate["categorySpending"] == {"subscriptions": 499.0}

    @pytest.mark.asyncio
    async def test_invalid_template_skipped(self, store, household):
        """A malformed template doesn't block the valid ones."""
        await add_template(store, "good")
        await store.set(Collections.RECURRING_TRANSACTIONS, "bad", {
            "householdId": "h1",
            "active": True,
            "nextRunDate": utc(2024, 3, 1),
            "amount": -5,
        })

        result = await processor_for(store).process("h1", "alice")

        assert result.processed_template_ids == ["good"]
        assert result.skipped_template_ids == ["bad"]

    @pytest.mark.asyncio
    async def test_missing_household_refused(self, store):
        with pytest.raises(ScopeViolationError):
            await processor_for(store).process("", "alice")

    @pytest.mark.asyncio
    async def test_system_user_by_default(self, store, household):
        await add_template(store)
        settings = RecurringSettings(system_user_id="system:test")

        await processor_for(store, settings).process("h1")

        tx = next(iter(store.documents(Collections.TRANSACTIONS).values()))
        assert tx["userId"] == "system:test"


class RacingStore(InMemoryDocumentStore):
    """Lets another run advance the template right before our commit."""

    def __init__(self, clock):
        super().__init__(clock=clock)
        self.raced = False

    async def commit(self, batch):
        if batch.preconditions and not self.raced:
            self.raced = True
            await self.update(Collections.RECURRING_TRANSACTIONS, "t1", {"nextRunDate": utc(2024, 4, 1)})
        await super().commit(batch)


class TestConcurrentRuns:
    """Two runs against the same templates."""

    @pytest.mark.asyncio
    async def test_losing_run_writes_nothing(self, clock):
        """The run that reads stale nextRunDate is rejected and re-scans."""
        store = RacingStore(clock)
        await add_template(store)

        result = await processor_for(store).process("h1", "alice")

        assert result.conflicts == 1
        assert result.created_count == 0
        assert store.documents(Collections.TRANSACTIONS) == {}
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["t1"]["nextRunDate"] == utc(2024, 4, 1)

    @pytest.mark.asyncio
    async def test_sequential_runs_create_once(self, store, household):
        """Two processors sharing a store still produce a single transaction."""
        await add_template(store)

        first = await processor_for(store).process("h1", "alice")
        second = await processor_for(store).process("h1", "bob")

        assert first.created_count + second.created_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_reported_as_failure(self, clock):
        """A run that loses every race did nothing and says so."""
        store = ContendedStore(clock)
        await add_template(store)

        result = await processor_for(store, RecurringSettings(max_conflict_retries=2)).process("h1", "alice")

        assert result.conflicts == 3
        assert result.created_count == 0
        assert not result.succeeded
        assert "Conflicts exhausted" in result.error
        assert store.documents(Collections.TRANSACTIONS) == {}

    @pytest.mark.asyncio
    async def test_conflict_only_rejects_its_own_batch(self, clock):
        """Templates committed in other batches are kept."""
        store = RacingStore(clock)
        await add_template(store, "t1")
        await add_template(store, "t2", next_run_date=utc(2024, 3, 2))

        result = await processor_for(store, RecurringSettings(max_batch_writes=3)).process("h1", "alice")

        assert result.conflicts == 1
        assert result.processed_template_ids == ["t2"]
        assert result.succeeded
        (tx,) = store.documents(Collections.TRANSACTIONS).values()
        assert tx["date"] == utc(2024, 3, 2)


class ContendedStore(InMemoryDocumentStore):
    """Another run moves every guarded template just before each commit."""

    async def commit(self, batch):
        for pre in batch.preconditions:
            current = self.documents(pre.collection)[pre.doc_id]["nextRunDate"]
            await self.update(pre.collection, pre.doc_id, {"nextRunDate": current - timedelta(days=1)})
        await super().commit(batch)


class TestBatching:
    """Many due templates stay within the backend's write limit."""

    @pytest.mark.asyncio
    async def test_templates_packed_within_write_budget(self, store, household):
        """Expense templates take three writes each; five fit one per batch."""
        for index in range(4):
            await add_template(store, f"t{index}")
        commits = store.commit_count

        result = await processor_for(store, RecurringSettings(max_batch_writes=5)).process("h1", "alice")

        assert result.created_count == 4
        assert store.commit_count - commits == 4
        advanced = store.documents(Collections.RECURRING_TRANSACTIONS).values()
        assert {t["nextRunDate"] for t in advanced} == {utc(2024, 4, 1)}
        assert store.documents(Collections.MONTHLY_BUDGETS)["h1_2024_2"]["categorySpending"] == {
            "subscriptions": 1996.0,
        }

    @pytest.mark.asyncio
    async def test_several_templates_share_a_batch(self, store, household):
        """Income templates take two writes each."""
        for index in range(4):
            await add_template(store, f"pay{index}", type="income", category_id="salary")
        commits = store.commit_count

        result = await processor_for(store, RecurringSettings(max_batch_writes=5)).process("h1", "alice")

        assert result.created_count == 4
        assert store.commit_count - commits == 2

    @pytest.mark.asyncio
    async def test_large_catch_up_never_split(self, store, household):
        """One template's writes always land together, even over the budget."""
        await add_template(store, interval="weekly", next_run_date=utc(2024, 1, 1))
        commits = store.commit_count

        result = await processor_for(
            store, RecurringSettings(max_occurrences_per_run=12, max_batch_writes=5)
        ).process("h1", "alice")

        assert result.created_count == 11
        assert store.commit_count - commits == 1
        assert store.documents(Collections.RECURRING_TRANSACTIONS)["t1"]["nextRunDate"] == utc(2024, 3, 18)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
