"""
Tests for the two-stage transaction validator.
"""

from datetime import datetime, timedelta, timezone

import pytest

from homeledger.config import AppSettings
from homeledger.models.ledger import Category
from homeledger.queries.collections import Collections
from homeledger.validation import TransactionValidator, ValidationFailedError, summarize


def valid_data(**overrides):
    data = {
        "householdId": "h1",
        "userId": "alice",
        "type": "expense",
        "amount": 250,
        "currency": "INR",
        "categoryId": "groceries",
        "date": datetime(2024, 3, 10, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return data


@pytest.fixture
def validator():
    return TransactionValidator(settings=AppSettings(max_transaction_amount=100000))


class TestSchemaStage:
    """Stage 1: structure."""

    @pytest.mark.asyncio
    async def test_valid_input(self, validator):
        result = await validator.validate(valid_data())

        assert result.is_valid
        assert result.issues == []
        assert summarize(result) == "All checks passed"

    @pytest.mark.asyncio
    async def test_missing_household_is_error(self, validator):
        data = valid_data()
        del data["householdId"]

        result = await validator.validate(data)

        assert not result.schema_valid
        assert not result.semantic_valid
        assert result.issues[0].issue_type == "missing"
        assert "householdId" in result.issues[0].field

    @pytest.mark.asyncio
    async def test_negative_amount_is_error(self, validator):
        result = await validator.validate(valid_data(amount=-1))

        assert result.has_errors
        assert result.error_count == 1

    @pytest.mark.asyncio
    async def test_raise_carries_result(self, validator):
        with pytest.raises(ValidationFailedError) as exc_info:
            await validator.validate_or_raise(valid_data(type="transfer"))

        assert exc_info.value.result.has_errors
        assert "Errors:" in str(exc_info.value)


class TestSemanticStage:
    """Stage 2: logic checks."""

    @pytest.mark.asyncio
    async def test_far_future_date_warns(self, validator):
        far = datetime.now(timezone.utc) + timedelta(days=400)

        result = await validator.validate(valid_data(date=far))

        assert result.is_valid
        assert any(i.issue_type == "future_date" for i in result.issues)

    @pytest.mark.asyncio
    async def test_large_and_zero_amounts_warn(self, validator):
        large = await validator.validate(valid_data(amount=250000))
        zero = await validator.validate(valid_data(amount=0))

        assert large.is_valid and large.warnings
        assert zero.is_valid and zero.warnings == ["Amount is zero"]

    @pytest.mark.asyncio
    async def test_currency_mismatch_warns(self, validator):
        result = await validator.validate(valid_data(currency="usd"), household_currency="inr")

        assert result.is_valid
        assert "differs from household currency INR" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_category_checks(self, validator):
        income_category = Category(id="salary", household_id="h1", name="Salary", type="income")
        foreign = Category(id="groceries", household_id="h2", name="Groceries")

        mismatch = await validator.validate(valid_data(), category=income_category)
        scoped = await validator.validate(valid_data(), category=foreign)

        assert not mismatch.semantic_valid
        assert mismatch.issues[0].issue_type == "inconsistent"
        assert not scoped.semantic_valid
        assert scoped.issues[0].issue_type == "scope"

    @pytest.mark.asyncio
    async def test_warnings_do_not_block(self, validator):
        transaction, result = await validator.validate_or_raise(valid_data(amount=0))

        assert transaction.amount == 0
        assert result.warnings


class TestDuplicateCheck:
    """Possible duplicates are flagged, never blocked."""

    @pytest.mark.asyncio
    async def test_same_day_amount_category_flagged(self, store, app_settings):
        await store.set(Collections.TRANSACTIONS, "existing", {
            **valid_data(),
            "amount": 250.0,
        })
        validator = TransactionValidator(store, app_settings)

        result = await validator.validate(valid_data(), check_duplicates=True)

        assert result.is_valid
        assert result.issues[-1].issue_type == "potential_duplicate"

    @pytest.mark.asyncio
    async def test_other_household_not_a_duplicate(self, store, app_settings):
        await store.set(Collections.TRANSACTIONS, "theirs", {**valid_data(householdId="h2"), "amount": 250.0})
        validator = TransactionValidator(store, app_settings)

        result = await validator.validate(valid_data(), check_duplicates=True)

        assert result.issues == []

    @pytest.mark.asyncio
    async def test_entry_is_not_its_own_duplicate(self, store, app_settings):
        await store.set(Collections.TRANSACTIONS, "same", {**valid_data(), "amount": 250.0})
        validator = TransactionValidator(store, app_settings)

        result = await validator.validate(valid_data(id="same"), check_duplicates=True)

        assert result.issues == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
