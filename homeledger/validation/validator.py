"""
Two-Stage Validation Pipeline

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking
- Required field presence (household, owner, category, date)
- Non-negative amount, description length
- This catches malformed input before anything touches the ledger

STAGE 2 - SEMANTIC VALIDATION:
- Future date detection
- Absurd amount detection
- Category type mismatch (income booked on an expense category)
- Currency differing from the household's
- Possible duplicate entries (needs storage)

WHY TWO STAGES:
1. Separation of concerns (structural vs logical)
2. Better error messages (know exactly what kind of issue)
3. Can skip stage 2 if stage 1 fails
4. Stage 2 needs access to storage for duplicate checks

IMPORTANT: Validation NEVER silently fixes issues.
Errors block the write; warnings are reported and the write goes ahead.
"""

from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from homeledger.config import AppSettings, get_settings
from homeledger.models.base import utc_now
from homeledger.models.ledger import Category, Transaction, ValidationIssue, ValidationResult
from homeledger.queries.collections import Collections
from homeledger.queries.secure import secure_query
from homeledger.services.storage.interface import DocumentStore, StorageError, limit, where

logger = structlog.get_logger(__name__)


class ValidationFailedError(Exception):
    """Input has blocking validation errors; nothing was written."""

    def __init__(self, result: ValidationResult):
        self.result = result
        super().__init__(summarize(result))


def summarize(result: ValidationResult) -> str:
    """One-line summary of a validation result."""
    if result.is_valid and not result.warnings:
        return "All checks passed"
    errors = [i.message for i in result.issues if i.severity == "error"]
    parts = []
    if errors:
        parts.append("Errors: " + "; ".join(errors))
    if result.warnings:
        parts.append("Warnings: " + "; ".join(result.warnings))
    return " | ".join(parts)


class TransactionValidator:
    """
    Validates transaction input through a two-stage pipeline.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Semantic validation (may need storage for duplicate checks)
    """

    def __init__(
        self,
        store: Optional[DocumentStore] = None,
        settings: Optional[AppSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            store: Document store for duplicate checking.
                   If None, duplicate checking is skipped.
            settings: Thresholds (loaded from the environment when None)
        """
        self._store = store
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        data: dict[str, Any],
    ) -> tuple[Optional[Transaction], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (parsed transaction or None, list_of_issues)
        """
        try:
            return Transaction.model_validate(data), []
        except ValidationError as e:
            issues = []
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "transaction"
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="missing" if error["type"] == "missing" else "invalid_value",
                    message=f"{field}: {error['msg']}",
                    severity="error",
                ))
            return None, issues

    def _validate_semantic(
        self,
        transaction: Transaction,
        category: Optional[Category] = None,
        household_currency: Optional[str] = None,
    ) -> list[ValidationIssue]:
        """
        Stage 2: Semantic validation.

        Returns: list_of_issues
        """
        issues = []
        now = utc_now()

        max_future = now + timedelta(days=self._settings.future_date_tolerance_days)
        if transaction.date > max_future:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Date ({transaction.date.date()}) is too far in the future",
                severity="warning",
            ))

        max_amount = Decimal(str(self._settings.max_transaction_amount))
        if transaction.amount > max_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({transaction.amount:,.2f}) seems unusually high",
                severity="warning",
            ))
        elif transaction.amount == 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message="Amount is zero",
                severity="warning",
            ))

        if category is not None:
            if category.household_id != transaction.household_id:
                issues.append(ValidationIssue(
                    field="categoryId",
                    issue_type="scope",
                    message="Category belongs to a different household",
                    severity="error",
                ))
            elif category.type != transaction.type:
                issues.append(ValidationIssue(
                    field="categoryId",
                    issue_type="inconsistent",
                    message=f"Category '{category.name}' is for {category.type}, not {transaction.type}",
                    severity="error",
                ))

        if household_currency and transaction.currency != household_currency.upper():
            issues.append(ValidationIssue(
                field="currency",
                issue_type="inconsistent",
                message=f"Currency {transaction.currency} differs from household currency {household_currency.upper()}",
                severity="warning",
            ))

        return issues

    async def _check_duplicates(self, transaction: Transaction) -> list[ValidationIssue]:
        """
        Look for an entry with the same date, amount and category.

        This requires storage access.
        """
        if self._store is None:
            return []

        query = secure_query(
            Collections.TRANSACTIONS,
            transaction.household_id,
            [
                where("date", "==", transaction.date),
                where("categoryId", "==", transaction.category_id),
                limit(20),
            ],
        )
        try:
            snapshots = await self._store.query(query)
        except StorageError as e:
            # Duplicate detection is advisory; the write itself will surface backend errors
            logger.warning("duplicate_check_failed", error=str(e))
            return []

        amount = float(transaction.amount)
        for snap in snapshots:
            if snap.id != transaction.id and snap.data.get("amount") == amount:
                return [ValidationIssue(
                    field="duplicate",
                    issue_type="potential_duplicate",
                    message=f"A {transaction.type} of {amount:,.2f} on {transaction.date.date()} may already exist",
                    severity="warning",
                )]
        return []

    async def validate(
        self,
        data: dict[str, Any],
        category: Optional[Category] = None,
        household_currency: Optional[str] = None,
        check_duplicates: bool = False,
    ) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            data: Transaction fields (snake_case or camelCase)
            category: The referenced category, when known
            household_currency: The household's configured currency
            check_duplicates: Whether to check for duplicates (requires storage)

        Returns:
            ValidationResult with all issues found
        """
        result, _ = await self._run(data, category, household_currency, check_duplicates)
        return result

    async def validate_or_raise(
        self,
        data: dict[str, Any],
        category: Optional[Category] = None,
        household_currency: Optional[str] = None,
        check_duplicates: bool = False,
    ) -> tuple[Transaction, ValidationResult]:
        """
        Validate and return the parsed transaction.

        Raises:
            ValidationFailedError: If any error-level issue was found
        """
        result, transaction = await self._run(data, category, household_currency, check_duplicates)
        if result.has_errors or transaction is None:
            raise ValidationFailedError(result)
        for warning in result.warnings:
            logger.info("transaction_validation_warning", warning=warning)
        return transaction, result

    async def _run(
        self,
        data: dict[str, Any],
        category: Optional[Category],
        household_currency: Optional[str],
        check_duplicates: bool,
    ) -> tuple[ValidationResult, Optional[Transaction]]:
        all_issues = []

        # Stage 1: Schema validation
        transaction, schema_issues = self._validate_schema(data)
        all_issues.extend(schema_issues)
        schema_valid = transaction is not None

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if transaction is not None:
            semantic_issues = self._validate_semantic(transaction, category, household_currency)
            semantic_valid = not any(i.severity == "error" for i in semantic_issues)
            all_issues.extend(semantic_issues)

            if check_duplicates:
                all_issues.extend(await self._check_duplicates(transaction))

        result = ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            issues=all_issues,
        )
        return result, transaction
