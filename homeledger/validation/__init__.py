"""Validation package."""

from homeledger.validation.validator import TransactionValidator, ValidationFailedError, summarize

__all__ = ["TransactionValidator", "ValidationFailedError", "summarize"]
