"""Recurring transaction automation."""

from homeledger.recurring.processor import RecurringProcessor
from homeledger.recurring.schedule import advance, occurrences_due
from homeledger.recurring.scheduler import RecurringScheduler

__all__ = [
    "RecurringProcessor",
    "RecurringScheduler",
    "advance",
    "occurrences_due",
]
