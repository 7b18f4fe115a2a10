"""Household-scoped query construction and live queries."""

from homeledger.queries.collections import Collections, trip_items
from homeledger.queries.live import LiveCollection, LiveQueryError
from homeledger.queries.secure import (
    ScopeViolationError,
    owner_query,
    secure_query,
    shared_query,
)

__all__ = [
    "Collections",
    "LiveCollection",
    "LiveQueryError",
    "ScopeViolationError",
    "owner_query",
    "secure_query",
    "shared_query",
    "trip_items",
]
