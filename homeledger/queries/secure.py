"""
Secure Query Builder

CRITICAL: This is the only way household-scoped collections are read.

Every query it returns filters on `householdId == H` first, then
`userId == U` when the owner-scoped variant is asked for, then the
caller's clauses in the order given. A missing household (or a missing
user for the owner-scoped variant) raises ScopeViolationError before
any query object exists, so an unscoped read cannot be constructed here.

The builder is pure: it never talks to the backend.

Shared-ledger views (all household transactions) use `secure_query`
without a user. That is an explicit choice at the call site; the
household filter is never optional.
"""

from typing import Optional, Sequence

from homeledger.services.storage.interface import Clause, FieldFilter, Limit, OrderBy, Query, where

HOUSEHOLD_FIELD = "householdId"
USER_FIELD = "userId"


class ScopeViolationError(Exception):
    """Attempted to build a query without the required tenant/owner scope."""

    def __init__(self, collection: str, reason: str):
        self.collection = collection
        self.reason = reason
        super().__init__(f"Refusing unscoped query on '{collection}': {reason}")


def _present(value: Optional[str]) -> bool:
    return isinstance(value, str) and bool(value.strip())


def secure_query(
    collection: str,
    household_id: Optional[str],
    clauses: Sequence[Clause] = (),
    user_id: Optional[str] = None,
    owner_scoped: bool = False,
) -> Query:
    """
    Build a household-scoped query.

    Args:
        collection: Collection path to read
        household_id: Tenant to scope to; required
        clauses: Extra filters/orderings/limits, appended in order
        user_id: Owner to scope to; required when owner_scoped
        owner_scoped: Also restrict to documents owned by user_id

    Raises:
        ScopeViolationError: Missing household, or missing user for an
                             owner-scoped query
    """
    if not _present(collection):
        raise ScopeViolationError(str(collection), "collection name is required")
    if not _present(household_id):
        raise ScopeViolationError(collection, "household ID is required")
    if owner_scoped and not _present(user_id):
        raise ScopeViolationError(collection, "user ID is required for an owner-scoped query")

    for clause in clauses:
        if not isinstance(clause, (FieldFilter, OrderBy, Limit)):
            raise TypeError(f"Unsupported query clause: {clause!r}")

    scope = [where(HOUSEHOLD_FIELD, "==", household_id)]
    if user_id is not None and _present(user_id):
        scope.append(where(USER_FIELD, "==", user_id))

    return Query(collection, tuple(scope) + tuple(clauses))


def owner_query(
    collection: str,
    household_id: Optional[str],
    user_id: Optional[str],
    clauses: Sequence[Clause] = (),
) -> Query:
    """Household- and owner-scoped query (goals, personal views)."""
    return secure_query(collection, household_id, clauses, user_id=user_id, owner_scoped=True)


def shared_query(
    collection: str,
    household_id: Optional[str],
    clauses: Sequence[Clause] = (),
) -> Query:
    """Household-wide query with no owner filter (shared ledger views)."""
    return secure_query(collection, household_id, clauses)
