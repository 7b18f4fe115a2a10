"""Collection names used by the ledger."""


class Collections:
    HOUSEHOLDS = "households"
    USERS = "users"
    TRANSACTIONS = "transactions"
    RECURRING_TRANSACTIONS = "recurring_transactions"
    CATEGORIES = "categories"
    GOALS = "goals"
    ASSETS = "assets"
    PAYMENT_METHODS = "payment_methods"
    TRIPS = "trips"
    MONTHLY_BUDGETS = "monthly_budgets"
    AUDIT_LOG = "audit_log"


def trip_items(trip_id: str, kind: str) -> str:
    """Path of a trip sub-collection ("funds", "expenses" or "returns")."""
    return f"{Collections.TRIPS}/{trip_id}/{kind}"
