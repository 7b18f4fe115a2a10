"""Reporting calculations. Pure functions over loaded models, plus a loader for the statement."""

from homeledger.reports.budgets import MONTH_NAMES, annual_status, monthly_status
from homeledger.reports.savings import group_by_type, savings_stats
from homeledger.reports.statement import load_monthly_statement, month_bounds, monthly_statement
from homeledger.reports.trips import (
    by_category,
    by_source,
    by_user,
    conversion_rate,
    converted_values,
    trip_totals,
)

__all__ = [
    "MONTH_NAMES",
    "annual_status",
    "by_category",
    "by_source",
    "by_user",
    "conversion_rate",
    "converted_values",
    "group_by_type",
    "load_monthly_statement",
    "month_bounds",
    "monthly_statement",
    "savings_stats",
    "trip_totals",
]
