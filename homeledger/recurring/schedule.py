"""
Recurrence arithmetic.

Calendar rule: monthly and yearly steps use relativedelta and clamp to the
last day of a short month, then snap back to the template's anchor day
whenever the target month is long enough. A schedule created on the 31st
therefore runs 2024-01-31, 2024-02-29, 2024-03-31, 2024-04-30, ...
and never drifts to the 29th or 30th. Yearly from 2024-02-29 gives
2025-02-28 and returns to 2028-02-29.

Weekly steps are exactly seven days.
"""

import calendar
from datetime import datetime
from typing import Optional

from dateutil.relativedelta import relativedelta

from homeledger.models.ledger import RecurrenceInterval


def _with_anchor(moment: datetime, anchor_day: Optional[int]) -> datetime:
    if not anchor_day:
        return moment
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    return moment.replace(day=min(anchor_day, last_day))


def advance(
    current: datetime,
    interval: str,
    anchor_day: Optional[int] = None,
) -> datetime:
    """
    Next occurrence after `current`, exactly one interval later.

    Args:
        current: The occurrence just materialized
        interval: weekly, monthly or yearly
        anchor_day: Day of month the schedule was created on; defaults
                    to current.day

    Raises:
        ValueError: Unknown interval
    """
    interval = RecurrenceInterval(interval)
    anchor_day = anchor_day or current.day

    if interval == RecurrenceInterval.WEEKLY:
        return current + relativedelta(days=7)
    if interval == RecurrenceInterval.MONTHLY:
        return _with_anchor(current + relativedelta(months=1), anchor_day)
    return _with_anchor(current + relativedelta(years=1), anchor_day)


def occurrences_due(
    next_run: datetime,
    interval: str,
    now: datetime,
    anchor_day: Optional[int] = None,
    max_count: int = 1,
) -> tuple[list[datetime], datetime]:
    """
    Due occurrences starting at `next_run`, at most `max_count` of them.

    Returns:
        (occurrence dates to materialize, the new next run date)
    """
    dates: list[datetime] = []
    cursor = next_run
    while cursor <= now and len(dates) < max_count:
        dates.append(cursor)
        cursor = advance(cursor, interval, anchor_day)
    return dates, cursor
