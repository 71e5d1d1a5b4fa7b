"""
Schedule Arithmetic

Pure date functions used by the Obligation Scheduler. Nothing in here
touches storage or the clock; callers pass `now` in explicitly.

DESIGN DECISION: Month arithmetic uses dateutil's relativedelta, which
clamps to the last day of the target month (Jan 31 + 1 month = Feb 28/29).
When an obligation is anchored to a day_of_month, the anchor is re-applied
after every step so a clamped February does not drag March down to the 28th.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from finance_engine.models.obligation import (
    ExecutionOutcome,
    Frequency,
    RecurringObligation,
)


_FIXED_STEPS = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(weeks=1),
    Frequency.BI_WEEKLY: timedelta(weeks=2),
}

_CALENDAR_STEPS = {
    Frequency.MONTHLY: relativedelta(months=1),
    Frequency.QUARTERLY: relativedelta(months=3),
    Frequency.YEARLY: relativedelta(years=1),
}

# Outcomes that consume an occurrence and move the schedule forward
ADVANCING_OUTCOMES = (ExecutionOutcome.SUCCESS, ExecutionOutcome.SKIPPED)


def _anchor_day(day: date, day_of_month: int) -> date:
    """Move `day` to day_of_month within its own month, clamped to month end."""
    days_in_month = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=min(day_of_month, days_in_month))


def calculate_next_due_date(
    current: date,
    frequency: Frequency,
    day_of_month: Optional[int] = None,
) -> date:
    """
    Compute the occurrence after `current`.

    Args:
        current: The occurrence being consumed
        frequency: Recurrence frequency
        day_of_month: Monthly anchor day (1-31), if any

    Returns:
        The next due date
    """
    if frequency in _FIXED_STEPS:
        return current + _FIXED_STEPS[frequency]

    nxt = current + _CALENDAR_STEPS[frequency]
    if frequency == Frequency.MONTHLY and day_of_month:
        nxt = _anchor_day(nxt, day_of_month)
    return nxt


def first_due_date(
    start_date: date,
    frequency: Frequency,
    day_of_month: Optional[int] = None,
    day_of_week: Optional[int] = None,
) -> date:
    """
    Compute the first due date when an obligation is created.

    Monthly obligations anchored to a day use that day in the start month,
    or the next month if that day is already behind start_date.
    Weekly and bi-weekly obligations anchored to a weekday (0 = Sunday)
    use the first matching weekday on or after start_date.
    """
    if frequency == Frequency.MONTHLY and day_of_month:
        candidate = _anchor_day(start_date, day_of_month)
        if candidate < start_date:
            candidate = _anchor_day(start_date + relativedelta(months=1), day_of_month)
        return candidate

    if frequency in (Frequency.WEEKLY, Frequency.BI_WEEKLY) and day_of_week is not None:
        # date.weekday() is Monday-based; shift to Sunday = 0
        start_dow = (start_date.weekday() + 1) % 7
        return start_date + timedelta(days=(day_of_week - start_dow) % 7)

    return start_date


def is_due(obligation: RecurringObligation, now: datetime) -> bool:
    """True when the obligation should be materialized at `now`."""
    today = now.date()
    if not obligation.is_active or obligation.is_paused:
        return False
    if obligation.next_due_date > today:
        return False
    if obligation.end_date is not None and obligation.end_date < today:
        return False
    return True


def replay_next_due_date(obligation: RecurringObligation) -> date:
    """
    Recompute next_due_date from the execution history.

    Starts at initial_due_date and advances once per consumed occurrence.
    A matching result means the stored snapshot agrees with the log.
    """
    due = obligation.initial_due_date
    for record in obligation.execution_history:
        if record.outcome in ADVANCING_OUTCOMES:
            due = calculate_next_due_date(due, obligation.frequency, obligation.day_of_month)
    return due


def upcoming_occurrences(
    obligation: RecurringObligation,
    until: date,
    limit: int = 366,
) -> list[date]:
    """List due dates from next_due_date up to and including `until`."""
    dates = []
    due = obligation.next_due_date
    while due <= until and len(dates) < limit:
        if obligation.end_date is not None and due > obligation.end_date:
            break
        dates.append(due)
        due = calculate_next_due_date(due, obligation.frequency, obligation.day_of_month)
    return dates
