"""
Tests for schedule arithmetic (pure date functions, no storage).
"""

import pytest
from datetime import date, datetime
from decimal import Decimal

from finance_engine.models.ledger import EntryKind
from finance_engine.models.obligation import (
    ExecutionOutcome,
    ExecutionRecord,
    Frequency,
    RecurringObligation,
)
from finance_engine.scheduling import (
    calculate_next_due_date,
    first_due_date,
    is_due,
    replay_next_due_date,
    upcoming_occurrences,
)


def make_obligation(**overrides) -> RecurringObligation:
    fields = dict(
        user_id="alice",
        name="Rent",
        kind=EntryKind.EXPENSE,
        amount=Decimal("1200.00"),
        category="housing",
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 15),
        initial_due_date=date(2024, 1, 15),
        next_due_date=date(2024, 1, 15),
        created_at=datetime(2024, 1, 1),
        updated_at=datetime(2024, 1, 1),
    )
    fields.update(overrides)
    return RecurringObligation(**fields)


class TestNextDueDate:
    """Tests for calculate_next_due_date."""

    @pytest.mark.parametrize("frequency,expected", [
        (Frequency.DAILY, date(2024, 1, 2)),
        (Frequency.WEEKLY, date(2024, 1, 8)),
        (Frequency.BI_WEEKLY, date(2024, 1, 15)),
        (Frequency.MONTHLY, date(2024, 2, 1)),
        (Frequency.QUARTERLY, date(2024, 4, 1)),
        (Frequency.YEARLY, date(2025, 1, 1)),
    ])
    def test_single_step(self, frequency, expected):
        """Test one step for every frequency."""
        assert calculate_next_due_date(date(2024, 1, 1), frequency) == expected

    def test_month_end_clamps_without_anchor(self):
        """Test Jan 31 + 1 month lands on Feb 29 in a leap year."""
        assert calculate_next_due_date(date(2024, 1, 31), Frequency.MONTHLY) == date(2024, 2, 29)

    def test_anchor_restores_day_after_short_month(self):
        """Test that a 31st anchor survives February."""
        feb = calculate_next_due_date(date(2024, 1, 31), Frequency.MONTHLY, day_of_month=31)
        mar = calculate_next_due_date(feb, Frequency.MONTHLY, day_of_month=31)
        apr = calculate_next_due_date(mar, Frequency.MONTHLY, day_of_month=31)
        assert feb == date(2024, 2, 29)
        assert mar == date(2024, 3, 31)
        assert apr == date(2024, 4, 30)

    def test_unanchored_month_end_drifts(self):
        """Test that without an anchor the clamped day is kept."""
        feb = calculate_next_due_date(date(2024, 1, 31), Frequency.MONTHLY)
        assert calculate_next_due_date(feb, Frequency.MONTHLY) == date(2024, 3, 29)

    def test_yearly_from_leap_day(self):
        """Test Feb 29 + 1 year clamps to Feb 28."""
        assert calculate_next_due_date(date(2024, 2, 29), Frequency.YEARLY) == date(2025, 2, 28)

    def test_quarterly_clamps(self):
        """Test Nov 30 + 3 months clamps to end of February."""
        assert calculate_next_due_date(date(2023, 11, 30), Frequency.QUARTERLY) == date(2024, 2, 29)


class TestFirstDueDate:
    """Tests for first_due_date."""

    def test_unanchored_starts_on_start_date(self):
        """Test that without anchors the first occurrence is start_date."""
        assert first_due_date(date(2024, 1, 20), Frequency.MONTHLY) == date(2024, 1, 20)

    def test_monthly_anchor_later_in_month(self):
        """Test anchor day still ahead in the start month."""
        assert first_due_date(date(2024, 1, 10), Frequency.MONTHLY, day_of_month=15) == date(2024, 1, 15)

    def test_monthly_anchor_already_passed(self):
        """Test anchor day behind start_date moves to next month."""
        assert first_due_date(date(2024, 1, 20), Frequency.MONTHLY, day_of_month=15) == date(2024, 2, 15)

    def test_monthly_anchor_clamped(self):
        """Test day 31 in February."""
        assert first_due_date(date(2024, 2, 10), Frequency.MONTHLY, day_of_month=31) == date(2024, 2, 29)

    def test_weekly_anchor(self):
        """Test weekday anchor (0 = Sunday). 2024-01-01 is a Monday."""
        start = date(2024, 1, 1)
        assert first_due_date(start, Frequency.WEEKLY, day_of_week=1) == date(2024, 1, 1)
        assert first_due_date(start, Frequency.WEEKLY, day_of_week=5) == date(2024, 1, 5)
        assert first_due_date(start, Frequency.BI_WEEKLY, day_of_week=0) == date(2024, 1, 7)

    def test_weekday_ignored_for_monthly(self):
        """Test that day_of_week has no effect on monthly schedules."""
        assert first_due_date(date(2024, 1, 1), Frequency.MONTHLY, day_of_week=5) == date(2024, 1, 1)


class TestIsDue:
    """Tests for is_due."""

    def test_due_on_the_day(self):
        """Test an obligation is due on its due date."""
        assert is_due(make_obligation(), datetime(2024, 1, 15, 0, 1)) is True

    def test_due_after_the_day(self):
        """Test an overdue obligation is still due."""
        assert is_due(make_obligation(), datetime(2024, 2, 1)) is True

    def test_not_due_before(self):
        """Test an obligation is not due the day before."""
        assert is_due(make_obligation(), datetime(2024, 1, 14, 23, 59)) is False

    def test_inactive_or_paused(self):
        """Test inactive and paused obligations are never due."""
        now = datetime(2024, 1, 15)
        assert is_due(make_obligation(is_active=False), now) is False
        assert is_due(make_obligation(is_paused=True), now) is False

    def test_past_end_date(self):
        """Test nothing is due once the end date has passed."""
        obligation = make_obligation(end_date=date(2024, 1, 20))
        assert is_due(obligation, datetime(2024, 1, 20)) is True
        assert is_due(obligation, datetime(2024, 1, 21)) is False


class TestReplay:
    """Tests for schedule replay and upcoming occurrences."""

    def test_replay_counts_success_and_skip_only(self):
        """Test failed attempts do not advance the replayed date."""
        history = (
            ExecutionRecord(executed_at=datetime(2024, 1, 15), outcome=ExecutionOutcome.FAILED, error="down"),
            ExecutionRecord(executed_at=datetime(2024, 1, 16), outcome=ExecutionOutcome.SUCCESS),
            ExecutionRecord(executed_at=datetime(2024, 2, 15), outcome=ExecutionOutcome.SKIPPED),
        )
        obligation = make_obligation(execution_history=history, next_due_date=date(2024, 3, 15))
        assert replay_next_due_date(obligation) == date(2024, 3, 15)

    def test_replay_empty_history(self):
        """Test replay of a fresh obligation gives its initial due date."""
        assert replay_next_due_date(make_obligation()) == date(2024, 1, 15)

    def test_upcoming_occurrences(self):
        """Test occurrences within a window."""
        obligation = make_obligation(
            frequency=Frequency.WEEKLY,
            next_due_date=date(2024, 1, 1),
        )
        dates = upcoming_occurrences(obligation, date(2024, 1, 31))
        assert dates == [
            date(2024, 1, 1),
            date(2024, 1, 8),
            date(2024, 1, 15),
            date(2024, 1, 22),
            date(2024, 1, 29),
        ]

    def test_upcoming_occurrences_stop_at_end_date(self):
        """Test the end date bounds the occurrences."""
        obligation = make_obligation(
            frequency=Frequency.WEEKLY,
            next_due_date=date(2024, 1, 1),
            end_date=date(2024, 1, 20),
        )
        assert len(upcoming_occurrences(obligation, date(2024, 1, 31))) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
