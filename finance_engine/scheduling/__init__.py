"""Schedule arithmetic for recurring obligations."""

from finance_engine.scheduling.schedule import (
    ADVANCING_OUTCOMES,
    calculate_next_due_date,
    first_due_date,
    is_due,
    replay_next_due_date,
    upcoming_occurrences,
)

__all__ = [
    "ADVANCING_OUTCOMES",
    "calculate_next_due_date",
    "first_due_date",
    "is_due",
    "replay_next_due_date",
    "upcoming_occurrences",
]
