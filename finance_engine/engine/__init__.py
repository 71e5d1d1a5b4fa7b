"""
Engine Package

The three sub-engines: obligation scheduling, budget thresholds and goal
progress. Each takes its repository, the ledger accessor and an optional
alert sink and audit logger.
"""

from finance_engine.engine.budgets import BudgetThresholdEvaluator
from finance_engine.engine.errors import (
    AutoTrackingDisabledError,
    EngineError,
    InvalidStateError,
    OccurrenceClaimedError,
    RolloverDisabledError,
)
from finance_engine.engine.goals import GoalProgressTracker
from finance_engine.engine.locks import EntityLocks
from finance_engine.engine.scheduler import ObligationScheduler

__all__ = [
    "AutoTrackingDisabledError",
    "BudgetThresholdEvaluator",
    "EngineError",
    "EntityLocks",
    "GoalProgressTracker",
    "InvalidStateError",
    "ObligationScheduler",
    "OccurrenceClaimedError",
    "RolloverDisabledError",
]
