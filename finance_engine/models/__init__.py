"""
Data Models Package

This package contains all Pydantic models used by the finance engine.
All data flowing through the engine must conform to these schemas.
"""

from finance_engine.models.alert import Alert, AlertKind
from finance_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_engine.models.budget import (
    AllocationUsage,
    Budget,
    BudgetCreate,
    BudgetPeriod,
    BudgetSummary,
    BudgetUpdate,
    BudgetUsage,
    CategoryAllocation,
)
from finance_engine.models.goal import (
    Goal,
    GoalCreate,
    GoalPriority,
    GoalStatistics,
    GoalStatus,
    GoalType,
    GoalUpdate,
    Milestone,
    ProgressEntry,
    ProgressSource,
    ReminderFrequency,
    TrackingRules,
)
from finance_engine.models.ledger import (
    DateRange,
    EntryKind,
    EntryStatus,
    LedgerEntry,
    LedgerEntryDraft,
    LedgerFilter,
)
from finance_engine.models.obligation import (
    ExecutionOutcome,
    ExecutionRecord,
    Frequency,
    ObligationCreate,
    ObligationResult,
    ObligationUpdate,
    ProcessResult,
    ProcessStatus,
    RecurringObligation,
)

__all__ = [
    # Alerts
    "Alert",
    "AlertKind",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
    # Budgets
    "AllocationUsage",
    "Budget",
    "BudgetCreate",
    "BudgetPeriod",
    "BudgetSummary",
    "BudgetUpdate",
    "BudgetUsage",
    "CategoryAllocation",
    # Goals
    "Goal",
    "GoalCreate",
    "GoalPriority",
    "GoalStatistics",
    "GoalStatus",
    "GoalType",
    "GoalUpdate",
    "Milestone",
    "ProgressEntry",
    "ProgressSource",
    "ReminderFrequency",
    "TrackingRules",
    # Ledger
    "DateRange",
    "EntryKind",
    "EntryStatus",
    "LedgerEntry",
    "LedgerEntryDraft",
    "LedgerFilter",
    # Obligations
    "ExecutionOutcome",
    "ExecutionRecord",
    "Frequency",
    "ObligationCreate",
    "ObligationResult",
    "ObligationUpdate",
    "ProcessResult",
    "ProcessStatus",
    "RecurringObligation",
]
