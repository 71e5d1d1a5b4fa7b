"""
Storage Services Package

Provides abstract repository interfaces and concrete implementations for
the engine's own records (obligations, budgets, goals, audit events).
"""

from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    BudgetRepository,
    ConcurrencyError,
    ConnectionError,
    DuplicateError,
    GoalRepository,
    NotFoundError,
    ObligationRepository,
    StorageError,
)
from finance_engine.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBudgetRepository,
    InMemoryGoalRepository,
    InMemoryObligationRepository,
)
from finance_engine.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BudgetRepository",
    "GoalRepository",
    "ObligationRepository",
    # Exceptions
    "ConcurrencyError",
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBudgetRepository",
    "InMemoryGoalRepository",
    "InMemoryObligationRepository",
    # Google Sheets implementation
    "AUDIT_COLUMNS",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
]
