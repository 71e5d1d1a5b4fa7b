"""Services package."""

from finance_engine.services.alerts import (
    AlertDeliveryError,
    AlertSink,
    CollectingAlertSink,
    StructlogAlertSink,
)
from finance_engine.services.ledger import (
    GoogleSheetsLedger,
    InMemoryLedger,
    LedgerAccessor,
    LedgerError,
    LedgerReadError,
    LedgerWriteError,
)
from finance_engine.services.storage import (
    AuditStorageInterface,
    BudgetRepository,
    ConcurrencyError,
    DuplicateError,
    GoalRepository,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryAuditStorage,
    InMemoryBudgetRepository,
    InMemoryGoalRepository,
    InMemoryObligationRepository,
    NotFoundError,
    ObligationRepository,
    StorageError,
)

__all__ = [
    # Alerts
    "AlertDeliveryError",
    "AlertSink",
    "CollectingAlertSink",
    "StructlogAlertSink",
    # Ledger
    "GoogleSheetsLedger",
    "InMemoryLedger",
    "LedgerAccessor",
    "LedgerError",
    "LedgerReadError",
    "LedgerWriteError",
    # Storage
    "AuditStorageInterface",
    "BudgetRepository",
    "ConcurrencyError",
    "DuplicateError",
    "GoalRepository",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "InMemoryAuditStorage",
    "InMemoryBudgetRepository",
    "InMemoryGoalRepository",
    "InMemoryObligationRepository",
    "NotFoundError",
    "ObligationRepository",
    "StorageError",
]
