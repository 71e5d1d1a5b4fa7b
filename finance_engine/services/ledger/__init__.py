"""
Ledger Services Package

The engine's only view of the ledger: sum matching entries, create one.
"""

from finance_engine.services.ledger.interface import (
    LedgerAccessor,
    LedgerError,
    LedgerReadError,
    LedgerWriteError,
)
from finance_engine.services.ledger.memory import InMemoryLedger
from finance_engine.services.ledger.google_sheets import (
    LEDGER_COLUMNS,
    GoogleSheetsLedger,
)

__all__ = [
    # Interface
    "LedgerAccessor",
    # Exceptions
    "LedgerError",
    "LedgerReadError",
    "LedgerWriteError",
    # Implementations
    "GoogleSheetsLedger",
    "InMemoryLedger",
    "LEDGER_COLUMNS",
]
