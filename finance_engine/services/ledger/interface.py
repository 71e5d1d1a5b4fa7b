"""
Abstract Ledger Accessor

DESIGN DECISION: The engine never reads or writes ledger rows directly.
It needs exactly two capabilities from whatever owns the ledger:
1. Sum the amounts of entries matching a filter within a date range
2. Create one entry from a draft and get its identifier back

Anything richer (search, pagination, editing entries) belongs to the
surrounding application, not to this interface.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from finance_engine.models.ledger import (
    DateRange,
    EntryKind,
    LedgerEntryDraft,
    LedgerFilter,
)


class LedgerAccessor(ABC):
    """
    Abstract interface to the ledger.

    Implementations must be safe to call concurrently from several
    evaluation passes.
    """

    @abstractmethod
    async def sum_matching(
        self,
        owner_id: str,
        entry_kind: EntryKind,
        filters: LedgerFilter,
        date_range: DateRange,
    ) -> Decimal:
        """
        Sum the amounts of matching entries.

        Args:
            owner_id: User whose ledger is queried
            entry_kind: income or expense
            filters: Category, source and status constraints
            date_range: Inclusive entry-date bounds

        Returns:
            The total, Decimal("0") when nothing matches

        Raises:
            LedgerReadError: If the ledger cannot be read
        """
        pass

    @abstractmethod
    async def create_entry(self, owner_id: str, draft: LedgerEntryDraft) -> str:
        """
        Create a ledger entry.

        Args:
            owner_id: User the entry belongs to
            draft: Entry fields

        Returns:
            Identifier of the created entry

        Raises:
            LedgerWriteError: If the entry could not be created
        """
        pass


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class LedgerReadError(LedgerError):
    """A sum query against the ledger failed."""
    pass


class LedgerWriteError(LedgerError):
    """Creating a ledger entry failed."""
    pass
