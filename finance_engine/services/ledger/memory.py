"""
In-Memory Ledger

A LedgerAccessor backed by a Python list. Used by tests and by the engine
when no external ledger is configured.

Failures can be injected so callers can exercise the ledger-failure paths
without a real backend.
"""

import asyncio
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from finance_engine.models.ledger import (
    DateRange,
    EntryKind,
    EntryStatus,
    LedgerEntry,
    LedgerEntryDraft,
    LedgerFilter,
)
from finance_engine.services.ledger.interface import (
    LedgerAccessor,
    LedgerReadError,
    LedgerWriteError,
)


class InMemoryLedger(LedgerAccessor):
    """List-backed ledger with failure injection."""

    def __init__(self):
        self._entries: list[LedgerEntry] = []
        self._lock = asyncio.Lock()
        self._pending_write_failures: list[str] = []
        self._read_failure: Optional[str] = None

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def add_entry(
        self,
        owner_id: str,
        kind: EntryKind,
        amount: Decimal,
        category: str,
        entry_date: date,
        status: EntryStatus = EntryStatus.COMPLETED,
        source: Optional[str] = None,
        name: str = "Entry",
    ) -> str:
        """Seed an entry directly, bypassing failure injection."""
        entry = LedgerEntry(
            id=str(uuid4()),
            owner_id=owner_id,
            kind=kind,
            name=name,
            amount=Decimal(str(amount)),
            category=category,
            entry_date=entry_date,
            status=status,
            source=source,
        )
        self._entries.append(entry)
        return entry.id

    def fail_next_create(self, message: str = "ledger unavailable", times: int = 1) -> None:
        """Make the next `times` create_entry calls raise LedgerWriteError."""
        self._pending_write_failures.extend([message] * times)

    def fail_reads(self, message: Optional[str] = "ledger unavailable") -> None:
        """Make every sum_matching call raise until called with None."""
        self._read_failure = message

    @property
    def entries(self) -> list[LedgerEntry]:
        return list(self._entries)

    def entries_for_obligation(self, obligation_id) -> list[LedgerEntry]:
        return [e for e in self._entries if e.recurring_obligation_id == obligation_id]

    # ------------------------------------------------------------------
    # LedgerAccessor
    # ------------------------------------------------------------------

    async def sum_matching(
        self,
        owner_id: str,
        entry_kind: EntryKind,
        filters: LedgerFilter,
        date_range: DateRange,
    ) -> Decimal:
        if self._read_failure:
            raise LedgerReadError(self._read_failure)

        async with self._lock:
            total = Decimal("0")
            for entry in self._entries:
                if entry.owner_id != owner_id or entry.kind != entry_kind:
                    continue
                if not date_range.contains(entry.entry_date):
                    continue
                if not filters.matches(entry.category, entry.status, entry.source):
                    continue
                total += entry.amount
            return total

    async def create_entry(self, owner_id: str, draft: LedgerEntryDraft) -> str:
        if self._pending_write_failures:
            raise LedgerWriteError(self._pending_write_failures.pop(0))

        async with self._lock:
            entry = LedgerEntry(
                id=str(uuid4()),
                owner_id=owner_id,
                **draft.model_dump(),
            )
            self._entries.append(entry)
            return entry.id
