"""
Google Sheets Ledger

Ledger entries are stored one per row in the configured ledger worksheet.
Sums are computed in Python after reading the sheet; Sheets has no query
language worth relying on here.
"""

import json
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID, uuid4

import structlog
from tenacity import retry, stop_after_attempt, wait_exponential

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
from finance_engine.services.storage.google_sheets import GoogleSheetsClient, safe_cell

logger = structlog.get_logger(__name__)


LEDGER_COLUMNS = [
    "id",
    "owner_id",
    "kind",
    "name",
    "amount",
    "category",
    "entry_date",
    "status",
    "description",
    "tags_json",
    "payment_method",
    "vendor",
    "customer",
    "source",
    "recurring_obligation_id",
    "metadata_json",
]


class GoogleSheetsLedger(LedgerAccessor):
    """Ledger accessor backed by a Google Sheets worksheet."""

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _sheet(self):
        return self._client.get_worksheet(
            self._client.settings.ledger_sheet_name,
            LEDGER_COLUMNS,
        )

    def _entry_to_row(self, entry: LedgerEntry) -> list:
        """Convert a LedgerEntry to a spreadsheet row."""
        return [
            entry.id,
            entry.owner_id,
            entry.kind.value,
            entry.name,
            str(entry.amount),
            entry.category,
            entry.entry_date.isoformat(),
            entry.status.value,
            entry.description or "",
            json.dumps(entry.tags),
            entry.payment_method or "",
            entry.vendor or "",
            entry.customer or "",
            entry.source or "",
            str(entry.recurring_obligation_id) if entry.recurring_obligation_id else "",
            json.dumps(entry.metadata, default=str) if entry.metadata else "",
        ]

    def _row_to_entry(self, row: list) -> LedgerEntry:
        """Convert a spreadsheet row to a LedgerEntry."""
        obligation_id = safe_cell(row, 14)
        return LedgerEntry(
            id=safe_cell(row, 0),
            owner_id=safe_cell(row, 1),
            kind=EntryKind(safe_cell(row, 2)),
            name=safe_cell(row, 3),
            amount=Decimal(safe_cell(row, 4)),
            category=safe_cell(row, 5),
            entry_date=date.fromisoformat(safe_cell(row, 6)),
            status=EntryStatus(safe_cell(row, 7, EntryStatus.COMPLETED.value)),
            description=safe_cell(row, 8) or None,
            tags=json.loads(safe_cell(row, 9, "[]")),
            payment_method=safe_cell(row, 10) or None,
            vendor=safe_cell(row, 11) or None,
            customer=safe_cell(row, 12) or None,
            source=safe_cell(row, 13) or None,
            recurring_obligation_id=UUID(obligation_id) if obligation_id else None,
            metadata=json.loads(safe_cell(row, 15)) if safe_cell(row, 15) else {},
        )

    async def sum_matching(
        self,
        owner_id: str,
        entry_kind: EntryKind,
        filters: LedgerFilter,
        date_range: DateRange,
    ) -> Decimal:
        """Sum matching rows."""
        try:
            all_rows = self._sheet().get_all_values()[1:]
        except Exception as e:
            raise LedgerReadError(f"Failed to read ledger: {e}")

        total = Decimal("0")
        for row in all_rows:
            if not row or not row[0]:
                continue
            # Cheap column checks before building a model
            if safe_cell(row, 1) != owner_id or safe_cell(row, 2) != entry_kind.value:
                continue
            try:
                entry = self._row_to_entry(row)
            except (ValueError, InvalidOperation) as e:
                logger.warning("ledger_row_unreadable", entry_id=row[0], error=str(e))
                continue
            if not date_range.contains(entry.entry_date):
                continue
            if not filters.matches(entry.category, entry.status, entry.source):
                continue
            total += entry.amount
        return total

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def create_entry(self, owner_id: str, draft: LedgerEntryDraft) -> str:
        """Append an entry row."""
        entry = LedgerEntry(id=str(uuid4()), owner_id=owner_id, **draft.model_dump())
        try:
            self._sheet().append_row(self._entry_to_row(entry), value_input_option="RAW")
        except Exception as e:
            raise LedgerWriteError(f"Failed to write ledger entry: {e}")
        return entry.id
