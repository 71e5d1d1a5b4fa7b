"""
Tests for the Google Sheets adapters.

No real API calls: the client is a MagicMock returning a fake worksheet.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from finance_engine.models.audit import AuditEvent, AuditEventType
from finance_engine.models.ledger import (
    DateRange,
    EntryKind,
    EntryStatus,
    LedgerEntry,
    LedgerEntryDraft,
    LedgerFilter,
)
from finance_engine.services import (
    GoogleSheetsAuditStorage,
    GoogleSheetsLedger,
    LedgerReadError,
)
from finance_engine.services.ledger.google_sheets import LEDGER_COLUMNS
from finance_engine.services.storage.google_sheets import AUDIT_COLUMNS, safe_cell


def fake_client(sheet):
    client = MagicMock()
    client.settings.ledger_sheet_name = "Ledger"
    client.get_worksheet.return_value = sheet
    client.get_audit_sheet.return_value = sheet
    return client


def make_entry(**overrides) -> LedgerEntry:
    fields = dict(
        id=str(uuid4()),
        owner_id="alice",
        kind=EntryKind.EXPENSE,
        name="Groceries",
        amount=Decimal("42.50"),
        category="Groceries",
        entry_date=date(2024, 1, 10),
    )
    fields.update(overrides)
    return LedgerEntry(**fields)


class TestSafeCell:
    """Tests for safe_cell."""

    def test_short_rows_and_blanks(self):
        """Test defaults for missing and empty cells."""
        assert safe_cell(["a", ""], 0) == "a"
        assert safe_cell(["a", ""], 1, "x") == "x"
        assert safe_cell(["a"], 5, "x") == "x"


class TestGoogleSheetsLedger:
    """Tests for GoogleSheetsLedger with a mocked worksheet."""

    def test_row_conversion(self):
        """Test an entry survives conversion to a row and back."""
        ledger = GoogleSheetsLedger(fake_client(MagicMock()))
        obligation_id = uuid4()
        entry = make_entry(
            tags=["recurring"],
            recurring_obligation_id=obligation_id,
            metadata={"due_date": "2024-01-10"},
        )

        row = ledger._entry_to_row(entry)
        assert len(row) == len(LEDGER_COLUMNS)
        assert ledger._row_to_entry(row) == entry

    def test_sum_matching(self):
        """Test rows are filtered by owner, kind, range and filter."""
        sheet = MagicMock()
        ledger = GoogleSheetsLedger(fake_client(sheet))
        rows = [
            make_entry(amount=Decimal("10")),
            make_entry(amount=Decimal("20"), status=EntryStatus.CANCELLED),
            make_entry(amount=Decimal("40"), owner_id="bob"),
            make_entry(amount=Decimal("80"), kind=EntryKind.INCOME),
            make_entry(amount=Decimal("160"), entry_date=date(2024, 3, 1)),
        ]
        unreadable = ledger._entry_to_row(make_entry())
        unreadable[4] = "not a number"
        sheet.get_all_values.return_value = [
            LEDGER_COLUMNS,
            *[ledger._entry_to_row(e) for e in rows],
            unreadable,
            [],
        ]

        total = asyncio.run(ledger.sum_matching(
            "alice",
            EntryKind.EXPENSE,
            LedgerFilter(exclude_statuses=(EntryStatus.CANCELLED,)),
            DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31)),
        ))
        assert total == Decimal("10")

    def test_read_failure(self):
        """Test API errors surface as LedgerReadError."""
        client = fake_client(MagicMock())
        client.get_worksheet.side_effect = RuntimeError("quota exceeded")
        ledger = GoogleSheetsLedger(client)

        with pytest.raises(LedgerReadError, match="quota exceeded"):
            asyncio.run(ledger.sum_matching("alice", EntryKind.EXPENSE, LedgerFilter(), DateRange()))

    def test_create_entry_appends_row(self):
        """Test a created entry is appended as one row."""
        sheet = MagicMock()
        ledger = GoogleSheetsLedger(fake_client(sheet))
        draft = LedgerEntryDraft(
            kind=EntryKind.EXPENSE,
            name="Rent",
            amount=Decimal("1200"),
            category="housing",
            entry_date=date(2024, 1, 15),
        )

        entry_id = asyncio.run(ledger.create_entry("alice", draft))

        sheet.append_row.assert_called_once()
        row = sheet.append_row.call_args[0][0]
        assert row[0] == entry_id
        assert row[1] == "alice"
        assert row[4] == "1200"


class TestGoogleSheetsAuditStorage:
    """Tests for GoogleSheetsAuditStorage with a mocked worksheet."""

    def test_append_event(self):
        """Test events are appended as 11-column rows."""
        sheet = MagicMock()
        storage = GoogleSheetsAuditStorage(fake_client(sheet))
        event = AuditEvent(event_type=AuditEventType.SYSTEM_ERROR, description="boom")

        assert asyncio.run(storage.append_event(event)) is True
        row = sheet.append_row.call_args[0][0]
        assert len(row) == len(AUDIT_COLUMNS)
        assert row[2] == "system_error"

    def test_read_events(self):
        """Test reading back events and skipping unreadable rows."""
        sheet = MagicMock()
        storage = GoogleSheetsAuditStorage(fake_client(sheet))
        entity_id = uuid4()
        events = [
            AuditEvent(
                event_type=AuditEventType.BUDGET_RECALCULATED,
                timestamp=datetime(2024, 1, 1),
                entity_type="budget",
                entity_id=entity_id,
                description="recalculated",
                details={"total_spent": "420"},
            ),
            AuditEvent(
                event_type=AuditEventType.BUDGET_ALERT_RAISED,
                timestamp=datetime(2024, 1, 2),
                entity_type="budget",
                entity_id=entity_id,
                description="alert",
            ),
        ]
        sheet.get_all_values.return_value = [
            AUDIT_COLUMNS,
            *[e.to_sheets_row() for e in events],
            ["not-a-uuid", "2024-01-03T00:00:00", "system_error", "error"],
        ]

        async def scenario():
            return (
                await storage.get_events_by_entity("budget", entity_id),
                await storage.get_recent_events(limit=10),
            )

        by_entity, recent = asyncio.run(scenario())
        assert [e.event_id for e in by_entity] == [e.event_id for e in events]
        assert by_entity[0].details == {"total_spent": "420"}
        assert recent[0].event_type == AuditEventType.BUDGET_ALERT_RAISED


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
