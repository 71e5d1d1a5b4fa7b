"""
Ledger Models

The ledger itself belongs to the surrounding application. The engine only
needs to describe two things to it:
1. Which entries to add up (LedgerFilter + DateRange)
2. What entry to create when an obligation materializes (LedgerEntryDraft)

These models are the whole vocabulary of that conversation.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EntryKind(str, Enum):
    """Direction of a ledger entry."""
    INCOME = "income"
    EXPENSE = "expense"


class EntryStatus(str, Enum):
    """Settlement status of a ledger entry."""
    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"


class DateRange(BaseModel):
    """Inclusive date range. Either bound may be open."""

    model_config = ConfigDict(frozen=True)

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode='after')
    def validate_bounds(self) -> 'DateRange':
        if self.start and self.end and self.end < self.start:
            raise ValueError("Date range end cannot be before start")
        return self

    def contains(self, day: date) -> bool:
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True


class LedgerFilter(BaseModel):
    """
    Entry selection used by sum queries.

    Empty lists mean "no constraint". When both categories and
    exclude_categories are given, the inclusive list wins.
    """

    model_config = ConfigDict(frozen=True)

    categories: tuple[str, ...] = ()
    exclude_categories: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()
    statuses: tuple[EntryStatus, ...] = ()
    exclude_statuses: tuple[EntryStatus, ...] = ()

    def matches(
        self,
        category: str,
        status: EntryStatus,
        source: Optional[str] = None,
    ) -> bool:
        """Check a single entry's attributes against this filter."""
        if self.categories:
            if category not in self.categories:
                return False
        elif self.exclude_categories and category in self.exclude_categories:
            return False

        if self.sources and source not in self.sources:
            return False
        if self.statuses and status not in self.statuses:
            return False
        if self.exclude_statuses and status in self.exclude_statuses:
            return False
        return True


class LedgerEntryDraft(BaseModel):
    """Fields of a ledger entry the engine asks the ledger to create."""

    model_config = ConfigDict(str_strip_whitespace=True)

    kind: EntryKind
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0)
    category: str = Field(..., min_length=1)
    entry_date: date
    status: EntryStatus = EntryStatus.COMPLETED
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payment_method: Optional[str] = None
    vendor: Optional[str] = None
    customer: Optional[str] = None
    source: Optional[str] = None
    recurring_obligation_id: Optional[UUID] = Field(
        default=None,
        description="Back-reference to the obligation that generated the entry"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)


class LedgerEntry(LedgerEntryDraft):
    """A ledger entry as stored by a ledger adapter."""

    id: str
    owner_id: str
