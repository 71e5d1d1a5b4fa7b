"""
Recurring Obligation Models

An obligation is a recurring income/expense template plus its schedule
state. The schedule state is a small event log (execution_history) and a
snapshot (next_due_date, last_processed_date, is_active) that can always be
recomputed from that log.

DESIGN DECISION: Input models (ObligationCreate, ObligationUpdate) are
separate from the stored entity. Callers can never hand the engine a
next_due_date or a history; those only come out of scheduling.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from finance_engine.models.ledger import EntryKind


class Frequency(str, Enum):
    """How often an obligation recurs."""
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class ExecutionOutcome(str, Enum):
    """Outcome of one processing attempt."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ExecutionRecord(BaseModel):
    """One immutable entry in an obligation's execution history."""

    model_config = ConfigDict(frozen=True)

    executed_at: datetime = Field(..., description="When the attempt happened")
    outcome: ExecutionOutcome
    due_date: Optional[date] = Field(
        default=None,
        description="The occurrence this attempt was for"
    )
    created_entry_id: Optional[str] = None
    error: Optional[str] = None


class ObligationCreate(BaseModel):
    """
    Validated input for creating an obligation.

    Malformed schedules and amounts are rejected here, before anything
    is written.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    kind: EntryKind
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    tags: list[str] = Field(default_factory=list)
    payment_method: Optional[str] = None
    vendor: Optional[str] = None
    customer: Optional[str] = None

    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(
        default=None,
        ge=0,
        le=6,
        description="0 = Sunday ... 6 = Saturday"
    )

    auto_process: bool = False
    notify_before_days: int = Field(default=1, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_schedule(self) -> 'ObligationCreate':
        if self.end_date and self.end_date < self.start_date:
            raise ValueError("End date cannot be before start date")
        return self


class ObligationUpdate(BaseModel):
    """
    Edits to an obligation's template or schedule definition.

    Runtime state (next_due_date, history, active/paused flags) is not
    editable through this model.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, gt=0, decimal_places=2)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=1000)
    tags: Optional[list[str]] = None
    payment_method: Optional[str] = None
    vendor: Optional[str] = None
    customer: Optional[str] = None
    frequency: Optional[Frequency] = None
    end_date: Optional[date] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    auto_process: Optional[bool] = None
    notify_before_days: Optional[int] = Field(default=None, ge=0)


class RecurringObligation(BaseModel):
    """
    A stored recurring obligation.

    INVARIANTS:
    - next_due_date only moves forward after creation
    - execution_history only grows
    - is_active=False obligations are never due
    - a ledger entry is only written for an occurrence its writer claimed
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)

    # Template
    name: str
    kind: EntryKind
    amount: Decimal = Field(..., gt=0)
    category: str
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    payment_method: Optional[str] = None
    vendor: Optional[str] = None
    customer: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    # Schedule
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)

    # Runtime state
    initial_due_date: date
    next_due_date: date
    last_processed_date: Optional[datetime] = None
    is_active: bool = True
    is_paused: bool = False
    auto_process: bool = False
    notify_before_days: int = Field(default=1, ge=0)
    execution_history: tuple[ExecutionRecord, ...] = ()

    # Occurrence currently being written to the ledger by some worker
    claim_id: Optional[UUID] = None
    claimed_due_date: Optional[date] = None
    claimed_at: Optional[datetime] = None

    # Bookkeeping
    created_at: datetime
    updated_at: datetime
    revision: int = Field(default=0, ge=0)

    def record_execution(self, record: ExecutionRecord) -> None:
        """Append to the history. The only way the history changes."""
        self.execution_history = (*self.execution_history, record)

    @property
    def last_error(self) -> Optional[str]:
        for record in reversed(self.execution_history):
            if record.outcome == ExecutionOutcome.FAILED:
                return record.error
            if record.outcome == ExecutionOutcome.SUCCESS:
                return None
        return None


class ProcessStatus(str, Enum):
    """What happened to one obligation during evaluation or processing."""
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUPERSEDED = "superseded"
    CANCELLED = "cancelled"


class ProcessResult(BaseModel):
    """Result of processing (or trying to process) one obligation."""

    obligation_id: UUID
    status: ProcessStatus
    success: bool
    next_due_date: Optional[date] = None
    created_entry_id: Optional[str] = None
    deactivated: bool = False
    error: Optional[str] = None
    reason: Optional[str] = None


class ObligationResult(ProcessResult):
    """Per-obligation line of an evaluate_due pass."""

    user_id: str
    name: str
