"""
Goal Models

A goal has a target amount and a deadline. Progress arrives either as
manual deltas or from ledger aggregation (auto-tracking). Status and
milestone completion are derived from progress; they are never set
directly except through explicit pause/resume/abandon actions.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)


class GoalType(str, Enum):
    """Kinds of financial goals."""
    SAVINGS = "savings"
    INVESTMENT = "investment"
    DEBT_PAYOFF = "debt_payoff"
    REVENUE = "revenue"
    EXPENSE_REDUCTION = "expense_reduction"
    EMERGENCY_FUND = "emergency_fund"
    CUSTOM = "custom"


class GoalPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GoalStatus(str, Enum):
    """
    Goal lifecycle.

    not_started -> in_progress -> completed is driven by progress.
    paused and failed are only reached by explicit user action.
    """
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


class ReminderFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"

    @property
    def interval_days(self) -> int:
        return {
            ReminderFrequency.DAILY: 1,
            ReminderFrequency.WEEKLY: 7,
            ReminderFrequency.BI_WEEKLY: 14,
            ReminderFrequency.MONTHLY: 30,
        }[self]


class ProgressSource(str, Enum):
    MANUAL = "manual"
    AUTO = "auto"


class Milestone(BaseModel):
    """A sub-target. Completion is one-directional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    target_amount: Decimal = Field(..., ge=0)
    target_date: date
    completed: bool = False
    completed_date: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class TrackingRules(BaseModel):
    """Which ledger entries count towards an auto-tracked goal."""

    categories: list[str] = Field(default_factory=list)
    exclude_categories: list[str] = Field(default_factory=list)
    sources: list[str] = Field(
        default_factory=list,
        description="Income sources; ignored for expense-tracked goals"
    )
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @model_validator(mode='after')
    def validate_range(self) -> 'TrackingRules':
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("Tracking end date cannot be before start date")
        return self


class ProgressEntry(BaseModel):
    """One applied progress change."""

    model_config = ConfigDict(frozen=True)

    recorded_at: datetime
    amount: Decimal
    source: ProgressSource
    description: Optional[str] = None


class GoalCreate(BaseModel):
    """Validated input for creating a goal."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    type: GoalType
    target_amount: Decimal = Field(..., ge=Decimal("0.01"))
    initial_amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", max_length=3)
    deadline: date
    start_date: Optional[date] = None
    priority: GoalPriority = GoalPriority.MEDIUM
    category: Optional[str] = None
    milestones: list[Milestone] = Field(default_factory=list)
    auto_track: bool = False
    tracking_rules: Optional[TrackingRules] = None
    reminder_enabled: bool = True
    reminder_frequency: ReminderFrequency = ReminderFrequency.WEEKLY
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_dates(self) -> 'GoalCreate':
        if self.start_date and self.deadline < self.start_date:
            raise ValueError("Deadline cannot be before start date")
        return self


class GoalUpdate(BaseModel):
    """Edits to a goal definition. Amounts and status are not editable here."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    target_amount: Optional[Decimal] = Field(default=None, ge=Decimal("0.01"))
    deadline: Optional[date] = None
    priority: Optional[GoalPriority] = None
    category: Optional[str] = None
    auto_track: Optional[bool] = None
    tracking_rules: Optional[TrackingRules] = None
    reminder_enabled: Optional[bool] = None
    reminder_frequency: Optional[ReminderFrequency] = None
    tags: Optional[list[str]] = None


class Goal(BaseModel):
    """A stored goal."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    type: GoalType
    target_amount: Decimal = Field(..., gt=0)
    current_amount: Decimal = Field(..., ge=0)
    initial_amount: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = "USD"
    deadline: date
    start_date: date
    priority: GoalPriority = GoalPriority.MEDIUM
    status: GoalStatus = GoalStatus.NOT_STARTED
    category: Optional[str] = None

    milestones: list[Milestone] = Field(default_factory=list)
    auto_track: bool = False
    tracking_rules: Optional[TrackingRules] = None
    progress_history: tuple[ProgressEntry, ...] = ()

    reminder_enabled: bool = True
    reminder_frequency: ReminderFrequency = ReminderFrequency.WEEKLY
    last_reminder_sent: Optional[datetime] = None

    completed_date: Optional[datetime] = None
    paused_date: Optional[datetime] = None
    failed_date: Optional[datetime] = None
    last_calculated_at: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)

    created_at: datetime
    updated_at: datetime
    revision: int = Field(default=0, ge=0)

    @property
    def progress_percentage(self) -> Decimal:
        """
        Progress made since the goal was set up, as a percentage.

        Measured from initial_amount so that a goal started at 400 of
        1000 reads 0% rather than 40%. Clamped to 0..100.
        """
        effective_target = self.target_amount - self.initial_amount
        if effective_target <= 0:
            return Decimal("100")
        effective_progress = self.current_amount - self.initial_amount
        pct = (effective_progress / effective_target * 100).quantize(Decimal("0.01"))
        return min(Decimal("100"), max(Decimal("0"), pct))

    @property
    def remaining_amount(self) -> Decimal:
        return max(Decimal("0"), self.target_amount - self.current_amount)

    def days_remaining(self, today: date) -> int:
        return (self.deadline - today).days

    def apply_update(self, changes: GoalUpdate) -> list[str]:
        """
        Merge `changes` in place and return the names of the changed fields.

        Raises:
            ValueError: The new deadline is before the start date
        """
        updates = changes.model_dump(exclude_unset=True, exclude_none=True)
        if updates.get("deadline", self.deadline) < self.start_date:
            raise ValueError("Deadline cannot be before start date")
        for field in updates:
            setattr(self, field, getattr(changes, field))
        return sorted(updates)

    def next_milestone(self) -> Optional[Milestone]:
        pending = [m for m in self.milestones if not m.completed]
        if not pending:
            return None
        return min(pending, key=lambda m: m.target_date)


class GoalStatistics(BaseModel):
    """Aggregate view over a user's goals."""

    total: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    by_priority: dict[str, int]
    total_target_amount: Decimal
    total_current_amount: Decimal
    overall_progress: Decimal
    needing_attention: int
