"""
Budget Models

A budget is a period-scoped spending plan with per-category limits.

DESIGN DECISION: Spent/remaining/percentage values are NOT fields on the
allocation. They live in BudgetUsage, a frozen projection that only the
recalculation step produces. A caller cannot pass "spent" in; the only
source of truth for spending is the ledger.
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


class BudgetPeriod(str, Enum):
    """Budget period kinds."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class CategoryAllocation(BaseModel):
    """One tracked category within a budget (source data only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    category_id: str = Field(..., min_length=1)
    category_name: str = Field(..., min_length=1, max_length=100)
    limit: Decimal = Field(..., ge=0)
    alert_threshold: Optional[int] = Field(
        default=None,
        ge=1,
        le=100,
        description="Usage percentage that triggers an alert for this category"
    )


class AllocationUsage(BaseModel):
    """Derived usage for one allocation. Produced by recalculation only."""

    model_config = ConfigDict(frozen=True)

    category_id: str
    category_name: str
    limit: Decimal
    alert_threshold: Optional[int] = None
    spent: Decimal
    remaining: Decimal = Field(..., ge=0)
    percentage_used: Decimal


class BudgetUsage(BaseModel):
    """Read-only projection of a budget's spending at a point in time."""

    model_config = ConfigDict(frozen=True)

    allocations: tuple[AllocationUsage, ...]
    total_spent: Decimal
    total_remaining: Decimal = Field(..., ge=0)
    calculated_at: datetime

    def for_category(self, category_name: str) -> Optional[AllocationUsage]:
        for usage in self.allocations:
            if usage.category_name == category_name:
                return usage
        return None


def _check_allocations(
    allocations: list[CategoryAllocation],
    total_amount: Decimal,
) -> None:
    names = [a.category_name for a in allocations]
    if len(set(names)) != len(names):
        raise ValueError("Each category can only be allocated once per budget")
    if sum((a.limit for a in allocations), Decimal("0")) > total_amount:
        raise ValueError("Total category allocations cannot exceed total budget amount")


# Edits to these invalidate the last computed usage
USAGE_FIELDS = frozenset({"allocations", "total_amount", "period_start", "period_end"})


class BudgetCreate(BaseModel):
    """Validated input for creating a budget."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    period: BudgetPeriod = BudgetPeriod.MONTHLY
    period_start: date
    period_end: date
    currency: str = Field(default="USD", max_length=3)
    total_amount: Decimal = Field(..., gt=0)
    allocations: list[CategoryAllocation] = Field(..., min_length=1)
    rollover: bool = False
    alerts_enabled: bool = True
    default_alert_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    tags: list[str] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_budget(self) -> 'BudgetCreate':
        if self.period_end <= self.period_start:
            raise ValueError("Period end must be after period start")
        _check_allocations(self.allocations, self.total_amount)
        return self


class BudgetUpdate(BaseModel):
    """
    Edits to a budget definition.

    Unset fields keep their stored value. The merged result is checked
    with the same allocation rules as BudgetCreate.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    period: Optional[BudgetPeriod] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    currency: Optional[str] = Field(default=None, max_length=3)
    total_amount: Optional[Decimal] = Field(default=None, gt=0)
    allocations: Optional[list[CategoryAllocation]] = Field(default=None, min_length=1)
    rollover: Optional[bool] = None
    alerts_enabled: Optional[bool] = None
    default_alert_threshold: Optional[int] = Field(default=None, ge=1, le=100)
    tags: Optional[list[str]] = None


class Budget(BaseModel):
    """A stored budget with its last computed usage."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    period: BudgetPeriod
    period_start: date
    period_end: date
    currency: str = "USD"
    total_amount: Decimal = Field(..., ge=0)
    allocations: list[CategoryAllocation]
    rollover: bool = False
    is_active: bool = True
    alerts_enabled: bool = True
    default_alert_threshold: int = Field(default=80, ge=1, le=100)
    tags: list[str] = Field(default_factory=list)

    usage: Optional[BudgetUsage] = None

    created_at: datetime
    updated_at: datetime
    revision: int = Field(default=0, ge=0)

    @property
    def total_spent(self) -> Decimal:
        return self.usage.total_spent if self.usage else Decimal("0")

    @property
    def total_remaining(self) -> Decimal:
        if self.usage:
            return self.usage.total_remaining
        return self.total_amount

    @property
    def last_calculated_at(self) -> Optional[datetime]:
        return self.usage.calculated_at if self.usage else None

    def is_current(self, today: date) -> bool:
        return self.period_start <= today <= self.period_end

    def apply_update(self, changes: BudgetUpdate) -> list[str]:
        """
        Merge `changes` in place and return the names of the changed fields.

        Stored usage is dropped when the amounts or the period change.

        Raises:
            ValueError: The merged budget breaks the period or allocation rules
        """
        updates = changes.model_dump(exclude_unset=True, exclude_none=True)
        period_start = updates.get("period_start", self.period_start)
        period_end = updates.get("period_end", self.period_end)
        if period_end <= period_start:
            raise ValueError("Period end must be after period start")
        allocations = changes.allocations if "allocations" in updates else self.allocations
        total_amount = updates.get("total_amount", self.total_amount)
        _check_allocations(allocations, total_amount)

        for field in updates:
            setattr(self, field, getattr(changes, field))
        if USAGE_FIELDS.intersection(updates):
            self.usage = None
        return sorted(updates)


class BudgetSummary(BaseModel):
    """Aggregate view over a user's budgets."""

    total_budgets: int
    active_budgets: int
    current_budgets: int
    budgets_over_threshold: int
    total_allocated: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    utilization_rate: Decimal
