"""
Alert Models

Alerts are structured payloads handed to the Alert Sink. The engine never
formats emails or pushes notifications; it only says what happened and
gives enough numbers for the sink to deduplicate and render a message.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AlertKind(str, Enum):
    """Alert categories understood by sinks."""
    DUE_OBLIGATION = "due-obligation"
    UPCOMING_OBLIGATION = "upcoming-obligation"
    BUDGET_OVERALL = "budget-overall"
    BUDGET_CATEGORY = "budget-category"
    GOAL_REMINDER = "goal-reminder"


class Alert(BaseModel):
    """A single alert payload."""

    alert_id: UUID = Field(default_factory=uuid4)
    kind: AlertKind
    entity_id: UUID = Field(
        ...,
        description="Obligation, budget or goal the alert is about"
    )
    user_id: str
    message: str = Field(..., max_length=500)
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Numeric and naming context (spent, limit, category, ...)"
    )
    created_at: datetime

    def dedup_key(self) -> str:
        """Stable key a sink can use to suppress repeats."""
        category = self.context.get("category", "")
        return f"{self.kind.value}:{self.entity_id}:{category}"
