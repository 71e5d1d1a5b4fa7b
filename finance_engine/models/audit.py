"""
Audit Models for the Finance Engine

Every state transition the engine makes is logged for audit purposes.
This provides:
1. Traceability of every automatically created ledger entry
2. Debugging information when ledger writes fail
3. A record of concurrency conflicts that were absorbed silently

DESIGN DECISION: Events are immutable once written; corrections are new events.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Grouped by the component that emits them.
    """
    # Obligation scheduler
    OBLIGATION_CREATED = "obligation_created"
    OBLIGATION_UPDATED = "obligation_updated"
    OBLIGATION_PROCESSED = "obligation_processed"
    OBLIGATION_PROCESS_FAILED = "obligation_process_failed"
    OBLIGATION_SKIPPED = "obligation_skipped"
    OBLIGATION_AWAITING_CONFIRMATION = "obligation_awaiting_confirmation"
    OBLIGATION_PAUSED = "obligation_paused"
    OBLIGATION_RESUMED = "obligation_resumed"
    OBLIGATION_DEACTIVATED = "obligation_deactivated"
    OBLIGATION_DELETED = "obligation_deleted"

    # Budget evaluator
    BUDGET_CREATED = "budget_created"
    BUDGET_UPDATED = "budget_updated"
    BUDGET_RECALCULATED = "budget_recalculated"
    BUDGET_ALERT_RAISED = "budget_alert_raised"
    BUDGET_ROLLED_OVER = "budget_rolled_over"
    BUDGET_DELETED = "budget_deleted"

    # Goal tracker
    GOAL_CREATED = "goal_created"
    GOAL_UPDATED = "goal_updated"
    GOAL_PROGRESS_UPDATED = "goal_progress_updated"
    GOAL_COMPLETED = "goal_completed"
    GOAL_MILESTONE_COMPLETED = "goal_milestone_completed"
    GOAL_STATUS_CHANGED = "goal_status_changed"
    GOAL_REMINDER_SENT = "goal_reminder_sent"

    # System events
    CONCURRENCY_CONFLICT = "concurrency_conflict"
    LEDGER_ERROR = "ledger_error"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    One row in the audit sheet, one line in the structured log.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred"
    )

    # Event classification
    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity ('obligation', 'budget', 'goal')"
    )
    entity_id: Optional[UUID] = None
    user_id: Optional[str] = None

    # Correlation - ties together all events of one evaluation pass
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)

    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "user_id": self.user_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         user_id, correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            self.user_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Factory methods for the events the engines emit.

    Usage:
        event = AuditEventBuilder.obligation_processed(obligation, entry_id, now)
        event = AuditEventBuilder.budget_alert(budget_id, user_id, kind, message)
    """

    @staticmethod
    def obligation_created(
        obligation_id: UUID,
        user_id: str,
        name: str,
        next_due_date: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OBLIGATION_CREATED,
            timestamp=timestamp,
            entity_type="obligation",
            entity_id=obligation_id,
            user_id=user_id,
            description=f"Recurring obligation created: {name}",
            details={"next_due_date": next_due_date},
        )

    @staticmethod
    def obligation_processed(
        obligation_id: UUID,
        user_id: str,
        entry_id: str,
        due_date: str,
        next_due_date: str,
        timestamp: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OBLIGATION_PROCESSED,
            timestamp=timestamp,
            entity_type="obligation",
            entity_id=obligation_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Ledger entry {entry_id} created for occurrence {due_date}",
            details={
                "entry_id": entry_id,
                "due_date": due_date,
                "next_due_date": next_due_date,
            },
        )

    @staticmethod
    def obligation_failed(
        obligation_id: UUID,
        user_id: str,
        due_date: str,
        error_message: str,
        timestamp: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OBLIGATION_PROCESS_FAILED,
            severity=AuditSeverity.WARNING,
            timestamp=timestamp,
            entity_type="obligation",
            entity_id=obligation_id,
            user_id=user_id,
            correlation_id=correlation_id,
            description=f"Processing failed for occurrence {due_date}; will retry",
            details={"due_date": due_date},
            error_message=error_message,
        )

    @staticmethod
    def obligation_state_changed(
        event_type: AuditEventType,
        obligation_id: UUID,
        user_id: str,
        description: str,
        timestamp: datetime,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            timestamp=timestamp,
            entity_type="obligation",
            entity_id=obligation_id,
            user_id=user_id,
            description=description,
            details=details or {},
        )

    @staticmethod
    def budget_recalculated(
        budget_id: UUID,
        user_id: str,
        total_spent: str,
        total_amount: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_RECALCULATED,
            severity=AuditSeverity.DEBUG,
            timestamp=timestamp,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=f"Budget usage recalculated: {total_spent} of {total_amount}",
            details={"total_spent": total_spent, "total_amount": total_amount},
        )

    @staticmethod
    def budget_alert(
        budget_id: UUID,
        user_id: str,
        alert_kind: str,
        message: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_ALERT_RAISED,
            severity=AuditSeverity.WARNING,
            timestamp=timestamp,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=message,
            details={"alert_kind": alert_kind},
        )

    @staticmethod
    def goal_progress(
        goal_id: UUID,
        user_id: str,
        delta: str,
        current_amount: str,
        source: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_PROGRESS_UPDATED,
            timestamp=timestamp,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            description=f"Goal progress changed by {delta} ({source})",
            details={
                "delta": delta,
                "current_amount": current_amount,
                "source": source,
            },
        )

    @staticmethod
    def goal_completed(
        goal_id: UUID,
        user_id: str,
        name: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_COMPLETED,
            timestamp=timestamp,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            description=f"Goal reached its target: {name}",
        )

    @staticmethod
    def milestone_completed(
        goal_id: UUID,
        user_id: str,
        milestone_name: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_MILESTONE_COMPLETED,
            timestamp=timestamp,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            description=f"Milestone reached: {milestone_name}",
            details={"milestone": milestone_name},
        )

    @staticmethod
    def goal_status_changed(
        goal_id: UUID,
        user_id: str,
        old_status: str,
        new_status: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GOAL_STATUS_CHANGED,
            timestamp=timestamp,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            description=f"Goal status changed from {old_status} to {new_status}",
            details={"old_status": old_status, "new_status": new_status},
        )

    @staticmethod
    def concurrency_conflict(
        entity_type: str,
        entity_id: UUID,
        operation: str,
        timestamp: datetime,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONCURRENCY_CONFLICT,
            severity=AuditSeverity.WARNING,
            timestamp=timestamp,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"Concurrent {operation} lost the race; change discarded",
            details={"operation": operation},
        )

    @staticmethod
    def ledger_error(
        operation: str,
        error_message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Ledger call failed: {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
