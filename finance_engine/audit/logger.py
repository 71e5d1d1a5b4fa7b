"""
Audit Logger

DESIGN DECISION: Every state transition the engine makes is logged.
This provides:
1. Traceability from a ledger entry back to the obligation that made it
2. Debugging capability when ledger writes fail and get retried
3. Visibility into concurrency conflicts that are otherwise silent

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't break processing if logging fails)
- Supports correlation IDs to trace all events of one evaluation pass
"""

import logging
import sys
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finance_engine.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from finance_engine.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(log_level: str = "INFO") -> None:
    """Route stdlib logging (and therefore structlog) to stdout at `log_level`."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage, when configured (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finance_engine.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # ------------------------------------------------------------------
    # Obligations
    # ------------------------------------------------------------------

    async def log_obligation_created(
        self,
        obligation_id: UUID,
        user_id: str,
        name: str,
        next_due_date: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEventBuilder.obligation_created(
            obligation_id=obligation_id,
            user_id=user_id,
            name=name,
            next_due_date=next_due_date,
            timestamp=timestamp,
        ))

    async def log_obligation_processed(
        self,
        obligation_id: UUID,
        user_id: str,
        entry_id: str,
        due_date: str,
        next_due_date: str,
        timestamp: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a successful materialization."""
        await self.log(AuditEventBuilder.obligation_processed(
            obligation_id=obligation_id,
            user_id=user_id,
            entry_id=entry_id,
            due_date=due_date,
            next_due_date=next_due_date,
            timestamp=timestamp,
            correlation_id=correlation_id,
        ))

    async def log_obligation_failed(
        self,
        obligation_id: UUID,
        user_id: str,
        due_date: str,
        error_message: str,
        timestamp: datetime,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a processing attempt whose ledger write failed."""
        await self.log(AuditEventBuilder.obligation_failed(
            obligation_id=obligation_id,
            user_id=user_id,
            due_date=due_date,
            error_message=error_message,
            timestamp=timestamp,
            correlation_id=correlation_id,
        ))

    async def log_obligation_state(
        self,
        event_type: AuditEventType,
        obligation_id: UUID,
        user_id: str,
        description: str,
        timestamp: datetime,
        details: Optional[dict] = None,
    ) -> None:
        """Log pause/resume/skip/deactivate/delete and similar changes."""
        await self.log(AuditEventBuilder.obligation_state_changed(
            event_type=event_type,
            obligation_id=obligation_id,
            user_id=user_id,
            description=description,
            timestamp=timestamp,
            details=details,
        ))

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def log_budget_recalculated(
        self,
        budget_id: UUID,
        user_id: str,
        total_spent: str,
        total_amount: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEventBuilder.budget_recalculated(
            budget_id=budget_id,
            user_id=user_id,
            total_spent=total_spent,
            total_amount=total_amount,
            timestamp=timestamp,
        ))

    async def log_budget_alert(
        self,
        budget_id: UUID,
        user_id: str,
        alert_kind: str,
        message: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEventBuilder.budget_alert(
            budget_id=budget_id,
            user_id=user_id,
            alert_kind=alert_kind,
            message=message,
            timestamp=timestamp,
        ))

    async def log_budget_event(
        self,
        event_type: AuditEventType,
        budget_id: UUID,
        user_id: str,
        description: str,
        timestamp: datetime,
        details: Optional[dict] = None,
    ) -> None:
        """Log budget lifecycle events (created, edited, rolled over, deleted)."""
        await self.log(AuditEvent(
            event_type=event_type,
            timestamp=timestamp,
            entity_type="budget",
            entity_id=budget_id,
            user_id=user_id,
            description=description,
            details=details or {},
        ))

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    async def log_goal_created(
        self,
        goal_id: UUID,
        user_id: str,
        name: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEvent(
            event_type=AuditEventType.GOAL_CREATED,
            timestamp=timestamp,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            description=f"Goal created: {name}",
        ))

    async def log_goal_event(
        self,
        event_type: AuditEventType,
        goal_id: UUID,
        user_id: str,
        description: str,
        timestamp: datetime,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEvent(
            event_type=event_type,
            timestamp=timestamp,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            description=description,
            details=details or {},
        ))

    async def log_goal_progress(
        self,
        goal_id: UUID,
        user_id: str,
        delta: str,
        current_amount: str,
        source: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEventBuilder.goal_progress(
            goal_id=goal_id,
            user_id=user_id,
            delta=delta,
            current_amount=current_amount,
            source=source,
            timestamp=timestamp,
        ))

    async def log_goal_completed(
        self,
        goal_id: UUID,
        user_id: str,
        name: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEventBuilder.goal_completed(
            goal_id=goal_id,
            user_id=user_id,
            name=name,
            timestamp=timestamp,
        ))

    async def log_milestone_completed(
        self,
        goal_id: UUID,
        user_id: str,
        milestone_name: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEventBuilder.milestone_completed(
            goal_id=goal_id,
            user_id=user_id,
            milestone_name=milestone_name,
            timestamp=timestamp,
        ))

    async def log_goal_status_changed(
        self,
        goal_id: UUID,
        user_id: str,
        old_status: str,
        new_status: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEventBuilder.goal_status_changed(
            goal_id=goal_id,
            user_id=user_id,
            old_status=old_status,
            new_status=new_status,
            timestamp=timestamp,
        ))

    async def log_goal_reminder(
        self,
        goal_id: UUID,
        user_id: str,
        timestamp: datetime,
    ) -> None:
        await self.log(AuditEvent(
            event_type=AuditEventType.GOAL_REMINDER_SENT,
            timestamp=timestamp,
            entity_type="goal",
            entity_id=goal_id,
            user_id=user_id,
            description="Goal reminder sent",
        ))

    # ------------------------------------------------------------------
    # System
    # ------------------------------------------------------------------

    async def log_concurrency_conflict(
        self,
        entity_type: str,
        entity_id: UUID,
        operation: str,
        timestamp: datetime,
    ) -> None:
        """Log a lost compare-and-set race."""
        await self.log(AuditEventBuilder.concurrency_conflict(
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            timestamp=timestamp,
        ))

    async def log_ledger_error(
        self,
        operation: str,
        error_message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_error(
            operation=operation,
            error_message=error_message,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of an evaluation pass and pass it through
    every obligation processed in that pass.
    """
    return uuid4()
