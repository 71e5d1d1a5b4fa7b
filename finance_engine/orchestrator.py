"""
Main Orchestrator for the Finance Engine

This module ties together all the components and exposes the engine's
external interface:
1. Obligations: evaluate_due, process, pause, resume
2. Budgets: recalculate_budget, check_budget_alerts
3. Goals: update_goal_progress, recalculate_goal_auto
4. run_periodic_pass: everything above for a set of users at once

DESIGN DECISION: There is no scheduler loop in here. Whoever owns the
clock (a cron job, a worker, an API request) calls run_periodic_pass or
the individual operations and passes `now` in.

Users are evaluated concurrently; within one user the sub-engines run in
sequence, and one user's ledger failure never affects another user.
"""

import asyncio
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field

from finance_engine.audit import AuditLogger, configure_logging, create_correlation_id
from finance_engine.config import get_settings
from finance_engine.engine import (
    BudgetThresholdEvaluator,
    EntityLocks,
    GoalProgressTracker,
    ObligationScheduler,
)
from finance_engine.models.alert import Alert
from finance_engine.models.budget import Budget
from finance_engine.models.goal import Goal, GoalStatus
from finance_engine.models.obligation import (
    ObligationResult,
    ProcessResult,
    RecurringObligation,
)
from finance_engine.services.alerts import AlertSink, StructlogAlertSink
from finance_engine.services.ledger import (
    GoogleSheetsLedger,
    InMemoryLedger,
    LedgerAccessor,
    LedgerError,
)
from finance_engine.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    InMemoryBudgetRepository,
    InMemoryGoalRepository,
    InMemoryObligationRepository,
    StorageError,
)

logger = structlog.get_logger(__name__)


class UserPassReport(BaseModel):
    """What one periodic pass did for one user."""

    user_id: str
    obligations: list[ObligationResult] = Field(default_factory=list)
    upcoming_alerts: list[Alert] = Field(default_factory=list)
    budget_alerts: list[Alert] = Field(default_factory=list)
    goal_reminders: list[Alert] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class FinanceEngine:
    """
    Facade over the three sub-engines.

    `now` is optional on every call; omitted, it is the current UTC time.
    Tests and batch jobs should always pass it explicitly.
    """

    def __init__(
        self,
        scheduler: ObligationScheduler,
        budgets: BudgetThresholdEvaluator,
        goals: GoalProgressTracker,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self.scheduler = scheduler
        self.budgets = budgets
        self.goals = goals
        self._audit_logger = audit_logger

    # Obligations

    async def evaluate_due(
        self,
        now: Optional[datetime] = None,
        user_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[ObligationResult]:
        return await self.scheduler.evaluate_due(
            now or datetime.utcnow(),
            user_id=user_id,
            cancel_event=cancel_event,
        )

    async def process(self, obligation_id: UUID, now: Optional[datetime] = None) -> ProcessResult:
        return await self.scheduler.process(obligation_id, now or datetime.utcnow())

    async def pause(self, obligation_id: UUID, now: Optional[datetime] = None) -> RecurringObligation:
        return await self.scheduler.pause(obligation_id, now or datetime.utcnow())

    async def resume(self, obligation_id: UUID, now: Optional[datetime] = None) -> RecurringObligation:
        return await self.scheduler.resume(obligation_id, now or datetime.utcnow())

    # Budgets

    async def recalculate_budget(self, budget_id: UUID, now: Optional[datetime] = None) -> Budget:
        return await self.budgets.recalculate(budget_id, now or datetime.utcnow())

    async def check_budget_alerts(self, user_id: str, now: Optional[datetime] = None) -> list[Alert]:
        return await self.budgets.check_alerts(user_id, now or datetime.utcnow())

    # Goals

    async def update_goal_progress(
        self,
        goal_id: UUID,
        delta: Decimal,
        description: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Goal:
        return await self.goals.update_progress(
            goal_id,
            delta,
            now or datetime.utcnow(),
            description=description,
        )

    async def recalculate_goal_auto(self, goal_id: UUID, now: Optional[datetime] = None) -> Goal:
        return await self.goals.recalculate_auto(goal_id, now or datetime.utcnow())

    # Periodic pass

    async def _run_for_user(
        self,
        user_id: str,
        now: datetime,
        correlation_id: UUID,
        cancel_event: Optional[asyncio.Event],
    ) -> UserPassReport:
        report = UserPassReport(user_id=user_id)

        report.obligations = await self.scheduler.evaluate_due(
            now,
            user_id=user_id,
            cancel_event=cancel_event,
            correlation_id=correlation_id,
        )
        if cancel_event is not None and cancel_event.is_set():
            return report

        report.upcoming_alerts = await self.scheduler.notify_upcoming(user_id, now)

        try:
            report.budget_alerts = await self.budgets.check_alerts(user_id, now)
        except (LedgerError, StorageError) as e:
            report.errors.append(f"budget alerts: {e}")

        for goal in await self.goals.list_goals(user_id):
            if not goal.auto_track or goal.status not in (GoalStatus.NOT_STARTED, GoalStatus.IN_PROGRESS):
                continue
            try:
                await self.goals.recalculate_auto(goal.id, now)
            except (LedgerError, StorageError) as e:
                report.errors.append(f"goal {goal.id}: {e}")

        report.goal_reminders = await self.goals.check_reminders(user_id, now)
        return report

    async def run_periodic_pass(
        self,
        user_ids: list[str],
        now: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> list[UserPassReport]:
        """
        Evaluate obligations, budgets and goals for every user.

        Users run concurrently. An unexpected failure for one user is
        reported in that user's report and does not stop the others.
        """
        now = now or datetime.utcnow()
        correlation_id = create_correlation_id()

        outcomes = await asyncio.gather(
            *(self._run_for_user(uid, now, correlation_id, cancel_event) for uid in user_ids),
            return_exceptions=True,
        )

        reports = []
        for user_id, outcome in zip(user_ids, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("periodic_pass_failed", user_id=user_id, error=str(outcome))
                if self._audit_logger:
                    await self._audit_logger.log_error(
                        error_type=type(outcome).__name__,
                        error_message=str(outcome),
                        details={"user_id": user_id},
                        correlation_id=correlation_id,
                    )
                reports.append(UserPassReport(user_id=user_id, errors=[str(outcome)]))
            else:
                reports.append(outcome)

        logger.info(
            "periodic_pass_complete",
            correlation_id=str(correlation_id),
            users=len(user_ids),
            failed_users=sum(1 for r in reports if r.errors),
        )
        return reports


def create_engine_components(
    use_sheets: bool = False,
    alert_sink: Optional[AlertSink] = None,
    ledger: Optional[LedgerAccessor] = None,
) -> tuple[FinanceEngine, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all engine components.

    Args:
        use_sheets: Whether to use Google Sheets for the ledger and the
                    audit log. Set to False for testing without storage.
                    Obligations, budgets and goals are held in memory
                    either way; build FinanceEngine directly to plug in
                    persistent repositories.
        alert_sink: Where alerts go. Defaults to structured logging.
        ledger: Ledger accessor to use instead of the default one.

    Returns:
        (engine, sheets_client)
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)
    engine_settings = settings.engine

    sheets_client = None
    audit_logger = AuditLogger()  # Local-only logging

    if use_sheets:
        try:
            sheets_client = GoogleSheetsClient()
            ledger = ledger or GoogleSheetsLedger(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("sheets_not_configured", error=str(e))
            sheets_client = None

    ledger = ledger or InMemoryLedger()
    alert_sink = alert_sink or StructlogAlertSink()
    locks = EntityLocks()

    engine = FinanceEngine(
        scheduler=ObligationScheduler(
            repository=InMemoryObligationRepository(),
            ledger=ledger,
            alert_sink=alert_sink,
            audit_logger=audit_logger,
            settings=engine_settings,
            locks=locks,
        ),
        budgets=BudgetThresholdEvaluator(
            repository=InMemoryBudgetRepository(),
            ledger=ledger,
            alert_sink=alert_sink,
            audit_logger=audit_logger,
            settings=engine_settings,
            locks=locks,
        ),
        goals=GoalProgressTracker(
            repository=InMemoryGoalRepository(),
            ledger=ledger,
            alert_sink=alert_sink,
            audit_logger=audit_logger,
            settings=engine_settings,
            locks=locks,
        ),
        audit_logger=audit_logger,
    )
    return engine, sheets_client
