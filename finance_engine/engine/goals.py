"""
Goal Progress Tracker

Applies progress to goals, derives status and milestone completion from
the amounts, and flags goals that are falling behind.

DESIGN DECISION: There is exactly one code path that changes a goal's
amount: _apply_progress(). Manual updates call it with the user's delta;
auto-tracking computes an absolute total from the ledger and calls it with
(total - current). Status and milestone rules therefore live in one place.

DESIGN DECISION: Completion is one-directional. A completed goal whose
amount later drops stays completed, and a completed milestone stays
completed. Re-reaching the target after completion changes nothing.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings, get_settings
from finance_engine.engine.errors import AutoTrackingDisabledError, InvalidStateError
from finance_engine.engine.locks import EntityLocks
from finance_engine.models.alert import Alert, AlertKind
from finance_engine.models.audit import AuditEventType
from finance_engine.models.goal import (
    Goal,
    GoalCreate,
    GoalPriority,
    GoalStatistics,
    GoalStatus,
    GoalType,
    GoalUpdate,
    Milestone,
    ProgressEntry,
    ProgressSource,
    TrackingRules,
)
from finance_engine.models.ledger import DateRange, EntryKind, EntryStatus, LedgerFilter
from finance_engine.services.alerts import AlertSink
from finance_engine.services.ledger import LedgerAccessor, LedgerError
from finance_engine.services.storage import ConcurrencyError, GoalRepository, NotFoundError

logger = structlog.get_logger(__name__)

# Goal types whose progress is measured in expense entries
EXPENSE_TRACKED_TYPES = (GoalType.EXPENSE_REDUCTION, GoalType.DEBT_PAYOFF)

# Statuses that ignore progress-driven transitions
FROZEN_STATUSES = (GoalStatus.PAUSED, GoalStatus.FAILED)


class _ProgressOutcome:
    """What one application of progress changed, for audit after the save."""

    def __init__(self):
        self.delta = Decimal("0")
        self.old_status: Optional[GoalStatus] = None
        self.completed = False
        self.milestones: list[str] = []


def _apply_progress(
    goal: Goal,
    delta: Decimal,
    now: datetime,
    source: ProgressSource,
    description: Optional[str],
) -> _ProgressOutcome:
    outcome = _ProgressOutcome()
    outcome.delta = delta
    outcome.old_status = goal.status

    goal.current_amount = max(Decimal("0"), goal.current_amount + delta)
    goal.progress_history = (
        *goal.progress_history,
        ProgressEntry(recorded_at=now, amount=delta, source=source, description=description),
    )

    if goal.status not in FROZEN_STATUSES:
        if goal.status != GoalStatus.COMPLETED and goal.current_amount >= goal.target_amount:
            goal.status = GoalStatus.COMPLETED
            goal.completed_date = now
            outcome.completed = True
        elif goal.status == GoalStatus.NOT_STARTED and delta > 0:
            goal.status = GoalStatus.IN_PROGRESS

    for milestone in sorted(goal.milestones, key=lambda m: m.target_amount):
        if not milestone.completed and milestone.target_amount <= goal.current_amount:
            milestone.completed = True
            milestone.completed_date = now
            outcome.milestones.append(milestone.name)

    goal.updated_at = now
    return outcome


class GoalProgressTracker:
    """Tracks goal progress from manual updates and ledger aggregation."""

    def __init__(
        self,
        repository: GoalRepository,
        ledger: LedgerAccessor,
        alert_sink: Optional[AlertSink] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[EngineSettings] = None,
        locks: Optional[EntityLocks] = None,
    ):
        self._repository = repository
        self._ledger = ledger
        self._alert_sink = alert_sink
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().engine
        self._locks = locks or EntityLocks()

    async def _require(self, goal_id: UUID) -> Goal:
        goal = await self._repository.get(goal_id)
        if goal is None:
            raise NotFoundError(f"Goal not found: {goal_id}")
        return goal

    @retry(
        retry=retry_if_exception_type(ConcurrencyError),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _mutate(self, goal_id: UUID, change: Callable[[Goal], None]) -> Goal:
        """Read, apply `change`, compare-and-set. Lost races re-read and re-apply."""
        async with self._locks.hold(goal_id):
            goal = await self._require(goal_id)
            change(goal)
            return await self._repository.save(goal)

    async def _audit_progress(self, goal: Goal, outcome: _ProgressOutcome, source: ProgressSource, now: datetime) -> None:
        if not self._audit_logger:
            return
        await self._audit_logger.log_goal_progress(
            goal_id=goal.id,
            user_id=goal.user_id,
            delta=str(outcome.delta),
            current_amount=str(goal.current_amount),
            source=source.value,
            timestamp=now,
        )
        for name in outcome.milestones:
            await self._audit_logger.log_milestone_completed(
                goal_id=goal.id,
                user_id=goal.user_id,
                milestone_name=name,
                timestamp=now,
            )
        if outcome.completed:
            await self._audit_logger.log_goal_completed(
                goal_id=goal.id,
                user_id=goal.user_id,
                name=goal.name,
                timestamp=now,
            )
        elif outcome.old_status != goal.status:
            await self._audit_logger.log_goal_status_changed(
                goal_id=goal.id,
                user_id=goal.user_id,
                old_status=outcome.old_status.value,
                new_status=goal.status.value,
                timestamp=now,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_goal(self, user_id: str, data: GoalCreate, now: datetime) -> Goal:
        fields = data.model_dump()
        fields["start_date"] = data.start_date or now.date()
        goal = await self._repository.add(Goal(
            user_id=user_id,
            **fields,
            current_amount=data.initial_amount,
            status=GoalStatus.NOT_STARTED,
            created_at=now,
            updated_at=now,
        ))
        if self._audit_logger:
            await self._audit_logger.log_goal_created(
                goal_id=goal.id,
                user_id=user_id,
                name=goal.name,
                timestamp=now,
            )
        return goal

    async def get_goal(self, goal_id: UUID) -> Goal:
        return await self._require(goal_id)

    async def list_goals(self, user_id: str) -> list[Goal]:
        return await self._repository.list_goals(user_id=user_id)

    async def delete_goal(self, goal_id: UUID) -> bool:
        async with self._locks.hold(goal_id):
            deleted = await self._repository.delete(goal_id)
        self._locks.discard(goal_id)
        return deleted

    async def update_goal(self, goal_id: UUID, changes: GoalUpdate, now: datetime) -> Goal:
        """
        Edit a goal's definition.

        Lowering the target to or below the current amount completes an
        open goal. Raising it never reopens a completed one.

        Raises:
            NotFoundError: Unknown goal
            ValueError: The new deadline is before the start date
        """
        updated: list[str] = []
        previous: dict[str, GoalStatus] = {}

        def change(goal: Goal) -> None:
            previous["status"] = goal.status
            updated[:] = goal.apply_update(changes)
            if (
                goal.status in (GoalStatus.NOT_STARTED, GoalStatus.IN_PROGRESS)
                and goal.current_amount >= goal.target_amount
            ):
                goal.status = GoalStatus.COMPLETED
                goal.completed_date = now
            goal.updated_at = now

        stored = await self._mutate(goal_id, change)

        if self._audit_logger:
            if updated:
                await self._audit_logger.log_goal_event(
                    event_type=AuditEventType.GOAL_UPDATED,
                    goal_id=goal_id,
                    user_id=stored.user_id,
                    description=f"Goal updated: {stored.name}",
                    timestamp=now,
                    details={"fields": updated},
                )
            if previous["status"] != stored.status:
                await self._audit_logger.log_goal_completed(
                    goal_id=goal_id,
                    user_id=stored.user_id,
                    name=stored.name,
                    timestamp=now,
                )
        return stored

    async def _change_status(
        self,
        goal_id: UUID,
        now: datetime,
        change: Callable[[Goal], None],
    ) -> Goal:
        previous: dict[str, GoalStatus] = {}

        def apply(goal: Goal) -> None:
            previous["status"] = goal.status
            change(goal)
            goal.updated_at = now

        stored = await self._mutate(goal_id, apply)
        if self._audit_logger and previous["status"] != stored.status:
            await self._audit_logger.log_goal_status_changed(
                goal_id=goal_id,
                user_id=stored.user_id,
                old_status=previous["status"].value,
                new_status=stored.status.value,
                timestamp=now,
            )
        return stored

    async def pause_goal(self, goal_id: UUID, now: datetime) -> Goal:
        """
        Raises:
            InvalidStateError: The goal is completed or abandoned
        """
        def change(goal: Goal) -> None:
            if goal.status in (GoalStatus.COMPLETED, GoalStatus.FAILED):
                raise InvalidStateError(f"Cannot pause a {goal.status.value} goal")
            goal.status = GoalStatus.PAUSED
            goal.paused_date = now

        return await self._change_status(goal_id, now, change)

    async def resume_goal(self, goal_id: UUID, now: datetime) -> Goal:
        """
        Leave the paused state. The status is derived again from the
        amounts, so progress made while paused is honoured.

        Raises:
            InvalidStateError: The goal is not paused
        """
        def change(goal: Goal) -> None:
            if goal.status != GoalStatus.PAUSED:
                raise InvalidStateError(f"Goal {goal.id} is not paused")
            goal.paused_date = None
            if goal.current_amount >= goal.target_amount:
                goal.status = GoalStatus.COMPLETED
                goal.completed_date = goal.completed_date or now
            elif any(entry.amount > 0 for entry in goal.progress_history):
                goal.status = GoalStatus.IN_PROGRESS
            else:
                goal.status = GoalStatus.NOT_STARTED

        return await self._change_status(goal_id, now, change)

    async def abandon_goal(self, goal_id: UUID, now: datetime) -> Goal:
        """
        Mark a goal as failed. Terminal.

        Raises:
            InvalidStateError: The goal is already completed
        """
        def change(goal: Goal) -> None:
            if goal.status == GoalStatus.COMPLETED:
                raise InvalidStateError("Cannot abandon a completed goal")
            goal.status = GoalStatus.FAILED
            goal.failed_date = now

        return await self._change_status(goal_id, now, change)

    async def add_milestone(self, goal_id: UUID, milestone: Milestone, now: datetime) -> Goal:
        """Add a milestone; it completes at once if the amount already covers it."""
        def change(goal: Goal) -> None:
            if any(m.name == milestone.name for m in goal.milestones):
                raise ValueError(f"Milestone already exists: {milestone.name}")
            added = milestone.model_copy()
            if not added.completed and added.target_amount <= goal.current_amount:
                added.completed = True
                added.completed_date = now
            goal.milestones.append(added)
            goal.updated_at = now

        return await self._mutate(goal_id, change)

    async def remove_milestone(self, goal_id: UUID, name: str, now: datetime) -> Goal:
        def change(goal: Goal) -> None:
            remaining = [m for m in goal.milestones if m.name != name]
            if len(remaining) == len(goal.milestones):
                raise NotFoundError(f"Milestone not found: {name}")
            goal.milestones = remaining
            goal.updated_at = now

        return await self._mutate(goal_id, change)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def _progress(
        self,
        goal_id: UUID,
        now: datetime,
        source: ProgressSource,
        description: Optional[str],
        delta_for: Callable[[Goal], Decimal],
    ) -> Goal:
        outcome: dict[str, _ProgressOutcome] = {}

        def change(goal: Goal) -> None:
            outcome.pop("applied", None)
            if source == ProgressSource.AUTO:
                goal.last_calculated_at = now
            delta = delta_for(goal)
            if source == ProgressSource.AUTO and delta == 0:
                goal.updated_at = now
                return
            outcome["applied"] = _apply_progress(goal, delta, now, source, description)

        stored = await self._mutate(goal_id, change)
        if "applied" in outcome:
            await self._audit_progress(stored, outcome["applied"], source, now)
        return stored

    async def update_progress(
        self,
        goal_id: UUID,
        delta: Decimal,
        now: datetime,
        description: Optional[str] = None,
        source: ProgressSource = ProgressSource.MANUAL,
    ) -> Goal:
        """
        Add `delta` (positive or negative) to the goal's amount.

        The amount is floored at zero. Reaching the target completes the
        goal; milestones are completed in ascending target order.

        Raises:
            NotFoundError: Unknown goal
        """
        delta = Decimal(str(delta))
        return await self._progress(goal_id, now, source, description, lambda goal: delta)

    @staticmethod
    def tracking_query(goal: Goal) -> tuple[EntryKind, LedgerFilter, DateRange]:
        """Ledger selection for an auto-tracked goal."""
        rules = goal.tracking_rules or TrackingRules()
        kind = EntryKind.EXPENSE if goal.type in EXPENSE_TRACKED_TYPES else EntryKind.INCOME
        filters = LedgerFilter(
            categories=tuple(rules.categories),
            # Inclusive categories take precedence
            exclude_categories=() if rules.categories else tuple(rules.exclude_categories),
            sources=tuple(rules.sources) if kind == EntryKind.INCOME else (),
            statuses=(EntryStatus.COMPLETED,),
        )
        return kind, filters, DateRange(start=rules.start_date, end=rules.end_date)

    async def recalculate_auto(self, goal_id: UUID, now: datetime) -> Goal:
        """
        Set the goal's amount to initial_amount + the matching ledger total.

        Raises:
            NotFoundError: Unknown goal
            AutoTrackingDisabledError: The goal is not auto-tracked
            LedgerError: The ledger could not be read; the goal is unchanged
        """
        goal = await self._require(goal_id)
        if not goal.auto_track:
            raise AutoTrackingDisabledError(f"Goal {goal_id} is not auto-tracked")

        kind, filters, date_range = self.tracking_query(goal)
        try:
            tracked = await self._ledger.sum_matching(goal.user_id, kind, filters, date_range)
        except LedgerError as e:
            logger.error("goal_recalculation_failed", goal_id=str(goal_id), error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_ledger_error(
                    operation="sum_matching",
                    error_message=str(e),
                    entity_type="goal",
                    entity_id=goal_id,
                )
            raise

        def delta_for(fresh: Goal) -> Decimal:
            return fresh.initial_amount + tracked - fresh.current_amount

        return await self._progress(
            goal_id, now, ProgressSource.AUTO, "Automatic recalculation", delta_for,
        )

    # ------------------------------------------------------------------
    # Attention, reminders, statistics
    # ------------------------------------------------------------------

    def needs_attention(self, goal: Goal, now: datetime) -> bool:
        """
        Advisory flag; never changes the goal.

        True when the goal is overdue, when its progress trails the
        time-based expectation by more than the configured lag, or when a
        high/critical goal is under the progress floor close to its deadline.
        """
        if goal.status in (GoalStatus.COMPLETED, GoalStatus.PAUSED, GoalStatus.FAILED):
            return False

        today = now.date()
        if today > goal.deadline:
            return True

        progress = goal.progress_percentage
        total_days = (goal.deadline - goal.start_date).days
        if total_days > 0:
            elapsed = (today - goal.start_date).days
            expected = min(Decimal("100"), max(Decimal("0"), Decimal(elapsed) / Decimal(total_days) * 100))
            if expected - progress > Decimal(str(self._settings.attention_lag_points)):
                return True

        if (
            goal.priority in (GoalPriority.HIGH, GoalPriority.CRITICAL)
            and progress < Decimal(str(self._settings.attention_progress_floor))
            and goal.days_remaining(today) < self._settings.attention_deadline_days
        ):
            return True

        return False

    def _reminder_due(self, goal: Goal, now: datetime) -> bool:
        if not goal.reminder_enabled:
            return False
        if goal.last_reminder_sent is None:
            return True
        return (now - goal.last_reminder_sent).days >= goal.reminder_frequency.interval_days

    async def check_reminders(self, user_id: str, now: datetime) -> list[Alert]:
        """
        Emit goal-reminder alerts for goals that need attention and whose
        reminder interval has elapsed, then stamp last_reminder_sent.
        """
        alerts = []
        for goal in await self._repository.list_goals(user_id=user_id):
            if not self._reminder_due(goal, now) or not self.needs_attention(goal, now):
                continue

            alert = Alert(
                kind=AlertKind.GOAL_REMINDER,
                entity_id=goal.id,
                user_id=goal.user_id,
                message=(
                    f'Goal "{goal.name}" needs attention: '
                    f"{goal.progress_percentage}% reached, "
                    f"{goal.days_remaining(now.date())} day(s) left"
                ),
                context={
                    "goal_name": goal.name,
                    "current_amount": str(goal.current_amount),
                    "target_amount": str(goal.target_amount),
                    "progress_percentage": str(goal.progress_percentage),
                    "deadline": goal.deadline.isoformat(),
                    "priority": goal.priority.value,
                },
                created_at=now,
            )
            if self._alert_sink:
                try:
                    await self._alert_sink.emit(alert)
                except Exception as e:
                    logger.error("alert_emit_failed", goal_id=str(goal.id), error=str(e))
                    continue

            def stamp(fresh: Goal) -> None:
                fresh.last_reminder_sent = now

            await self._mutate(goal.id, stamp)
            if self._audit_logger:
                await self._audit_logger.log_goal_reminder(
                    goal_id=goal.id,
                    user_id=goal.user_id,
                    timestamp=now,
                )
            alerts.append(alert)
        return alerts

    async def statistics(self, user_id: str, now: datetime) -> GoalStatistics:
        """Counts by status/type/priority; money totals over open goals."""
        goals = await self._repository.list_goals(user_id=user_id)

        by_status = {status.value: 0 for status in GoalStatus}
        by_priority = {priority.value: 0 for priority in GoalPriority}
        by_type: dict[str, int] = {}
        total_target = Decimal("0")
        total_current = Decimal("0")
        needing_attention = 0

        for goal in goals:
            by_status[goal.status.value] += 1
            by_priority[goal.priority.value] += 1
            by_type[goal.type.value] = by_type.get(goal.type.value, 0) + 1
            if goal.status in (GoalStatus.NOT_STARTED, GoalStatus.IN_PROGRESS):
                total_target += goal.target_amount
                total_current += goal.current_amount
                if self.needs_attention(goal, now):
                    needing_attention += 1

        overall = Decimal("0")
        if total_target > 0:
            overall = (total_current / total_target * 100).quantize(Decimal("0.01"))

        return GoalStatistics(
            total=len(goals),
            by_status=by_status,
            by_type=by_type,
            by_priority=by_priority,
            total_target_amount=total_target,
            total_current_amount=total_current,
            overall_progress=overall,
            needing_attention=needing_attention,
        )
