"""
Budget Threshold Evaluator

Recomputes budget usage from the ledger and raises threshold alerts.

DESIGN DECISION: Recalculation is always a full recompute from the ledger.
It never adds to a previous figure, so running it twice gives the same
answer. Usage writes still go through the revision check: a recalculation
that read a budget before someone edited it starts over rather than
writing the old definition back.

Structural edits (edit, activate/deactivate, rollover) use the same
compare-and-set and are retried against a fresh read when they lose.
"""

import asyncio
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional
from uuid import UUID

import structlog
from dateutil.relativedelta import relativedelta
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings, get_settings
from finance_engine.engine.errors import RolloverDisabledError
from finance_engine.engine.locks import EntityLocks
from finance_engine.models.alert import Alert, AlertKind
from finance_engine.models.audit import AuditEventType
from finance_engine.models.budget import (
    AllocationUsage,
    Budget,
    BudgetCreate,
    BudgetPeriod,
    BudgetSummary,
    BudgetUpdate,
    BudgetUsage,
    CategoryAllocation,
)
from finance_engine.models.ledger import DateRange, EntryKind, EntryStatus, LedgerFilter
from finance_engine.services.alerts import AlertSink
from finance_engine.services.ledger import LedgerAccessor, LedgerError
from finance_engine.services.storage import BudgetRepository, ConcurrencyError, NotFoundError

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100 rounded to 2 places, 0 when whole is not positive."""
    if whole <= 0:
        return Decimal("0")
    return (part / whole * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


class BudgetThresholdEvaluator:
    """Keeps budget usage in sync with the ledger and reports breaches."""

    def __init__(
        self,
        repository: BudgetRepository,
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

    async def _require(self, budget_id: UUID) -> Budget:
        budget = await self._repository.get(budget_id)
        if budget is None:
            raise NotFoundError(f"Budget not found: {budget_id}")
        return budget

    @retry(
        retry=retry_if_exception_type(ConcurrencyError),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _mutate(self, budget_id: UUID, change: Callable[[Budget], None]) -> Budget:
        """Read, apply `change`, compare-and-set. Lost races re-read and re-apply."""
        async with self._locks.hold(budget_id):
            budget = await self._require(budget_id)
            change(budget)
            return await self._repository.save(budget)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_budget(
        self,
        user_id: str,
        data: BudgetCreate,
        now: datetime,
    ) -> Budget:
        fields = data.model_dump()
        if fields["default_alert_threshold"] is None:
            fields["default_alert_threshold"] = self._settings.default_alert_threshold
        budget = await self._repository.add(Budget(
            user_id=user_id,
            **fields,
            created_at=now,
            updated_at=now,
        ))

        if self._audit_logger:
            await self._audit_logger.log_budget_event(
                event_type=AuditEventType.BUDGET_CREATED,
                budget_id=budget.id,
                user_id=user_id,
                description=f"Budget created: {budget.name}",
                timestamp=now,
                details={"total_amount": str(budget.total_amount)},
            )
        return budget

    async def get_budget(self, budget_id: UUID) -> Budget:
        return await self._require(budget_id)

    async def list_budgets(self, user_id: str) -> list[Budget]:
        return await self._repository.list_budgets(user_id=user_id)

    async def set_active(self, budget_id: UUID, active: bool, now: datetime) -> Budget:
        def change(budget: Budget) -> None:
            budget.is_active = active
            budget.updated_at = now

        return await self._mutate(budget_id, change)

    async def update_budget(
        self,
        budget_id: UUID,
        changes: BudgetUpdate,
        now: datetime,
    ) -> Budget:
        """
        Edit a budget's definition.

        Changing allocations, the total or the period drops the stored
        usage; the next recalculation rebuilds it.

        Raises:
            NotFoundError: Unknown budget
            ValueError: The edited budget would be inconsistent
        """
        updated: list[str] = []

        def change(budget: Budget) -> None:
            updated[:] = budget.apply_update(changes)
            budget.updated_at = now

        stored = await self._mutate(budget_id, change)

        if self._audit_logger and updated:
            await self._audit_logger.log_budget_event(
                event_type=AuditEventType.BUDGET_UPDATED,
                budget_id=budget_id,
                user_id=stored.user_id,
                description=f"Budget updated: {stored.name}",
                timestamp=now,
                details={"fields": updated},
            )
        return stored

    async def delete_budget(self, budget_id: UUID, now: datetime) -> bool:
        async with self._locks.hold(budget_id):
            budget = await self._require(budget_id)
            deleted = await self._repository.delete(budget_id)
        self._locks.discard(budget_id)

        if deleted and self._audit_logger:
            await self._audit_logger.log_budget_event(
                event_type=AuditEventType.BUDGET_DELETED,
                budget_id=budget_id,
                user_id=budget.user_id,
                description=f"Budget deleted: {budget.name}",
                timestamp=now,
            )
        return deleted

    # ------------------------------------------------------------------
    # Recalculation and thresholds
    # ------------------------------------------------------------------

    async def _category_spend(self, budget: Budget, allocation: CategoryAllocation) -> Decimal:
        return await self._ledger.sum_matching(
            budget.user_id,
            EntryKind.EXPENSE,
            LedgerFilter(
                categories=(allocation.category_name,),
                exclude_statuses=(EntryStatus.CANCELLED,),
            ),
            DateRange(start=budget.period_start, end=budget.period_end),
        )

    @retry(
        retry=retry_if_exception_type(ConcurrencyError),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    async def _recalculate_once(self, budget_id: UUID, now: datetime) -> Budget:
        """One read-sum-save round. A lost compare-and-set starts over from a fresh read."""
        budget = await self._require(budget_id)
        spends = await asyncio.gather(*(
            self._category_spend(budget, allocation)
            for allocation in budget.allocations
        ))

        usages = tuple(
            AllocationUsage(
                category_id=allocation.category_id,
                category_name=allocation.category_name,
                limit=allocation.limit,
                alert_threshold=allocation.alert_threshold,
                spent=spent,
                remaining=max(Decimal("0"), allocation.limit - spent),
                percentage_used=_percent(spent, allocation.limit),
            )
            for allocation, spent in zip(budget.allocations, spends)
        )
        total_spent = sum((u.spent for u in usages), Decimal("0"))
        budget.usage = BudgetUsage(
            allocations=usages,
            total_spent=total_spent,
            total_remaining=max(Decimal("0"), budget.total_amount - total_spent),
            calculated_at=now,
        )
        return await self._repository.save(budget)

    async def recalculate(self, budget_id: UUID, now: datetime) -> Budget:
        """
        Recompute spent/remaining/percentage for every allocation.

        Raises:
            NotFoundError: Unknown budget
            LedgerError: The ledger could not be read. The stored usage
                is left exactly as it was.
        """
        async with self._locks.hold(budget_id):
            try:
                stored = await self._recalculate_once(budget_id, now)
            except LedgerError as e:
                logger.error("budget_recalculation_failed", budget_id=str(budget_id), error=str(e))
                if self._audit_logger:
                    await self._audit_logger.log_ledger_error(
                        operation="sum_matching",
                        error_message=str(e),
                        entity_type="budget",
                        entity_id=budget_id,
                    )
                raise

        if self._audit_logger:
            await self._audit_logger.log_budget_recalculated(
                budget_id=budget_id,
                user_id=stored.user_id,
                total_spent=str(stored.total_spent),
                total_amount=str(stored.total_amount),
                timestamp=now,
            )
        return stored

    def is_over_threshold(self, budget: Budget) -> bool:
        """True when total spending reached the budget's alert threshold."""
        if not budget.alerts_enabled or budget.total_amount <= 0:
            return False
        usage = budget.total_spent / budget.total_amount * HUNDRED
        return usage >= budget.default_alert_threshold

    @staticmethod
    def _threshold_for(budget: Budget, usage: AllocationUsage) -> int:
        if usage.alert_threshold is not None:
            return usage.alert_threshold
        return budget.default_alert_threshold

    def categories_over_threshold(self, budget: Budget) -> list[AllocationUsage]:
        """Allocations at or above their own (or the budget's) threshold."""
        if not budget.alerts_enabled or budget.usage is None:
            return []

        breached = []
        for usage in budget.usage.allocations:
            if usage.limit <= 0:
                continue
            if usage.percentage_used >= self._threshold_for(budget, usage):
                breached.append(usage)
        return breached

    def _alerts_for(self, budget: Budget, now: datetime) -> list[Alert]:
        alerts = []
        if self.is_over_threshold(budget):
            pct = (budget.total_spent / budget.total_amount * HUNDRED).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
            alerts.append(Alert(
                kind=AlertKind.BUDGET_OVERALL,
                entity_id=budget.id,
                user_id=budget.user_id,
                message=f'Budget "{budget.name}" has reached {pct}% of total allocation',
                context={
                    "budget_name": budget.name,
                    "spent": str(budget.total_spent),
                    "limit": str(budget.total_amount),
                    "threshold": budget.default_alert_threshold,
                },
                created_at=now,
            ))

        for usage in self.categories_over_threshold(budget):
            pct = (usage.spent / usage.limit * HUNDRED).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
            alerts.append(Alert(
                kind=AlertKind.BUDGET_CATEGORY,
                entity_id=budget.id,
                user_id=budget.user_id,
                message=(
                    f'Category "{usage.category_name}" in budget "{budget.name}" '
                    f"has reached {pct}% of allocation"
                ),
                context={
                    "budget_name": budget.name,
                    "category": usage.category_name,
                    "spent": str(usage.spent),
                    "limit": str(usage.limit),
                    "threshold": self._threshold_for(budget, usage),
                },
                created_at=now,
            ))
        return alerts

    async def _current_budgets(self, user_id: str, now: datetime) -> list[Budget]:
        budgets = await self._repository.list_budgets(user_id=user_id, active_only=True)
        return [b for b in budgets if b.is_current(now.date())]

    async def check_alerts(self, user_id: str, now: datetime) -> list[Alert]:
        """
        Recalculate every current budget of the user and emit one alert
        per overall or per-category breach.

        No deduplication: calling this twice emits the same alerts twice.

        Raises:
            LedgerError: A recalculation could not read the ledger
        """
        alerts = []
        for budget in await self._current_budgets(user_id, now):
            refreshed = await self.recalculate(budget.id, now)
            for alert in self._alerts_for(refreshed, now):
                if self._alert_sink:
                    try:
                        await self._alert_sink.emit(alert)
                    except Exception as e:
                        logger.error(
                            "alert_emit_failed",
                            alert_kind=alert.kind.value,
                            budget_id=str(budget.id),
                            error=str(e),
                        )
                if self._audit_logger:
                    await self._audit_logger.log_budget_alert(
                        budget_id=refreshed.id,
                        user_id=user_id,
                        alert_kind=alert.kind.value,
                        message=alert.message,
                        timestamp=now,
                    )
                alerts.append(alert)
        return alerts

    async def summary(self, user_id: str, now: datetime) -> BudgetSummary:
        """Counts for all budgets, money totals for the current ones."""
        all_budgets = await self._repository.list_budgets(user_id=user_id)
        current = await self._current_budgets(user_id, now)

        total_allocated = Decimal("0")
        total_spent = Decimal("0")
        total_remaining = Decimal("0")
        over_threshold = 0
        for budget in current:
            refreshed = await self.recalculate(budget.id, now)
            total_allocated += refreshed.total_amount
            total_spent += refreshed.total_spent
            total_remaining += refreshed.total_remaining
            if self.is_over_threshold(refreshed):
                over_threshold += 1

        return BudgetSummary(
            total_budgets=len(all_budgets),
            active_budgets=sum(1 for b in all_budgets if b.is_active),
            current_budgets=len(current),
            budgets_over_threshold=over_threshold,
            total_allocated=total_allocated,
            total_spent=total_spent,
            total_remaining=total_remaining,
            utilization_rate=_percent(total_spent, total_allocated),
        )

    # ------------------------------------------------------------------
    # Clone and rollover
    # ------------------------------------------------------------------

    async def clone_budget(
        self,
        budget_id: UUID,
        name: str,
        period_start: date,
        period_end: date,
        now: datetime,
        adjust_percent: Optional[Decimal] = None,
    ) -> Budget:
        """
        Copy a budget into a new period, optionally scaling every amount
        by `adjust_percent` (10 = +10%, -5 = -5%).

        Raises:
            NotFoundError: Unknown budget
            ValueError: period_end is not after period_start
        """
        if period_end <= period_start:
            raise ValueError("Period end must be after period start")

        source = await self._require(budget_id)
        total = source.total_amount
        allocations = [a.model_copy() for a in source.allocations]
        if adjust_percent:
            multiplier = 1 + Decimal(str(adjust_percent)) / HUNDRED
            total = (total * multiplier).quantize(CENT, rounding=ROUND_HALF_UP)
            allocations = [
                a.model_copy(update={
                    "limit": (a.limit * multiplier).quantize(CENT, rounding=ROUND_HALF_UP),
                })
                for a in allocations
            ]

        clone = await self._repository.add(Budget(
            user_id=source.user_id,
            name=name,
            description=source.description,
            period=source.period,
            period_start=period_start,
            period_end=period_end,
            currency=source.currency,
            total_amount=total,
            allocations=allocations,
            rollover=source.rollover,
            alerts_enabled=source.alerts_enabled,
            default_alert_threshold=source.default_alert_threshold,
            tags=list(source.tags),
            created_at=now,
            updated_at=now,
        ))
        if self._audit_logger:
            await self._audit_logger.log_budget_event(
                event_type=AuditEventType.BUDGET_CREATED,
                budget_id=clone.id,
                user_id=clone.user_id,
                description=f"Budget cloned from {source.name}",
                timestamp=now,
                details={"source_budget_id": str(source.id)},
            )
        return await self.recalculate(clone.id, now)

    @staticmethod
    def next_period(budget: Budget) -> tuple[date, date]:
        """(start, end) of the period that follows `budget`'s period."""
        start = budget.period_end + timedelta(days=1)
        steps = {
            BudgetPeriod.MONTHLY: relativedelta(months=1),
            BudgetPeriod.QUARTERLY: relativedelta(months=3),
            BudgetPeriod.YEARLY: relativedelta(years=1),
        }
        if budget.period in steps:
            end = start + steps[budget.period] - timedelta(days=1)
        else:
            end = start + (budget.period_end - budget.period_start)
        return start, end

    async def rollover_budget(self, budget_id: UUID, now: datetime) -> Budget:
        """
        Start the next period, carrying each allocation's unspent amount
        into its new limit. The old budget is deactivated.

        Raises:
            NotFoundError: Unknown budget
            RolloverDisabledError: The budget does not allow rollover
            LedgerError: Current usage could not be computed
        """
        budget = await self._require(budget_id)
        if not budget.rollover:
            raise RolloverDisabledError(f"Budget {budget_id} does not allow rollover")

        current = await self.recalculate(budget_id, now)
        start, end = self.next_period(current)
        carried = current.total_remaining

        allocations = [
            CategoryAllocation(
                category_id=usage.category_id,
                category_name=usage.category_name,
                limit=usage.limit + usage.remaining,
                alert_threshold=usage.alert_threshold,
            )
            for usage in current.usage.allocations
        ]
        successor = await self._repository.add(Budget(
            user_id=current.user_id,
            name=f"{current.name} (Rollover)",
            description=f"Rolled over from {current.name} with {carried} remaining",
            period=current.period,
            period_start=start,
            period_end=end,
            currency=current.currency,
            total_amount=current.total_amount + carried,
            allocations=allocations,
            rollover=current.rollover,
            alerts_enabled=current.alerts_enabled,
            default_alert_threshold=current.default_alert_threshold,
            tags=[*current.tags, "rollover"],
            created_at=now,
            updated_at=now,
        ))
        await self.set_active(budget_id, False, now)

        logger.info(
            "budget_rolled_over",
            budget_id=str(budget_id),
            successor_id=str(successor.id),
            carried=str(carried),
        )
        if self._audit_logger:
            await self._audit_logger.log_budget_event(
                event_type=AuditEventType.BUDGET_ROLLED_OVER,
                budget_id=budget_id,
                user_id=current.user_id,
                description=f"Budget rolled over into {successor.name}",
                timestamp=now,
                details={"successor_id": str(successor.id), "carried": str(carried)},
            )
        return successor
