"""
Tests for the Budget Threshold Evaluator

Spending always comes from the ledger; tests seed the in-memory ledger
and then recalculate.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from finance_engine.engine import BudgetThresholdEvaluator, RolloverDisabledError
from finance_engine.models.alert import AlertKind
from finance_engine.models.audit import AuditEventType
from finance_engine.models.budget import (
    BudgetCreate,
    BudgetPeriod,
    BudgetUpdate,
    CategoryAllocation,
)
from finance_engine.models.ledger import EntryKind, EntryStatus
from finance_engine.services import InMemoryBudgetRepository, InMemoryLedger, LedgerReadError


NOW = datetime(2024, 1, 20, 12, 0)


def january(**overrides) -> BudgetCreate:
    data = dict(
        name="January",
        period=BudgetPeriod.MONTHLY,
        period_start=date(2024, 1, 1),
        period_end=date(2024, 1, 31),
        total_amount=Decimal("2000"),
        allocations=[
            CategoryAllocation(category_id="groceries", category_name="Groceries", limit=Decimal("500")),
            CategoryAllocation(category_id="dining", category_name="Dining", limit=Decimal("300")),
        ],
    )
    data.update(overrides)
    return BudgetCreate(**data)


def spend(ledger, amount, category="Groceries", day=date(2024, 1, 10), **kwargs):
    ledger.add_entry("alice", EntryKind.EXPENSE, Decimal(amount), category, day, **kwargs)


class InterruptedLedger(InMemoryLedger):
    """Ledger that runs `during_read` once, in the middle of the first sum."""

    def __init__(self):
        super().__init__()
        self.during_read = None

    async def sum_matching(self, *args, **kwargs):
        if self.during_read is not None:
            during_read, self.during_read = self.during_read, None
            await during_read()
        return await super().sum_matching(*args, **kwargs)


class TestRecalculation:
    """Tests for BudgetThresholdEvaluator.recalculate."""

    def test_usage_from_ledger(self, budgets, ledger):
        """Test spent, remaining and percentage per category."""
        spend(ledger, "300")
        spend(ledger, "120", day=date(2024, 1, 18))

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            return await budgets.recalculate(budget.id, NOW)

        budget = asyncio.run(scenario())
        groceries = budget.usage.for_category("Groceries")
        assert groceries.spent == Decimal("420")
        assert groceries.remaining == Decimal("80")
        assert groceries.percentage_used == Decimal("84.00")
        assert budget.usage.for_category("Dining").spent == Decimal("0")
        assert budget.total_spent == Decimal("420")
        assert budget.total_remaining == Decimal("1580")
        assert budget.last_calculated_at == NOW

    def test_only_matching_entries_count(self, budgets, ledger):
        """Test cancelled, income, out-of-period and foreign entries are ignored."""
        spend(ledger, "100")
        spend(ledger, "50", status=EntryStatus.PENDING)
        spend(ledger, "999", status=EntryStatus.CANCELLED)
        spend(ledger, "999", day=date(2024, 2, 1))
        ledger.add_entry("alice", EntryKind.INCOME, Decimal("999"), "Groceries", date(2024, 1, 10))
        ledger.add_entry("bob", EntryKind.EXPENSE, Decimal("999"), "Groceries", date(2024, 1, 10))

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            return await budgets.recalculate(budget.id, NOW)

        assert asyncio.run(scenario()).usage.for_category("Groceries").spent == Decimal("150")

    def test_recalculation_is_idempotent(self, budgets, ledger):
        """Test recomputing twice gives the same figures."""
        spend(ledger, "420")

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            first = await budgets.recalculate(budget.id, NOW)
            second = await budgets.recalculate(budget.id, NOW)
            return first, second

        first, second = asyncio.run(scenario())
        assert first.usage == second.usage

    def test_overspent_category(self, budgets, ledger):
        """Test remaining is floored at zero and percentage exceeds 100."""
        spend(ledger, "350", category="Dining")

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            return await budgets.recalculate(budget.id, NOW)

        dining = asyncio.run(scenario()).usage.for_category("Dining")
        assert dining.remaining == Decimal("0")
        assert dining.percentage_used == Decimal("116.67")

    def test_zero_limit(self, budgets, ledger):
        """Test a zero limit reports 0% and never alerts."""
        spend(ledger, "50", category="Dining")
        allocations = [
            CategoryAllocation(category_id="dining", category_name="Dining", limit=Decimal("0")),
        ]

        async def scenario():
            budget = await budgets.create_budget("alice", january(allocations=allocations), NOW)
            refreshed = await budgets.recalculate(budget.id, NOW)
            return refreshed, budgets.categories_over_threshold(refreshed)

        budget, breached = asyncio.run(scenario())
        usage = budget.usage.for_category("Dining")
        assert usage.percentage_used == Decimal("0")
        assert usage.remaining == Decimal("0")
        assert breached == []

    def test_ledger_failure_keeps_previous_usage(self, budgets, ledger):
        """Test a failed read raises and leaves the stored usage alone."""
        spend(ledger, "420")

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.recalculate(budget.id, NOW)
            spend(ledger, "80")
            ledger.fail_reads("sheet unavailable")
            with pytest.raises(LedgerReadError):
                await budgets.recalculate(budget.id, datetime(2024, 1, 21))
            return await budgets.get_budget(budget.id)

        budget = asyncio.run(scenario())
        assert budget.total_spent == Decimal("420")
        assert budget.last_calculated_at == NOW

    def test_concurrent_deactivation_survives_recalculation(self):
        """Test a set_active committed mid-recalculation is not written back over."""
        repository = InMemoryBudgetRepository()
        ledger = InterruptedLedger()
        spend(ledger, "420")
        recalculating = BudgetThresholdEvaluator(repository, ledger)
        other_worker = BudgetThresholdEvaluator(repository, InMemoryLedger())

        async def scenario():
            budget = await recalculating.create_budget("alice", january(), NOW)

            async def deactivate():
                await other_worker.set_active(budget.id, False, NOW)

            ledger.during_read = deactivate
            await recalculating.recalculate(budget.id, NOW)
            return await repository.get(budget.id)

        stored = asyncio.run(scenario())
        assert stored.is_active is False
        assert stored.total_spent == Decimal("420")
        assert stored.revision == 2


class TestThresholdAlerts:
    """Tests for threshold checks and alert emission."""

    def test_category_alert(self, budgets, ledger, alert_sink):
        """Test 420 of a 500 limit crosses the default 80% threshold."""
        spend(ledger, "420")

        async def scenario():
            await budgets.create_budget("alice", january(), NOW)
            return await budgets.check_alerts("alice", NOW)

        alerts = asyncio.run(scenario())
        assert [a.kind for a in alerts] == [AlertKind.BUDGET_CATEGORY]
        assert alerts[0].message == 'Category "Groceries" in budget "January" has reached 84% of allocation'
        assert alerts[0].context["category"] == "Groceries"
        assert alert_sink.alerts == alerts

    def test_overall_and_category_alerts(self, budgets, ledger):
        """Test overall and per-category breaches are reported separately."""
        spend(ledger, "450")
        spend(ledger, "400", category="Dining")
        allocations = [
            CategoryAllocation(category_id="groceries", category_name="Groceries", limit=Decimal("500")),
            CategoryAllocation(category_id="dining", category_name="Dining", limit=Decimal("500")),
        ]

        async def scenario():
            await budgets.create_budget(
                "alice", january(total_amount=Decimal("1000"), allocations=allocations), NOW,
            )
            return await budgets.check_alerts("alice", NOW)

        alerts = asyncio.run(scenario())
        assert [a.kind for a in alerts] == [
            AlertKind.BUDGET_OVERALL,
            AlertKind.BUDGET_CATEGORY,
            AlertKind.BUDGET_CATEGORY,
        ]
        assert alerts[0].message == 'Budget "January" has reached 85% of total allocation'

    def test_category_threshold_overrides_default(self, budgets, ledger):
        """Test a per-category threshold replaces the budget default."""
        spend(ledger, "420")
        allocations = [
            CategoryAllocation(
                category_id="groceries",
                category_name="Groceries",
                limit=Decimal("500"),
                alert_threshold=90,
            ),
        ]

        async def scenario():
            await budgets.create_budget("alice", january(allocations=allocations), NOW)
            return await budgets.check_alerts("alice", NOW)

        assert asyncio.run(scenario()) == []

    def test_threshold_uses_rounded_percentage(self, budgets, ledger):
        """Test a category shown at 80.00% is flagged at an 80% threshold."""
        spend(ledger, "799.996")
        allocations = [
            CategoryAllocation(
                category_id="groceries",
                category_name="Groceries",
                limit=Decimal("1000"),
                alert_threshold=80,
            ),
        ]

        async def scenario():
            budget = await budgets.create_budget("alice", january(allocations=allocations), NOW)
            refreshed = await budgets.recalculate(budget.id, NOW)
            return refreshed, budgets.categories_over_threshold(refreshed)

        budget, breached = asyncio.run(scenario())
        assert budget.usage.for_category("Groceries").percentage_used == Decimal("80.00")
        assert [u.category_name for u in breached] == ["Groceries"]

    def test_budget_default_threshold(self, budgets, ledger):
        """Test the budget's own default threshold applies."""
        spend(ledger, "260")

        async def scenario():
            budget = await budgets.create_budget("alice", january(default_alert_threshold=50), NOW)
            alerts = await budgets.check_alerts("alice", NOW)
            return budget, alerts

        budget, alerts = asyncio.run(scenario())
        assert budget.default_alert_threshold == 50
        assert [a.context["category"] for a in alerts] == ["Groceries"]

    def test_alerts_disabled(self, budgets, ledger):
        """Test no alerts when the budget has alerts turned off."""
        spend(ledger, "500")

        async def scenario():
            await budgets.create_budget("alice", january(alerts_enabled=False), NOW)
            return await budgets.check_alerts("alice", NOW)

        assert asyncio.run(scenario()) == []

    def test_only_current_active_budgets(self, budgets, ledger):
        """Test past, future and inactive budgets are not checked."""
        spend(ledger, "500")

        async def scenario():
            await budgets.create_budget(
                "alice",
                january(name="February", period_start=date(2024, 2, 1), period_end=date(2024, 2, 29)),
                NOW,
            )
            paused = await budgets.create_budget("alice", january(name="Paused"), NOW)
            await budgets.set_active(paused.id, False, NOW)
            return await budgets.check_alerts("alice", NOW)

        assert asyncio.run(scenario()) == []

    def test_alerts_are_audited(self, budgets, ledger, audit_storage):
        """Test each alert leaves an audit event."""
        spend(ledger, "420")

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.check_alerts("alice", NOW)
            return await audit_storage.get_events_by_entity("budget", budget.id)

        events = asyncio.run(scenario())
        kinds = [e.event_type for e in events]
        assert kinds.count(AuditEventType.BUDGET_ALERT_RAISED) == 1
        assert AuditEventType.BUDGET_RECALCULATED in kinds


class TestBudgetEdits:
    """Tests for BudgetThresholdEvaluator.update_budget."""

    def test_rename_keeps_usage(self, budgets, ledger):
        """Test a cosmetic edit leaves the computed usage in place."""
        spend(ledger, "420")

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.recalculate(budget.id, NOW)
            return await budgets.update_budget(
                budget.id, BudgetUpdate(name="January groceries", tags=["food"]), NOW,
            )

        budget = asyncio.run(scenario())
        assert budget.name == "January groceries"
        assert budget.tags == ["food"]
        assert budget.total_spent == Decimal("420")

    def test_allocation_change_drops_usage(self, budgets, ledger):
        """Test new limits invalidate usage until the next recalculation."""
        spend(ledger, "420")
        allocations = [
            CategoryAllocation(category_id="groceries", category_name="Groceries", limit=Decimal("1000")),
        ]

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.recalculate(budget.id, NOW)
            edited = await budgets.update_budget(
                budget.id, BudgetUpdate(allocations=allocations), NOW,
            )
            return edited, await budgets.recalculate(budget.id, NOW)

        edited, refreshed = asyncio.run(scenario())
        assert edited.usage is None
        assert edited.total_remaining == Decimal("2000")
        groceries = refreshed.usage.for_category("Groceries")
        assert groceries.limit == Decimal("1000")
        assert groceries.percentage_used == Decimal("42.00")

    def test_allocations_above_total_rejected(self, budgets):
        """Test an edit whose limits exceed the total is refused and not stored."""
        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            with pytest.raises(ValueError, match="cannot exceed total budget amount"):
                await budgets.update_budget(budget.id, BudgetUpdate(total_amount=Decimal("700")), NOW)
            return await budgets.get_budget(budget.id)

        budget = asyncio.run(scenario())
        assert budget.total_amount == Decimal("2000")
        assert budget.revision == 0

    def test_period_end_before_start_rejected(self, budgets):
        """Test the edited period must still be a forward range."""
        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.update_budget(budget.id, BudgetUpdate(period_end=date(2023, 12, 31)), NOW)

        with pytest.raises(ValueError, match="Period end must be after period start"):
            asyncio.run(scenario())

    def test_duplicate_categories_rejected(self, budgets):
        """Test replacing allocations re-checks category uniqueness."""
        allocations = [
            CategoryAllocation(category_id="a", category_name="Groceries", limit=Decimal("100")),
            CategoryAllocation(category_id="b", category_name="Groceries", limit=Decimal("100")),
        ]

        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.update_budget(budget.id, BudgetUpdate(allocations=allocations), NOW)

        with pytest.raises(ValueError):
            asyncio.run(scenario())

    def test_edit_is_audited(self, budgets, audit_storage):
        """Test the audit event names the edited fields."""
        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.update_budget(
                budget.id, BudgetUpdate(default_alert_threshold=90, rollover=True), NOW,
            )
            return await audit_storage.get_events_by_entity("budget", budget.id)

        events = asyncio.run(scenario())
        updated = [e for e in events if e.event_type == AuditEventType.BUDGET_UPDATED]
        assert len(updated) == 1
        assert updated[0].details["fields"] == ["default_alert_threshold", "rollover"]


class TestCloneAndRollover:
    """Tests for cloning and rolling budgets into a new period."""

    def test_clone_with_adjustment(self, budgets, ledger):
        """Test amounts are scaled and quantized to cents."""
        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            return await budgets.clone_budget(
                budget.id,
                "February",
                date(2024, 2, 1),
                date(2024, 2, 29),
                NOW,
                adjust_percent=Decimal("10"),
            )

        clone = asyncio.run(scenario())
        assert clone.name == "February"
        assert clone.total_amount == Decimal("2200.00")
        assert [a.limit for a in clone.allocations] == [Decimal("550.00"), Decimal("330.00")]
        assert clone.usage is not None

    def test_clone_rejects_bad_period(self, budgets):
        """Test the clone's period must be valid."""
        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.clone_budget(budget.id, "Bad", date(2024, 2, 1), date(2024, 2, 1), NOW)

        with pytest.raises(ValueError, match="Period end must be after period start"):
            asyncio.run(scenario())

    def test_rollover_carries_remaining(self, budgets, ledger):
        """Test unspent amounts move into the next period."""
        spend(ledger, "420")

        async def scenario():
            budget = await budgets.create_budget("alice", january(rollover=True), NOW)
            successor = await budgets.rollover_budget(budget.id, NOW)
            return successor, await budgets.get_budget(budget.id)

        successor, previous = asyncio.run(scenario())
        assert successor.name == "January (Rollover)"
        assert successor.period_start == date(2024, 2, 1)
        assert successor.period_end == date(2024, 2, 29)
        assert successor.total_amount == Decimal("3580")
        assert [a.limit for a in successor.allocations] == [Decimal("580"), Decimal("600")]
        assert "rollover" in successor.tags
        assert successor.is_active is True
        assert previous.is_active is False

    def test_rollover_disabled(self, budgets):
        """Test rollover is refused when the budget does not allow it."""
        async def scenario():
            budget = await budgets.create_budget("alice", january(), NOW)
            await budgets.rollover_budget(budget.id, NOW)

        with pytest.raises(RolloverDisabledError):
            asyncio.run(scenario())

    def test_next_period_custom(self, budgets):
        """Test a custom period repeats its own length."""
        async def scenario():
            return await budgets.create_budget(
                "alice",
                january(period=BudgetPeriod.CUSTOM, period_end=date(2024, 1, 10)),
                NOW,
            )

        budget = asyncio.run(scenario())
        assert budgets.next_period(budget) == (date(2024, 1, 11), date(2024, 1, 20))


class TestSummary:
    """Tests for BudgetThresholdEvaluator.summary."""

    def test_summary(self, budgets, ledger):
        """Test counts over all budgets and totals over current ones."""
        spend(ledger, "420")

        async def scenario():
            await budgets.create_budget("alice", january(), NOW)
            await budgets.create_budget(
                "alice",
                january(name="February", period_start=date(2024, 2, 1), period_end=date(2024, 2, 29)),
                NOW,
            )
            return await budgets.summary("alice", NOW)

        summary = asyncio.run(scenario())
        assert summary.total_budgets == 2
        assert summary.active_budgets == 2
        assert summary.current_budgets == 1
        assert summary.total_allocated == Decimal("2000")
        assert summary.total_spent == Decimal("420")
        assert summary.total_remaining == Decimal("1580")
        assert summary.utilization_rate == Decimal("21.00")
        assert summary.budgets_over_threshold == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
