"""
Integration tests for the FinanceEngine facade and the periodic pass.

Components come from create_engine_components() without Sheets, with the
ledger and alert sink injected so the tests can seed and inspect them.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from finance_engine.models.alert import AlertKind
from finance_engine.models.budget import BudgetCreate, CategoryAllocation
from finance_engine.models.goal import GoalCreate, GoalStatus, GoalType
from finance_engine.models.ledger import EntryKind
from finance_engine.models.obligation import Frequency, ObligationCreate, ProcessStatus
from finance_engine.orchestrator import create_engine_components
from finance_engine.services import CollectingAlertSink, InMemoryLedger


SETUP = datetime(2024, 1, 1, 8, 0)
NOW = datetime(2024, 1, 20, 9, 0)


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def alert_sink():
    return CollectingAlertSink()


@pytest.fixture
def engine(ledger, alert_sink):
    engine, sheets_client = create_engine_components(alert_sink=alert_sink, ledger=ledger)
    assert sheets_client is None
    return engine


def obligation(**overrides) -> ObligationCreate:
    data = dict(
        name="Rent",
        kind=EntryKind.EXPENSE,
        amount=Decimal("1200.00"),
        category="housing",
        frequency=Frequency.MONTHLY,
        start_date=date(2024, 1, 15),
        auto_process=True,
    )
    data.update(overrides)
    return ObligationCreate(**data)


def january_budget() -> BudgetCreate:
    return BudgetCreate(
        name="January",
        period_start=date(2024, 1, 1),
        period_end=date(2024, 1, 31),
        total_amount=Decimal("2000"),
        allocations=[
            CategoryAllocation(category_id="groceries", category_name="Groceries", limit=Decimal("500")),
        ],
    )


def savings_goal() -> GoalCreate:
    return GoalCreate(
        name="Emergency fund",
        type=GoalType.SAVINGS,
        target_amount=Decimal("1000"),
        start_date=date(2024, 1, 1),
        deadline=date(2024, 12, 31),
        auto_track=True,
    )


async def seed(engine, ledger):
    """Alice: auto rent, a budget and an auto-tracked goal. Bob: a manual bill."""
    await engine.scheduler.create_obligation("alice", obligation(), SETUP)
    await engine.scheduler.create_obligation("bob", obligation(name="Phone", auto_process=False), SETUP)
    await engine.budgets.create_budget("alice", january_budget(), SETUP)
    goal = await engine.goals.create_goal("alice", savings_goal(), SETUP)
    ledger.add_entry("alice", EntryKind.EXPENSE, Decimal("420"), "Groceries", date(2024, 1, 10))
    ledger.add_entry("alice", EntryKind.INCOME, Decimal("300"), "Salary", date(2024, 1, 5))
    return goal


class TestPeriodicPass:
    """Tests for FinanceEngine.run_periodic_pass."""

    def test_full_pass(self, engine, ledger, alert_sink):
        """Test obligations, budgets and goals are all evaluated per user."""
        async def scenario():
            goal = await seed(engine, ledger)
            reports = await engine.run_periodic_pass(["alice", "bob"], now=NOW)
            return reports, await engine.goals.get_goal(goal.id)

        (alice, bob), goal = asyncio.run(scenario())

        assert [r.status for r in alice.obligations] == [ProcessStatus.PROCESSED]
        assert [a.kind for a in alice.budget_alerts] == [AlertKind.BUDGET_CATEGORY]
        assert alice.goal_reminders == []
        assert alice.errors == []

        assert [r.status for r in bob.obligations] == [ProcessStatus.AWAITING_CONFIRMATION]
        assert bob.budget_alerts == []
        assert bob.errors == []

        assert goal.current_amount == Decimal("300")
        assert goal.status == GoalStatus.IN_PROGRESS
        assert len(ledger.entries) == 3
        assert len(alert_sink.of_kind(AlertKind.DUE_OBLIGATION)) == 1

    def test_ledger_outage_is_reported_per_user(self, engine, ledger):
        """Test read failures land in the report and writes still happen."""
        async def scenario():
            await seed(engine, ledger)
            ledger.fail_reads("ledger offline")
            return await engine.run_periodic_pass(["alice", "bob"], now=NOW)

        alice, bob = asyncio.run(scenario())
        assert [r.status for r in alice.obligations] == [ProcessStatus.PROCESSED]
        assert len(alice.errors) == 2
        assert alice.errors[0].startswith("budget alerts:")
        assert bob.errors == []

    def test_unexpected_failure_isolated(self, engine, ledger):
        """Test one user's crash does not affect the others."""
        real_notify = engine.scheduler.notify_upcoming

        async def flaky(user_id, now):
            if user_id == "bob":
                raise RuntimeError("boom")
            return await real_notify(user_id, now)

        engine.scheduler.notify_upcoming = flaky

        async def scenario():
            await seed(engine, ledger)
            return await engine.run_periodic_pass(["alice", "bob"], now=NOW)

        alice, bob = asyncio.run(scenario())
        assert alice.errors == []
        assert len(alice.budget_alerts) == 1
        assert bob.errors == ["boom"]
        assert bob.obligations == []

    def test_cancelled_pass(self, engine, ledger):
        """Test a cancelled pass stops after the obligations step."""
        async def scenario():
            await seed(engine, ledger)
            cancel = asyncio.Event()
            cancel.set()
            return await engine.run_periodic_pass(["alice"], now=NOW, cancel_event=cancel)

        (alice,) = asyncio.run(scenario())
        assert [r.status for r in alice.obligations] == [ProcessStatus.CANCELLED]
        assert alice.budget_alerts == []
        assert len(ledger.entries) == 2


class TestFacade:
    """Tests for the single-entity operations on FinanceEngine."""

    def test_obligation_operations(self, engine, ledger):
        """Test process, pause and resume through the facade."""
        async def scenario():
            created = await engine.scheduler.create_obligation("alice", obligation(), SETUP)
            processed = await engine.process(created.id, NOW)
            paused = await engine.pause(created.id, NOW)
            resumed = await engine.resume(created.id, NOW)
            due = await engine.evaluate_due(NOW)
            return processed, paused, resumed, due

        processed, paused, resumed, due = asyncio.run(scenario())
        assert processed.status == ProcessStatus.PROCESSED
        assert paused.is_paused is True
        assert resumed.is_paused is False
        assert due == []
        assert len(ledger.entries) == 1

    def test_budget_and_goal_operations(self, engine, ledger):
        """Test budget recalculation and goal progress through the facade."""
        async def scenario():
            goal = await seed(engine, ledger)
            budgets = await engine.budgets.list_budgets("alice")
            budget = await engine.recalculate_budget(budgets[0].id, NOW)
            alerts = await engine.check_budget_alerts("alice", NOW)
            tracked = await engine.recalculate_goal_auto(goal.id, NOW)
            manual = await engine.update_goal_progress(goal.id, Decimal("50"), "Birthday money", NOW)
            return budget, alerts, tracked, manual

        budget, alerts, tracked, manual = asyncio.run(scenario())
        assert budget.total_spent == Decimal("420")
        assert len(alerts) == 1
        assert tracked.current_amount == Decimal("300")
        assert manual.current_amount == Decimal("350")
        assert manual.progress_history[-1].description == "Birthday money"


class TestComponentFactory:
    """Tests for create_engine_components."""

    def test_sheets_unconfigured_falls_back(self, monkeypatch):
        """Test missing Sheets settings fall back to in-memory storage."""
        monkeypatch.delenv("GOOGLE_SHEETS_CREDENTIALS_PATH", raising=False)
        monkeypatch.delenv("GOOGLE_SHEETS_SPREADSHEET_ID", raising=False)

        engine, sheets_client = create_engine_components(use_sheets=True)

        assert sheets_client is None

        async def scenario():
            created = await engine.scheduler.create_obligation("alice", obligation(), SETUP)
            return await engine.process(created.id, NOW)

        assert asyncio.run(scenario()).status == ProcessStatus.PROCESSED


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
