"""
Shared fixtures.

Every engine is wired to in-memory storage, an in-memory ledger and a
collecting alert sink. Async code is driven with asyncio.run() from plain
sync tests, one event loop per test.
"""

import pytest

from finance_engine.audit import AuditLogger
from finance_engine.config import EngineSettings
from finance_engine.engine import (
    BudgetThresholdEvaluator,
    EntityLocks,
    GoalProgressTracker,
    ObligationScheduler,
)
from finance_engine.services import (
    CollectingAlertSink,
    InMemoryAuditStorage,
    InMemoryBudgetRepository,
    InMemoryGoalRepository,
    InMemoryLedger,
    InMemoryObligationRepository,
)


@pytest.fixture
def engine_settings():
    return EngineSettings()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def alert_sink():
    return CollectingAlertSink()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def locks():
    return EntityLocks()


@pytest.fixture
def scheduler(ledger, alert_sink, audit_logger, engine_settings, locks):
    return ObligationScheduler(
        repository=InMemoryObligationRepository(),
        ledger=ledger,
        alert_sink=alert_sink,
        audit_logger=audit_logger,
        settings=engine_settings,
        locks=locks,
    )


@pytest.fixture
def budgets(ledger, alert_sink, audit_logger, engine_settings, locks):
    return BudgetThresholdEvaluator(
        repository=InMemoryBudgetRepository(),
        ledger=ledger,
        alert_sink=alert_sink,
        audit_logger=audit_logger,
        settings=engine_settings,
        locks=locks,
    )


@pytest.fixture
def goals(ledger, alert_sink, audit_logger, engine_settings, locks):
    return GoalProgressTracker(
        repository=InMemoryGoalRepository(),
        ledger=ledger,
        alert_sink=alert_sink,
        audit_logger=audit_logger,
        settings=engine_settings,
        locks=locks,
    )
