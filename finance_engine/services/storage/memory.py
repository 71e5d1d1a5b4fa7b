"""
In-Memory Storage Implementation

Dictionary-backed repositories for obligations, budgets and goals, plus
an append-only in-memory audit store.

DESIGN DECISION: Every read returns a deep copy and every write stores a
deep copy. Callers can mutate what they got back freely; nothing becomes
visible to other callers until save() accepts it.
"""

import asyncio
from typing import Optional
from uuid import UUID

from pydantic import BaseModel

from finance_engine.models.audit import AuditEvent
from finance_engine.models.budget import Budget
from finance_engine.models.goal import Goal
from finance_engine.models.obligation import RecurringObligation
from finance_engine.services.storage.interface import (
    AuditStorageInterface,
    BudgetRepository,
    ConcurrencyError,
    DuplicateError,
    GoalRepository,
    NotFoundError,
    ObligationRepository,
)


class _InMemoryStore:
    """Shared dict + lock + revision check used by the repositories below."""

    def __init__(self, entity_name: str):
        self._entity_name = entity_name
        self._items: dict[UUID, BaseModel] = {}
        self._lock = asyncio.Lock()

    async def add(self, item):
        async with self._lock:
            if item.id in self._items:
                raise DuplicateError(f"{self._entity_name} already exists: {item.id}")
            stored = item.model_copy(deep=True)
            self._items[item.id] = stored
            return stored.model_copy(deep=True)

    async def get(self, item_id: UUID):
        async with self._lock:
            item = self._items.get(item_id)
            return item.model_copy(deep=True) if item is not None else None

    async def save(self, item):
        async with self._lock:
            current = self._items.get(item.id)
            if current is None:
                raise NotFoundError(f"{self._entity_name} not found: {item.id}")
            if current.revision != item.revision:
                raise ConcurrencyError(
                    f"{self._entity_name} {item.id} was modified concurrently "
                    f"(expected revision {item.revision}, found {current.revision})"
                )
            stored = item.model_copy(deep=True, update={"revision": current.revision + 1})
            self._items[item.id] = stored
            return stored.model_copy(deep=True)

    async def delete(self, item_id: UUID) -> bool:
        async with self._lock:
            return self._items.pop(item_id, None) is not None

    async def values(self) -> list:
        async with self._lock:
            return [item.model_copy(deep=True) for item in self._items.values()]


class InMemoryObligationRepository(ObligationRepository):

    def __init__(self):
        self._store = _InMemoryStore("Obligation")

    async def add(self, obligation: RecurringObligation) -> RecurringObligation:
        return await self._store.add(obligation)

    async def get(self, obligation_id: UUID) -> Optional[RecurringObligation]:
        return await self._store.get(obligation_id)

    async def save(self, obligation: RecurringObligation) -> RecurringObligation:
        return await self._store.save(obligation)

    async def delete(self, obligation_id: UUID) -> bool:
        return await self._store.delete(obligation_id)

    async def list_obligations(
        self,
        user_id: Optional[str] = None,
        active_only: bool = False,
    ) -> list[RecurringObligation]:
        obligations = [
            o for o in await self._store.values()
            if (user_id is None or o.user_id == user_id)
            and (not active_only or o.is_active)
        ]
        obligations.sort(key=lambda o: o.next_due_date)
        return obligations


class InMemoryBudgetRepository(BudgetRepository):

    def __init__(self):
        self._store = _InMemoryStore("Budget")

    async def add(self, budget: Budget) -> Budget:
        return await self._store.add(budget)

    async def get(self, budget_id: UUID) -> Optional[Budget]:
        return await self._store.get(budget_id)

    async def save(self, budget: Budget) -> Budget:
        return await self._store.save(budget)

    async def delete(self, budget_id: UUID) -> bool:
        return await self._store.delete(budget_id)

    async def list_budgets(
        self,
        user_id: Optional[str] = None,
        active_only: bool = False,
    ) -> list[Budget]:
        budgets = [
            b for b in await self._store.values()
            if (user_id is None or b.user_id == user_id)
            and (not active_only or b.is_active)
        ]
        # Newest period first
        budgets.sort(key=lambda b: b.period_start, reverse=True)
        return budgets


class InMemoryGoalRepository(GoalRepository):

    def __init__(self):
        self._store = _InMemoryStore("Goal")

    async def add(self, goal: Goal) -> Goal:
        return await self._store.add(goal)

    async def get(self, goal_id: UUID) -> Optional[Goal]:
        return await self._store.get(goal_id)

    async def save(self, goal: Goal) -> Goal:
        return await self._store.save(goal)

    async def delete(self, goal_id: UUID) -> bool:
        return await self._store.delete(goal_id)

    async def list_goals(self, user_id: Optional[str] = None) -> list[Goal]:
        goals = [
            g for g in await self._store.values()
            if user_id is None or g.user_id == user_id
        ]
        goals.sort(key=lambda g: g.deadline)
        return goals


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit store kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
