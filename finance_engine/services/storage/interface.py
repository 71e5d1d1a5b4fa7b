"""
Abstract Storage Interface

DESIGN DECISION: The engines only see these abstract repositories. The host
application supplies a concrete store; tests use the in-memory ones.

Every save is a compare-and-set on the entity's `revision`. The caller
passes the entity as it last read it; the repository rejects the write
with ConcurrencyError if someone else has written since, and otherwise
stores it with revision + 1. At most one processing of a due occurrence can
succeed, even across processes.
"""

from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from finance_engine.models.audit import AuditEvent
from finance_engine.models.budget import Budget
from finance_engine.models.goal import Goal
from finance_engine.models.obligation import RecurringObligation


class ObligationRepository(ABC):
    """Storage for recurring obligations."""

    @abstractmethod
    async def add(self, obligation: RecurringObligation) -> RecurringObligation:
        """
        Insert a new obligation.

        Raises:
            DuplicateError: If the id is already stored
        """
        pass

    @abstractmethod
    async def get(self, obligation_id: UUID) -> Optional[RecurringObligation]:
        """
        Retrieve an obligation by its ID.

        Returns:
            A private copy of the obligation, or None if not found
        """
        pass

    @abstractmethod
    async def save(self, obligation: RecurringObligation) -> RecurringObligation:
        """
        Write an obligation back, compare-and-set on revision.

        Args:
            obligation: The obligation as modified by the caller, still
                carrying the revision it was read with

        Returns:
            The stored obligation with its new revision

        Raises:
            NotFoundError: If the obligation doesn't exist
            ConcurrencyError: If the stored revision has moved on
        """
        pass

    @abstractmethod
    async def delete(self, obligation_id: UUID) -> bool:
        """Delete an obligation. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list_obligations(
        self,
        user_id: Optional[str] = None,
        active_only: bool = False,
    ) -> list[RecurringObligation]:
        """
        List obligations, optionally for one user.

        Returns:
            Obligations ordered by next_due_date
        """
        pass


class BudgetRepository(ABC):
    """Storage for budgets."""

    @abstractmethod
    async def add(self, budget: Budget) -> Budget:
        pass

    @abstractmethod
    async def get(self, budget_id: UUID) -> Optional[Budget]:
        pass

    @abstractmethod
    async def save(self, budget: Budget) -> Budget:
        """
        Write a budget back if nobody else wrote it since it was read.

        Raises:
            NotFoundError: If the budget doesn't exist
            ConcurrencyError: If the stored revision has moved on
        """
        pass

    @abstractmethod
    async def delete(self, budget_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_budgets(
        self,
        user_id: Optional[str] = None,
        active_only: bool = False,
    ) -> list[Budget]:
        pass


class GoalRepository(ABC):
    """Storage for goals."""

    @abstractmethod
    async def add(self, goal: Goal) -> Goal:
        pass

    @abstractmethod
    async def get(self, goal_id: UUID) -> Optional[Goal]:
        pass

    @abstractmethod
    async def save(self, goal: Goal) -> Goal:
        """
        Write a goal back, compare-and-set on revision.

        Raises:
            NotFoundError: If the goal doesn't exist
            ConcurrencyError: If the stored revision has moved on
        """
        pass

    @abstractmethod
    async def delete(self, goal_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_goals(self, user_id: Optional[str] = None) -> list[Goal]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Append and read only; there is no update or delete.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully

        Raises:
            StorageError: If the event could not be written
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one evaluation pass).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'obligation', 'goal')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConcurrencyError(StorageError):
    """A compare-and-set write lost to a concurrent writer."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
