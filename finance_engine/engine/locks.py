"""
Per-entity locks.

Work on one obligation, budget or goal is serialized inside a process;
work on different entities runs freely. Cross-process safety comes from
the repositories' compare-and-set, not from these locks.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID


class EntityLocks:
    """Lazily created asyncio.Lock per entity id."""

    def __init__(self):
        self._locks: defaultdict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, entity_id: UUID) -> AsyncIterator[None]:
        lock = self._locks[entity_id]
        async with lock:
            yield

    def discard(self, entity_id: UUID) -> None:
        """Forget the lock of a deleted entity (no-op while it is held)."""
        lock = self._locks.get(entity_id)
        if lock is not None and not lock.locked():
            del self._locks[entity_id]
