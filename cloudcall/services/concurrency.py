"""
Per-entity serialization and provider event de-duplication.
"""

import asyncio
import logging
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from ..core.errors import DuplicateEvent

logger = logging.getLogger("cloudcall.services.concurrency")


class EntityLocks:
    """
    One asyncio.Lock per entity key.

    Locks are reference counted and dropped once nobody holds or waits on
    them, so the table only grows with concurrently touched entities.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class EventLedger:
    """
    Bounded memory of processed provider event ids.

    Check with ``claim`` before applying an event and ``remember`` it once
    applied, both under the entity lock, so a failed attempt can be retried
    by the provider's redelivery.
    """

    def __init__(self, capacity: int = 10000):
        self._capacity = capacity
        self._seen: OrderedDict[str, None] = OrderedDict()

    def claim(self, event_id: Optional[str]) -> None:
        """Raise DuplicateEvent if ``event_id`` was already applied."""
        if event_id and event_id in self._seen:
            raise DuplicateEvent(event_id)

    def remember(self, event_id: Optional[str]) -> None:
        if not event_id:
            return
        self._seen[event_id] = None
        self._seen.move_to_end(event_id)
        while len(self._seen) > self._capacity:
            self._seen.popitem(last=False)

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)
