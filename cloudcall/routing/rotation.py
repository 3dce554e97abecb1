"""
Round-robin ticket sources for SMS assignment.

A ticket is drawn before resolution and the resolver maps it onto the
team's active members sorted by id, so the resolver stays synchronous
while the counter that makes rotation fair can live in shared storage.
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from typing import Optional

from ..core.errors import InvalidConfiguration

logger = logging.getLogger("cloudcall.routing.rotation")


class RoundRobin(ABC):
    """Produces the ticket used to pick the next team member."""

    @abstractmethod
    async def next_ticket(self, team_id: str) -> int:
        pass


class RotationPointer(RoundRobin):
    """
    Per-team counter, incremented atomically.

    Two concurrent inbound messages for the same team always get
    different tickets, so members are taken strictly in turn.
    """

    def __init__(self):
        self._counters: dict[str, int] = {}
        self._lock = asyncio.Lock()

    async def next_ticket(self, team_id: str) -> int:
        async with self._lock:
            ticket = self._counters.get(team_id, 0)
            self._counters[team_id] = ticket + 1
        return ticket

    def position(self, team_id: str) -> int:
        return self._counters.get(team_id, 0)


class RandomDraw(RoundRobin):
    """Uniform random pick, fair only in expectation."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()

    async def next_ticket(self, team_id: str) -> int:
        return self._rng.randrange(2**31)


def make_round_robin(strategy: str) -> RoundRobin:
    """Build the ticket source named by settings."""
    if strategy == "rotation":
        return RotationPointer()
    if strategy == "random":
        return RandomDraw()
    raise InvalidConfiguration(f"Unknown round-robin strategy: {strategy}")
