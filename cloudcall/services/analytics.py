"""
Fire-and-forget analytics hook for completed calls.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..core.protocols import Call

logger = logging.getLogger("cloudcall.services.analytics")

AnalyticsHook = Callable[[Call], Awaitable[None]]


async def log_call_metrics(call: Call) -> None:
    """Default hook: emit the completed call's metrics to the log."""
    logger.info(
        "Call %s completed: direction=%s duration=%s org=%s",
        call.external_id,
        call.direction.value,
        call.duration_seconds,
        call.org_id,
    )


class AnalyticsDispatcher:
    """Schedules hook invocations without making callers wait on them."""

    def __init__(self, hook: Optional[AnalyticsHook] = None):
        self._hook = hook or log_call_metrics
        self._tasks: set[asyncio.Task] = set()

    def fire(self, call: Call) -> None:
        task = asyncio.create_task(self._run(call))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, call: Call) -> None:
        try:
            await self._hook(call)
        except Exception as e:
            logger.error("Analytics hook failed for call %s: %s", call.external_id, e)

    async def drain(self) -> None:
        """Wait for in-flight hook invocations."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)
