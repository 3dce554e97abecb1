"""
Main routing service.

Wires the gateway, repositories, directory and lifecycle managers
together and owns their lifecycle (connect, periodic reconciliation,
shutdown).
"""

import asyncio
import logging
from typing import Optional

from .core.config import CommsConfig, comms_settings
from .core.protocols import Gateway
from .directory import Directory, InMemoryDirectory
from .providers import get_provider
from .routing.hours import BusinessHoursEvaluator
from .routing.resolver import RoutingResolver
from .routing.rotation import RoundRobin, make_round_robin
from .services.analytics import AnalyticsDispatcher, AnalyticsHook
from .services.calls import CallLifecycleManager
from .services.concurrency import EntityLocks, EventLedger
from .services.conversations import ConversationView
from .services.messages import MessageDispatchManager
from .services.reconciliation import ReconciliationQueue
from .storage.base import AuditTrail, CallRepository, MessageRepository, PhoneNumberRepository
from .storage.memory import (
    InMemoryAuditTrail,
    InMemoryCallRepository,
    InMemoryMessageRepository,
    InMemoryPhoneNumberRepository,
)

logger = logging.getLogger("cloudcall.service")


class CommsService:
    """
    Routing service composition root.

    Every collaborator can be injected; anything left out gets an
    in-memory default, which is what tests and single-node runs use.
    """

    def __init__(
        self,
        settings: Optional[CommsConfig] = None,
        gateway: Optional[Gateway] = None,
        numbers: Optional[PhoneNumberRepository] = None,
        calls: Optional[CallRepository] = None,
        messages: Optional[MessageRepository] = None,
        directory: Optional[Directory] = None,
        audit: Optional[AuditTrail] = None,
        round_robin: Optional[RoundRobin] = None,
        analytics_hook: Optional[AnalyticsHook] = None,
    ):
        self.settings = settings or comms_settings
        self.gateway = gateway or get_provider(settings=self.settings)
        if numbers is None and self.settings.numbers_file:
            numbers = InMemoryPhoneNumberRepository.from_file(self.settings.numbers_file)
        self.numbers = numbers or InMemoryPhoneNumberRepository()
        self.calls_store = calls or InMemoryCallRepository()
        self.messages_store = messages or InMemoryMessageRepository()
        self.directory = directory or InMemoryDirectory()
        self.audit = audit or InMemoryAuditTrail()

        self.reconciliation = ReconciliationQueue()
        self.analytics = AnalyticsDispatcher(analytics_hook)
        locks = EntityLocks()
        evaluator = BusinessHoursEvaluator()
        resolver = RoutingResolver(self.settings.routing, evaluator)

        self.calls = CallLifecycleManager(
            gateway=self.gateway,
            numbers=self.numbers,
            calls=self.calls_store,
            directory=self.directory,
            audit=self.audit,
            resolver=resolver,
            settings=self.settings,
            locks=locks,
            ledger=EventLedger(self.settings.event_window),
            reconciliation=self.reconciliation,
            analytics=self.analytics,
        )
        self.messages = MessageDispatchManager(
            gateway=self.gateway,
            numbers=self.numbers,
            messages=self.messages_store,
            directory=self.directory,
            audit=self.audit,
            resolver=resolver,
            round_robin=round_robin or make_round_robin(self.settings.routing.round_robin_strategy),
            evaluator=evaluator,
            settings=self.settings,
            locks=locks,
            ledger=EventLedger(self.settings.event_window),
            reconciliation=self.reconciliation,
        )
        self.conversations = ConversationView(
            numbers=self.numbers,
            messages=self.messages_store,
            directory=self.directory,
        )

        self._connected = False
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def is_connected(self) -> bool:
        return self._connected and self.gateway.is_connected

    async def start(self) -> bool:
        """
        Start the routing service.

        Connects the gateway and schedules the reconciliation sweep.
        """
        if not self.settings.enabled:
            logger.info("Routing service disabled")
            return False

        try:
            await self.gateway.connect()
        except Exception as e:
            logger.error("Failed to start routing service: %s", e)
            return False

        self._connected = True
        if self.settings.reconcile_interval > 0:
            self._sweeper = asyncio.create_task(self._sweep_forever())

        logger.info("Routing service started with provider: %s", self.gateway.name)
        return True

    async def stop(self) -> None:
        """Stop the routing service."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        await self.analytics.drain()

        try:
            await self.gateway.disconnect()
        except Exception as e:
            logger.error("Error disconnecting provider: %s", e)

        self._connected = False
        logger.info("Routing service stopped")

    async def reconcile(self) -> int:
        """Retry persisting every orphaned call and message once."""
        recovered = await self.calls.reconcile_orphans()
        recovered += await self.messages.reconcile_orphans()
        if recovered:
            logger.info("Reconciliation recovered %d records", recovered)
        return recovered

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.reconcile_interval)
            if len(self.reconciliation):
                try:
                    await self.reconcile()
                except Exception as e:
                    logger.error("Reconciliation sweep failed: %s", e)


# Module-level service instance
_comms_service: Optional[CommsService] = None


def get_comms_service() -> CommsService:
    """Get or create the global routing service."""
    global _comms_service
    if _comms_service is None:
        _comms_service = CommsService()
    return _comms_service


async def init_comms_service() -> Optional[CommsService]:
    """Initialize and start the routing service."""
    service = get_comms_service()
    if await service.start():
        return service
    return None


async def shutdown_comms_service() -> None:
    """Shutdown the routing service."""
    global _comms_service
    if _comms_service:
        await _comms_service.stop()
        _comms_service = None
