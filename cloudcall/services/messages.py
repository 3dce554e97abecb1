"""
Message lifecycle and dispatch.

Sends outbound SMS/MMS on behalf of users, records and assigns inbound
messages, sends auto-replies, and tracks provider delivery status.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from ..core.config import CommsConfig, comms_settings
from ..core.errors import DuplicateEvent, InvalidConfiguration, NotFound, PermissionDenied
from ..core.protocols import (
    Gateway,
    InboundMessageEvent,
    Message,
    MessageDirection,
    MessageStatusEvent,
    utcnow,
)
from ..directory import Directory, load_snapshot
from ..routing.config import PhoneNumber, SMSRoundRobinRouting
from ..routing.hours import BusinessHoursEvaluator, HoursVerdict
from ..routing.permissions import can_use_number
from ..routing.resolver import DecisionKind, RoutingDecision, RoutingResolver
from ..routing.rotation import RoundRobin, make_round_robin
from ..storage.base import AuditTrail, MessageRepository, PhoneNumberRepository
from .concurrency import EntityLocks, EventLedger
from .reconciliation import MESSAGE, ReconciliationQueue

logger = logging.getLogger("cloudcall.services.messages")


@dataclass
class InboundMessageResult:
    """Outcome of one inbound message webhook."""
    message: Optional[Message]
    decision: RoutingDecision
    duplicate: bool = False
    auto_reply: Optional[Message] = None


def _lock_key(external_id: str) -> str:
    return f"message:{external_id}"


def accepts_sms(number: Optional[PhoneNumber]) -> bool:
    """Whether inbound messages to ``number`` are routed at all."""
    return (
        number is not None
        and number.active
        and number.sms_enabled
        and number.sms.enabled
    )


class MessageDispatchManager:
    """
    Message lifecycle manager.

    Message status has no enforced ordering: the latest provider report
    overwrites the stored value.
    """

    def __init__(
        self,
        gateway: Gateway,
        numbers: PhoneNumberRepository,
        messages: MessageRepository,
        directory: Directory,
        audit: AuditTrail,
        resolver: Optional[RoutingResolver] = None,
        round_robin: Optional[RoundRobin] = None,
        evaluator: Optional[BusinessHoursEvaluator] = None,
        settings: Optional[CommsConfig] = None,
        locks: Optional[EntityLocks] = None,
        ledger: Optional[EventLedger] = None,
        reconciliation: Optional[ReconciliationQueue] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._gateway = gateway
        self._numbers = numbers
        self._messages = messages
        self._directory = directory
        self._audit = audit
        self._settings = settings or comms_settings
        self._evaluator = evaluator or BusinessHoursEvaluator()
        self._resolver = resolver or RoutingResolver(self._settings.routing, self._evaluator)
        self._round_robin = round_robin or make_round_robin(
            self._settings.routing.round_robin_strategy
        )
        self._locks = locks if locks is not None else EntityLocks()
        self._ledger = ledger if ledger is not None else EventLedger(self._settings.event_window)
        self._reconciliation = reconciliation if reconciliation is not None else ReconciliationQueue()
        self._clock = clock

    # === Outbound ===

    async def send_message(
        self,
        from_number: str,
        to_number: str,
        body: str,
        user_id: str,
        media_urls: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message:
        """
        Send a message from an owned number on behalf of a user.

        Raises NotFound, PermissionDenied, InvalidConfiguration when the
        number cannot send SMS, and GatewayError from the provider.
        """
        number = await self._numbers.get(from_number)
        if number is None or not number.active:
            raise NotFound("phone number", from_number)

        user = await self._directory.get_user(user_id)
        if user is None:
            raise NotFound("user", user_id)

        if not can_use_number(user, number):
            raise PermissionDenied(
                f"User {user_id} does not have permission to use {from_number}"
            )

        if not number.sms_enabled or not number.sms.enabled:
            raise InvalidConfiguration(f"SMS is not enabled for {from_number}")

        message = await self._deliver(
            number,
            to_number,
            body,
            media_urls=media_urls,
            user_id=user.id,
            metadata=metadata,
        )
        logger.info(
            "Message sent %s: %s -> %s by user %s",
            message.external_id,
            from_number,
            to_number,
            user.id,
        )
        return message

    async def _deliver(
        self,
        number: PhoneNumber,
        to_number: str,
        body: str,
        media_urls: Optional[list[str]] = None,
        user_id: Optional[str] = None,
        is_auto_reply: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message:
        """Hand a message to the gateway, then record it."""
        external_id = await self._gateway.place_message(
            from_number=number.number,
            to_number=to_number,
            body=body,
            media_urls=media_urls,
        )

        message = Message(
            external_id=external_id,
            from_number=number.number,
            to_number=to_number,
            direction=MessageDirection.OUTBOUND,
            body=body,
            media_urls=list(media_urls or []),
            org_id=number.org_id,
            user_id=user_id,
            contact_id=await self._lookup_contact(number.org_id, to_number),
            status="sent",
            timestamp=self._clock(),
            is_auto_reply=is_auto_reply,
            metadata=dict(metadata or {}),
        )

        try:
            await self._messages.create(message)
        except Exception as e:
            logger.error("Failed to record outbound message %s: %s", external_id, e)
            message.metadata["reconciliation_pending"] = True
            self._reconciliation.add(MESSAGE, message, str(e))

        return message

    async def _lookup_contact(self, org_id: str, phone_number: str) -> Optional[str]:
        try:
            contact = await self._directory.find_contact(org_id, phone_number)
        except Exception as e:
            logger.warning("Contact lookup failed for %s: %s", phone_number, e)
            return None
        return contact.id if contact else None

    # === Inbound ===

    async def handle_inbound_message(self, event: InboundMessageEvent) -> InboundMessageResult:
        """
        Record, assign and possibly auto-reply to an inbound message.

        Never raises: failures are logged and reported as a reject decision
        so the webhook can still acknowledge the provider.
        """
        try:
            return await self._handle_inbound_message(event)
        except Exception as e:
            logger.exception("Error handling incoming message %s: %s", event.external_id, e)
            return InboundMessageResult(
                message=None,
                decision=RoutingDecision.reject(self._settings.routing.error_message, "error"),
            )

    async def _handle_inbound_message(self, event: InboundMessageEvent) -> InboundMessageResult:
        number = await self._numbers.get(event.to_number)
        if not accepts_sms(number):
            logger.warning("Incoming message to unregistered number: %s", event.to_number)
            await self._audit.record(
                "inbound_message_unregistered",
                external_id=event.external_id,
                from_number=event.from_number,
                to_number=event.to_number,
            )
            return InboundMessageResult(
                message=None,
                decision=RoutingDecision.reject(
                    self._settings.routing.not_in_service_message, "unregistered"
                ),
            )

        async with self._locks.hold(_lock_key(event.external_id)):
            existing = await self._messages.get_by_external_id(
                event.external_id, MessageDirection.INBOUND
            )
            try:
                self._ledger.claim(event.event_id)
            except DuplicateEvent:
                existing = existing or await self._messages.get_by_external_id(event.external_id)
                logger.debug("Ignoring redelivered event %s", event.event_id)
                return self._duplicate(existing)
            if existing is not None:
                logger.info("Repeated inbound webhook for message %s", event.external_id)
                return self._duplicate(existing)

            message = Message(
                external_id=event.external_id,
                from_number=event.from_number,
                to_number=event.to_number,
                direction=MessageDirection.INBOUND,
                body=event.body,
                media_urls=list(event.media_urls),
                org_id=number.org_id,
                contact_id=await self._lookup_contact(number.org_id, event.from_number),
                status="received",
                timestamp=self._clock(),
            )
            await self._messages.create(message)

            decision = await self._assign(number, message)
            auto_reply = await self._maybe_auto_reply(number, message)

            self._ledger.remember(event.event_id)

        logger.info(
            "Incoming message %s: %s -> %s assigned to %s",
            event.external_id,
            event.from_number,
            event.to_number,
            message.user_id or message.team_id or "nobody",
        )
        return InboundMessageResult(message=message, decision=decision, auto_reply=auto_reply)

    def _duplicate(self, existing: Optional[Message]) -> InboundMessageResult:
        if existing is None:
            decision = RoutingDecision.reject("", "duplicate")
        elif existing.user_id:
            decision = RoutingDecision(
                kind=DecisionKind.USER, targets=[existing.user_id], team_id=existing.team_id
            )
        elif existing.team_id:
            decision = RoutingDecision(kind=DecisionKind.TEAM, team_id=existing.team_id)
        else:
            decision = RoutingDecision.reject("", "unassigned")
        return InboundMessageResult(message=existing, decision=decision, duplicate=True)

    async def _assign(self, number: PhoneNumber, message: Message) -> RoutingDecision:
        routing = number.sms.routing
        ticket = 0
        team_ids: set[str] = set()
        if isinstance(routing, SMSRoundRobinRouting):
            team_ids.add(routing.team_id)
            ticket = await self._round_robin.next_ticket(routing.team_id)

        snapshot = await load_snapshot(self._directory, (), team_ids)
        decision = self._resolver.resolve_sms(number, snapshot, ticket)

        if decision.kind == DecisionKind.USER:
            message.user_id = decision.targets[0]
            message.team_id = decision.team_id
        elif decision.kind == DecisionKind.TEAM:
            message.team_id = decision.team_id
        else:
            await self._audit.record(
                "inbound_message_unassigned",
                external_id=message.external_id,
                to_number=number.number,
                reason=decision.reason,
            )
            return decision

        await self._messages.save(message)
        return decision

    async def _maybe_auto_reply(self, number: PhoneNumber, message: Message) -> Optional[Message]:
        policy = number.sms.auto_reply
        if not policy.enabled or message.auto_reply_external_id:
            return None

        if await self._is_auto_reply_echo(message):
            logger.info("Not auto-replying to auto-reply echo %s", message.external_id)
            return None

        if policy.only_after_hours:
            # Without business hours there is no "after hours" to reply in
            verdict = self._evaluator.verdict(number.business_hours, self._clock())
            if verdict != HoursVerdict.AFTER_HOURS:
                return None

        try:
            reply = await self._deliver(
                number,
                message.from_number,
                policy.message,
                is_auto_reply=True,
            )
        except Exception as e:
            logger.error("Auto-reply to %s failed: %s", message.external_id, e)
            return None

        message.auto_reply_external_id = reply.external_id
        await self._messages.save(message)
        logger.info("Auto-reply %s sent for message %s", reply.external_id, message.external_id)
        return reply

    async def _is_auto_reply_echo(self, message: Message) -> bool:
        """An inbound message that is one of our own auto-replies looping back."""
        if message.is_auto_reply:
            return True
        if await self._numbers.get(message.from_number) is not None:
            return True
        outbound = await self._messages.get_by_external_id(
            message.external_id, MessageDirection.OUTBOUND
        )
        return outbound is not None and outbound.is_auto_reply

    # === Status and read state ===

    async def update_message_status(self, event: MessageStatusEvent) -> Message:
        """Overwrite the stored status with the provider's latest report."""
        async with self._locks.hold(_lock_key(event.external_id)):
            message = await self._messages.get_by_external_id(
                event.external_id, MessageDirection.OUTBOUND
            ) or await self._messages.get_by_external_id(event.external_id)
            if message is None:
                message = await self._recover_orphan(event.external_id)

            try:
                self._ledger.claim(event.event_id)
            except DuplicateEvent:
                logger.debug("Ignoring redelivered event %s", event.event_id)
                return message

            previous = message.status
            message.status = event.status
            if event.error_code:
                message.metadata["error_code"] = event.error_code
            await self._messages.save(message)
            self._ledger.remember(event.event_id)

        logger.info(
            "Message %s status: %s -> %s",
            message.external_id,
            previous,
            message.status,
        )
        return message

    async def _recover_orphan(self, external_id: str) -> Message:
        orphan = self._reconciliation.claim(MESSAGE, external_id)
        if orphan is None:
            logger.warning("Message status update for unknown message: %s", external_id)
            raise NotFound("message", external_id)

        try:
            message = await self._messages.create(orphan.record)
        except Exception:
            orphan.attempts += 1
            self._reconciliation.add(MESSAGE, orphan.record, orphan.error)
            raise
        message.metadata.pop("reconciliation_pending", None)
        logger.info("Reconciled orphaned message %s from status stream", external_id)
        return message

    async def mark_conversation_read(
        self,
        owned_number: str,
        external_number: str,
        user_id: str,
    ) -> int:
        """Mark every unread inbound message of a conversation read by ``user_id``."""
        number = await self._numbers.get(owned_number)
        if number is None:
            raise NotFound("phone number", owned_number)

        user = await self._directory.get_user(user_id)
        if user is None:
            raise NotFound("user", user_id)

        if not can_use_number(user, number):
            raise PermissionDenied(
                f"User {user_id} does not have permission to use {owned_number}"
            )

        updated = await self._messages.mark_read(
            owned_number, external_number, user_id, self._clock()
        )
        logger.info(
            "Marked %d messages read in %s <-> %s by user %s",
            updated,
            owned_number,
            external_number,
            user_id,
        )
        return updated

    # === Reconciliation ===

    async def reconcile_orphans(self) -> int:
        """Retry persisting queued orphan messages. Returns how many were recorded."""

        async def persist(message: Message) -> bool:
            async with self._locks.hold(_lock_key(message.external_id)):
                existing = await self._messages.get_by_external_id(
                    message.external_id, message.direction
                )
                if existing is not None:
                    return False
                await self._messages.create(message)
                return True

        return await self._reconciliation.sweep(MESSAGE, persist)
