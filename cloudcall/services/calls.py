"""
Call lifecycle management.

Owns the Call state machine: creates records for outbound and inbound
calls, answers inbound calls with gateway instructions built from a fresh
routing decision, and applies asynchronous status events.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from ..core.config import CommsConfig, comms_settings
from ..core.errors import AlreadyTerminal, DuplicateEvent, GatewayError, NotFound, PermissionDenied
from ..core.instructions import Dial, Gather, Hangup, Instruction, Redirect, Say, speak_and_hangup
from ..core.protocols import (
    Call,
    CallDirection,
    CallStatus,
    CallStatusEvent,
    Gateway,
    InboundCallEvent,
    as_utc,
    utcnow,
)
from ..directory import Directory, DirectorySnapshot, load_snapshot
from ..routing.config import IVRRouting, PhoneNumber
from ..routing.permissions import can_use_number
from ..routing.resolver import DecisionKind, RoutingDecision, RoutingResolver
from ..storage.base import AuditTrail, CallRepository, PhoneNumberRepository
from .analytics import AnalyticsDispatcher
from .concurrency import EntityLocks, EventLedger
from .reconciliation import CALL, ReconciliationQueue

logger = logging.getLogger("cloudcall.services.calls")

# Webhook paths the provider is pointed at
STATUS_PATH = "/webhooks/voice/status"
OUTBOUND_PATH = "/webhooks/voice/outbound"
VOICEMAIL_PATH = "/webhooks/voice/voicemail"
IVR_PATH = "/webhooks/voice/ivr"


@dataclass
class CallPage:
    calls: list[Call]
    total: int
    limit: int
    skip: int

    @property
    def has_more(self) -> bool:
        return self.total > self.skip + self.limit


def _lock_key(external_id: str) -> str:
    return f"call:{external_id}"


class CallLifecycleManager:
    """
    Call lifecycle manager.

    Collaborators are injected; tests pass a stub gateway and in-memory
    repositories.
    """

    def __init__(
        self,
        gateway: Gateway,
        numbers: PhoneNumberRepository,
        calls: CallRepository,
        directory: Directory,
        audit: AuditTrail,
        resolver: Optional[RoutingResolver] = None,
        settings: Optional[CommsConfig] = None,
        locks: Optional[EntityLocks] = None,
        ledger: Optional[EventLedger] = None,
        reconciliation: Optional[ReconciliationQueue] = None,
        analytics: Optional[AnalyticsDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._gateway = gateway
        self._numbers = numbers
        self._calls = calls
        self._directory = directory
        self._audit = audit
        self._settings = settings or comms_settings
        self._resolver = resolver or RoutingResolver(self._settings.routing)
        self._locks = locks if locks is not None else EntityLocks()
        self._ledger = ledger if ledger is not None else EventLedger(self._settings.event_window)
        self._reconciliation = reconciliation if reconciliation is not None else ReconciliationQueue()
        self._analytics = analytics or AnalyticsDispatcher()
        self._clock = clock

    # === Outbound ===

    async def initiate_call(
        self,
        from_number: str,
        to_number: str,
        user_id: str,
        record: Optional[bool] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Call:
        """
        Place an outbound call from an owned number on behalf of a user.

        The record is written only after the gateway accepted the call. If
        that write fails the call is queued for reconciliation and still
        returned, flagged with ``reconciliation_pending``.
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

        if record is None:
            record = number.recording_enabled

        external_id = await self._gateway.place_call(
            from_number=from_number,
            to_number=to_number,
            record=record,
            status_callback=self._settings.callback_url(STATUS_PATH),
        )

        call = Call(
            external_id=external_id,
            from_number=from_number,
            to_number=to_number,
            direction=CallDirection.OUTBOUND,
            status=CallStatus.INITIATED,
            org_id=number.org_id,
            phone_number=number.number,
            user_id=user.id,
            recording=record,
            started_at=self._clock(),
            metadata=dict(metadata or {}),
        )

        try:
            await self._calls.create(call)
        except Exception as e:
            logger.error("Failed to record outbound call %s: %s", external_id, e)
            call.metadata["reconciliation_pending"] = True
            self._reconciliation.add(CALL, call, str(e))
            return call

        logger.info(
            "Outbound call initiated %s: %s -> %s by user %s",
            external_id,
            from_number,
            to_number,
            user.id,
        )
        return call

    async def outbound_instructions(self, external_id: str) -> list[Instruction]:
        """Connect the answered callee to the user who placed the call."""
        try:
            call = await self._calls.get_by_external_id(external_id)
            if call is None:
                orphan = self._reconciliation.pending(CALL)
                call = next((o.record for o in orphan if o.external_id == external_id), None)
            if call is None or not call.user_id:
                logger.warning("Outbound handler for unknown call: %s", external_id)
                return speak_and_hangup(self._settings.routing.error_message)

            user = await self._directory.get_user(call.user_id)
            identity = user.identity if user else call.user_id
            return [Dial(targets=[identity], caller_id=call.from_number)]

        except Exception as e:
            logger.error("Error building outbound instructions for %s: %s", external_id, e)
            return speak_and_hangup(self._settings.routing.error_message)

    # === Inbound ===

    async def handle_inbound_call(self, event: InboundCallEvent) -> list[Instruction]:
        """
        Answer an inbound call.

        Never raises: any failure degrades to an apology and a hangup so the
        provider always receives well-formed instructions.
        """
        try:
            return await self._handle_inbound_call(event)
        except Exception as e:
            logger.exception("Error handling incoming call %s: %s", event.external_id, e)
            return speak_and_hangup(self._settings.routing.error_message)

    async def _handle_inbound_call(self, event: InboundCallEvent) -> list[Instruction]:
        number = await self._numbers.get(event.to_number)
        if number is None or not number.active or not number.voice_enabled:
            logger.warning("Incoming call to unregistered number: %s", event.to_number)
            await self._audit.record(
                "inbound_call_unregistered",
                external_id=event.external_id,
                from_number=event.from_number,
                to_number=event.to_number,
            )
            return speak_and_hangup(self._settings.routing.not_in_service_message)

        async with self._locks.hold(_lock_key(event.external_id)):
            call = await self._calls.get_by_external_id(event.external_id)
            if call is None:
                call = Call(
                    external_id=event.external_id,
                    from_number=event.from_number,
                    to_number=event.to_number,
                    direction=CallDirection.INBOUND,
                    status=event.status,
                    org_id=number.org_id,
                    phone_number=number.number,
                    recording=number.recording_enabled,
                    started_at=self._clock(),
                )
                call = await self._create_inbound(call)
            else:
                logger.info("Repeated inbound webhook for call %s", event.external_id)

            snapshot = await load_snapshot(
                self._directory,
                number.referenced_user_ids(),
                number.referenced_team_ids(),
            )
            decision = self._resolver.resolve_voice(number, snapshot, self._clock())
            await self._assign(call, decision)

            logger.info(
                "Incoming call %s: %s -> %s routed to %s",
                event.external_id,
                event.from_number,
                event.to_number,
                decision.kind.value,
            )
            return self.build_instructions(number, call, decision, snapshot)

    async def _create_inbound(self, call: Call) -> Call:
        try:
            return await self._calls.create(call)
        except Exception as e:
            # Keep routing the caller; the status stream will recreate the record
            logger.error("Failed to record inbound call %s: %s", call.external_id, e)
            self._reconciliation.add(CALL, call, str(e))
            return call

    async def _assign(self, call: Call, decision: RoutingDecision) -> None:
        if decision.kind == DecisionKind.USER:
            call.user_id = decision.targets[0]
        elif decision.kind == DecisionKind.TEAM_MEMBERS:
            call.team_id = decision.team_id
        elif decision.kind == DecisionKind.IVR:
            call.ivr_id = decision.ivr_id
        else:
            return
        if await self._calls.get(call.id) is not None:
            await self._calls.save(call)

    def build_instructions(
        self,
        number: PhoneNumber,
        call: Call,
        decision: RoutingDecision,
        snapshot: DirectorySnapshot,
    ) -> list[Instruction]:
        """Translate a routing decision into gateway instructions."""
        routing = self._settings.routing

        if decision.kind in (DecisionKind.USER, DecisionKind.TEAM_MEMBERS):
            identities = [snapshot.identity(uid) for uid in decision.targets]
            if number.voicemail_enabled:
                return [Dial(
                    targets=identities,
                    timeout_seconds=routing.dial_timeout,
                    caller_id=call.from_number,
                    on_no_answer_action=self._settings.callback_url(
                        f"{VOICEMAIL_PATH}?call_id={call.id}"
                    ),
                )]
            return [Dial(targets=identities, caller_id=call.from_number)]

        if decision.kind == DecisionKind.IVR:
            return self._ivr_menu(call, decision.ivr_id, decision.prompt)

        return speak_and_hangup(decision.prompt or routing.error_message)

    def _ivr_menu(
        self,
        call: Call,
        ivr_id: Optional[str],
        prompt: Optional[str],
        attempt: int = 1,
    ) -> list[Instruction]:
        routing = self._settings.routing
        action = self._settings.callback_url(f"{IVR_PATH}?call_id={call.id}&ivr_id={ivr_id}")
        return [
            Gather(
                num_digits=routing.ivr_num_digits,
                on_input_action=action,
                timeout_seconds=routing.ivr_gather_timeout,
                prompt=Say(prompt or routing.default_ivr_prompt),
            ),
            # No input: try the menu again
            Redirect(f"{action}&retry=true&attempt={attempt + 1}"),
        ]

    # === Call continuations ===

    async def ivr_instructions(
        self,
        call_id: UUID,
        ivr_id: Optional[str] = None,
        digits: Optional[str] = None,
        attempt: int = 1,
    ) -> list[Instruction]:
        """
        Continue an IVR menu.

        With ``digits`` the caller's selection is recorded on the call.
        Without them the menu is played again until ``ivr_max_attempts``
        is reached. Never raises.
        """
        routing = self._settings.routing
        try:
            call = await self._calls.get(call_id)
            if call is None:
                logger.warning("IVR handler for unknown call: %s", call_id)
                return speak_and_hangup(routing.error_message)

            ivr_id = ivr_id or call.ivr_id
            if digits:
                async with self._locks.hold(_lock_key(call.external_id)):
                    call.metadata["ivr_selection"] = digits
                    await self._calls.save(call)
                await self._audit.record(
                    "ivr_selection",
                    external_id=call.external_id,
                    ivr_id=ivr_id,
                    digits=digits,
                )
                logger.info("Call %s selected %s in IVR %s", call.external_id, digits, ivr_id)
                return speak_and_hangup(routing.ivr_selection_message)

            if not ivr_id or attempt > routing.ivr_max_attempts:
                logger.info("No IVR input for call %s, ending menu", call.external_id)
                return speak_and_hangup(routing.ivr_no_input_message)

            number = await self._numbers.get(call.phone_number or call.to_number)
            prompt = None
            if number is not None and isinstance(number.routing, IVRRouting):
                prompt = number.routing.welcome_message
            return self._ivr_menu(call, ivr_id, prompt, attempt)

        except Exception as e:
            logger.exception("Error continuing IVR for call %s: %s", call_id, e)
            return speak_and_hangup(routing.error_message)

    async def voicemail_instructions(
        self,
        call_id: UUID,
        dial_status: Optional[str] = None,
    ) -> list[Instruction]:
        """Follow up a dial: hang up after a connected call, else take a message."""
        routing = self._settings.routing
        if dial_status == "completed":
            return [Hangup()]

        try:
            call = await self._calls.get(call_id)
            if call is None:
                logger.warning("Voicemail handler for unknown call: %s", call_id)
            else:
                logger.info("Call %s not answered (%s), offering voicemail", call.external_id, dial_status)
            return speak_and_hangup(routing.voicemail_prompt)

        except Exception as e:
            logger.exception("Error building voicemail instructions for %s: %s", call_id, e)
            return speak_and_hangup(routing.error_message)

    # === Status updates ===

    async def update_call_status(self, event: CallStatusEvent) -> Call:
        """
        Apply a status event.

        Redelivered events and repeats of the current status leave the call
        untouched. Raises NotFound for unknown calls and AlreadyTerminal when
        a finished call is reported in a different terminal or live state.
        """
        async with self._locks.hold(_lock_key(event.external_id)):
            call = await self._calls.get_by_external_id(event.external_id)
            if call is None:
                call = await self._recover_orphan(event.external_id)

            try:
                self._ledger.claim(event.event_id)
            except DuplicateEvent:
                logger.debug("Ignoring redelivered event %s", event.event_id)
                return call

            previous = call.status
            previous_duration = call.duration_seconds
            try:
                changed = call.transition(
                    event.status,
                    duration_seconds=event.duration_seconds,
                    at=self._clock(),
                )
            except AlreadyTerminal:
                logger.warning(
                    "Anomalous status %s for call %s already %s",
                    event.status.value,
                    call.external_id,
                    call.status.value,
                )
                self._ledger.remember(event.event_id)
                raise

            if changed:
                await self._calls.save(call)
                logger.info(
                    "Call %s status: %s -> %s",
                    call.external_id,
                    previous.value,
                    call.status.value,
                )
                if call.status == CallStatus.COMPLETED:
                    self._analytics.fire(call)
            elif call.duration_seconds != previous_duration:
                await self._calls.save(call)
                logger.info("Call %s duration recorded: %ss", call.external_id, call.duration_seconds)
            else:
                logger.debug(
                    "Call %s status %s ignored (currently %s)",
                    call.external_id,
                    event.status.value,
                    call.status.value,
                )

            self._ledger.remember(event.event_id)
            return call

    async def _recover_orphan(self, external_id: str) -> Call:
        orphan = self._reconciliation.claim(CALL, external_id)
        if orphan is None:
            logger.warning("Call status update for unknown call: %s", external_id)
            raise NotFound("call", external_id)

        try:
            call = await self._calls.create(orphan.record)
        except Exception:
            orphan.attempts += 1
            self._reconciliation.add(CALL, orphan.record, orphan.error)
            raise
        call.metadata.pop("reconciliation_pending", None)
        logger.info("Reconciled orphaned call %s from status stream", external_id)
        return call

    async def end_call(self, call_id: UUID) -> Call:
        """Hang up a live call through the gateway."""
        call = await self._calls.get(call_id)
        if call is None:
            raise NotFound("call", str(call_id))

        async with self._locks.hold(_lock_key(call.external_id)):
            if call.is_terminal:
                raise AlreadyTerminal(call.external_id, call.status.value)

            await self._gateway.end_call(call.external_id)

            call.transition(CallStatus.COMPLETED, at=self._clock())
            await self._calls.save(call)
            self._analytics.fire(call)

        logger.info("Ended call %s", call.external_id)
        return call

    # === Queries ===

    async def get_call(self, call_id: UUID) -> Call:
        call = await self._calls.get(call_id)
        if call is None:
            raise NotFound("call", str(call_id))

        if call.recording and not call.recording_url:
            try:
                url = await self._gateway.get_recording_url(call.external_id)
            except GatewayError as e:
                logger.warning("Could not retrieve recording for call %s: %s", call_id, e)
                url = None
            if url:
                call.recording_url = url
                await self._calls.save(call)

        return call

    async def list_calls(
        self,
        org_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> CallPage:
        if start is not None:
            start = as_utc(start)
        if end is not None:
            end = as_utc(end)
        calls, total = await self._calls.list(
            org_id=org_id,
            user_id=user_id,
            start=start,
            end=end,
            limit=limit,
            skip=skip,
        )
        return CallPage(calls=calls, total=total, limit=limit, skip=skip)

    # === Reconciliation ===

    async def reconcile_orphans(self) -> int:
        """Retry persisting queued orphan calls. Returns how many were recorded."""
        async def persist(call: Call) -> bool:
            async with self._locks.hold(_lock_key(call.external_id)):
                if await self._calls.get_by_external_id(call.external_id) is not None:
                    return False
                await self._calls.create(call)
                return True

        return await self._reconciliation.sweep(CALL, persist)
