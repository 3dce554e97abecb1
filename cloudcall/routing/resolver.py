"""
Routing resolver.

Turns a phone number's routing configuration into a RoutingDecision for
one inbound event. Decisions are computed fresh every time from a
pre-loaded DirectorySnapshot; nothing here blocks or caches.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from ..core.config import RoutingSettings
from ..core.errors import InvalidConfiguration
from ..directory import DirectorySnapshot
from .config import (
    IVRRouting,
    MessageTarget,
    PhoneNumber,
    SMSRoundRobinRouting,
    SMSTeamRouting,
    SMSUserRouting,
    TeamRouting,
    TeamTarget,
    UserRouting,
    UserTarget,
    VoicemailTarget,
)
from .hours import BusinessHoursEvaluator

logger = logging.getLogger("cloudcall.routing.resolver")


class DecisionKind(Enum):
    USER = "user"
    TEAM_MEMBERS = "team-members"
    TEAM = "team"  # SMS queue assignment, no member fan-out
    IVR = "ivr"
    VOICEMAIL = "voicemail"
    MESSAGE_ONLY = "message-only"
    REJECT = "reject"


@dataclass
class RoutingDecision:
    """Where one inbound event goes."""
    kind: DecisionKind
    targets: list[str] = field(default_factory=list)  # User ids
    prompt: Optional[str] = None
    team_id: Optional[str] = None
    ivr_id: Optional[str] = None
    after_hours: bool = False
    via_failover: bool = False
    reason: Optional[str] = None  # Why a reject happened

    @property
    def is_reject(self) -> bool:
        return self.kind == DecisionKind.REJECT

    @classmethod
    def reject(cls, prompt: str, reason: str) -> "RoutingDecision":
        return cls(kind=DecisionKind.REJECT, prompt=prompt, reason=reason)


class RoutingResolver:
    """
    Resolves voice and SMS routing for an owned number.

    Voice:
    - Business hours (when enabled) swap in the after-hours target
    - user / team / ivr primary variants
    - One level of failover when the chosen target is unreachable

    SMS:
    - user, team queue, or round-robin over active team members
    """

    def __init__(
        self,
        settings: Optional[RoutingSettings] = None,
        evaluator: Optional[BusinessHoursEvaluator] = None,
    ):
        self._settings = settings or RoutingSettings()
        self._evaluator = evaluator or BusinessHoursEvaluator()

    # === Voice ===

    def resolve_voice(
        self,
        number: PhoneNumber,
        snapshot: DirectorySnapshot,
        now: datetime,
    ) -> RoutingDecision:
        """Resolve an inbound call to ``number`` at instant ``now``."""
        routing = number.routing
        if routing is None:
            logger.warning("No voice routing configured for %s", number.number)
            return RoutingDecision.reject(
                self._settings.misconfigured_message, "invalid-configuration"
            )

        after_hours = self._evaluator.is_after_hours(routing.business_hours, now)

        try:
            if after_hours:
                target = routing.business_hours.after_hours
                decision = self._resolve_target(target, snapshot)
            else:
                target = routing
                decision = self._resolve_primary(routing, snapshot)

            if decision is None and routing.failover.enabled:
                failover_target = routing.failover.target
                logger.info(
                    "Primary target unreachable for %s, failing over to %s",
                    number.number,
                    failover_target.type,
                )
                decision = self._resolve_target(failover_target, snapshot)
                if decision is not None:
                    decision.via_failover = True
                else:
                    target = failover_target

        except InvalidConfiguration as e:
            logger.warning("Routing configuration error for %s: %s", number.number, e)
            return RoutingDecision.reject(
                self._settings.misconfigured_message, "invalid-configuration"
            )

        if decision is None:
            if isinstance(target, (TeamRouting, TeamTarget)):
                prompt = self._settings.team_unavailable_message
            else:
                prompt = self._settings.user_unavailable_message
            logger.warning("No reachable destination for call to %s", number.number)
            decision = RoutingDecision.reject(prompt, "unavailable")

        decision.after_hours = after_hours
        return decision

    def _resolve_primary(
        self,
        routing: Union[UserRouting, TeamRouting, IVRRouting],
        snapshot: DirectorySnapshot,
    ) -> Optional[RoutingDecision]:
        if isinstance(routing, UserRouting):
            return self._resolve_user(routing.user_id, snapshot)
        elif isinstance(routing, TeamRouting):
            return self._resolve_team(routing.team_id, snapshot)
        elif isinstance(routing, IVRRouting):
            return RoutingDecision(
                kind=DecisionKind.IVR,
                targets=[routing.ivr_id],
                ivr_id=routing.ivr_id,
                prompt=routing.welcome_message or self._settings.default_ivr_prompt,
            )
        raise InvalidConfiguration(f"Unknown voice routing type: {routing!r}")

    def _resolve_target(
        self,
        target: Union[VoicemailTarget, UserTarget, TeamTarget, MessageTarget],
        snapshot: DirectorySnapshot,
    ) -> Optional[RoutingDecision]:
        """Resolve a failover or after-hours target. Never recurses further."""
        if isinstance(target, VoicemailTarget):
            return RoutingDecision(
                kind=DecisionKind.VOICEMAIL,
                prompt=target.message or self._settings.voicemail_prompt,
            )
        elif isinstance(target, UserTarget):
            return self._resolve_user(target.user_id, snapshot)
        elif isinstance(target, TeamTarget):
            return self._resolve_team(target.team_id, snapshot)
        elif isinstance(target, MessageTarget):
            return RoutingDecision(kind=DecisionKind.MESSAGE_ONLY, prompt=target.message)
        raise InvalidConfiguration(f"Unknown routing target: {target!r}")

    def _resolve_user(
        self,
        user_id: str,
        snapshot: DirectorySnapshot,
    ) -> Optional[RoutingDecision]:
        user = snapshot.active_user(user_id)
        if user is None:
            logger.warning("Call routed to missing or inactive user: %s", user_id)
            return None
        return RoutingDecision(kind=DecisionKind.USER, targets=[user.id])

    def _resolve_team(
        self,
        team_id: str,
        snapshot: DirectorySnapshot,
    ) -> Optional[RoutingDecision]:
        members = snapshot.active_members(team_id)
        if not members:
            logger.warning("Call routed to empty team: %s", team_id)
            return None
        return RoutingDecision(
            kind=DecisionKind.TEAM_MEMBERS,
            targets=[member.id for member in members],
            team_id=team_id,
        )

    # === SMS ===

    def resolve_sms(
        self,
        number: PhoneNumber,
        snapshot: DirectorySnapshot,
        ticket: int = 0,
    ) -> RoutingDecision:
        """
        Resolve the assignment of an inbound message.

        ``ticket`` comes from a RoundRobin source and only matters for
        round-robin routing.
        """
        routing = number.sms.routing

        if isinstance(routing, SMSUserRouting):
            return RoutingDecision(kind=DecisionKind.USER, targets=[routing.user_id])

        elif isinstance(routing, SMSTeamRouting):
            return RoutingDecision(kind=DecisionKind.TEAM, team_id=routing.team_id)

        elif isinstance(routing, SMSRoundRobinRouting):
            members = sorted(snapshot.active_members(routing.team_id), key=lambda u: u.id)
            if not members:
                logger.warning(
                    "Round-robin team %s has no active members, queueing to team",
                    routing.team_id,
                )
                return RoutingDecision(kind=DecisionKind.TEAM, team_id=routing.team_id)
            chosen = members[ticket % len(members)]
            return RoutingDecision(
                kind=DecisionKind.USER,
                targets=[chosen.id],
                team_id=routing.team_id,
            )

        logger.error(
            "Invalid SMS routing configuration for %s: %r",
            number.number,
            routing,
        )
        return RoutingDecision.reject("", "invalid-configuration")
