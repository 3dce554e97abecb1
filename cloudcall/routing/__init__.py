"""
Routing configuration and decision logic.
"""

from .config import (
    PhoneNumber,
    RoutingConfig,
    UserRouting,
    TeamRouting,
    IVRRouting,
    Failover,
    BusinessHours,
    Schedule,
    Weekday,
    VoicemailTarget,
    UserTarget,
    TeamTarget,
    MessageTarget,
    SMSConfig,
    SMSUserRouting,
    SMSTeamRouting,
    SMSRoundRobinRouting,
    AutoReply,
    load_phone_number,
)
from .hours import BusinessHoursEvaluator, HoursVerdict
from .permissions import can_use_number
from .resolver import DecisionKind, RoutingDecision, RoutingResolver
from .rotation import RoundRobin, RotationPointer, RandomDraw, make_round_robin

__all__ = [
    "PhoneNumber",
    "RoutingConfig",
    "UserRouting",
    "TeamRouting",
    "IVRRouting",
    "Failover",
    "BusinessHours",
    "Schedule",
    "Weekday",
    "VoicemailTarget",
    "UserTarget",
    "TeamTarget",
    "MessageTarget",
    "SMSConfig",
    "SMSUserRouting",
    "SMSTeamRouting",
    "SMSRoundRobinRouting",
    "AutoReply",
    "load_phone_number",
    "BusinessHoursEvaluator",
    "HoursVerdict",
    "can_use_number",
    "DecisionKind",
    "RoutingDecision",
    "RoutingResolver",
    "RoundRobin",
    "RotationPointer",
    "RandomDraw",
    "make_round_robin",
]
