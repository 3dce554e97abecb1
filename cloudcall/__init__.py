"""
CloudCall routing service.

Decides where inbound calls and text messages go and tracks every call
and message through its lifecycle.

Architecture:
- Provider-agnostic gateway abstraction (Twilio, in-process stub)
- Tagged-union routing configuration per owned phone number
- Business-hours, failover and round-robin aware routing resolver
- Lifecycle managers with per-entity locking and event de-duplication
"""

__version__ = "0.1.0"

from .core import (
    CommsConfig,
    comms_settings,
    Call,
    CallStatus,
    CallDirection,
    Message,
    MessageDirection,
    Gateway,
)
from .routing import PhoneNumber, RoutingDecision, RoutingResolver
from .service import (
    CommsService,
    get_comms_service,
    init_comms_service,
    shutdown_comms_service,
)

__all__ = [
    # Config
    "CommsConfig",
    "comms_settings",
    # Protocols
    "Call",
    "CallStatus",
    "CallDirection",
    "Message",
    "MessageDirection",
    "Gateway",
    # Routing
    "PhoneNumber",
    "RoutingDecision",
    "RoutingResolver",
    # Service
    "CommsService",
    "get_comms_service",
    "init_comms_service",
    "shutdown_comms_service",
]
