"""
Core configuration, errors and protocols for cloudcall.
"""

from .config import (
    CommsConfig,
    ServerConfig,
    TwilioConfig,
    RoutingSettings,
    comms_settings,
    get_settings,
)
from .errors import (
    CommsError,
    NotFound,
    PermissionDenied,
    InvalidConfiguration,
    GatewayError,
    AlreadyTerminal,
    DuplicateEvent,
)
from .instructions import Say, Dial, Gather, Redirect, Hangup, Instruction
from .protocols import (
    Call,
    CallStatus,
    CallDirection,
    Message,
    MessageDirection,
    InboundCallEvent,
    InboundMessageEvent,
    CallStatusEvent,
    MessageStatusEvent,
    Gateway,
)

__all__ = [
    # Config
    "CommsConfig",
    "ServerConfig",
    "TwilioConfig",
    "RoutingSettings",
    "comms_settings",
    "get_settings",
    # Errors
    "CommsError",
    "NotFound",
    "PermissionDenied",
    "InvalidConfiguration",
    "GatewayError",
    "AlreadyTerminal",
    "DuplicateEvent",
    # Instructions
    "Say",
    "Dial",
    "Gather",
    "Redirect",
    "Hangup",
    "Instruction",
    # Protocols
    "Call",
    "CallStatus",
    "CallDirection",
    "Message",
    "MessageDirection",
    "InboundCallEvent",
    "InboundMessageEvent",
    "CallStatusEvent",
    "MessageStatusEvent",
    "Gateway",
]
