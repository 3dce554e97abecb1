"""
Protocols and data models for the routing service.

Defines the Call and Message entities, the asynchronous events a gateway
emits, and the provider-agnostic Gateway interface every telephony
provider must implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from .errors import AlreadyTerminal


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    # Naive datetimes are taken to be UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class CallStatus(Enum):
    """State of a phone call."""
    INITIATED = "initiated"      # Created, provider has not reported ringing yet
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"  # Answered
    COMPLETED = "completed"
    FAILED = "failed"            # Busy, no answer, carrier failure
    REJECTED = "rejected"        # Refused or cancelled before connecting

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def rank(self) -> int:
        """Position along initiated -> ringing -> in-progress -> end."""
        return _RANK[self]


_TERMINAL = frozenset({CallStatus.COMPLETED, CallStatus.FAILED, CallStatus.REJECTED})
_RANK = {
    CallStatus.INITIATED: 0,
    CallStatus.RINGING: 1,
    CallStatus.IN_PROGRESS: 2,
    CallStatus.COMPLETED: 3,
    CallStatus.FAILED: 3,
    CallStatus.REJECTED: 3,
}


class CallDirection(Enum):
    """Direction of a call."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageDirection(Enum):
    """Direction of an SMS message."""
    INBOUND = "inbound"
    OUTBOUND = "outbound"


@dataclass
class Call:
    """
    Represents a phone call.

    Created on outbound initiation or on the first inbound webhook and
    mutated only through ``transition``.
    """
    id: UUID = field(default_factory=uuid4)
    external_id: str = ""  # Provider's unique ID for the call

    # Phone numbers (E.164 format: +1234567890)
    from_number: str = ""
    to_number: str = ""
    direction: CallDirection = CallDirection.INBOUND
    status: CallStatus = CallStatus.INITIATED

    # Ownership
    org_id: Optional[str] = None
    phone_number: Optional[str] = None  # Our number involved in the call

    # Assignment
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    ivr_id: Optional[str] = None

    # Timing
    started_at: datetime = field(default_factory=utcnow)
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None

    # Recording
    recording: bool = False
    recording_url: Optional[str] = None

    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def transition(
        self,
        status: CallStatus,
        duration_seconds: Optional[int] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        """
        Advance the call to ``status``.

        Returns True when the call changed. Re-applying the current status
        and stale events (a status behind the current one) return False.
        Moving a terminal call to a different status raises AlreadyTerminal.
        A repeat of the terminal status may still supply a missing duration;
        that fills it in but does not count as a change.
        """
        if self.status.is_terminal:
            if status == self.status:
                if duration_seconds is not None and self.duration_seconds is None:
                    self.duration_seconds = duration_seconds
                return False
            raise AlreadyTerminal(self.external_id, self.status.value, status.value)

        if status.rank <= self.status.rank:
            return False

        at = at or utcnow()
        self.status = status

        if status == CallStatus.IN_PROGRESS:
            self.answered_at = at
        elif status.is_terminal:
            self.ended_at = at
            if duration_seconds is not None:
                self.duration_seconds = duration_seconds
            elif self.answered_at is not None:
                self.duration_seconds = int((at - self.answered_at).total_seconds())

        return True


@dataclass
class Message:
    """
    Represents an SMS/MMS message.
    """
    id: UUID = field(default_factory=uuid4)
    external_id: str = ""  # Provider's unique ID

    # Phone numbers (E.164 format)
    from_number: str = ""
    to_number: str = ""
    direction: MessageDirection = MessageDirection.INBOUND

    # Content
    body: str = ""
    media_urls: list[str] = field(default_factory=list)

    # Ownership and assignment
    org_id: Optional[str] = None
    user_id: Optional[str] = None  # Sender (outbound) or assignee (inbound)
    team_id: Optional[str] = None
    contact_id: Optional[str] = None

    # Status is the latest provider-reported value, stored verbatim
    status: str = "received"
    timestamp: datetime = field(default_factory=utcnow)

    # Read tracking (inbound only)
    read: bool = False
    read_by: Optional[str] = None
    read_at: Optional[datetime] = None

    # Auto-reply bookkeeping
    is_auto_reply: bool = False
    auto_reply_external_id: Optional[str] = None

    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def owned_number(self) -> str:
        """Our side of the conversation."""
        if self.direction == MessageDirection.INBOUND:
            return self.to_number
        return self.from_number

    @property
    def external_number(self) -> str:
        """The other party."""
        if self.direction == MessageDirection.INBOUND:
            return self.from_number
        return self.to_number


# === Gateway events ===


@dataclass
class InboundCallEvent:
    external_id: str
    from_number: str
    to_number: str
    status: CallStatus = CallStatus.RINGING
    event_id: Optional[str] = None


@dataclass
class InboundMessageEvent:
    external_id: str
    from_number: str
    to_number: str
    body: str = ""
    media_urls: list[str] = field(default_factory=list)
    event_id: Optional[str] = None


@dataclass
class CallStatusEvent:
    external_id: str
    status: CallStatus
    duration_seconds: Optional[int] = None
    event_id: Optional[str] = None


@dataclass
class MessageStatusEvent:
    external_id: str
    status: str
    error_code: Optional[str] = None
    event_id: Optional[str] = None


class Gateway(ABC):
    """
    Abstract interface for telephony/messaging providers.

    Implementations place calls and messages and return the provider's
    identifier; status and inbound events come back asynchronously through
    the webhook endpoints. Failures raise GatewayError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'twilio')."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if provider is connected and ready."""

    async def connect(self) -> None:
        """Initialize connection to the provider."""

    async def disconnect(self) -> None:
        """Close connection to the provider."""

    @abstractmethod
    async def place_call(
        self,
        from_number: str,
        to_number: str,
        record: bool = False,
        status_callback: Optional[str] = None,
    ) -> str:
        """Start an outbound call. Returns the external call id."""

    @abstractmethod
    async def place_message(
        self,
        from_number: str,
        to_number: str,
        body: str,
        media_urls: Optional[list[str]] = None,
    ) -> str:
        """Send an SMS/MMS. Returns the external message id."""

    @abstractmethod
    async def end_call(self, external_id: str) -> None:
        """Hang up a live call."""

    async def get_recording_url(self, external_id: str) -> Optional[str]:
        """Recording location for a call, if the provider keeps one."""
        return None
