"""
Repository interfaces for persisted routing state.

PhoneNumber is looked up by number; Call and Message by id, by external
id, and by organization + time range for listings.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from ..core.protocols import Call, Message, MessageDirection, utcnow
from ..routing.config import PhoneNumber


class PhoneNumberRepository(ABC):

    @abstractmethod
    async def get(self, number: str) -> Optional[PhoneNumber]:
        """Fetch by E.164 number, including retired numbers."""
        pass

    @abstractmethod
    async def save(self, phone_number: PhoneNumber) -> PhoneNumber:
        pass

    @abstractmethod
    async def list_for_org(self, org_id: str) -> list[PhoneNumber]:
        pass


class CallRepository(ABC):

    @abstractmethod
    async def create(self, call: Call) -> Call:
        pass

    @abstractmethod
    async def save(self, call: Call) -> Call:
        pass

    @abstractmethod
    async def get(self, call_id: UUID) -> Optional[Call]:
        pass

    @abstractmethod
    async def get_by_external_id(self, external_id: str) -> Optional[Call]:
        pass

    @abstractmethod
    async def list(
        self,
        org_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> tuple[list[Call], int]:
        """Newest first. Returns (page, total matching)."""
        pass


class MessageRepository(ABC):

    @abstractmethod
    async def create(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def save(self, message: Message) -> Message:
        pass

    @abstractmethod
    async def get(self, message_id: UUID) -> Optional[Message]:
        pass

    @abstractmethod
    async def get_by_external_id(
        self,
        external_id: str,
        direction: Optional[MessageDirection] = None,
    ) -> Optional[Message]:
        pass

    @abstractmethod
    async def list_for_numbers(self, numbers: Iterable[str]) -> list[Message]:
        """Every message sent from or received on any of ``numbers``."""
        pass

    @abstractmethod
    async def list_conversation(
        self,
        owned_number: str,
        external_number: str,
        before: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[Message]:
        """Newest first, strictly older than ``before`` when given."""
        pass

    @abstractmethod
    async def mark_read(
        self,
        owned_number: str,
        external_number: str,
        user_id: str,
        at: datetime,
    ) -> int:
        """Mark unread inbound messages of one conversation read. Returns count."""
        pass


@dataclass
class AuditEntry:
    event: str
    details: dict[str, Any] = field(default_factory=dict)
    at: datetime = field(default_factory=utcnow)


class AuditTrail(ABC):
    """Append-only trace for events that leave no entity behind."""

    @abstractmethod
    async def record(self, event: str, **details: Any) -> AuditEntry:
        pass
