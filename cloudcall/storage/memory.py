"""
In-memory repositories.

Used by tests and single-process deployments. Lookups mirror the indexes
a database-backed store would keep.
"""

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from ..core.errors import InvalidConfiguration
from ..core.protocols import Call, Message, MessageDirection
from ..routing.config import PhoneNumber, load_phone_number
from .base import (
    AuditEntry,
    AuditTrail,
    CallRepository,
    MessageRepository,
    PhoneNumberRepository,
)

logger = logging.getLogger("cloudcall.storage.memory")


class InMemoryPhoneNumberRepository(PhoneNumberRepository):

    def __init__(self, numbers: Iterable[PhoneNumber] = ()):
        self._numbers: dict[str, PhoneNumber] = {}
        for number in numbers:
            self._numbers[number.number] = number

    @classmethod
    def from_file(cls, path: str) -> "InMemoryPhoneNumberRepository":
        """Build a repository from a JSON file holding a list of number documents."""
        with open(path) as f:
            documents = json.load(f)
        if not isinstance(documents, list):
            raise InvalidConfiguration(f"{path}: expected a list of phone numbers")
        repository = cls()
        repository.load(documents)
        return repository

    def load(self, documents: Iterable[dict[str, Any]]) -> list[PhoneNumber]:
        """
        Validate stored number documents and register them.

        Nothing is registered if any document is invalid; the first bad one
        raises InvalidConfiguration.
        """
        loaded = [load_phone_number(document) for document in documents]
        for number in loaded:
            self._numbers[number.number] = number
        logger.info("Loaded %d phone numbers", len(loaded))
        return loaded

    async def get(self, number: str) -> Optional[PhoneNumber]:
        return self._numbers.get(number)

    async def save(self, phone_number: PhoneNumber) -> PhoneNumber:
        self._numbers[phone_number.number] = phone_number
        return phone_number

    async def list_for_org(self, org_id: str) -> list[PhoneNumber]:
        return [n for n in self._numbers.values() if n.org_id == org_id]


class InMemoryCallRepository(CallRepository):

    def __init__(self):
        self._calls: dict[UUID, Call] = {}
        self._by_external_id: dict[str, UUID] = {}

    async def create(self, call: Call) -> Call:
        if call.external_id in self._by_external_id:
            raise ValueError(f"Call already recorded: {call.external_id}")
        self._calls[call.id] = call
        self._by_external_id[call.external_id] = call.id
        return call

    async def save(self, call: Call) -> Call:
        self._calls[call.id] = call
        return call

    async def get(self, call_id: UUID) -> Optional[Call]:
        return self._calls.get(call_id)

    async def get_by_external_id(self, external_id: str) -> Optional[Call]:
        call_id = self._by_external_id.get(external_id)
        return self._calls.get(call_id) if call_id else None

    async def list(
        self,
        org_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 50,
        skip: int = 0,
    ) -> tuple[list[Call], int]:
        matches = [
            call for call in self._calls.values()
            if (org_id is None or call.org_id == org_id)
            and (user_id is None or call.user_id == user_id)
            and (start is None or call.started_at >= start)
            and (end is None or call.started_at <= end)
        ]
        matches.sort(key=lambda c: c.started_at, reverse=True)
        return matches[skip:skip + limit], len(matches)


class InMemoryMessageRepository(MessageRepository):

    def __init__(self):
        self._messages: dict[UUID, Message] = {}
        self._by_external_id: dict[tuple[str, MessageDirection], UUID] = {}

    async def create(self, message: Message) -> Message:
        key = (message.external_id, message.direction)
        if key in self._by_external_id:
            raise ValueError(f"Message already recorded: {message.external_id}")
        self._messages[message.id] = message
        self._by_external_id[key] = message.id
        return message

    async def save(self, message: Message) -> Message:
        self._messages[message.id] = message
        return message

    async def get(self, message_id: UUID) -> Optional[Message]:
        return self._messages.get(message_id)

    async def get_by_external_id(
        self,
        external_id: str,
        direction: Optional[MessageDirection] = None,
    ) -> Optional[Message]:
        directions = [direction] if direction else list(MessageDirection)
        for d in directions:
            message_id = self._by_external_id.get((external_id, d))
            if message_id:
                return self._messages[message_id]
        return None

    async def list_for_numbers(self, numbers: Iterable[str]) -> list[Message]:
        numbers = set(numbers)
        return [m for m in self._messages.values() if m.owned_number in numbers]

    async def list_conversation(
        self,
        owned_number: str,
        external_number: str,
        before: Optional[datetime] = None,
        limit: int = 50,
    ) -> list[Message]:
        matches = [
            m for m in self._messages.values()
            if m.owned_number == owned_number
            and m.external_number == external_number
            and (before is None or m.timestamp < before)
        ]
        matches.sort(key=lambda m: m.timestamp, reverse=True)
        return matches[:limit]

    async def mark_read(
        self,
        owned_number: str,
        external_number: str,
        user_id: str,
        at: datetime,
    ) -> int:
        updated = 0
        for message in self._messages.values():
            if (
                message.direction == MessageDirection.INBOUND
                and message.owned_number == owned_number
                and message.external_number == external_number
                and not message.read
            ):
                message.read = True
                message.read_by = user_id
                message.read_at = at
                updated += 1
        return updated


class InMemoryAuditTrail(AuditTrail):

    def __init__(self):
        self.entries: list[AuditEntry] = []

    async def record(self, event: str, **details: Any) -> AuditEntry:
        entry = AuditEntry(event=event, details=details)
        self.entries.append(entry)
        logger.info("Audit %s: %s", event, details)
        return entry
