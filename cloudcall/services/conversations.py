"""
Conversation read model.

A conversation is every message exchanged between one owned number and
one external number. Nothing is stored per conversation; views are
derived from the message store on each request.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from ..core.errors import NotFound
from ..core.protocols import Message, MessageDirection
from ..directory import Directory
from ..storage.base import MessageRepository, PhoneNumberRepository

logger = logging.getLogger("cloudcall.services.conversations")


@dataclass
class ContactSummary:
    name: str
    id: Optional[str] = None
    company: str = ""
    is_phone_only: bool = False


@dataclass
class ConversationSummary:
    owned_number: str
    external_number: str
    latest_message: Message
    message_count: int = 0
    unread_count: int = 0
    contact: Optional[ContactSummary] = None


@dataclass
class ConversationPage:
    messages: list[Message] = field(default_factory=list)  # Oldest first
    has_more: bool = False


class ConversationView:

    def __init__(
        self,
        numbers: PhoneNumberRepository,
        messages: MessageRepository,
        directory: Directory,
    ):
        self._numbers = numbers
        self._messages = messages
        self._directory = directory

    async def list_conversations(self, org_id: str, limit: int = 20) -> list[ConversationSummary]:
        """Conversations on the organization's numbers, most recent activity first."""
        owned = [n.number for n in await self._numbers.list_for_org(org_id)]
        if not owned:
            return []

        grouped: dict[tuple[str, str], ConversationSummary] = {}
        for message in await self._messages.list_for_numbers(owned):
            key = (message.owned_number, message.external_number)
            summary = grouped.get(key)
            if summary is None:
                summary = grouped[key] = ConversationSummary(
                    owned_number=key[0],
                    external_number=key[1],
                    latest_message=message,
                )
            elif message.timestamp > summary.latest_message.timestamp:
                summary.latest_message = message

            summary.message_count += 1
            if message.direction == MessageDirection.INBOUND and not message.read:
                summary.unread_count += 1

        conversations = sorted(
            grouped.values(),
            key=lambda c: c.latest_message.timestamp,
            reverse=True,
        )[:limit]

        for conversation in conversations:
            conversation.contact = await self._contact_for(org_id, conversation)

        return conversations

    async def _contact_for(self, org_id: str, conversation: ConversationSummary) -> ContactSummary:
        contact = None
        contact_id = conversation.latest_message.contact_id
        if contact_id:
            contact = await self._directory.get_contact(contact_id)
        if contact is None:
            contact = await self._directory.find_contact(org_id, conversation.external_number)
        if contact is None:
            return ContactSummary(name=conversation.external_number, is_phone_only=True)
        return ContactSummary(name=contact.name, id=contact.id, company=contact.company)

    async def get_conversation(
        self,
        owned_number: str,
        external_number: str,
        limit: int = 50,
        before: Optional[UUID] = None,
    ) -> ConversationPage:
        """
        One page of a conversation in chronological order.

        ``before`` is a message id; only messages older than it are
        returned, which lets clients page backwards through history.
        """
        cutoff = None
        if before is not None:
            anchor = await self._messages.get(before)
            if anchor is None:
                raise NotFound("message", str(before))
            cutoff = anchor.timestamp

        newest_first = await self._messages.list_conversation(
            owned_number,
            external_number,
            before=cutoff,
            limit=limit + 1,
        )
        has_more = len(newest_first) > limit
        page = list(reversed(newest_first[:limit]))

        logger.debug(
            "Conversation %s <-> %s: %d messages (has_more=%s)",
            owned_number,
            external_number,
            len(page),
            has_more,
        )
        return ConversationPage(messages=page, has_more=has_more)
