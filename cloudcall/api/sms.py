"""
SMS and conversation endpoints.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, model_validator

from ..core.protocols import Message
from ..service import CommsService, get_comms_service
from ..services.conversations import ConversationSummary

logger = logging.getLogger("cloudcall.api.sms")
router = APIRouter()

E164 = r"^\+[1-9]\d{1,14}$"


class SendSMSRequest(BaseModel):
    """Request to send an SMS."""
    from_number: str = Field(..., pattern=E164, description="Owned number to send from")
    to_number: str = Field(..., pattern=E164, description="Recipient phone number (E.164 format)")
    user_id: str = Field(..., min_length=1, description="User sending the message")
    body: str = Field("", description="Message text")
    media_urls: Optional[list[str]] = Field(None, description="MMS attachment URLs")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def require_content(self) -> "SendSMSRequest":
        if not self.body.strip() and not self.media_urls:
            raise ValueError("A message needs a body or media")
        return self


class MessageResponse(BaseModel):
    id: str
    external_id: str
    from_number: str
    to_number: str
    direction: str
    body: str
    media_urls: list[str] = []
    status: str
    timestamp: datetime
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    contact_id: Optional[str] = None
    read: bool = False
    is_auto_reply: bool = False
    reconciliation_pending: bool = False

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=str(message.id),
            external_id=message.external_id,
            from_number=message.from_number,
            to_number=message.to_number,
            direction=message.direction.value,
            body=message.body,
            media_urls=message.media_urls,
            status=message.status,
            timestamp=message.timestamp,
            user_id=message.user_id,
            team_id=message.team_id,
            contact_id=message.contact_id,
            read=message.read,
            is_auto_reply=message.is_auto_reply,
            reconciliation_pending=bool(message.metadata.get("reconciliation_pending")),
        )


class ContactResponse(BaseModel):
    name: str
    id: Optional[str] = None
    company: str = ""
    is_phone_only: bool = False


class ConversationResponse(BaseModel):
    owned_number: str
    external_number: str
    latest_message: MessageResponse
    message_count: int
    unread_count: int
    contact: Optional[ContactResponse] = None

    @classmethod
    def from_summary(cls, summary: ConversationSummary) -> "ConversationResponse":
        contact = None
        if summary.contact is not None:
            contact = ContactResponse(
                name=summary.contact.name,
                id=summary.contact.id,
                company=summary.contact.company,
                is_phone_only=summary.contact.is_phone_only,
            )
        return cls(
            owned_number=summary.owned_number,
            external_number=summary.external_number,
            latest_message=MessageResponse.from_message(summary.latest_message),
            message_count=summary.message_count,
            unread_count=summary.unread_count,
            contact=contact,
        )


class ConversationPageResponse(BaseModel):
    messages: list[MessageResponse]
    has_more: bool


class MarkReadRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


@router.post("/send", response_model=MessageResponse)
async def send_sms(
    request: SendSMSRequest,
    service: CommsService = Depends(get_comms_service),
):
    """Send an SMS message."""
    if not service.is_connected:
        raise HTTPException(
            status_code=503,
            detail="Routing service not connected"
        )

    message = await service.messages.send_message(
        from_number=request.from_number,
        to_number=request.to_number,
        body=request.body,
        user_id=request.user_id,
        media_urls=request.media_urls,
        metadata=request.metadata,
    )
    return MessageResponse.from_message(message)


@router.get("/conversations", response_model=list[ConversationResponse])
async def list_conversations(
    org_id: str,
    limit: int = Query(20, ge=1, le=200),
    service: CommsService = Depends(get_comms_service),
):
    """Conversations on an organization's numbers, most recent first."""
    conversations = await service.conversations.list_conversations(org_id, limit=limit)
    return [ConversationResponse.from_summary(c) for c in conversations]


@router.get(
    "/conversations/{owned_number}/{external_number}",
    response_model=ConversationPageResponse,
)
async def get_conversation(
    owned_number: str,
    external_number: str,
    limit: int = Query(50, ge=1, le=500),
    before: Optional[UUID] = None,
    service: CommsService = Depends(get_comms_service),
):
    """One page of a conversation, oldest message first."""
    page = await service.conversations.get_conversation(
        owned_number,
        external_number,
        limit=limit,
        before=before,
    )
    return ConversationPageResponse(
        messages=[MessageResponse.from_message(m) for m in page.messages],
        has_more=page.has_more,
    )


@router.post("/conversations/{owned_number}/{external_number}/read")
async def mark_conversation_read(
    owned_number: str,
    external_number: str,
    request: MarkReadRequest,
    service: CommsService = Depends(get_comms_service),
):
    """Mark every unread inbound message in a conversation as read."""
    updated = await service.messages.mark_conversation_read(
        owned_number,
        external_number,
        request.user_id,
    )
    return {"success": True, "updated": updated}
