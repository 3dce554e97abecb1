"""
Call management endpoints.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..core.protocols import Call
from ..service import CommsService, get_comms_service

logger = logging.getLogger("cloudcall.api.calls")
router = APIRouter()

E164 = r"^\+[1-9]\d{1,14}$"


class CallResponse(BaseModel):
    """Call information response."""
    id: str
    external_id: str
    from_number: str
    to_number: str
    direction: str
    status: str
    org_id: Optional[str] = None
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    ivr_id: Optional[str] = None
    started_at: datetime
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    recording_url: Optional[str] = None
    reconciliation_pending: bool = False

    @classmethod
    def from_call(cls, call: Call) -> "CallResponse":
        return cls(
            id=str(call.id),
            external_id=call.external_id,
            from_number=call.from_number,
            to_number=call.to_number,
            direction=call.direction.value,
            status=call.status.value,
            org_id=call.org_id,
            user_id=call.user_id,
            team_id=call.team_id,
            ivr_id=call.ivr_id,
            started_at=call.started_at,
            answered_at=call.answered_at,
            ended_at=call.ended_at,
            duration_seconds=call.duration_seconds,
            recording_url=call.recording_url,
            reconciliation_pending=bool(call.metadata.get("reconciliation_pending")),
        )


class CallListResponse(BaseModel):
    calls: list[CallResponse]
    total: int
    has_more: bool


class MakeCallRequest(BaseModel):
    """Request to make an outbound call."""
    from_number: str = Field(..., pattern=E164, description="Owned number to call from")
    to_number: str = Field(..., pattern=E164, description="Phone number to call (E.164 format)")
    user_id: str = Field(..., min_length=1, description="User placing the call")
    record: Optional[bool] = Field(None, description="Override the number's recording default")
    metadata: dict[str, Any] = Field(default_factory=dict)


def _require_connected(service: CommsService) -> None:
    if not service.is_connected:
        raise HTTPException(
            status_code=503,
            detail="Routing service not connected"
        )


@router.get("", response_model=CallListResponse)
async def list_calls(
    org_id: Optional[str] = None,
    user_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(50, ge=1, le=500),
    skip: int = Query(0, ge=0),
    service: CommsService = Depends(get_comms_service),
):
    """List calls, newest first."""
    page = await service.calls.list_calls(
        org_id=org_id,
        user_id=user_id,
        start=start,
        end=end,
        limit=limit,
        skip=skip,
    )
    return CallListResponse(
        calls=[CallResponse.from_call(call) for call in page.calls],
        total=page.total,
        has_more=page.has_more,
    )


@router.get("/{call_id}", response_model=CallResponse)
async def get_call(call_id: UUID, service: CommsService = Depends(get_comms_service)):
    """Get a specific call by ID."""
    call = await service.calls.get_call(call_id)
    return CallResponse.from_call(call)


@router.post("/outbound", response_model=CallResponse)
async def make_call(
    request: MakeCallRequest,
    service: CommsService = Depends(get_comms_service),
):
    """Make an outbound call."""
    _require_connected(service)

    call = await service.calls.initiate_call(
        from_number=request.from_number,
        to_number=request.to_number,
        user_id=request.user_id,
        record=request.record,
        metadata=request.metadata,
    )
    return CallResponse.from_call(call)


@router.post("/{call_id}/end", response_model=CallResponse)
async def end_call(call_id: UUID, service: CommsService = Depends(get_comms_service)):
    """Hang up an active call."""
    _require_connected(service)

    call = await service.calls.end_call(call_id)
    return CallResponse.from_call(call)
