"""
Health check endpoints for CloudCall.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from .. import __version__
from ..core.protocols import utcnow
from ..service import CommsService, get_comms_service

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    service: str = "cloudcall"
    version: str = __version__
    timestamp: datetime
    enabled: bool
    connected: bool
    provider: Optional[str] = None
    pending_reconciliation: int = 0


@router.get("/health", response_model=HealthResponse)
async def health_check(service: CommsService = Depends(get_comms_service)):
    """Get service health status."""
    enabled = service.settings.enabled
    return HealthResponse(
        status="healthy" if service.is_connected or not enabled else "degraded",
        timestamp=utcnow(),
        enabled=enabled,
        connected=service.is_connected,
        provider=service.gateway.name,
        pending_reconciliation=len(service.reconciliation),
    )


@router.get("/ping")
async def ping():
    """Simple ping endpoint."""
    return {"pong": True}
