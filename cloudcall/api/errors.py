"""
Mapping of routing errors onto HTTP responses.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import (
    AlreadyTerminal,
    CommsError,
    GatewayError,
    InvalidConfiguration,
    NotFound,
    PermissionDenied,
)

logger = logging.getLogger("cloudcall.api.errors")


def status_for(error: CommsError) -> int:
    if isinstance(error, NotFound):
        return 404
    if isinstance(error, PermissionDenied):
        return 403
    if isinstance(error, InvalidConfiguration):
        return 422
    if isinstance(error, AlreadyTerminal):
        return 409
    if isinstance(error, GatewayError):
        return 502 if error.transient else 400
    return 500


async def comms_error_handler(request: Request, exc: CommsError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s rejected (%d): %s", request.method, request.url.path, status_code, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CommsError, comms_error_handler)
