"""
FastAPI application for the CloudCall routing service.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .. import __version__
from ..core.config import comms_settings

logger = logging.getLogger("cloudcall.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info(
        "CloudCall starting on %s:%d",
        comms_settings.server.host,
        comms_settings.server.port,
    )

    comms_service = None
    if comms_settings.enabled:
        from ..service import init_comms_service
        comms_service = await init_comms_service()
        if comms_service:
            logger.info("Routing service started")
        else:
            logger.warning("Failed to start routing service")

    yield

    # Shutdown
    logger.info("CloudCall shutting down")

    if comms_service:
        from ..service import shutdown_comms_service
        await shutdown_comms_service()
        logger.info("Routing service stopped")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    application = FastAPI(
        title="CloudCall Routing",
        description="Call and SMS routing with call lifecycle tracking",
        version=__version__,
        lifespan=lifespan,
    )

    from .errors import register_error_handlers
    register_error_handlers(application)

    # Include routers
    from .health import router as health_router
    from .calls import router as calls_router
    from .sms import router as sms_router
    from .webhooks import router as webhooks_router

    application.include_router(health_router, tags=["health"])
    application.include_router(calls_router, prefix="/calls", tags=["calls"])
    application.include_router(sms_router, prefix="/sms", tags=["sms"])
    application.include_router(webhooks_router, prefix="/webhooks", tags=["webhooks"])

    return application


# Create app instance
app = create_app()
