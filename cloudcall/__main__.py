"""
Entry point for running cloudcall as a standalone service.

Usage:
    python -m cloudcall

Or with uvicorn:
    uvicorn cloudcall.api.main:app --host 0.0.0.0 --port 5003
"""

import logging

import uvicorn

from .core.config import comms_settings


def main():
    """Run the cloudcall FastAPI server."""
    logging.basicConfig(
        level=comms_settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "cloudcall.api.main:app",
        host=comms_settings.server.host,
        port=comms_settings.server.port,
        reload=False,
        log_level=comms_settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
