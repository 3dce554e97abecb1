"""
In-process gateway that records requests instead of reaching a provider.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Optional

from ..core.config import CommsConfig, comms_settings
from ..core.errors import GatewayError
from ..core.protocols import Gateway
from . import register_provider

logger = logging.getLogger("cloudcall.providers.stub")


@dataclass
class PlacedCall:
    external_id: str
    from_number: str
    to_number: str
    record: bool = False
    status_callback: Optional[str] = None


@dataclass
class PlacedMessage:
    external_id: str
    from_number: str
    to_number: str
    body: str
    media_urls: list[str] = field(default_factory=list)


@register_provider("stub")
class StubGateway(Gateway):
    """
    Gateway double.

    Every request is appended to ``calls``, ``messages`` or ``ended``.
    ``fail_next`` makes the next request raise the given error once.
    """

    def __init__(self, settings: Optional[CommsConfig] = None):
        self._settings = settings or comms_settings
        self._connected = False
        self._ids = itertools.count(1)
        self._failure: Optional[GatewayError] = None
        self.calls: list[PlacedCall] = []
        self.messages: list[PlacedMessage] = []
        self.ended: list[str] = []
        self.recordings: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "stub"

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def fail_next(self, error: GatewayError) -> None:
        self._failure = error

    def _check_failure(self) -> None:
        if self._failure is not None:
            error, self._failure = self._failure, None
            raise error

    async def place_call(
        self,
        from_number: str,
        to_number: str,
        record: bool = False,
        status_callback: Optional[str] = None,
    ) -> str:
        self._check_failure()
        external_id = f"CA{next(self._ids):032d}"
        self.calls.append(PlacedCall(external_id, from_number, to_number, record, status_callback))
        logger.debug("Stub placed call %s: %s -> %s", external_id, from_number, to_number)
        return external_id

    async def place_message(
        self,
        from_number: str,
        to_number: str,
        body: str,
        media_urls: Optional[list[str]] = None,
    ) -> str:
        self._check_failure()
        external_id = f"SM{next(self._ids):032d}"
        self.messages.append(
            PlacedMessage(external_id, from_number, to_number, body, list(media_urls or []))
        )
        logger.debug("Stub sent message %s: %s -> %s", external_id, from_number, to_number)
        return external_id

    async def end_call(self, external_id: str) -> None:
        self._check_failure()
        self.ended.append(external_id)

    async def get_recording_url(self, external_id: str) -> Optional[str]:
        return self.recordings.get(external_id)
