"""
Error taxonomy for routing and lifecycle operations.
"""

from typing import Optional


class CommsError(Exception):
    """Base class for all routing service errors."""


class NotFound(CommsError):
    """A phone number, call, message or user does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class PermissionDenied(CommsError):
    """The acting user may not operate the phone number."""


class InvalidConfiguration(CommsError):
    """Unknown or malformed routing / SMS configuration."""


class GatewayError(CommsError):
    """
    The telephony provider rejected or failed a request.

    ``transient`` separates network/provider outages (safe to retry) from
    permanent rejections such as an invalid destination number.
    """

    def __init__(
        self,
        message: str,
        transient: bool = True,
        code: Optional[int] = None,
    ):
        self.transient = transient
        self.code = code
        super().__init__(message)


class AlreadyTerminal(CommsError):
    """An action was attempted on a call that already finished."""

    def __init__(self, external_id: str, current: str, requested: Optional[str] = None):
        self.external_id = external_id
        self.current = current
        self.requested = requested
        if requested:
            msg = f"Call {external_id} is already {current}, cannot move to {requested}"
        else:
            msg = f"Call {external_id} is already {current}"
        super().__init__(msg)


class DuplicateEvent(CommsError):
    """A provider notification was delivered more than once."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Duplicate event: {event_id}")
