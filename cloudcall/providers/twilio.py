"""
Twilio gateway implementation.

Places calls and messages through Twilio's REST API, renders the
call-handling instruction tree as TwiML, and parses Twilio's webhook
vocabulary into gateway events.

Twilio Concepts:
- TwiML: XML-based instructions for call handling
- Webhooks: HTTP form posts for inbound calls/messages and status changes
- Signatures: X-Twilio-Signature, an HMAC of the URL and form parameters
"""

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional

from twilio.base.exceptions import TwilioException, TwilioRestException
from twilio.request_validator import RequestValidator
from twilio.rest import Client
from twilio.twiml import voice_response as twiml
from twilio.twiml.messaging_response import MessagingResponse

from ..core.config import CommsConfig, comms_settings
from ..core.errors import GatewayError, InvalidConfiguration
from ..core.instructions import Dial, Gather, Hangup, Instruction, Redirect, Say
from ..core.protocols import CallStatus, Gateway
from . import register_provider

logger = logging.getLogger("cloudcall.providers.twilio")

API_BASE = "https://api.twilio.com"

# Twilio call status -> CallStatus
CALL_STATUS_MAP = {
    "queued": CallStatus.INITIATED,
    "initiated": CallStatus.INITIATED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.IN_PROGRESS,
    "answered": CallStatus.IN_PROGRESS,
    "completed": CallStatus.COMPLETED,
    "busy": CallStatus.FAILED,
    "failed": CallStatus.FAILED,
    "no-answer": CallStatus.FAILED,
    "canceled": CallStatus.REJECTED,
}


def parse_call_status(value: str) -> Optional[CallStatus]:
    """Map a Twilio CallStatus value; None for values we do not track."""
    status = CALL_STATUS_MAP.get((value or "").strip().lower())
    if status is None:
        logger.warning("Unrecognized Twilio call status: %r", value)
    return status


def extract_media_urls(form: Mapping[str, Any]) -> list[str]:
    """Collect MediaUrl0..MediaUrlN from an inbound message webhook."""
    try:
        count = int(form.get("NumMedia") or 0)
    except ValueError:
        logger.warning("Invalid NumMedia value: %r", form.get("NumMedia"))
        return []
    urls = []
    for i in range(count):
        url = form.get(f"MediaUrl{i}")
        if url:
            urls.append(str(url))
    return urls


def is_valid_signature(
    auth_token: str,
    url: str,
    params: Mapping[str, Any],
    signature: Optional[str],
) -> bool:
    """Check X-Twilio-Signature for a webhook request."""
    if not signature:
        return False
    return RequestValidator(auth_token).validate(url, dict(params), signature)


def render_twiml(instructions: list[Instruction]) -> str:
    """Render an instruction list as a TwiML voice response."""
    response = twiml.VoiceResponse()
    for instruction in instructions:
        if isinstance(instruction, Say):
            response.say(instruction.text)

        elif isinstance(instruction, Dial):
            attrs: dict[str, Any] = {}
            if instruction.timeout_seconds is not None:
                attrs["timeout"] = instruction.timeout_seconds
            if instruction.caller_id:
                attrs["caller_id"] = instruction.caller_id
            if instruction.on_no_answer_action:
                attrs["action"] = instruction.on_no_answer_action
                attrs["method"] = "POST"
            dial = twiml.Dial(**attrs)
            for target in instruction.targets:
                if target.startswith("+"):
                    dial.number(target)
                else:
                    dial.client(target)
            response.append(dial)

        elif isinstance(instruction, Gather):
            gather = twiml.Gather(
                num_digits=instruction.num_digits,
                action=instruction.on_input_action,
                method="POST",
                timeout=instruction.timeout_seconds,
            )
            if instruction.prompt is not None:
                gather.say(instruction.prompt.text)
            response.append(gather)

        elif isinstance(instruction, Redirect):
            response.redirect(instruction.action, method="POST")

        elif isinstance(instruction, Hangup):
            response.hangup()

        else:
            raise InvalidConfiguration(f"Unknown instruction: {instruction!r}")

    return str(response)


def empty_response() -> str:
    """Acknowledge a messaging or status webhook without further action."""
    return str(MessagingResponse())


@register_provider("twilio")
class TwilioGateway(Gateway):
    """
    Twilio implementation of the Gateway protocol.

    The Twilio client is synchronous; every REST call runs in a worker
    thread so the event loop keeps serving webhooks.
    """

    def __init__(
        self,
        settings: Optional[CommsConfig] = None,
        client: Optional[Client] = None,
    ):
        self._settings = settings or comms_settings
        self._client = client
        self._connected = client is not None

    @property
    def name(self) -> str:
        return "twilio"

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        """Initialize Twilio client."""
        if self._client is None:
            account_sid = self._settings.twilio.account_sid
            auth_token = self._settings.twilio.auth_token

            if not account_sid or not auth_token:
                raise InvalidConfiguration(
                    "Twilio credentials not configured. "
                    "Set CLOUDCALL_TWILIO_ACCOUNT_SID and CLOUDCALL_TWILIO_AUTH_TOKEN"
                )

            self._client = Client(account_sid, auth_token)

        self._connected = True
        logger.info("Twilio gateway connected")

    async def disconnect(self) -> None:
        """Disconnect from Twilio."""
        self._client = None
        self._connected = False
        logger.info("Twilio gateway disconnected")

    async def _request(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        if self._client is None:
            raise GatewayError("Twilio gateway not connected")

        try:
            return await asyncio.to_thread(func, **kwargs)
        except TwilioRestException as e:
            transient = e.status >= 500 or e.status == 429
            logger.error(
                "Twilio %s failed (status %s, code %s): %s",
                operation,
                e.status,
                e.code,
                e.msg,
            )
            raise GatewayError(
                f"Twilio {operation} failed: {e.msg}",
                transient=transient,
                code=e.code,
            ) from e
        except (TwilioException, OSError) as e:
            logger.error("Twilio %s failed: %s", operation, e)
            raise GatewayError(f"Twilio {operation} failed: {e}") from e

    async def place_call(
        self,
        from_number: str,
        to_number: str,
        record: bool = False,
        status_callback: Optional[str] = None,
    ) -> str:
        """Initiate an outbound call; the answer webhook bridges the user in."""
        params: dict[str, Any] = {
            "to": to_number,
            "from_": from_number,
            "url": self._settings.callback_url("/webhooks/voice/outbound"),
            "record": record,
        }
        if status_callback:
            params["status_callback"] = status_callback
            params["status_callback_event"] = ["initiated", "ringing", "answered", "completed"]

        call = await self._request("place_call", self._client.calls.create, **params)
        logger.info("Initiated outbound call %s: %s -> %s", call.sid, from_number, to_number)
        return call.sid

    async def place_message(
        self,
        from_number: str,
        to_number: str,
        body: str,
        media_urls: Optional[list[str]] = None,
    ) -> str:
        """Send an SMS, or an MMS when media is attached."""
        params: dict[str, Any] = {
            "to": to_number,
            "from_": from_number,
            "body": body,
            "status_callback": self._settings.callback_url("/webhooks/sms/status"),
        }
        if media_urls:
            params["media_url"] = media_urls

        message = await self._request("place_message", self._client.messages.create, **params)
        logger.info("Sent SMS %s: %s -> %s", message.sid, from_number, to_number)
        return message.sid

    async def end_call(self, external_id: str) -> None:
        """End an active call."""
        await self._request(
            "end_call",
            self._client.calls(external_id).update,
            status="completed",
        )
        logger.info("Ended call %s", external_id)

    async def get_recording_url(self, external_id: str) -> Optional[str]:
        recordings = await self._request(
            "get_recording_url",
            self._client.recordings.list,
            call_sid=external_id,
            limit=1,
        )
        if not recordings:
            return None
        return API_BASE + recordings[0].uri.replace(".json", ".mp3")
