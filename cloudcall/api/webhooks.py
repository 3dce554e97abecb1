"""
Provider webhook endpoints.

Twilio posts form-encoded events here. Every endpoint answers 200 with
TwiML, whatever happens internally, so the provider never sees a failed
webhook it would retry or play an error tone for.
"""

import logging
from typing import Any, Mapping, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from ..core.errors import AlreadyTerminal, CommsError
from ..core.instructions import speak_and_hangup
from ..core.protocols import (
    CallStatus,
    CallStatusEvent,
    InboundCallEvent,
    InboundMessageEvent,
    MessageStatusEvent,
)
from ..providers.twilio import (
    empty_response,
    extract_media_urls,
    is_valid_signature,
    parse_call_status,
    render_twiml,
)
from ..service import CommsService, get_comms_service

logger = logging.getLogger("cloudcall.api.webhooks")
router = APIRouter()

IDEMPOTENCY_HEADER = "I-Twilio-Idempotency-Token"
SIGNATURE_HEADER = "X-Twilio-Signature"


def _xml(content: str) -> Response:
    return Response(content=content, media_type="application/xml")


async def _read_form(request: Request, service: CommsService) -> Mapping[str, Any]:
    form = await request.form()
    twilio = service.settings.twilio
    if twilio.validate_signature:
        url = service.settings.callback_url(request.url.path)
        if request.url.query:
            url += "?" + request.url.query
        if not is_valid_signature(
            twilio.auth_token, url, form, request.headers.get(SIGNATURE_HEADER)
        ):
            logger.warning("Rejected webhook with invalid signature: %s", request.url.path)
            raise HTTPException(status_code=403, detail="Invalid signature")
    return form


def _event_id(request: Request) -> Optional[str]:
    return request.headers.get(IDEMPOTENCY_HEADER)


def _duration(value: Any) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        logger.warning("Invalid call duration: %r", value)
        return None


def _call_id(value: Optional[str]) -> Optional[UUID]:
    try:
        return UUID(value)
    except (TypeError, ValueError):
        logger.error("Webhook with invalid call_id: %r", value)
        return None


def _attempt(value: Optional[str]) -> int:
    # A retry without a counter is the second play
    try:
        return max(int(value), 1)
    except (TypeError, ValueError):
        return 2


# === Voice ===


@router.post("/voice/inbound")
async def voice_inbound(request: Request, service: CommsService = Depends(get_comms_service)):
    """Answer an inbound call with routing instructions."""
    form = await _read_form(request, service)
    try:
        event = InboundCallEvent(
            external_id=form["CallSid"],
            from_number=form["From"],
            to_number=form["To"],
            status=parse_call_status(form.get("CallStatus", "ringing")) or CallStatus.RINGING,
            event_id=_event_id(request),
        )
    except KeyError as e:
        logger.error("Malformed inbound call webhook, missing %s", e)
        return _xml(render_twiml(speak_and_hangup(service.settings.routing.error_message)))

    instructions = await service.calls.handle_inbound_call(event)
    return _xml(render_twiml(instructions))


@router.post("/voice/outbound")
async def voice_outbound(request: Request, service: CommsService = Depends(get_comms_service)):
    """Bridge an answered outbound call to the user who placed it."""
    form = await _read_form(request, service)
    instructions = await service.calls.outbound_instructions(form.get("CallSid", ""))
    return _xml(render_twiml(instructions))


@router.post("/voice/status")
async def voice_status(request: Request, service: CommsService = Depends(get_comms_service)):
    """Apply a call status callback."""
    form = await _read_form(request, service)
    call_sid = form.get("CallSid")
    status = parse_call_status(form.get("CallStatus", ""))

    if call_sid and status is not None:
        event = CallStatusEvent(
            external_id=call_sid,
            status=status,
            duration_seconds=_duration(form.get("CallDuration")),
            event_id=_event_id(request),
        )
        try:
            await service.calls.update_call_status(event)
        except AlreadyTerminal as e:
            logger.warning("Status callback anomaly: %s", e)
        except CommsError as e:
            logger.warning("Status callback for %s not applied: %s", call_sid, e)
        except Exception as e:
            logger.exception("Error applying status for call %s: %s", call_sid, e)

    return _xml(empty_response())


@router.post("/voice/ivr")
async def voice_ivr(
    request: Request,
    call_id: Optional[str] = None,
    ivr_id: Optional[str] = None,
    retry: Optional[str] = None,
    attempt: Optional[str] = None,
    service: CommsService = Depends(get_comms_service),
):
    """Handle an IVR selection, or replay the menu when no digits came in."""
    form = await _read_form(request, service)
    parsed = _call_id(call_id)
    if parsed is None:
        return _xml(render_twiml(speak_and_hangup(service.settings.routing.error_message)))

    digits = form.get("Digits") or None
    tries = _attempt(attempt) if retry == "true" else 1
    instructions = await service.calls.ivr_instructions(
        parsed, ivr_id=ivr_id, digits=digits, attempt=tries
    )
    return _xml(render_twiml(instructions))


@router.post("/voice/voicemail")
async def voice_voicemail(
    request: Request,
    call_id: Optional[str] = None,
    service: CommsService = Depends(get_comms_service),
):
    """Follow up an unanswered dial with the voicemail prompt."""
    form = await _read_form(request, service)
    parsed = _call_id(call_id)
    if parsed is None:
        return _xml(render_twiml(speak_and_hangup(service.settings.routing.error_message)))

    instructions = await service.calls.voicemail_instructions(
        parsed, dial_status=form.get("DialCallStatus")
    )
    return _xml(render_twiml(instructions))


# === SMS ===


@router.post("/sms/inbound")
async def sms_inbound(request: Request, service: CommsService = Depends(get_comms_service)):
    """Record and route an inbound message."""
    form = await _read_form(request, service)
    message_sid = form.get("MessageSid") or form.get("SmsSid")

    if message_sid and form.get("From") and form.get("To"):
        event = InboundMessageEvent(
            external_id=message_sid,
            from_number=form["From"],
            to_number=form["To"],
            body=form.get("Body", ""),
            media_urls=extract_media_urls(form),
            event_id=_event_id(request),
        )
        await service.messages.handle_inbound_message(event)
    else:
        logger.error("Malformed inbound message webhook: %s", dict(form))

    return _xml(empty_response())


@router.post("/sms/status")
async def sms_status(request: Request, service: CommsService = Depends(get_comms_service)):
    """Record a message delivery status callback."""
    form = await _read_form(request, service)
    message_sid = form.get("MessageSid") or form.get("SmsSid")
    status = form.get("MessageStatus") or form.get("SmsStatus")

    if message_sid and status:
        event = MessageStatusEvent(
            external_id=message_sid,
            status=status,
            error_code=form.get("ErrorCode") or None,
            event_id=_event_id(request),
        )
        try:
            await service.messages.update_message_status(event)
        except CommsError as e:
            logger.warning("Status callback for %s not applied: %s", message_sid, e)
        except Exception as e:
            logger.exception("Error applying status for message %s: %s", message_sid, e)

    return _xml(empty_response())
