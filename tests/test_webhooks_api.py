"""
Tests for the HTTP surface: provider webhooks and the call/SMS endpoints.

Uses FastAPI's TestClient with the routing service dependency overridden
by a service wired to the stub gateway and in-memory stores.
"""

import asyncio
import xml.etree.ElementTree as ET
from urllib.parse import urlsplit

import pytest
from fastapi.testclient import TestClient
from twilio.request_validator import RequestValidator

from conftest import CALLER, ORG, SALES_NUMBER, SUPPORT_NUMBER, TEAM
from cloudcall.api.main import create_app
from cloudcall.core.errors import GatewayError
from cloudcall.core.protocols import CallStatus, MessageDirection
from cloudcall.routing.config import PhoneNumber
from cloudcall.service import CommsService, get_comms_service

AUTH_TOKEN = "secret-token"


def _number(**kwargs) -> PhoneNumber:
    return PhoneNumber(
        number=SUPPORT_NUMBER,
        org_id=ORG,
        routing={"type": "team", "team_id": TEAM},
        sms={"routing": {"type": "team", "team_id": TEAM}},
        **kwargs,
    )


@pytest.fixture
def service(settings, gateway, numbers, calls, messages, directory, audit):
    service = CommsService(
        settings=settings,
        gateway=gateway,
        numbers=numbers,
        calls=calls,
        messages=messages,
        directory=directory,
        audit=audit,
    )
    asyncio.run(numbers.save(_number()))
    asyncio.run(service.start())
    return service


@pytest.fixture
def client(service):
    app = create_app()
    app.dependency_overrides[get_comms_service] = lambda: service
    return TestClient(app)


def _xml(response) -> ET.Element:
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/xml")
    return ET.fromstring(response.text)


def _inbound_call(client, sid="CA1", to=SUPPORT_NUMBER, **headers):
    return client.post(
        "/webhooks/voice/inbound",
        data={"CallSid": sid, "From": CALLER, "To": to, "CallStatus": "ringing"},
        headers=headers,
    )


def _path(url: str) -> str:
    """Relative path and query of an absolute callback URL."""
    parts = urlsplit(url)
    return f"{parts.path}?{parts.query}"


# ---------------------------------------------------------------------------
# Voice webhooks
# ---------------------------------------------------------------------------

class TestVoiceWebhooks:

    def test_inbound_call_dials_team(self, client, calls):
        root = _xml(_inbound_call(client))

        dial = root.find("Dial")
        assert [c.text for c in dial.findall("Client")] == ["client_u1", "client_u2", "client_u3"]
        assert "/webhooks/voice/voicemail?call_id=" in dial.get("action")

        call = asyncio.run(calls.get_by_external_id("CA1"))
        assert call.team_id == TEAM
        assert call.status == CallStatus.RINGING

    def test_unregistered_number(self, client):
        root = _xml(_inbound_call(client, to="+15550000077"))

        assert root.find("Say").text == "This number is not in service."
        assert root.find("Hangup") is not None

    def test_malformed_inbound_call(self, client):
        root = _xml(client.post("/webhooks/voice/inbound", data={"From": CALLER}))

        assert root.find("Say").text == "An error occurred. Please try again later."

    def test_status_callbacks(self, client, calls):
        _inbound_call(client)

        for status in ("in-progress", "completed"):
            _xml(client.post(
                "/webhooks/voice/status",
                data={"CallSid": "CA1", "CallStatus": status, "CallDuration": "42"},
            ))

        call = asyncio.run(calls.get_by_external_id("CA1"))
        assert call.status == CallStatus.COMPLETED
        assert call.duration_seconds == 42

    def test_status_for_unknown_call_still_acknowledged(self, client):
        root = _xml(client.post(
            "/webhooks/voice/status",
            data={"CallSid": "CA404", "CallStatus": "completed"},
        ))

        assert root.tag == "Response"

    def test_late_status_after_completion_acknowledged(self, client, calls):
        _inbound_call(client)
        client.post("/webhooks/voice/status", data={"CallSid": "CA1", "CallStatus": "completed"})

        _xml(client.post("/webhooks/voice/status", data={"CallSid": "CA1", "CallStatus": "failed"}))

        call = asyncio.run(calls.get_by_external_id("CA1"))
        assert call.status == CallStatus.COMPLETED

    def test_outbound_answer_bridges_user(self, client, gateway):
        response = client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
        })
        external_id = response.json()["external_id"]

        root = _xml(client.post("/webhooks/voice/outbound", data={"CallSid": external_id}))

        dial = root.find("Dial")
        assert dial.get("callerId") == SUPPORT_NUMBER
        assert dial.find("Client").text == "client_u1"


class TestVoiceContinuations:

    @pytest.fixture
    def ivr_client(self, client, numbers):
        asyncio.run(numbers.save(PhoneNumber(
            number=SALES_NUMBER,
            org_id=ORG,
            routing={"type": "ivr", "ivr_id": "main", "welcome_message": "Press 1 for sales"},
        )))
        return client

    def test_redirect_replays_menu(self, ivr_client):
        root = _xml(_inbound_call(ivr_client, to=SALES_NUMBER))

        replay = _xml(ivr_client.post(_path(root.find("Redirect").text), data={"CallSid": "CA1"}))

        assert replay.find("Gather/Say").text == "Press 1 for sales"
        assert replay.find("Redirect").text.endswith("&retry=true&attempt=3")

    def test_menu_ends_after_max_attempts(self, ivr_client, settings):
        root = _xml(_inbound_call(ivr_client, to=SALES_NUMBER))
        for _ in range(settings.routing.ivr_max_attempts - 1):
            root = _xml(ivr_client.post(_path(root.find("Redirect").text), data={"CallSid": "CA1"}))
            assert root.find("Gather") is not None

        final = _xml(ivr_client.post(_path(root.find("Redirect").text), data={"CallSid": "CA1"}))

        assert final.find("Say").text == settings.routing.ivr_no_input_message
        assert final.find("Hangup") is not None

    def test_gather_selection(self, ivr_client, calls, settings):
        gather = _xml(_inbound_call(ivr_client, to=SALES_NUMBER)).find("Gather")

        root = _xml(ivr_client.post(_path(gather.get("action")), data={"CallSid": "CA1", "Digits": "1"}))

        assert root.find("Say").text == settings.routing.ivr_selection_message
        assert root.find("Hangup") is not None
        call = asyncio.run(calls.get_by_external_id("CA1"))
        assert call.metadata["ivr_selection"] == "1"

    def test_voicemail_after_no_answer(self, client, settings):
        dial = _xml(_inbound_call(client)).find("Dial")

        root = _xml(client.post(
            _path(dial.get("action")),
            data={"CallSid": "CA1", "DialCallStatus": "no-answer"},
        ))

        assert root.find("Say").text == settings.routing.voicemail_prompt
        assert root.find("Hangup") is not None

    def test_answered_dial_hangs_up(self, client):
        dial = _xml(_inbound_call(client)).find("Dial")

        root = _xml(client.post(
            _path(dial.get("action")),
            data={"CallSid": "CA1", "DialCallStatus": "completed"},
        ))

        assert root.find("Say") is None
        assert root.find("Hangup") is not None

    @pytest.mark.parametrize("path", [
        "/webhooks/voice/voicemail?call_id=nope",
        "/webhooks/voice/ivr?ivr_id=main&retry=true&attempt=x",
    ])
    def test_bad_call_id_still_answered(self, client, settings, path):
        root = _xml(client.post(path, data={"CallSid": "CA1"}))

        assert root.find("Say").text == settings.routing.error_message


# ---------------------------------------------------------------------------
# SMS webhooks
# ---------------------------------------------------------------------------

class TestSMSWebhooks:

    def test_inbound_message_recorded(self, client, messages):
        root = _xml(client.post("/webhooks/sms/inbound", data={
            "MessageSid": "SM1",
            "From": CALLER,
            "To": SUPPORT_NUMBER,
            "Body": "Hello",
            "NumMedia": "1",
            "MediaUrl0": "https://m/1.jpg",
        }))

        assert root.tag == "Response"
        message = asyncio.run(messages.get_by_external_id("SM1", MessageDirection.INBOUND))
        assert message.body == "Hello"
        assert message.team_id == TEAM
        assert message.media_urls == ["https://m/1.jpg"]

    def test_redelivered_event_recorded_once(self, client, messages):
        data = {"MessageSid": "SM1", "From": CALLER, "To": SUPPORT_NUMBER, "Body": "Hello"}
        headers = {"I-Twilio-Idempotency-Token": "evt-1"}

        client.post("/webhooks/sms/inbound", data=data, headers=headers)
        client.post("/webhooks/sms/inbound", data=data, headers=headers)

        assert len(asyncio.run(messages.list_for_numbers([SUPPORT_NUMBER]))) == 1

    def test_malformed_message_acknowledged(self, client):
        root = _xml(client.post("/webhooks/sms/inbound", data={"Body": "?"}))

        assert root.tag == "Response"

    def test_status_callback(self, client, messages):
        sent = client.post("/sms/send", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
            "body": "Hi",
        }).json()

        _xml(client.post("/webhooks/sms/status", data={
            "MessageSid": sent["external_id"],
            "MessageStatus": "undelivered",
            "ErrorCode": "30003",
        }))

        message = asyncio.run(messages.get_by_external_id(sent["external_id"]))
        assert message.status == "undelivered"
        assert message.metadata["error_code"] == "30003"


# ---------------------------------------------------------------------------
# Signature validation
# ---------------------------------------------------------------------------

class TestSignatureValidation:

    @pytest.fixture
    def signed_client(self, service):
        service.settings.twilio.validate_signature = True
        service.settings.twilio.auth_token = AUTH_TOKEN
        app = create_app()
        app.dependency_overrides[get_comms_service] = lambda: service
        return TestClient(app)

    def test_missing_signature_rejected(self, signed_client):
        response = _inbound_call(signed_client)

        assert response.status_code == 403

    def test_valid_signature_accepted(self, signed_client):
        params = {"CallSid": "CA1", "From": CALLER, "To": SUPPORT_NUMBER, "CallStatus": "ringing"}
        signature = RequestValidator(AUTH_TOKEN).compute_signature(
            "https://hooks.example.com/webhooks/voice/inbound", params
        )

        response = signed_client.post(
            "/webhooks/voice/inbound",
            data=params,
            headers={"X-Twilio-Signature": signature},
        )

        assert _xml(response).find("Dial") is not None

    def test_signed_callback_with_query(self, signed_client, service):
        dial = _xml(signed_client.post(
            "/webhooks/voice/inbound",
            data={"CallSid": "CA1", "From": CALLER, "To": SUPPORT_NUMBER},
            headers={"X-Twilio-Signature": RequestValidator(AUTH_TOKEN).compute_signature(
                "https://hooks.example.com/webhooks/voice/inbound",
                {"CallSid": "CA1", "From": CALLER, "To": SUPPORT_NUMBER},
            )},
        )).find("Dial")
        params = {"CallSid": "CA1", "DialCallStatus": "no-answer"}
        signature = RequestValidator(AUTH_TOKEN).compute_signature(dial.get("action"), params)

        response = signed_client.post(
            _path(dial.get("action")),
            data=params,
            headers={"X-Twilio-Signature": signature},
        )

        assert _xml(response).find("Say").text == service.settings.routing.voicemail_prompt


# ---------------------------------------------------------------------------
# REST endpoints
# ---------------------------------------------------------------------------

class TestCallEndpoints:

    def test_make_call(self, client, gateway):
        response = client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
        })

        assert response.status_code == 200
        body = response.json()
        assert body["direction"] == "outbound"
        assert body["status"] == "initiated"
        assert gateway.calls[0].to_number == CALLER

    def test_make_call_permission_denied(self, client):
        response = client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "outsider",
        })

        assert response.status_code == 403

    def test_make_call_invalid_number(self, client):
        response = client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": "5551234",
            "user_id": "u1",
        })

        assert response.status_code == 422

    def test_gateway_errors(self, client, gateway):
        payload = {"from_number": SUPPORT_NUMBER, "to_number": CALLER, "user_id": "u1"}

        gateway.fail_next(GatewayError("down", transient=True))
        assert client.post("/calls/outbound", json=payload).status_code == 502

        gateway.fail_next(GatewayError("invalid destination", transient=False))
        assert client.post("/calls/outbound", json=payload).status_code == 400

    def test_not_connected(self, client, service):
        asyncio.run(service.stop())

        response = client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
        })

        assert response.status_code == 503

    def test_get_list_and_end(self, client):
        created = client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
        }).json()

        assert client.get(f"/calls/{created['id']}").json()["external_id"] == created["external_id"]

        listing = client.get("/calls", params={"org_id": ORG}).json()
        assert listing["total"] == 1
        assert listing["has_more"] is False

        ended = client.post(f"/calls/{created['id']}/end")
        assert ended.json()["status"] == "completed"

        assert client.post(f"/calls/{created['id']}/end").status_code == 409

    def test_provider_duration_after_end(self, client):
        created = client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
        }).json()
        client.post(f"/calls/{created['id']}/end")

        _xml(client.post("/webhooks/voice/status", data={
            "CallSid": created["external_id"],
            "CallStatus": "completed",
            "CallDuration": "42",
        }))

        assert client.get(f"/calls/{created['id']}").json()["duration_seconds"] == 42

    def test_list_with_naive_range(self, client):
        client.post("/calls/outbound", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
        })

        response = client.get("/calls", params={"start": "2024-01-01T00:00:00"})
        assert response.status_code == 200
        assert response.json()["total"] == 1

        before = client.get("/calls", params={"end": "2024-01-02T00:00:00"}).json()
        assert before["total"] == 0

    def test_unknown_call(self, client):
        response = client.get("/calls/00000000-0000-0000-0000-000000000000")

        assert response.status_code == 404


class TestSMSEndpoints:

    def test_send(self, client):
        response = client.post("/sms/send", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
            "body": "Hi",
        })

        assert response.status_code == 200
        assert response.json()["direction"] == "outbound"
        assert response.json()["contact_id"] == "c1"

    def test_send_requires_content(self, client):
        response = client.post("/sms/send", json={
            "from_number": SUPPORT_NUMBER,
            "to_number": CALLER,
            "user_id": "u1",
        })

        assert response.status_code == 422

    def test_conversations_and_read(self, client):
        for sid in ("SM1", "SM2"):
            client.post("/webhooks/sms/inbound", data={
                "MessageSid": sid, "From": CALLER, "To": SUPPORT_NUMBER, "Body": "Hello",
            })

        [conversation] = client.get("/sms/conversations", params={"org_id": ORG}).json()
        assert conversation["unread_count"] == 2
        assert conversation["contact"]["name"] == "Ada Customer"

        page = client.get(f"/sms/conversations/{SUPPORT_NUMBER}/{CALLER}").json()
        assert len(page["messages"]) == 2
        assert page["has_more"] is False

        read = client.post(
            f"/sms/conversations/{SUPPORT_NUMBER}/{CALLER}/read",
            json={"user_id": "u1"},
        ).json()
        assert read == {"success": True, "updated": 2}

    def test_unknown_page_anchor(self, client):
        response = client.get(
            f"/sms/conversations/{SUPPORT_NUMBER}/{CALLER}",
            params={"before": "00000000-0000-0000-0000-000000000000"},
        )

        assert response.status_code == 404


class TestHealth:

    def test_health(self, client):
        body = client.get("/health").json()

        assert body["status"] == "healthy"
        assert body["provider"] == "stub"
        assert body["pending_reconciliation"] == 0

    def test_ping(self, client):
        assert client.get("/ping").json() == {"pong": True}
