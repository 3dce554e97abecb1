"""
Unit tests for the routing configuration variants.

Stored documents are validated into tagged unions; malformed or unknown
variants surface as InvalidConfiguration.
"""

import json

import pytest
from pydantic import ValidationError

from cloudcall.core.errors import InvalidConfiguration
from cloudcall.routing.config import (
    AutoReply,
    IVRRouting,
    MessageTarget,
    PhoneNumber,
    SMSRoundRobinRouting,
    TeamRouting,
    TeamTarget,
    UserRouting,
    VoicemailTarget,
    load_phone_number,
)
from cloudcall.storage.memory import InMemoryPhoneNumberRepository


def _doc(**overrides) -> dict:
    doc = {
        "number": "+15550000001",
        "org_id": "org1",
        "routing": {"type": "user", "user_id": "u1"},
    }
    doc.update(overrides)
    return doc


# ---------------------------------------------------------------------------
# Voice routing variants
# ---------------------------------------------------------------------------

class TestVoiceRouting:

    def test_tag_selects_variant(self):
        assert isinstance(load_phone_number(_doc()).routing, UserRouting)
        team = load_phone_number(_doc(routing={"type": "team", "team_id": "t1"}))
        assert isinstance(team.routing, TeamRouting)
        ivr = load_phone_number(_doc(routing={"type": "ivr", "ivr_id": "menu"}))
        assert isinstance(ivr.routing, IVRRouting)

    def test_variant_requires_its_target(self):
        with pytest.raises(InvalidConfiguration):
            load_phone_number(_doc(routing={"type": "team", "user_id": "u1"}))

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidConfiguration):
            load_phone_number(_doc(routing={"type": "queue", "queue_id": "q"}))

    def test_empty_target_id_rejected(self):
        with pytest.raises(InvalidConfiguration):
            load_phone_number(_doc(routing={"type": "user", "user_id": ""}))

    def test_defaults_disable_failover_and_hours(self):
        number = load_phone_number(_doc())
        assert number.routing.failover.enabled is False
        assert number.business_hours.enabled is False
        assert isinstance(number.routing.business_hours.after_hours, VoicemailTarget)

    def test_nested_targets(self):
        number = load_phone_number(_doc(routing={
            "type": "user",
            "user_id": "u1",
            "failover": {"enabled": True, "target": {"type": "team", "team_id": "t1"}},
            "business_hours": {
                "enabled": True,
                "schedules": [{"days_of_week": ["mon"], "start_time": "09:00", "end_time": "17:00"}],
                "after_hours": {"type": "message", "message": "We are closed"},
            },
        }))
        assert isinstance(number.routing.failover.target, TeamTarget)
        assert isinstance(number.routing.business_hours.after_hours, MessageTarget)

    def test_message_target_not_allowed_as_failover(self):
        with pytest.raises(InvalidConfiguration):
            load_phone_number(_doc(routing={
                "type": "user",
                "user_id": "u1",
                "failover": {"enabled": True, "target": {"type": "message", "message": "x"}},
            }))

    def test_bad_timezone_rejected(self):
        with pytest.raises(InvalidConfiguration):
            load_phone_number(_doc(routing={
                "type": "user",
                "user_id": "u1",
                "business_hours": {
                    "enabled": True,
                    "schedules": [{
                        "days_of_week": [1],
                        "start_time": "09:00",
                        "end_time": "17:00",
                        "timezone": "Mars/Olympus",
                    }],
                },
            }))


# ---------------------------------------------------------------------------
# SMS configuration
# ---------------------------------------------------------------------------

class TestSMSConfig:

    def test_round_robin_variant(self):
        number = load_phone_number(_doc(sms={
            "routing": {"type": "round-robin", "team_id": "t1"},
        }))
        assert isinstance(number.sms.routing, SMSRoundRobinRouting)

    def test_unknown_sms_variant_rejected(self):
        with pytest.raises(InvalidConfiguration):
            load_phone_number(_doc(sms={"routing": {"type": "broadcast"}}))

    def test_enabled_auto_reply_needs_message(self):
        with pytest.raises(ValidationError):
            AutoReply(enabled=True, message="  ")
        assert AutoReply(enabled=False).message == ""


# ---------------------------------------------------------------------------
# PhoneNumber
# ---------------------------------------------------------------------------

class TestPhoneNumber:

    def test_number_must_be_e164(self):
        with pytest.raises(InvalidConfiguration):
            load_phone_number(_doc(number="555-0001"))

    def test_referenced_ids_cover_every_path(self):
        number = PhoneNumber(
            number="+15550000001",
            org_id="org1",
            routing={
                "type": "user",
                "user_id": "u1",
                "failover": {"enabled": True, "target": {"type": "user", "user_id": "u2"}},
                "business_hours": {"after_hours": {"type": "team", "team_id": "t9"}},
            },
            sms={"routing": {"type": "round-robin", "team_id": "t1"}},
        )
        assert number.referenced_user_ids() == {"u1", "u2"}
        assert number.referenced_team_ids() == {"t9", "t1"}

    def test_number_without_routing(self):
        number = PhoneNumber(number="+15550000001", org_id="org1")
        assert number.routing is None
        assert number.business_hours.enabled is False
        assert number.referenced_user_ids() == set()


# ---------------------------------------------------------------------------
# Loading stored documents
# ---------------------------------------------------------------------------

class TestNumberLoading:

    @pytest.mark.asyncio
    async def test_load_registers_documents(self):
        repository = InMemoryPhoneNumberRepository()

        loaded = repository.load([_doc(), _doc(number="+15550000002", routing={"type": "ivr", "ivr_id": "m"})])

        assert [n.number for n in loaded] == ["+15550000001", "+15550000002"]
        assert isinstance((await repository.get("+15550000002")).routing, IVRRouting)

    @pytest.mark.asyncio
    async def test_bad_document_loads_nothing(self):
        repository = InMemoryPhoneNumberRepository()

        with pytest.raises(InvalidConfiguration):
            repository.load([_doc(), _doc(number="+15550000002", routing={"type": "team", "user_id": "u1"})])

        assert await repository.get("+15550000001") is None

    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path):
        path = tmp_path / "numbers.json"
        path.write_text(json.dumps([_doc()]))

        repository = InMemoryPhoneNumberRepository.from_file(str(path))

        assert (await repository.get("+15550000001")).routing.user_id == "u1"

    def test_from_file_requires_list(self, tmp_path):
        path = tmp_path / "numbers.json"
        path.write_text(json.dumps(_doc()))

        with pytest.raises(InvalidConfiguration):
            InMemoryPhoneNumberRepository.from_file(str(path))
