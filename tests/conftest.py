"""
Pytest fixtures for the CloudCall routing service.

Provides fixtures for:
- Settings pointed at a fake webhook host
- An in-memory directory with one organization and one team
- A stub gateway and in-memory repositories
"""

from datetime import datetime, timezone

import pytest

from cloudcall.core.config import CommsConfig
from cloudcall.directory import Contact, InMemoryDirectory, User
from cloudcall.providers.stub import StubGateway
from cloudcall.storage.memory import (
    InMemoryAuditTrail,
    InMemoryCallRepository,
    InMemoryMessageRepository,
    InMemoryPhoneNumberRepository,
)

ORG = "org1"
TEAM = "t1"
SUPPORT_NUMBER = "+15550000001"
SALES_NUMBER = "+15550000002"
CALLER = "+15551234567"

# Monday 2024-01-01
MONDAY_10AM = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
MONDAY_8PM = datetime(2024, 1, 1, 20, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings() -> CommsConfig:
    return CommsConfig(
        provider="stub",
        webhook_base_url="https://hooks.example.com",
        reconcile_interval=0,
    )


@pytest.fixture
def directory() -> InMemoryDirectory:
    """One org, team t1 with members u1..u3, plus an unaffiliated user u4."""
    d = InMemoryDirectory()
    for uid in ("u1", "u2", "u3"):
        d.add_user(User(
            id=uid,
            org_id=ORG,
            name=uid.upper(),
            client_name=f"client_{uid}",
            team_ids=[TEAM],
        ))
    d.add_user(User(id="u4", org_id=ORG, name="U4", client_name="client_u4"))
    d.add_user(User(id="outsider", org_id="org2", name="Outsider"))
    d.add_contact(Contact(
        id="c1",
        org_id=ORG,
        name="Ada Customer",
        company="Acme",
        phone_numbers=[CALLER],
    ))
    return d


@pytest.fixture
def gateway(settings) -> StubGateway:
    return StubGateway(settings=settings)


@pytest.fixture
def numbers() -> InMemoryPhoneNumberRepository:
    return InMemoryPhoneNumberRepository()


@pytest.fixture
def calls() -> InMemoryCallRepository:
    return InMemoryCallRepository()


@pytest.fixture
def messages() -> InMemoryMessageRepository:
    return InMemoryMessageRepository()


@pytest.fixture
def audit() -> InMemoryAuditTrail:
    return InMemoryAuditTrail()
