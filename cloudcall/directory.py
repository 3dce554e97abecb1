"""
Directory and identity boundary.

Users, team rosters and contacts are managed elsewhere; routing only reads them.
``DirectorySnapshot`` holds the slice of the directory one routing
decision needs so that resolution itself never waits on I/O.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Optional

logger = logging.getLogger("cloudcall.directory")


@dataclass
class User:
    id: str
    org_id: str
    name: str = ""
    client_name: str = ""  # Softphone identity dialed for this user
    team_ids: list[str] = field(default_factory=list)
    active: bool = True

    @property
    def identity(self) -> str:
        return self.client_name or self.id


@dataclass
class Contact:
    id: str
    org_id: str
    name: str = ""
    company: str = ""
    phone_numbers: list[str] = field(default_factory=list)


class Directory(ABC):
    """Read-only lookups against the organization directory."""

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]:
        pass

    @abstractmethod
    async def list_team_members(self, team_id: str) -> list[User]:
        """Active users whose memberships include ``team_id``."""
        pass

    @abstractmethod
    async def find_contact(self, org_id: str, phone_number: str) -> Optional[Contact]:
        pass

    @abstractmethod
    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        pass


class InMemoryDirectory(Directory):
    """Directory held in process memory, for tests and single-node setups."""

    def __init__(self):
        self._users: dict[str, User] = {}
        self._contacts: dict[str, Contact] = {}

    def add_user(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def add_contact(self, contact: Contact) -> Contact:
        self._contacts[contact.id] = contact
        return contact

    async def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    async def list_team_members(self, team_id: str) -> list[User]:
        return [
            user for user in self._users.values()
            if user.active and team_id in user.team_ids
        ]

    async def find_contact(self, org_id: str, phone_number: str) -> Optional[Contact]:
        for contact in self._contacts.values():
            if contact.org_id == org_id and phone_number in contact.phone_numbers:
                return contact
        return None

    async def get_contact(self, contact_id: str) -> Optional[Contact]:
        return self._contacts.get(contact_id)


@dataclass
class DirectorySnapshot:
    """Pre-loaded users and team rosters for one routing decision."""

    users: dict[str, User] = field(default_factory=dict)
    team_members: dict[str, list[User]] = field(default_factory=dict)

    def active_user(self, user_id: str) -> Optional[User]:
        user = self.users.get(user_id)
        if user is None or not user.active:
            return None
        return user

    def active_members(self, team_id: str) -> list[User]:
        return [user for user in self.team_members.get(team_id, []) if user.active]

    def find_user(self, user_id: str) -> Optional[User]:
        """Look a user up directly or through any loaded team roster."""
        if user_id in self.users:
            return self.users[user_id]
        for members in self.team_members.values():
            for member in members:
                if member.id == user_id:
                    return member
        return None

    def identity(self, user_id: str) -> str:
        user = self.find_user(user_id)
        return user.identity if user else user_id


async def load_snapshot(
    directory: Directory,
    user_ids: Iterable[str] = (),
    team_ids: Iterable[str] = (),
) -> DirectorySnapshot:
    """Fetch every referenced user and team roster concurrently."""
    user_ids = sorted(set(user_ids))
    team_ids = sorted(set(team_ids))

    users = await asyncio.gather(*(directory.get_user(uid) for uid in user_ids))
    rosters = await asyncio.gather(*(directory.list_team_members(tid) for tid in team_ids))

    snapshot = DirectorySnapshot(
        users={user.id: user for user in users if user is not None},
        team_members=dict(zip(team_ids, rosters)),
    )
    logger.debug(
        "Loaded directory snapshot: %d users, %d teams",
        len(snapshot.users),
        len(snapshot.team_members),
    )
    return snapshot
