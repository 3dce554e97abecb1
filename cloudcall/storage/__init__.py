"""
Persistence interfaces and in-memory implementations.
"""

from .base import (
    AuditEntry,
    AuditTrail,
    CallRepository,
    MessageRepository,
    PhoneNumberRepository,
)
from .memory import (
    InMemoryAuditTrail,
    InMemoryCallRepository,
    InMemoryMessageRepository,
    InMemoryPhoneNumberRepository,
)

__all__ = [
    "AuditEntry",
    "AuditTrail",
    "CallRepository",
    "MessageRepository",
    "PhoneNumberRepository",
    "InMemoryAuditTrail",
    "InMemoryCallRepository",
    "InMemoryMessageRepository",
    "InMemoryPhoneNumberRepository",
]
