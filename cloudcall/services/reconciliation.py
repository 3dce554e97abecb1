"""
Reconciliation of orphaned outbound actions.

Placing a call or message and persisting its record are two steps. When
the provider accepted the action but the record could not be written,
the record is parked here until a sweep, or the provider's own status
stream, brings it back.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from ..core.protocols import Call, Message, utcnow

logger = logging.getLogger("cloudcall.services.reconciliation")

CALL = "call"
MESSAGE = "message"


@dataclass
class OrphanedAction:
    kind: str  # "call" or "message"
    record: Union[Call, Message]
    error: str = ""
    queued_at: datetime = field(default_factory=utcnow)
    attempts: int = 0

    @property
    def external_id(self) -> str:
        return self.record.external_id


class ReconciliationQueue:

    def __init__(self):
        self._pending: dict[tuple[str, str], OrphanedAction] = {}

    def add(self, kind: str, record: Union[Call, Message], error: str = "") -> OrphanedAction:
        orphan = OrphanedAction(kind=kind, record=record, error=error)
        self._pending[(kind, record.external_id)] = orphan
        logger.warning(
            "Queued orphaned %s %s for reconciliation: %s",
            kind,
            record.external_id,
            error,
        )
        return orphan

    def claim(self, kind: str, external_id: str) -> Optional[OrphanedAction]:
        """Remove and return the orphan for ``external_id``, if queued."""
        return self._pending.pop((kind, external_id), None)

    def resolve(self, orphan: OrphanedAction) -> None:
        self._pending.pop((orphan.kind, orphan.external_id), None)

    def pending(self, kind: Optional[str] = None) -> list[OrphanedAction]:
        return [o for o in self._pending.values() if kind is None or o.kind == kind]

    def __len__(self) -> int:
        return len(self._pending)

    async def sweep(
        self,
        kind: str,
        persist: Callable[[Union[Call, Message]], Awaitable[bool]],
    ) -> int:
        """
        Retry every queued orphan of ``kind`` through ``persist``.

        ``persist`` returns True when it wrote the record and False when the
        record already existed. Either way the orphan leaves the queue; a
        raised error keeps it queued for the next sweep.
        """
        recovered = 0
        for orphan in self.pending(kind):
            try:
                created = await persist(orphan.record)
            except Exception as e:
                orphan.attempts += 1
                logger.error(
                    "Reconciliation of %s %s failed (attempt %d): %s",
                    kind,
                    orphan.external_id,
                    orphan.attempts,
                    e,
                )
                continue
            orphan.record.metadata.pop("reconciliation_pending", None)
            self.resolve(orphan)
            if created:
                recovered += 1
                logger.info("Reconciled orphaned %s %s", kind, orphan.external_id)
        return recovered
