"""
Decision event log: append-only history of everything that happens to a decision.

Logging must never break the business operation it describes, so entries are
buffered during the unit of work and written after it commits:

    log = EventLog(session_factory)
    async with session.begin():
        ...
        log.append(decision.id, DecisionEventType.VOTE_RECORDED, actor_id=...)
    await log.flush()      # after commit; failures are logged, not raised

If the business transaction rolls back, call ``discard()`` instead.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import DecisionEventType, DecisionLogEntry
from ..models.base import utcnow

logger = logging.getLogger(__name__)


@dataclass
class PendingEntry:
    decision_id: UUID
    event_type: DecisionEventType
    actor_id: UUID | None
    actor_name: str | None
    old_value: str | None
    new_value: str | None
    metadata: dict | None
    occurred_at: datetime


def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if hasattr(value, "value"):
        return str(value.value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class EventLog:
    """Buffered, never-raising writer for ``DecisionLogEntry`` rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._pending: list[PendingEntry] = []

    @property
    def pending(self) -> list[PendingEntry]:
        return list(self._pending)

    def append(
        self,
        decision_id: UUID,
        event_type: DecisionEventType,
        actor_id: UUID | None = None,
        actor_name: str | None = None,
        old_value: Any = None,
        new_value: Any = None,
        metadata: dict | None = None,
        occurred_at: datetime | None = None,
    ) -> None:
        try:
            self._pending.append(PendingEntry(
                decision_id=decision_id,
                event_type=event_type,
                actor_id=actor_id,
                actor_name=actor_name,
                old_value=_as_text(old_value),
                new_value=_as_text(new_value),
                metadata=metadata,
                occurred_at=occurred_at or utcnow(),
            ))
        except Exception:
            logger.exception(
                "Failed to buffer %s event for decision %s", event_type, decision_id
            )

    def discard(self) -> None:
        """Drop buffered entries (the operation they describe rolled back)."""
        self._pending.clear()

    async def flush(self) -> int:
        """Write buffered entries in their own transaction.

        Returns the number of entries written; 0 when the write failed.
        """
        if not self._pending:
            return 0

        entries, self._pending = self._pending, []
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    session.add_all([
                        DecisionLogEntry(
                            decision_id=entry.decision_id,
                            event_type=entry.event_type,
                            actor_id=entry.actor_id,
                            actor_name=entry.actor_name,
                            old_value=entry.old_value,
                            new_value=entry.new_value,
                            event_metadata=entry.metadata,
                            created_at=entry.occurred_at,
                        )
                        for entry in entries
                    ])
        except Exception:
            logger.exception("Failed to write %d decision log entries", len(entries))
            return 0

        return len(entries)
