"""
Notification port: the engine decides *that* and *to whom* a notification
fires, delivery belongs to an external service.

Services collect ``NotificationIntent`` objects during a unit of work and hand
them to ``dispatch_notifications`` only after the transaction committed. A
failing notifier is logged and never undoes the state change.

The default adapter, ``OutboxNotifier``, writes ``NotificationLog`` rows that a
delivery worker picks up.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..models import (
    ConsentStage,
    Decision,
    DecisionResult,
    NotificationLog,
    NotificationStatus,
    NotificationType,
    Participant,
)

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class Recipient:
    """Who should hear about a change. Members by user id, invitees by email."""
    user_id: UUID | None = None
    email: str | None = None
    name: str | None = None

    @classmethod
    def from_participant(cls, participant: Participant) -> "Recipient":
        return cls(
            user_id=participant.user_id,
            email=participant.contact_email,
            name=participant.name,
        )

    def to_dict(self) -> dict:
        return {
            "user_id": str(self.user_id) if self.user_id else None,
            "email": self.email,
            "name": self.name,
        }


@dataclass
class NotificationIntent:
    """A notification the engine wants sent once the current transaction commits."""
    notification_type: NotificationType
    decision_id: UUID
    stage: ConsentStage | None = None
    stage_end_time: datetime | None = None
    result: DecisionResult | None = None
    recipients: list[Recipient] = field(default_factory=list)


# =============================================================================
# PORT
# =============================================================================


class NotificationPort(ABC):
    """Outbound notification boundary."""

    @abstractmethod
    async def notify_stage_transition(
        self,
        decision_id: UUID,
        stage: ConsentStage,
        recipients: Sequence[Recipient],
        stage_end_time: datetime | None,
    ) -> None:
        pass

    @abstractmethod
    async def notify_closure(
        self,
        decision_id: UUID,
        result: DecisionResult,
    ) -> None:
        pass


async def dispatch_notifications(
    notifier: NotificationPort | None,
    intents: Sequence[NotificationIntent],
) -> int:
    """Hand intents to the notifier; returns how many were accepted."""
    if notifier is None:
        return 0

    requested = 0
    for intent in intents:
        try:
            if intent.notification_type == NotificationType.STAGE_TRANSITION:
                await notifier.notify_stage_transition(
                    intent.decision_id,
                    intent.stage,
                    intent.recipients,
                    intent.stage_end_time,
                )
            else:
                await notifier.notify_closure(intent.decision_id, intent.result)
            requested += 1
        except Exception:
            logger.exception(
                "Notifier failed for %s on decision %s",
                intent.notification_type.value,
                intent.decision_id,
            )
    return requested


# =============================================================================
# OUTBOX ADAPTER
# =============================================================================


class OutboxNotifier(NotificationPort):
    """Writes notification intents to ``notification_log`` for later delivery."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def notify_stage_transition(
        self,
        decision_id: UUID,
        stage: ConsentStage,
        recipients: Sequence[Recipient],
        stage_end_time: datetime | None,
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                title = await self._decision_title(session, decision_id)
                session.add(NotificationLog(
                    decision_id=decision_id,
                    notification_type=NotificationType.STAGE_TRANSITION,
                    status=NotificationStatus.PENDING,
                    stage=stage,
                    recipients=[r.to_dict() for r in recipients],
                    content={
                        "title": title,
                        "stage": stage.value,
                        "stage_end_time": (
                            stage_end_time.isoformat() if stage_end_time else None
                        ),
                    },
                ))

        logger.info(
            "Queued stage notification for decision %s (%s, %d recipients)",
            decision_id, stage.value, len(recipients),
        )

    async def notify_closure(
        self,
        decision_id: UUID,
        result: DecisionResult,
    ) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                title = await self._decision_title(session, decision_id)
                participants = await session.execute(
                    select(Participant).where(Participant.decision_id == decision_id)
                )
                recipients = [
                    Recipient.from_participant(p).to_dict()
                    for p in participants.scalars().all()
                ]
                session.add(NotificationLog(
                    decision_id=decision_id,
                    notification_type=NotificationType.CLOSURE,
                    status=NotificationStatus.PENDING,
                    recipients=recipients,
                    content={"title": title, "result": result.value},
                ))

        logger.info("Queued closure notification for decision %s (%s)", decision_id, result.value)

    async def _decision_title(self, session: AsyncSession, decision_id: UUID) -> str | None:
        result = await session.execute(
            select(Decision.title).where(Decision.id == decision_id)
        )
        return result.scalar_one_or_none()
