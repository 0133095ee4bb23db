"""
Closure Scheduler: advances CONSENT stages and closes decisions.

Nothing runs in the background: an external trigger (the cron endpoint or the
``closure_cron`` job) calls ``run()`` periodically. Each pass:
1. Lists OPEN decisions
2. For CONSENT decisions, computes the stage from the clock and persists any
   transition, closing early once everyone consented during OBJECTIONS
3. Closes every decision whose deadline passed (ADVISORY unless its deadline is not binding)
4. Closes INVITED decisions where every participant has voted

Every decision is handled in its own transaction, bounded by a timeout. A
failure on one decision is recorded in the summary and the batch goes on.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..models import (
    ConsentStage,
    Decision,
    DecisionAlgorithm,
    DecisionStatus,
    VotingMode,
)
from ..models.base import utcnow
from .closing import advance_stage, close_decision, snapshot_result_input
from .errors import ConflictError
from .event_log import EventLog
from .notifications import (
    NotificationIntent,
    NotificationPort,
    dispatch_notifications,
)
from .repository import DecisionRepository
from .results import all_consented
from .stage_machine import current_stage, has_transitioned, is_forward

logger = logging.getLogger(__name__)


# Algorithms closed as soon as every invited participant has voted
PARTICIPATION_CLOSURE_ALGORITHMS = frozenset({
    DecisionAlgorithm.CONSENSUS,
    DecisionAlgorithm.MAJORITY,
    DecisionAlgorithm.SUPERMAJORITY,
    DecisionAlgorithm.NUANCED,
})


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class DecisionFailure:
    decision_id: UUID
    error: str


@dataclass
class DecisionScan:
    """What happened to one decision during a pass."""
    transitions: int = 0
    closed: bool = False
    notifications: list[NotificationIntent] = field(default_factory=list)


@dataclass
class ScanSummary:
    """Statistics about one scheduler pass."""
    started_at: datetime
    finished_at: datetime | None = None
    processed: int = 0
    transitions: int = 0
    notifications_requested: int = 0
    closures: int = 0
    conflicts: int = 0
    errors: list[DecisionFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "transitions": self.transitions,
            "notifications_requested": self.notifications_requested,
            "closures": self.closures,
            "conflicts": self.conflicts,
            "errors": [
                {"decision_id": str(e.decision_id), "error": e.error}
                for e in self.errors
            ],
        }


# =============================================================================
# CLOSURE SCHEDULER
# =============================================================================


class ClosureScheduler:
    """Periodic stage transition and closure pass over OPEN decisions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationPort | None = None,
        timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._timeout = timeout_seconds or get_settings().decision_timeout_seconds

    async def run(self, now: datetime | None = None) -> ScanSummary:
        now = now or utcnow()
        summary = ScanSummary(started_at=now)

        async with self._session_factory() as session:
            decision_ids = await DecisionRepository(session).open_decision_ids()

        for decision_id in decision_ids:
            summary.processed += 1
            events = EventLog(self._session_factory)

            try:
                scan = await asyncio.wait_for(
                    self._process(decision_id, now, events),
                    timeout=self._timeout,
                )
            except ConflictError as e:
                # Someone else (a vote, another scan) already handled it
                events.discard()
                summary.conflicts += 1
                logger.info("Skipping decision %s: %s", decision_id, e)
                continue
            except Exception as e:
                events.discard()
                summary.errors.append(DecisionFailure(decision_id, f"{type(e).__name__}: {e}"))
                logger.exception("Failed to process decision %s", decision_id)
                continue

            await events.flush()
            summary.transitions += scan.transitions
            summary.closures += int(scan.closed)
            summary.notifications_requested += await dispatch_notifications(
                self._notifier, scan.notifications
            )

        # Wall clock, unlike started_at
        summary.finished_at = utcnow()
        logger.info(
            "Closure scan done: %d processed, %d transitions, %d closures, %d errors",
            summary.processed, summary.transitions, summary.closures, len(summary.errors),
        )
        return summary

    async def _process(
        self,
        decision_id: UUID,
        now: datetime,
        events: EventLog,
    ) -> DecisionScan:
        async with self._session_factory() as session:
            async with session.begin():
                repo = DecisionRepository(session)
                decision = await repo.get_decision(decision_id, for_update=True)
                if decision is None or decision.status != DecisionStatus.OPEN:
                    return DecisionScan()

                if decision.algorithm == DecisionAlgorithm.CONSENT:
                    return await self._process_consent(repo, decision, now, events)

                scan = DecisionScan()
                reason = await self._closure_reason(repo, decision, now)
                if reason is not None:
                    record = await close_decision(repo, decision, events, now, reason=reason)
                    scan.closed = True
                    scan.notifications.append(record.notification)
                return scan

    async def _closure_reason(
        self,
        repo: DecisionRepository,
        decision: Decision,
        now: datetime,
    ) -> str | None:
        if decision.end_time is not None and now >= decision.end_time:
            if (
                decision.algorithm == DecisionAlgorithm.ADVISORY
                and not decision.binding_deadline
            ):
                return None
            return "deadline"

        if (
            decision.voting_mode == VotingMode.INVITED
            and decision.algorithm in PARTICIPATION_CLOSURE_ALGORITHMS
        ):
            total = await repo.participant_count(decision.id)
            if total > 0 and await repo.voted_count(decision.id) == total:
                return "participation_complete"

        return None

    async def _process_consent(
        self,
        repo: DecisionRepository,
        decision: Decision,
        now: datetime,
        events: EventLog,
    ) -> DecisionScan:
        scan = DecisionScan()
        computed = current_stage(
            decision.start_time,
            decision.end_time,
            decision.stage_layout,
            decision.amendment_action,
            now,
        )

        if computed == ConsentStage.TERMINEE:
            record = await close_decision(repo, decision, events, now, reason="deadline")
            scan.closed = True
            scan.notifications.append(record.notification)
            return scan

        persisted = decision.current_stage
        if has_transitioned(persisted, computed) and is_forward(persisted, computed):
            scan.notifications.append(
                await advance_stage(repo, decision, computed, events, now)
            )
            scan.transitions += 1

        if decision.current_stage == ConsentStage.OBJECTIONS:
            data = await snapshot_result_input(repo, decision)
            if all_consented(data):
                record = await close_decision(repo, decision, events, now, reason="all_consented")
                scan.closed = True
                scan.notifications.append(record.notification)

        return scan
