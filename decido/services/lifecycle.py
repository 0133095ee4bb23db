"""
Decision lifecycle: drafting, launching and manual closure.

    DRAFT --launch--> OPEN --(deadline | participation | early consent | manual)--> CLOSED

Only the creator launches or closes a decision by hand. Launch fixes the
voting window and, for CONSENT decisions, the initial stage.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..models import (
    Decision,
    DecisionAlgorithm,
    DecisionEventType,
    DecisionResult,
    DecisionStatus,
    NotificationType,
    NuancedScale,
    Participant,
    Proposal,
    StageLayout,
    VotingMode,
)
from ..models.base import utcnow
from .closing import close_decision, stage_recipients
from .errors import (
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from .event_log import EventLog
from .notifications import (
    NotificationIntent,
    NotificationPort,
    dispatch_notifications,
)
from .repository import DecisionRepository
from .stage_timing import first_stage, stage_end_time

logger = logging.getLogger(__name__)

PROPOSAL_ALGORITHMS = frozenset({
    DecisionAlgorithm.MAJORITY,
    DecisionAlgorithm.SUPERMAJORITY,
    DecisionAlgorithm.NUANCED,
})


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class ParticipantInput:
    user_id: UUID | None = None
    external_email: str | None = None
    external_name: str | None = None
    display_name: str | None = None
    email: str | None = None


@dataclass
class ProposalInput:
    title: str
    description: str | None = None


@dataclass
class CreateDecisionInput:
    """Input for creating a draft decision."""
    title: str
    algorithm: DecisionAlgorithm
    description: str | None = None
    proposal: str | None = None
    organization_id: UUID | None = None
    voting_mode: VotingMode = VotingMode.INVITED
    stage_layout: StageLayout | None = None
    nuanced_scale: NuancedScale | None = None
    nuanced_winner_count: int = 1
    binding_deadline: bool = True
    proposals: list[ProposalInput] = field(default_factory=list)
    participants: list[ParticipantInput] = field(default_factory=list)


@dataclass
class ClosureResult:
    decision_id: UUID
    result: DecisionResult
    details: dict


# =============================================================================
# LIFECYCLE SERVICE
# =============================================================================


class DecisionLifecycle:
    """Creator-driven transitions of a decision."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationPort | None = None,
        timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._settings = get_settings()
        self._timeout = timeout_seconds or self._settings.decision_timeout_seconds

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_draft(
        self,
        input: CreateDecisionInput,
        creator_id: UUID,
        creator_name: str | None = None,
    ) -> Decision:
        """Create a DRAFT decision with its proposals and participants."""
        if not input.title.strip():
            raise ValidationError("A decision needs a title")
        for p in input.participants:
            if (p.user_id is None) == (p.external_email is None):
                raise ValidationError(
                    "A participant is either a member (user_id) or an external invitee (email)"
                )

        events = EventLog(self._session_factory)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    decision = Decision(
                        organization_id=input.organization_id,
                        creator_id=creator_id,
                        title=input.title.strip(),
                        description=input.description,
                        proposal=input.proposal,
                        algorithm=input.algorithm,
                        status=DecisionStatus.DRAFT,
                        voting_mode=input.voting_mode,
                        stage_layout=input.stage_layout,
                        nuanced_scale=input.nuanced_scale,
                        nuanced_winner_count=input.nuanced_winner_count,
                        binding_deadline=input.binding_deadline,
                        proposals=[
                            Proposal(title=p.title, description=p.description, position=i)
                            for i, p in enumerate(input.proposals)
                        ],
                        participants=[
                            Participant(
                                user_id=p.user_id,
                                external_email=p.external_email,
                                external_name=p.external_name,
                                display_name=p.display_name,
                                email=p.email,
                            )
                            for p in input.participants
                        ],
                    )
                    session.add(decision)
                    await session.flush()

                    events.append(
                        decision.id,
                        DecisionEventType.CREATED,
                        actor_id=creator_id,
                        actor_name=creator_name,
                        new_value=decision.title,
                        metadata={"algorithm": decision.algorithm.value},
                    )
                    for participant in decision.participants:
                        events.append(
                            decision.id,
                            DecisionEventType.PARTICIPANT_ADDED,
                            actor_id=creator_id,
                            actor_name=creator_name,
                            new_value=participant.name or participant.user_id,
                        )
        except BaseException:
            events.discard()
            raise

        await events.flush()
        return decision

    async def delete_draft(self, decision_id: UUID, actor_id: UUID) -> None:
        """Delete a decision that was never launched."""
        async with self._session_factory() as session:
            async with session.begin():
                repo = DecisionRepository(session)
                decision = await repo.get_decision_or_raise(decision_id, for_update=True)
                self._require_creator(decision, actor_id)
                if decision.status != DecisionStatus.DRAFT:
                    raise InvalidStateError("Only draft decisions can be deleted")
                await session.delete(decision)

    # =========================================================================
    # LAUNCH
    # =========================================================================

    async def launch(
        self,
        decision_id: UUID,
        actor_id: UUID,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        now: datetime | None = None,
    ) -> Decision:
        """
        Open a DRAFT decision for voting.

        Checks:
        - only the creator launches, and only once
        - start < end, and the deadline lies in the future
        - CONSENT: stage layout, proposal text, minimum duration
        - CONSENSUS: proposal text
        - MAJORITY / SUPERMAJORITY / NUANCED: at least two proposals
        - INVITED: at least one participant
        """
        now = now or utcnow()
        events = EventLog(self._session_factory)
        intents: list[NotificationIntent] = []

        try:
            decision = await asyncio.wait_for(
                self._launch(decision_id, actor_id, start_time, end_time, now, events, intents),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            events.discard()
            raise OperationTimeoutError(
                f"Launching took longer than {self._timeout}s, please retry"
            ) from e
        except BaseException:
            events.discard()
            raise

        await events.flush()
        await dispatch_notifications(self._notifier, intents)
        return decision

    async def _launch(
        self,
        decision_id: UUID,
        actor_id: UUID,
        start_time: datetime | None,
        end_time: datetime | None,
        now: datetime,
        events: EventLog,
        intents: list[NotificationIntent],
    ) -> Decision:
        async with self._session_factory() as session:
            async with session.begin():
                repo = DecisionRepository(session)
                decision = await repo.get_decision_or_raise(decision_id, for_update=True)
                self._require_creator(decision, actor_id)

                if decision.status != DecisionStatus.DRAFT:
                    raise InvalidStateError("This decision has already been launched")

                start = start_time or now
                end = end_time or decision.end_time
                if end is None:
                    raise ValidationError("A deadline is required to launch a decision")
                if start >= end:
                    raise ValidationError("The start time must be before the deadline")
                if end <= now:
                    raise ValidationError("The deadline must be in the future")

                values: dict = {
                    "status": DecisionStatus.OPEN,
                    "start_time": start,
                    "end_time": end,
                }

                algorithm = decision.algorithm
                if algorithm == DecisionAlgorithm.CONSENT:
                    if decision.stage_layout is None:
                        raise ValidationError("A consent decision needs a stage layout")
                    minimum = timedelta(days=self._settings.consent_min_duration_days)
                    if end - start < minimum:
                        raise ValidationError(
                            f"A consent decision must last at least "
                            f"{self._settings.consent_min_duration_days} days"
                        )
                    values["current_stage"] = first_stage(decision.stage_layout)

                if algorithm in (DecisionAlgorithm.CONSENT, DecisionAlgorithm.CONSENSUS):
                    if not (decision.proposal or "").strip():
                        raise ValidationError("A proposal text is required")
                    values["initial_proposal"] = decision.proposal

                if algorithm in PROPOSAL_ALGORITHMS:
                    proposal_count = len(await repo.proposals(decision.id))
                    if proposal_count < 2:
                        raise ValidationError("At least two proposals are required")
                    if algorithm == DecisionAlgorithm.NUANCED:
                        if decision.nuanced_scale is None:
                            values["nuanced_scale"] = NuancedScale.FIVE_LEVELS
                        if not 1 <= decision.nuanced_winner_count <= proposal_count:
                            raise ValidationError(
                                f"Winner count must be between 1 and {proposal_count}"
                            )

                if decision.voting_mode == VotingMode.INVITED:
                    if await repo.participant_count(decision.id) == 0:
                        raise ValidationError("At least one participant must be invited")

                await repo.compare_and_swap(
                    decision,
                    values,
                    expected_status=DecisionStatus.DRAFT,
                )

                events.append(
                    decision.id,
                    DecisionEventType.LAUNCHED,
                    actor_id=actor_id,
                    old_value=DecisionStatus.DRAFT,
                    new_value=DecisionStatus.OPEN,
                    metadata={
                        "start_time": start.isoformat(),
                        "end_time": end.isoformat(),
                    },
                    occurred_at=now,
                )

                if algorithm == DecisionAlgorithm.CONSENT:
                    stage = decision.current_stage
                    intents.append(NotificationIntent(
                        notification_type=NotificationType.STAGE_TRANSITION,
                        decision_id=decision.id,
                        stage=stage,
                        stage_end_time=stage_end_time(start, end, decision.stage_layout, stage),
                        recipients=await stage_recipients(repo, decision, stage),
                    ))

        logger.info("Launched decision %s until %s", decision.id, decision.end_time)
        return decision

    # =========================================================================
    # MANUAL CLOSE
    # =========================================================================

    async def close(
        self,
        decision_id: UUID,
        actor_id: UUID,
        now: datetime | None = None,
        actor_name: str | None = None,
    ) -> ClosureResult:
        """Close an OPEN decision now, computing the result as at its deadline."""
        now = now or utcnow()
        events = EventLog(self._session_factory)

        async def _close():
            async with self._session_factory() as session:
                async with session.begin():
                    repo = DecisionRepository(session)
                    decision = await repo.get_decision_or_raise(decision_id, for_update=True)
                    self._require_creator(decision, actor_id)
                    if decision.status != DecisionStatus.OPEN:
                        raise InvalidStateError(
                            f"Decision is {decision.status.value}, only open decisions can be closed"
                        )
                    return await close_decision(
                        repo, decision, events, now,
                        reason="manual",
                        actor_id=actor_id,
                        actor_name=actor_name,
                    )

        try:
            record = await asyncio.wait_for(_close(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            events.discard()
            raise OperationTimeoutError(
                f"Closing took longer than {self._timeout}s, please retry"
            ) from e
        except BaseException:
            events.discard()
            raise

        await events.flush()
        await dispatch_notifications(self._notifier, [record.notification])
        return ClosureResult(
            decision_id=record.decision_id,
            result=record.outcome.result,
            details=record.outcome.details_dict(),
        )

    def _require_creator(self, decision: Decision, actor_id: UUID) -> None:
        if decision.creator_id != actor_id:
            raise ForbiddenError("Only the creator of the decision can do this")


async def get_decision(
    session_factory: async_sessionmaker[AsyncSession],
    decision_id: UUID,
) -> Decision:
    async with session_factory() as session:
        decision = await DecisionRepository(session).get_decision(decision_id)
        if decision is None:
            raise NotFoundError(f"Decision {decision_id} not found")
        return decision
