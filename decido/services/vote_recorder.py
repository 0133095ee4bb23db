"""
Vote Recorder: accepts ballots from participants and public-link voters.

Each call is one unit of work:
1. Load the decision and check it accepts ballots right now
2. Resolve the voter (participant, or anonymous fingerprint)
3. Validate the payload against the decision's algorithm and stage
4. Upsert the ballot in place (one active ballot per voter and kind)
5. Mark the participant as having voted
6. Re-check early closure (CONSENSUS unanimity, CONSENT full consent)

Log entries and notifications are released only after the commit.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..core.security import hash_fingerprint
from ..models import (
    Ballot,
    BallotKind,
    Decision,
    DecisionAlgorithm,
    DecisionEventType,
    DecisionResult,
    DecisionStatus,
    ObjectionStatus,
    Participant,
    VoteValue,
    VotingMode,
)
from ..models.base import utcnow
from .closing import ClosureRecord, close_decision, snapshot_result_input
from .errors import (
    ForbiddenError,
    InvalidStateError,
    OperationTimeoutError,
    ValidationError,
)
from .event_log import EventLog
from .notifications import NotificationPort, dispatch_notifications
from .repository import DecisionRepository
from .results import NUANCED_SCALE_MENTIONS, all_consented, consensus_reached
from .stage_machine import can_give_opinion, can_object, current_stage

logger = logging.getLogger(__name__)


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass(frozen=True)
class VoterIdentity:
    """Who is casting the ballot.

    Members come with ``user_id``, external invitees with ``external_email``,
    anonymous public-link voters with a ``dedup_key`` (usually the client
    address) that is only ever stored as a keyed hash.
    """
    user_id: UUID | None = None
    external_email: str | None = None
    dedup_key: str | None = None
    name: str | None = None

    @property
    def is_anonymous(self) -> bool:
        return self.user_id is None and self.external_email is None


@dataclass
class ConsensusVotePayload:
    value: VoteValue
    comment: str | None = None


@dataclass
class ProposalChoicePayload:
    proposal_id: UUID


@dataclass
class NuancedVotePayload:
    mentions: dict[UUID, str]  # proposal id -> mention


@dataclass
class ObjectionPayload:
    status: ObjectionStatus
    text: str | None = None
    withdraw: bool = False


@dataclass
class OpinionPayload:
    text: str


BallotPayload = (
    ConsensusVotePayload
    | ProposalChoicePayload
    | NuancedVotePayload
    | ObjectionPayload
    | OpinionPayload
)

ACCEPTED_PAYLOADS: dict[DecisionAlgorithm, tuple[type, ...]] = {
    DecisionAlgorithm.CONSENSUS: (ConsensusVotePayload,),
    DecisionAlgorithm.ADVISORY: (ConsensusVotePayload,),
    DecisionAlgorithm.MAJORITY: (ProposalChoicePayload,),
    DecisionAlgorithm.SUPERMAJORITY: (ProposalChoicePayload,),
    DecisionAlgorithm.NUANCED: (NuancedVotePayload,),
    DecisionAlgorithm.CONSENT: (ObjectionPayload, OpinionPayload),
}

PAYLOAD_KINDS: dict[type, BallotKind] = {
    ConsensusVotePayload: BallotKind.VOTE,
    ProposalChoicePayload: BallotKind.PROPOSAL_CHOICE,
    NuancedVotePayload: BallotKind.MENTIONS,
    ObjectionPayload: BallotKind.OBJECTION,
    OpinionPayload: BallotKind.OPINION,
}


@dataclass
class BallotReceipt:
    """Outcome of recording a ballot."""
    ballot_id: UUID
    decision_id: UUID
    kind: BallotKind
    created: bool
    decision_closed: bool = False
    result: DecisionResult | None = None


# =============================================================================
# VOTE RECORDER
# =============================================================================


class VoteRecorder:
    """Records ballots and triggers vote-driven early closure."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationPort | None = None,
        timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._timeout = timeout_seconds or get_settings().decision_timeout_seconds

    async def record_ballot(
        self,
        decision_id: UUID,
        identity: VoterIdentity,
        payload: BallotPayload,
        now: datetime | None = None,
    ) -> BallotReceipt:
        now = now or utcnow()
        events = EventLog(self._session_factory)

        try:
            receipt, closure = await asyncio.wait_for(
                self._record(decision_id, identity, payload, now, events),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            events.discard()
            raise OperationTimeoutError(
                f"Recording the ballot took longer than {self._timeout}s, please retry"
            ) from e
        except BaseException:
            events.discard()
            raise

        await events.flush()
        if closure is not None:
            await dispatch_notifications(self._notifier, [closure.notification])
        return receipt

    async def _record(
        self,
        decision_id: UUID,
        identity: VoterIdentity,
        payload: BallotPayload,
        now: datetime,
        events: EventLog,
    ) -> tuple[BallotReceipt, ClosureRecord | None]:
        async with self._session_factory() as session:
            async with session.begin():
                repo = DecisionRepository(session)
                decision = await repo.get_decision_or_raise(decision_id, for_update=True)

                self._check_accepting(decision, now)
                kind = self._check_payload(decision, payload, now)
                participant, fingerprint = await self._resolve_voter(repo, decision, identity)
                await self._validate_content(repo, decision, payload)

                ballot, created = await self._upsert(
                    repo, decision, participant, fingerprint, kind, payload, now, identity, events
                )

                if participant is not None and kind != BallotKind.OPINION and not participant.has_voted:
                    participant.has_voted = True
                await session.flush()

                closure = await self._maybe_close_early(repo, decision, kind, now, events)

                receipt = BallotReceipt(
                    ballot_id=ballot.id,
                    decision_id=decision.id,
                    kind=kind,
                    created=created,
                    decision_closed=closure is not None,
                    result=closure.outcome.result if closure else None,
                )
        return receipt, closure

    # =========================================================================
    # CHECKS
    # =========================================================================

    def _check_accepting(self, decision: Decision, now: datetime) -> None:
        if decision.status != DecisionStatus.OPEN:
            raise InvalidStateError(
                f"Decision is {decision.status.value}, ballots are no longer accepted"
            )
        if decision.end_time is None or now >= decision.end_time:
            raise InvalidStateError("The voting deadline has passed")
        if decision.start_time is not None and now < decision.start_time:
            raise InvalidStateError("Voting has not started yet")

    def _check_payload(
        self,
        decision: Decision,
        payload: BallotPayload,
        now: datetime,
    ) -> BallotKind:
        accepted = ACCEPTED_PAYLOADS[decision.algorithm]
        if not isinstance(payload, accepted):
            raise ValidationError(
                f"{type(payload).__name__} does not apply to a "
                f"{decision.algorithm.value} decision"
            )

        if decision.algorithm == DecisionAlgorithm.CONSENT:
            stage = current_stage(
                decision.start_time,
                decision.end_time,
                decision.stage_layout,
                decision.amendment_action,
                now,
            )
            if isinstance(payload, ObjectionPayload) and not can_object(stage):
                raise ForbiddenError(
                    f"Positions can only be given during the objections stage "
                    f"(current stage: {stage.value})"
                )
            if isinstance(payload, OpinionPayload) and not can_give_opinion(
                stage, decision.stage_layout
            ):
                raise ForbiddenError(
                    f"Opinions are not accepted during the {stage.value} stage"
                )

        return PAYLOAD_KINDS[type(payload)]

    async def _resolve_voter(
        self,
        repo: DecisionRepository,
        decision: Decision,
        identity: VoterIdentity,
    ) -> tuple[Participant | None, str | None]:
        """Return (participant, fingerprint); exactly one of them is set."""
        participant = None
        if identity.user_id is not None:
            participant = await repo.participant_for_user(decision.id, identity.user_id)
        elif identity.external_email:
            participant = await repo.participant_for_email(decision.id, identity.external_email)

        if participant is not None:
            return participant, None

        if decision.voting_mode != VotingMode.PUBLIC_LINK:
            raise ForbiddenError("Only invited participants can vote on this decision")

        if identity.user_id is not None:
            dedup_key = f"user:{identity.user_id}"
        elif identity.external_email:
            dedup_key = f"email:{identity.external_email.lower()}"
        elif identity.dedup_key:
            dedup_key = f"anon:{identity.dedup_key}"
        else:
            raise ValidationError("Anonymous ballots require a deduplication key")

        return None, hash_fingerprint(f"{decision.id}:{dedup_key}")

    async def _validate_content(
        self,
        repo: DecisionRepository,
        decision: Decision,
        payload: BallotPayload,
    ) -> None:
        if isinstance(payload, ObjectionPayload):
            if (
                payload.status == ObjectionStatus.OBJECTION
                and not payload.withdraw
                and not (payload.text or "").strip()
            ):
                raise ValidationError("An objection must explain what blocks the proposal")

        elif isinstance(payload, OpinionPayload):
            if not payload.text.strip():
                raise ValidationError("An opinion cannot be empty")

        elif isinstance(payload, ProposalChoicePayload):
            proposal_ids = {p.id for p in await repo.proposals(decision.id)}
            if payload.proposal_id not in proposal_ids:
                raise ValidationError(
                    f"Proposal {payload.proposal_id} does not belong to this decision"
                )

        elif isinstance(payload, NuancedVotePayload):
            proposal_ids = {str(p.id) for p in await repo.proposals(decision.id)}
            given = {str(k) for k in payload.mentions}
            if given != proposal_ids or len(payload.mentions) != len(proposal_ids):
                raise ValidationError("A nuanced ballot needs exactly one mention per proposal")

            levels = NUANCED_SCALE_MENTIONS[decision.nuanced_scale]
            invalid = sorted({m for m in payload.mentions.values() if m not in levels})
            if invalid:
                raise ValidationError(
                    f"Mentions {invalid} are not on the {decision.nuanced_scale.value} scale"
                )

    # =========================================================================
    # UPSERT
    # =========================================================================

    async def _upsert(
        self,
        repo: DecisionRepository,
        decision: Decision,
        participant: Participant | None,
        fingerprint: str | None,
        kind: BallotKind,
        payload: BallotPayload,
        now: datetime,
        identity: VoterIdentity,
        events: EventLog,
    ) -> tuple[Ballot, bool]:
        ballot = await repo.find_ballot(
            decision.id,
            kind,
            participant_id=participant.id if participant else None,
            fingerprint=fingerprint,
        )
        created = ballot is None
        old_value = None if created else _describe(ballot)

        if isinstance(payload, ObjectionPayload) and payload.withdraw:
            if created or ballot.value != ObjectionStatus.OBJECTION.value:
                raise ValidationError("There is no objection to withdraw")
            ballot.withdrawn_at = now
        else:
            if created:
                ballot = Ballot(
                    decision_id=decision.id,
                    participant_id=participant.id if participant else None,
                    fingerprint=fingerprint,
                    kind=kind,
                )
            _apply_payload(ballot, payload)
            if created:
                await repo.insert_ballot(ballot)

        events.append(
            decision.id,
            _event_type(kind, created),
            actor_id=identity.user_id,
            actor_name=identity.name or (participant.name if participant else None),
            old_value=old_value,
            new_value=_describe(ballot),
            metadata={
                "kind": kind.value,
                "anonymous": participant is None,
                "withdrawn": ballot.withdrawn_at is not None,
            },
            occurred_at=now,
        )
        return ballot, created

    # =========================================================================
    # EARLY CLOSURE
    # =========================================================================

    async def _maybe_close_early(
        self,
        repo: DecisionRepository,
        decision: Decision,
        kind: BallotKind,
        now: datetime,
        events: EventLog,
    ) -> ClosureRecord | None:
        if decision.algorithm == DecisionAlgorithm.CONSENSUS and kind == BallotKind.VOTE:
            data = await snapshot_result_input(repo, decision)
            if consensus_reached(data):
                return await close_decision(repo, decision, events, now, reason="consensus_reached")

        if decision.algorithm == DecisionAlgorithm.CONSENT and kind == BallotKind.OBJECTION:
            data = await snapshot_result_input(repo, decision)
            if all_consented(data):
                return await close_decision(repo, decision, events, now, reason="all_consented")

        return None


def _apply_payload(ballot: Ballot, payload: BallotPayload) -> None:
    if isinstance(payload, ConsensusVotePayload):
        ballot.value = payload.value.value
        ballot.text = payload.comment
    elif isinstance(payload, ProposalChoicePayload):
        ballot.proposal_id = payload.proposal_id
    elif isinstance(payload, NuancedVotePayload):
        ballot.mentions = {str(k): v for k, v in payload.mentions.items()}
    elif isinstance(payload, ObjectionPayload):
        ballot.value = payload.status.value
        ballot.text = payload.text
        ballot.withdrawn_at = None
    elif isinstance(payload, OpinionPayload):
        ballot.text = payload.text


def _describe(ballot: Ballot) -> str | None:
    if ballot.kind == BallotKind.PROPOSAL_CHOICE:
        return str(ballot.proposal_id)
    if ballot.kind == BallotKind.MENTIONS:
        return ",".join(f"{k}={v}" for k, v in sorted((ballot.mentions or {}).items()))
    if ballot.kind == BallotKind.OPINION:
        return ballot.text
    return ballot.value


def _event_type(kind: BallotKind, created: bool) -> DecisionEventType:
    if kind == BallotKind.OPINION:
        return DecisionEventType.CONSENT_OPINION_SUBMITTED
    if kind == BallotKind.OBJECTION:
        return (
            DecisionEventType.CONSENT_POSITION_RECORDED
            if created
            else DecisionEventType.CONSENT_POSITION_UPDATED
        )
    return DecisionEventType.VOTE_RECORDED if created else DecisionEventType.VOTE_UPDATED
