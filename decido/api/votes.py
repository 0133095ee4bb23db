"""API routes for casting ballots.

Members and invited participants vote under ``/decisions``; anonymous voters
on public-link decisions use ``/public/decisions`` and are deduplicated by a
keyed hash of their client address.
"""

from uuid import UUID

from fastapi import APIRouter, status

from ..core.dependencies import (
    ClientKeyDep,
    CurrentActor,
    CurrentActorDep,
    OptionalActorDep,
    VoteRecorderDep,
)
from ..models import ObjectionStatus, VoteValue
from ..schemas import (
    BallotReceiptResponse,
    ConsensusVoteRequest,
    NuancedVoteRequest,
    ObjectionRequest,
    OpinionRequest,
    ProposalVoteRequest,
)
from ..services import (
    ConsensusVotePayload,
    EngineError,
    NuancedVotePayload,
    ObjectionPayload,
    OpinionPayload,
    ProposalChoicePayload,
    VoteRecorder,
    VoterIdentity,
)
from ..services.vote_recorder import BallotPayload
from .errors import to_http_exception

router = APIRouter(prefix="/decisions", tags=["votes"])
public_router = APIRouter(prefix="/public/decisions", tags=["public votes"])


# =============================================================================
# HELPERS
# =============================================================================


def member_identity(actor: CurrentActor) -> VoterIdentity:
    return VoterIdentity(user_id=actor.id, name=actor.name)


def public_identity(actor: CurrentActor | None, client_key: str) -> VoterIdentity:
    if actor is not None:
        return member_identity(actor)
    return VoterIdentity(dedup_key=client_key)


async def record(
    recorder: VoteRecorder,
    decision_id: UUID,
    identity: VoterIdentity,
    payload: BallotPayload,
) -> BallotReceiptResponse:
    try:
        receipt = await recorder.record_ballot(decision_id, identity, payload)
    except EngineError as e:
        raise to_http_exception(e)

    return BallotReceiptResponse(
        ballot_id=receipt.ballot_id,
        decision_id=receipt.decision_id,
        kind=receipt.kind,
        created=receipt.created,
        decision_closed=receipt.decision_closed,
        result=receipt.result,
    )


def consensus_payload(data: ConsensusVoteRequest) -> ConsensusVotePayload:
    return ConsensusVotePayload(value=VoteValue(data.value), comment=data.comment)


def nuanced_payload(data: NuancedVoteRequest) -> NuancedVotePayload:
    return NuancedVotePayload(mentions=dict(data.mentions))


# =============================================================================
# MEMBER BALLOTS
# =============================================================================


@router.post(
    "/{decision_id}/votes/consensus",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def vote_consensus(
    decision_id: UUID,
    data: ConsensusVoteRequest,
    actor: CurrentActorDep,
    recorder: VoteRecorderDep,
):
    """Agree or disagree (CONSENSUS and ADVISORY decisions)."""
    return await record(recorder, decision_id, member_identity(actor), consensus_payload(data))


@router.post(
    "/{decision_id}/votes/proposal",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def vote_proposal(
    decision_id: UUID,
    data: ProposalVoteRequest,
    actor: CurrentActorDep,
    recorder: VoteRecorderDep,
):
    """Choose one proposal (MAJORITY and SUPERMAJORITY decisions)."""
    return await record(
        recorder, decision_id, member_identity(actor),
        ProposalChoicePayload(proposal_id=data.proposal_id),
    )


@router.post(
    "/{decision_id}/votes/nuanced",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def vote_nuanced(
    decision_id: UUID,
    data: NuancedVoteRequest,
    actor: CurrentActorDep,
    recorder: VoteRecorderDep,
):
    """Give every proposal a mention (NUANCED decisions)."""
    return await record(recorder, decision_id, member_identity(actor), nuanced_payload(data))


@router.post(
    "/{decision_id}/objections",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_objection(
    decision_id: UUID,
    data: ObjectionRequest,
    actor: CurrentActorDep,
    recorder: VoteRecorderDep,
):
    """Record or withdraw a position during the OBJECTIONS stage."""
    return await record(
        recorder, decision_id, member_identity(actor),
        ObjectionPayload(
            status=ObjectionStatus(data.status),
            text=data.text,
            withdraw=data.withdraw,
        ),
    )


@router.post(
    "/{decision_id}/opinions",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_opinion(
    decision_id: UUID,
    data: OpinionRequest,
    actor: CurrentActorDep,
    recorder: VoteRecorderDep,
):
    """Give an opinion during the AVIS or CLARIFAVIS stage."""
    return await record(
        recorder, decision_id, member_identity(actor), OpinionPayload(text=data.text)
    )


# =============================================================================
# PUBLIC-LINK BALLOTS
# =============================================================================


@public_router.post(
    "/{decision_id}/votes/consensus",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def public_vote_consensus(
    decision_id: UUID,
    data: ConsensusVoteRequest,
    actor: OptionalActorDep,
    client_key: ClientKeyDep,
    recorder: VoteRecorderDep,
):
    return await record(
        recorder, decision_id, public_identity(actor, client_key), consensus_payload(data)
    )


@public_router.post(
    "/{decision_id}/votes/proposal",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def public_vote_proposal(
    decision_id: UUID,
    data: ProposalVoteRequest,
    actor: OptionalActorDep,
    client_key: ClientKeyDep,
    recorder: VoteRecorderDep,
):
    return await record(
        recorder, decision_id, public_identity(actor, client_key),
        ProposalChoicePayload(proposal_id=data.proposal_id),
    )


@public_router.post(
    "/{decision_id}/votes/nuanced",
    response_model=BallotReceiptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def public_vote_nuanced(
    decision_id: UUID,
    data: NuancedVoteRequest,
    actor: OptionalActorDep,
    client_key: ClientKeyDep,
    recorder: VoteRecorderDep,
):
    return await record(
        recorder, decision_id, public_identity(actor, client_key), nuanced_payload(data)
    )
