"""
Result calculation: turns a decision's ballots into its final outcome.

Everything here is pure and deterministic. Callers snapshot the decision, its
proposals and its active ballots into a ``ResultInput``; the outcome carries a
typed breakdown that serializes to ``Decision.result_details``.

Algorithms:
- CONSENSUS: approved iff at least one AGREE and no DISAGREE
- CONSENT: blocked by any active OBJECTION, withdrawn by the creator
- MAJORITY / SUPERMAJORITY: most chosen proposal(s), ties are not broken
- NUANCED: majority judgment on a 3, 5 or 7 level scale
- ADVISORY: approved once anyone took part
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Sequence
from uuid import UUID

from ..models import (
    AmendmentAction,
    BallotKind,
    DecisionAlgorithm,
    DecisionResult,
    NuancedScale,
    ObjectionStatus,
    VoteValue,
)


# Best mention first
NUANCED_SCALE_MENTIONS: dict[NuancedScale, tuple[str, ...]] = {
    NuancedScale.THREE_LEVELS: ("good", "passable", "insufficient"),
    NuancedScale.FIVE_LEVELS: (
        "excellent", "good", "passable", "insufficient", "to_reject",
    ),
    NuancedScale.SEVEN_LEVELS: (
        "excellent", "very_good", "good", "passable",
        "insufficient", "very_insufficient", "to_reject",
    ),
}


# =============================================================================
# INPUT SNAPSHOTS
# =============================================================================


@dataclass(frozen=True)
class ProposalSnapshot:
    id: UUID
    title: str
    position: int = 0


@dataclass(frozen=True)
class BallotSnapshot:
    """Active ballot as seen by the calculator.

    ``participant_id`` is None for anonymous public-link ballots.
    """
    kind: BallotKind
    participant_id: UUID | None = None
    value: str | None = None
    proposal_id: UUID | None = None
    mentions: dict[str, str] | None = None
    withdrawn_at: datetime | None = None


@dataclass(frozen=True)
class ResultInput:
    algorithm: DecisionAlgorithm
    participant_count: int
    ballots: Sequence[BallotSnapshot] = ()
    proposals: Sequence[ProposalSnapshot] = ()
    amendment_action: AmendmentAction | None = None
    nuanced_scale: NuancedScale | None = None
    winner_count: int = 1


# =============================================================================
# OUTPUT BREAKDOWNS
# =============================================================================


def _jsonable(value):
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(_jsonable(k)): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class _Details:
    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass
class ConsensusDetails(_Details):
    agree_count: int
    disagree_count: int
    not_voted_count: int


@dataclass
class ConsentDetails(_Details):
    no_objection_count: int
    objection_count: int
    no_position_count: int
    not_voted_count: int


@dataclass
class ProposalTally:
    proposal_id: UUID
    title: str
    votes: int


@dataclass
class MajorityDetails(_Details):
    total_votes: int
    tallies: list[ProposalTally]
    winner_ids: list[UUID]


@dataclass
class NuancedProposalResult:
    proposal_id: UUID
    title: str
    majority_mention: str
    mention_profile: dict[str, int]
    score: int
    rank: int = 0


@dataclass
class NuancedDetails(_Details):
    scale: NuancedScale
    total_ballots: int
    rankings: list[NuancedProposalResult]
    winner_ids: list[UUID]


@dataclass
class AdvisoryDetails(_Details):
    ballot_count: int
    agree_count: int
    disagree_count: int


@dataclass
class ResultOutcome:
    result: DecisionResult
    details: _Details = field(repr=False)

    def details_dict(self) -> dict:
        return self.details.to_dict()


# =============================================================================
# CALCULATOR
# =============================================================================


def calculate_result(data: ResultInput) -> ResultOutcome:
    """Compute the outcome of a decision. Raises ValueError on an unknown algorithm."""
    algorithm = data.algorithm
    if algorithm == DecisionAlgorithm.CONSENSUS:
        return _consensus(data)
    if algorithm == DecisionAlgorithm.CONSENT:
        return _consent(data)
    if algorithm in (DecisionAlgorithm.MAJORITY, DecisionAlgorithm.SUPERMAJORITY):
        return _majority(data)
    if algorithm == DecisionAlgorithm.NUANCED:
        return _nuanced(data)
    if algorithm == DecisionAlgorithm.ADVISORY:
        return _advisory(data)
    raise ValueError(f"Unhandled decision algorithm: {algorithm!r}")


def _ballots_of(data: ResultInput, kind: BallotKind) -> list[BallotSnapshot]:
    return [b for b in data.ballots if b.kind == kind and b.withdrawn_at is None]


def _voted_participants(ballots: Sequence[BallotSnapshot]) -> set[UUID]:
    return {b.participant_id for b in ballots if b.participant_id is not None}


def _not_voted(data: ResultInput, ballots: Sequence[BallotSnapshot]) -> int:
    return max(data.participant_count - len(_voted_participants(ballots)), 0)


def _consensus(data: ResultInput) -> ResultOutcome:
    votes = _ballots_of(data, BallotKind.VOTE)
    agree = sum(1 for b in votes if b.value == VoteValue.AGREE.value)
    disagree = sum(1 for b in votes if b.value == VoteValue.DISAGREE.value)
    details = ConsensusDetails(
        agree_count=agree,
        disagree_count=disagree,
        not_voted_count=_not_voted(data, votes),
    )
    approved = agree >= 1 and disagree == 0
    return ResultOutcome(
        DecisionResult.APPROVED if approved else DecisionResult.REJECTED,
        details,
    )


def _consent(data: ResultInput) -> ResultOutcome:
    if data.amendment_action == AmendmentAction.WITHDRAWN:
        return ResultOutcome(
            DecisionResult.WITHDRAWN,
            ConsentDetails(0, 0, 0, data.participant_count),
        )

    active = _ballots_of(data, BallotKind.OBJECTION)
    counts = {status.value: 0 for status in ObjectionStatus}
    for ballot in active:
        if ballot.value in counts:
            counts[ballot.value] += 1

    details = ConsentDetails(
        no_objection_count=counts[ObjectionStatus.NO_OBJECTION.value],
        objection_count=counts[ObjectionStatus.OBJECTION.value],
        no_position_count=counts[ObjectionStatus.NO_POSITION.value],
        not_voted_count=_not_voted(data, active),
    )
    if details.objection_count > 0:
        return ResultOutcome(DecisionResult.BLOCKED, details)
    return ResultOutcome(DecisionResult.APPROVED, details)


def _majority(data: ResultInput) -> ResultOutcome:
    choices = _ballots_of(data, BallotKind.PROPOSAL_CHOICE)
    proposals = sorted(data.proposals, key=lambda p: p.position)

    tallies = [
        ProposalTally(
            proposal_id=p.id,
            title=p.title,
            votes=sum(1 for b in choices if b.proposal_id == p.id),
        )
        for p in proposals
    ]
    total = sum(t.votes for t in tallies)
    top = max((t.votes for t in tallies), default=0)
    winners = [t.proposal_id for t in tallies if total > 0 and t.votes == top]

    details = MajorityDetails(total_votes=total, tallies=tallies, winner_ids=winners)
    return ResultOutcome(
        DecisionResult.APPROVED if total > 0 else DecisionResult.REJECTED,
        details,
    )


def _nuanced(data: ResultInput) -> ResultOutcome:
    scale = data.nuanced_scale or NuancedScale.FIVE_LEVELS
    ballots = _ballots_of(data, BallotKind.MENTIONS)
    proposals = sorted(data.proposals, key=lambda p: p.position)

    rankings = []
    for proposal in proposals:
        key = str(proposal.id)
        mentions = [b.mentions[key] for b in ballots if b.mentions and key in b.mentions]
        rankings.append(NuancedProposalResult(
            proposal_id=proposal.id,
            title=proposal.title,
            majority_mention=majority_mention(mentions, scale),
            mention_profile=mention_profile(mentions, scale),
            score=tiebreak_score(mentions, scale),
        ))

    # sorted() is stable, so equal scores keep proposal order
    rankings = sorted(rankings, key=lambda r: r.score, reverse=True)
    for index, ranking in enumerate(rankings, start=1):
        ranking.rank = index

    cast = sum(sum(r.mention_profile.values()) for r in rankings)
    winners = [r.proposal_id for r in rankings[: data.winner_count]] if cast else []

    details = NuancedDetails(
        scale=scale,
        total_ballots=len(ballots),
        rankings=rankings,
        winner_ids=winners,
    )
    return ResultOutcome(
        DecisionResult.APPROVED if cast else DecisionResult.REJECTED,
        details,
    )


def _advisory(data: ResultInput) -> ResultOutcome:
    votes = _ballots_of(data, BallotKind.VOTE)
    details = AdvisoryDetails(
        ballot_count=len(votes),
        agree_count=sum(1 for b in votes if b.value == VoteValue.AGREE.value),
        disagree_count=sum(1 for b in votes if b.value == VoteValue.DISAGREE.value),
    )
    return ResultOutcome(
        DecisionResult.APPROVED if votes else DecisionResult.REJECTED,
        details,
    )


# =============================================================================
# MAJORITY JUDGMENT
# =============================================================================


def majority_mention(mentions: Sequence[str], scale: NuancedScale) -> str:
    """Median mention; on an even count the worse of the two middle ones.

    A proposal nobody rated gets the worst mention of the scale.
    """
    levels = NUANCED_SCALE_MENTIONS[scale]
    if not mentions:
        return levels[-1]
    ordered = sorted(mentions, key=levels.index)
    return ordered[len(ordered) // 2]


def mention_profile(mentions: Sequence[str], scale: NuancedScale) -> dict[str, int]:
    profile = {level: 0 for level in NUANCED_SCALE_MENTIONS[scale]}
    for mention in mentions:
        if mention in profile:
            profile[mention] += 1
    return profile


def tiebreak_score(mentions: Sequence[str], scale: NuancedScale) -> int:
    """Ranking score: positive minus negative mentions, then extremes.

    The primary term is weighted by 10^6; each extremity level (best vs worst,
    then the next pair inward) adds (best - worst) * 100^(neutral - distance).
    """
    if not mentions:
        return 0

    levels = NUANCED_SCALE_MENTIONS[scale]
    profile = mention_profile(mentions, scale)
    neutral = len(levels) // 2

    positive = sum(profile[level] for level in levels[:neutral])
    negative = sum(profile[level] for level in levels[neutral + 1:])
    score = (positive - negative) * 1_000_000

    for distance in range(neutral):
        best = profile[levels[distance]]
        worst = profile[levels[len(levels) - 1 - distance]]
        score += (best - worst) * 100 ** (neutral - distance)

    return score


# =============================================================================
# EARLY CLOSURE
# =============================================================================


def consensus_reached(data: ResultInput) -> bool:
    """Every participant voted and every vote is AGREE.

    Anonymous ballots can block (a DISAGREE) but never stand in for a
    participant.
    """
    votes = _ballots_of(data, BallotKind.VOTE)
    if data.participant_count == 0:
        return False
    if len(_voted_participants(votes)) != data.participant_count:
        return False
    return all(b.value == VoteValue.AGREE.value for b in votes)


def all_consented(data: ResultInput) -> bool:
    """Every participant holds an active NO_OBJECTION position, and nobody objects."""
    active = _ballots_of(data, BallotKind.OBJECTION)
    if data.participant_count == 0:
        return False
    if len(_voted_participants(active)) != data.participant_count:
        return False
    return all(b.value == ObjectionStatus.NO_OBJECTION.value for b in active)
