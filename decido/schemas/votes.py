"""Pydantic schemas for ballots and the closure scan trigger."""

from datetime import datetime
from uuid import UUID

from pydantic import Field, model_validator

from ..models import BallotKind, DecisionResult, ObjectionStatus, VoteValue
from .base import DecidoBaseModel


# =============================================================================
# BALLOT REQUESTS
# =============================================================================


class ConsensusVoteRequest(DecidoBaseModel):
    """Agree / disagree vote (CONSENSUS and ADVISORY decisions)."""

    value: VoteValue
    comment: str | None = Field(default=None, max_length=5000)


class ProposalVoteRequest(DecidoBaseModel):
    """Choice of one proposal (MAJORITY and SUPERMAJORITY decisions)."""

    proposal_id: UUID


class NuancedVoteRequest(DecidoBaseModel):
    """One mention per proposal (NUANCED decisions)."""

    mentions: dict[UUID, str] = Field(..., min_length=1)


class ObjectionRequest(DecidoBaseModel):
    """Position during the OBJECTIONS stage of a CONSENT decision."""

    status: ObjectionStatus
    text: str | None = Field(default=None, max_length=5000)
    withdraw: bool = False

    @model_validator(mode="after")
    def objection_needs_text(self) -> "ObjectionRequest":
        if (
            self.status == ObjectionStatus.OBJECTION
            and not self.withdraw
            and not (self.text or "").strip()
        ):
            raise ValueError("An objection must explain what blocks the proposal")
        return self


class OpinionRequest(DecidoBaseModel):
    """Opinion during the AVIS / CLARIFAVIS stage of a CONSENT decision."""

    text: str = Field(..., min_length=1, max_length=5000)


# =============================================================================
# RESPONSES
# =============================================================================


class BallotReceiptResponse(DecidoBaseModel):
    ballot_id: UUID
    decision_id: UUID
    kind: BallotKind
    created: bool
    decision_closed: bool = False
    result: DecisionResult | None = None


class ScanFailure(DecidoBaseModel):
    decision_id: UUID
    error: str


class ScanSummaryResponse(DecidoBaseModel):
    """Outcome of one closure scan pass."""

    started_at: datetime
    finished_at: datetime | None = None
    processed: int
    transitions: int
    notifications_requested: int
    closures: int
    conflicts: int
    errors: list[ScanFailure] = []
