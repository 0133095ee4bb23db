"""Pydantic schemas for decisions, their lifecycle and the consent workflow."""

from datetime import datetime, timezone
from uuid import UUID

from pydantic import Field, field_validator, model_validator

from ..models import (
    AmendmentAction,
    ConsentStage,
    DecisionAlgorithm,
    DecisionResult,
    DecisionStatus,
    NuancedScale,
    StageLayout,
    VotingMode,
)
from .base import DecidoBaseModel, TimestampMixin


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# CREATE
# =============================================================================


class ParticipantCreate(DecidoBaseModel):
    """A member (user_id) or an external invitee (external_email)."""

    user_id: UUID | None = None
    external_email: str | None = Field(default=None, max_length=255)
    external_name: str | None = Field(default=None, max_length=255)
    display_name: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def member_xor_external(self) -> "ParticipantCreate":
        if (self.user_id is None) == (self.external_email is None):
            raise ValueError("Provide either user_id or external_email")
        return self


class ProposalCreate(DecidoBaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None


class DecisionCreate(DecidoBaseModel):
    """Request to create a draft decision."""

    title: str = Field(..., min_length=1, max_length=500)
    algorithm: DecisionAlgorithm
    description: str | None = None
    proposal: str | None = Field(
        default=None,
        description="Proposal text (CONSENSUS and CONSENT decisions)",
    )
    organization_id: UUID | None = None
    voting_mode: VotingMode = VotingMode.INVITED
    stage_layout: StageLayout | None = None
    nuanced_scale: NuancedScale | None = None
    nuanced_winner_count: int = Field(default=1, ge=1)
    binding_deadline: bool = Field(
        default=True,
        description="ADVISORY only: false keeps the decision open past its deadline",
    )
    proposals: list[ProposalCreate] = Field(default_factory=list, max_length=50)
    participants: list[ParticipantCreate] = Field(default_factory=list)


# =============================================================================
# LIFECYCLE
# =============================================================================


class LaunchRequest(DecidoBaseModel):
    start_time: datetime | None = Field(
        default=None, description="Defaults to now"
    )
    end_time: datetime

    @field_validator("start_time", "end_time")
    @classmethod
    def assume_utc(cls, value: datetime | None) -> datetime | None:
        """Naive timestamps are taken as UTC."""
        return _as_utc(value)


class ClosureResponse(DecidoBaseModel):
    decision_id: UUID
    result: DecisionResult
    details: dict


# =============================================================================
# RESPONSES
# =============================================================================


class ParticipantResponse(DecidoBaseModel):
    id: UUID
    user_id: UUID | None = None
    external_email: str | None = None
    name: str | None = None
    has_voted: bool


class ProposalResponse(DecidoBaseModel):
    id: UUID
    title: str
    description: str | None = None
    position: int


class DecisionResponse(TimestampMixin, DecidoBaseModel):
    """Decision state as seen by API clients."""

    id: UUID
    title: str
    description: str | None = None
    creator_id: UUID
    organization_id: UUID | None = None
    algorithm: DecisionAlgorithm
    status: DecisionStatus
    result: DecisionResult | None = None
    result_details: dict | None = None
    voting_mode: VotingMode
    start_time: datetime | None = None
    end_time: datetime | None = None
    decided_at: datetime | None = None
    stage_layout: StageLayout | None = None
    current_stage: ConsentStage | None = None
    amendment_action: AmendmentAction | None = None
    proposal: str | None = None
    initial_proposal: str | None = None
    nuanced_scale: NuancedScale | None = None
    nuanced_winner_count: int
    binding_deadline: bool
    version: int


class StageWindowResponse(DecidoBaseModel):
    stage: ConsentStage
    start_time: datetime
    end_time: datetime
    is_active: bool
    is_past: bool
    is_future: bool


class StagesResponse(DecidoBaseModel):
    decision_id: UUID
    layout: StageLayout
    current_stage: ConsentStage
    windows: list[StageWindowResponse]


# =============================================================================
# CONSENT WORKFLOW
# =============================================================================


class AmendProposalRequest(DecidoBaseModel):
    proposal: str = Field(..., min_length=1)


class ClarificationCreate(DecidoBaseModel):
    question: str = Field(..., min_length=1, max_length=5000)


class ClarificationAnswer(DecidoBaseModel):
    answer: str = Field(..., min_length=1, max_length=5000)


class ClarificationResponse(DecidoBaseModel):
    id: UUID
    decision_id: UUID
    participant_id: UUID
    question: str
    answer: str | None = None
    answered_at: datetime | None = None
    created_at: datetime
