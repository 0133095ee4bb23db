"""Decido API Schemas.

Schemas are organized by domain:
- base: Common configuration and error responses
- decisions: Decisions, lifecycle, stages and the consent workflow
- votes: Ballots and the closure scan trigger
"""

from .base import (
    DecidoBaseModel,
    ErrorDetail,
    ErrorResponse,
    TimestampMixin,
)
from .decisions import (
    AmendProposalRequest,
    ClarificationAnswer,
    ClarificationCreate,
    ClarificationResponse,
    ClosureResponse,
    DecisionCreate,
    DecisionResponse,
    LaunchRequest,
    ParticipantCreate,
    ParticipantResponse,
    ProposalCreate,
    ProposalResponse,
    StagesResponse,
    StageWindowResponse,
)
from .votes import (
    BallotReceiptResponse,
    ConsensusVoteRequest,
    NuancedVoteRequest,
    ObjectionRequest,
    OpinionRequest,
    ProposalVoteRequest,
    ScanFailure,
    ScanSummaryResponse,
)

__all__ = [
    # Base
    "DecidoBaseModel",
    "TimestampMixin",
    "ErrorDetail",
    "ErrorResponse",
    # Decisions
    "DecisionCreate",
    "DecisionResponse",
    "ParticipantCreate",
    "ParticipantResponse",
    "ProposalCreate",
    "ProposalResponse",
    "LaunchRequest",
    "ClosureResponse",
    "StagesResponse",
    "StageWindowResponse",
    # Consent workflow
    "AmendProposalRequest",
    "ClarificationCreate",
    "ClarificationAnswer",
    "ClarificationResponse",
    # Votes
    "ConsensusVoteRequest",
    "ProposalVoteRequest",
    "NuancedVoteRequest",
    "ObjectionRequest",
    "OpinionRequest",
    "BallotReceiptResponse",
    # Trigger
    "ScanFailure",
    "ScanSummaryResponse",
]
