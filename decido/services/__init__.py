"""Business logic services for Decido."""

from .closure_scheduler import ClosureScheduler, ScanSummary
from .consent_workflow import ConsentWorkflow
from .errors import (
    ConflictError,
    EngineError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    OperationTimeoutError,
    ValidationError,
)
from .event_log import EventLog
from .lifecycle import (
    CreateDecisionInput,
    DecisionLifecycle,
    ParticipantInput,
    ProposalInput,
)
from .notifications import (
    NotificationIntent,
    NotificationPort,
    OutboxNotifier,
    Recipient,
)
from .repository import DecisionRepository
from .results import ResultInput, ResultOutcome, calculate_result
from .stage_machine import current_stage, has_transitioned
from .stage_timing import StageWindow, compute_stage_windows
from .vote_recorder import (
    BallotReceipt,
    ConsensusVotePayload,
    NuancedVotePayload,
    ObjectionPayload,
    OpinionPayload,
    ProposalChoicePayload,
    VoteRecorder,
    VoterIdentity,
)

__all__ = [
    # Pure engine
    "StageWindow",
    "compute_stage_windows",
    "current_stage",
    "has_transitioned",
    "ResultInput",
    "ResultOutcome",
    "calculate_result",
    # Services
    "ClosureScheduler",
    "ScanSummary",
    "VoteRecorder",
    "VoterIdentity",
    "BallotReceipt",
    "ConsensusVotePayload",
    "ProposalChoicePayload",
    "NuancedVotePayload",
    "ObjectionPayload",
    "OpinionPayload",
    "DecisionLifecycle",
    "CreateDecisionInput",
    "ParticipantInput",
    "ProposalInput",
    "ConsentWorkflow",
    # Ports & adapters
    "DecisionRepository",
    "EventLog",
    "NotificationPort",
    "NotificationIntent",
    "OutboxNotifier",
    "Recipient",
    # Errors
    "EngineError",
    "NotFoundError",
    "OperationTimeoutError",
    "ForbiddenError",
    "InvalidStateError",
    "ConflictError",
    "ValidationError",
]
