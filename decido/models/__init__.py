"""SQLAlchemy ORM Models for Decido."""

from .base import Base, TimestampMixin, UUIDMixin, UTCDateTime
from .models import (
    # Enums
    AmendmentAction,
    BallotKind,
    ConsentStage,
    DecisionAlgorithm,
    DecisionEventType,
    DecisionResult,
    DecisionStatus,
    NotificationStatus,
    NotificationType,
    NuancedScale,
    ObjectionStatus,
    StageLayout,
    VoteValue,
    VotingMode,
    # Decisions
    Ballot,
    ClarificationQuestion,
    Decision,
    Participant,
    Proposal,
    # Audit
    DecisionLogEntry,
    # Notifications
    NotificationLog,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "UTCDateTime",
    # Enums
    "AmendmentAction",
    "BallotKind",
    "ConsentStage",
    "DecisionAlgorithm",
    "DecisionEventType",
    "DecisionResult",
    "DecisionStatus",
    "NotificationStatus",
    "NotificationType",
    "NuancedScale",
    "ObjectionStatus",
    "StageLayout",
    "VoteValue",
    "VotingMode",
    # Decisions
    "Decision",
    "Participant",
    "Proposal",
    "Ballot",
    "ClarificationQuestion",
    # Audit
    "DecisionLogEntry",
    # Notifications
    "NotificationLog",
]
