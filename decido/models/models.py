"""SQLAlchemy ORM Models for the Decido decision engine."""

from datetime import datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDMixin, UTCDateTime, utcnow

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class DecisionAlgorithm(str, PyEnum):
    CONSENSUS = "consensus"
    CONSENT = "consent"
    MAJORITY = "majority"
    SUPERMAJORITY = "supermajority"
    NUANCED = "nuanced"
    ADVISORY = "advisory"


class DecisionStatus(str, PyEnum):
    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    IMPLEMENTED = "implemented"
    ARCHIVED = "archived"


class DecisionResult(str, PyEnum):
    APPROVED = "approved"
    REJECTED = "rejected"
    BLOCKED = "blocked"
    WITHDRAWN = "withdrawn"


class VotingMode(str, PyEnum):
    INVITED = "invited"  # Only listed participants may vote
    PUBLIC_LINK = "public_link"  # Anyone with the link, deduplicated by fingerprint


class StageLayout(str, PyEnum):
    """How the clarification and opinion phases of a CONSENT decision run."""
    MERGED = "merged"
    DISTINCT = "distinct"


class ConsentStage(str, PyEnum):
    CLARIFICATIONS = "clarifications"
    AVIS = "avis"
    CLARIFAVIS = "clarifavis"
    AMENDEMENTS = "amendements"
    OBJECTIONS = "objections"
    TERMINEE = "terminee"


class AmendmentAction(str, PyEnum):
    AMENDED = "amended"
    KEPT = "kept"
    WITHDRAWN = "withdrawn"


class NuancedScale(str, PyEnum):
    THREE_LEVELS = "3_levels"
    FIVE_LEVELS = "5_levels"
    SEVEN_LEVELS = "7_levels"


class BallotKind(str, PyEnum):
    VOTE = "vote"  # CONSENSUS / ADVISORY agree-disagree
    PROPOSAL_CHOICE = "proposal_choice"  # MAJORITY / SUPERMAJORITY
    MENTIONS = "mentions"  # NUANCED
    OBJECTION = "objection"  # CONSENT position
    OPINION = "opinion"  # CONSENT avis, does not count as a vote


class VoteValue(str, PyEnum):
    AGREE = "agree"
    DISAGREE = "disagree"


class ObjectionStatus(str, PyEnum):
    NO_OBJECTION = "no_objection"
    OBJECTION = "objection"
    NO_POSITION = "no_position"


class DecisionEventType(str, PyEnum):
    CREATED = "created"
    LAUNCHED = "launched"
    STATUS_CHANGED = "status_changed"
    CLOSED = "closed"
    REOPENED = "reopened"
    TITLE_UPDATED = "title_updated"
    DESCRIPTION_UPDATED = "description_updated"
    DEADLINE_UPDATED = "deadline_updated"
    PARTICIPANT_ADDED = "participant_added"
    PARTICIPANT_REMOVED = "participant_removed"
    VOTE_RECORDED = "vote_recorded"
    VOTE_UPDATED = "vote_updated"
    COMMENT_ADDED = "comment_added"
    CONSENT_STAGE_CHANGED = "consent_stage_changed"
    CONSENT_QUESTION_POSTED = "consent_question_posted"
    CONSENT_QUESTION_ANSWERED = "consent_question_answered"
    CONSENT_OPINION_SUBMITTED = "consent_opinion_submitted"
    CONSENT_PROPOSAL_AMENDED = "consent_proposal_amended"
    CONSENT_PROPOSAL_KEPT = "consent_proposal_kept"
    CONSENT_PROPOSAL_WITHDRAWN = "consent_proposal_withdrawn"
    CONSENT_POSITION_RECORDED = "consent_position_recorded"
    CONSENT_POSITION_UPDATED = "consent_position_updated"
    CONSENT_DECISION_FINALIZED = "consent_decision_finalized"


class NotificationType(str, PyEnum):
    STAGE_TRANSITION = "stage_transition"
    CLOSURE = "closure"


class NotificationStatus(str, PyEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


# =============================================================================
# DECISION MODELS (Core)
# =============================================================================


class Decision(Base, UUIDMixin, TimestampMixin):
    """A collaborative decision and its voting window."""

    __tablename__ = "decisions"

    organization_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="Owning organization (managed by the external membership service)",
    )
    creator_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)

    algorithm: Mapped[DecisionAlgorithm] = mapped_column(
        _enum(DecisionAlgorithm, "decision_algorithm"), nullable=False
    )
    status: Mapped[DecisionStatus] = mapped_column(
        _enum(DecisionStatus, "decision_status"),
        default=DecisionStatus.DRAFT,
        nullable=False,
    )
    result: Mapped[DecisionResult | None] = mapped_column(
        _enum(DecisionResult, "decision_result"), nullable=True
    )
    result_details: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    voting_mode: Mapped[VotingMode] = mapped_column(
        _enum(VotingMode, "voting_mode"),
        default=VotingMode.INVITED,
        nullable=False,
    )

    start_time: Mapped[datetime | None] = mapped_column(nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # CONSENT only
    stage_layout: Mapped[StageLayout | None] = mapped_column(
        _enum(StageLayout, "stage_layout"), nullable=True
    )
    current_stage: Mapped[ConsentStage | None] = mapped_column(
        _enum(ConsentStage, "consent_stage"), nullable=True
    )
    amendment_action: Mapped[AmendmentAction | None] = mapped_column(
        _enum(AmendmentAction, "amendment_action"), nullable=True
    )
    proposal: Mapped[str | None] = mapped_column(
        Text, comment="Current CONSENT proposal text"
    )
    initial_proposal: Mapped[str | None] = mapped_column(
        Text, comment="Proposal text before the creator amended it"
    )

    # NUANCED only
    nuanced_scale: Mapped[NuancedScale | None] = mapped_column(
        _enum(NuancedScale, "nuanced_scale"), nullable=True
    )
    nuanced_winner_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # ADVISORY only: False keeps the decision open past its deadline until
    # the creator closes it
    binding_deadline: Mapped[bool] = mapped_column(default=True, nullable=False)

    # Bumped on every engine state write (compare-and-swap guard)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Relationships
    participants: Mapped[list["Participant"]] = relationship(
        back_populates="decision",
        cascade="all, delete-orphan",
    )
    proposals: Mapped[list["Proposal"]] = relationship(
        back_populates="decision",
        cascade="all, delete-orphan",
        order_by="Proposal.position",
    )
    ballots: Mapped[list["Ballot"]] = relationship(
        back_populates="decision",
        cascade="all, delete-orphan",
    )
    clarifications: Mapped[list["ClarificationQuestion"]] = relationship(
        back_populates="decision",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        CheckConstraint(
            "status = 'draft' OR (start_time IS NOT NULL AND end_time IS NOT NULL)",
            name="launched_has_window",
        ),
        CheckConstraint("nuanced_winner_count >= 1", name="winner_count_positive"),
        Index("idx_decisions_status_end", "status", "end_time"),
        Index("idx_decisions_status_algorithm", "status", "algorithm"),
        Index("idx_decisions_creator", "creator_id"),
    )


class Participant(Base, UUIDMixin, TimestampMixin):
    """A member or external invitee allowed to vote on a decision."""

    __tablename__ = "decision_participants"

    decision_id: Mapped[UUID] = mapped_column(
        ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    external_email: Mapped[str | None] = mapped_column(String(255))
    external_name: Mapped[str | None] = mapped_column(String(255))
    display_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(
        String(255), comment="Contact address for member participants"
    )
    has_voted: Mapped[bool] = mapped_column(default=False, nullable=False)

    decision: Mapped["Decision"] = relationship(back_populates="participants")

    __table_args__ = (
        UniqueConstraint("decision_id", "user_id"),
        UniqueConstraint("decision_id", "external_email"),
        CheckConstraint(
            "(user_id IS NULL) <> (external_email IS NULL)",
            name="member_xor_external",
        ),
        Index("idx_participants_decision", "decision_id"),
    )

    @property
    def name(self) -> str | None:
        return self.display_name or self.external_name

    @property
    def contact_email(self) -> str | None:
        return self.email or self.external_email


class Proposal(Base, UUIDMixin, TimestampMixin):
    """An option of a MAJORITY, SUPERMAJORITY or NUANCED decision."""

    __tablename__ = "proposals"

    decision_id: Mapped[UUID] = mapped_column(
        ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    decision: Mapped["Decision"] = relationship(back_populates="proposals")

    __table_args__ = (
        Index("idx_proposals_decision", "decision_id", "position"),
    )


class Ballot(Base, UUIDMixin, TimestampMixin):
    """One participant's (or anonymous voter's) active choice on a decision.

    Recording a new ballot updates this row in place; earlier values only
    survive in the decision log.
    """

    __tablename__ = "ballots"

    decision_id: Mapped[UUID] = mapped_column(
        ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("decision_participants.id", ondelete="CASCADE"), nullable=True
    )
    fingerprint: Mapped[str | None] = mapped_column(
        String(64), comment="HMAC of the anonymous voter's deduplication key"
    )
    kind: Mapped[BallotKind] = mapped_column(_enum(BallotKind, "ballot_kind"), nullable=False)

    value: Mapped[str | None] = mapped_column(
        String(30), comment="VoteValue or ObjectionStatus"
    )
    proposal_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("proposals.id", ondelete="CASCADE"), nullable=True
    )
    mentions: Mapped[dict | None] = mapped_column(
        JSONType, comment="proposal id -> mention, NUANCED ballots"
    )
    text: Mapped[str | None] = mapped_column(Text)
    withdrawn_at: Mapped[datetime | None] = mapped_column(nullable=True)

    decision: Mapped["Decision"] = relationship(back_populates="ballots")
    participant: Mapped["Participant | None"] = relationship()

    __table_args__ = (
        UniqueConstraint("decision_id", "participant_id", "kind"),
        UniqueConstraint("decision_id", "fingerprint", "kind"),
        CheckConstraint(
            "(participant_id IS NULL) <> (fingerprint IS NULL)",
            name="participant_xor_fingerprint",
        ),
        Index("idx_ballots_decision_kind", "decision_id", "kind"),
    )


class ClarificationQuestion(Base, UUIDMixin, TimestampMixin):
    """Question asked during the clarification stages of a CONSENT decision."""

    __tablename__ = "clarification_questions"

    decision_id: Mapped[UUID] = mapped_column(
        ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False
    )
    participant_id: Mapped[UUID] = mapped_column(
        ForeignKey("decision_participants.id", ondelete="CASCADE"), nullable=False
    )
    question: Mapped[str] = mapped_column(Text, nullable=False)
    answer: Mapped[str | None] = mapped_column(Text)
    answered_at: Mapped[datetime | None] = mapped_column(nullable=True)
    answered_by: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)

    decision: Mapped["Decision"] = relationship(back_populates="clarifications")

    __table_args__ = (
        Index("idx_clarifications_decision", "decision_id"),
    )


# =============================================================================
# AUDIT MODELS
# =============================================================================


class DecisionLogEntry(Base, UUIDMixin):
    """Append-only history of a decision.

    No foreign key to decisions: entries outlive the decision they describe.
    """

    __tablename__ = "decision_log"

    decision_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    event_type: Mapped[DecisionEventType] = mapped_column(
        _enum(DecisionEventType, "decision_event_type"), nullable=False
    )
    actor_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255))
    old_value: Mapped[str | None] = mapped_column(Text)
    new_value: Mapped[str | None] = mapped_column(Text)
    event_metadata: Mapped[dict | None] = mapped_column("metadata", JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_decision_log_decision_time", "decision_id", "created_at"),
    )


# =============================================================================
# NOTIFICATION MODELS
# =============================================================================


class NotificationLog(Base, UUIDMixin):
    """Notification intents waiting for the external delivery service."""

    __tablename__ = "notification_log"

    decision_id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        _enum(NotificationType, "notification_type"), nullable=False
    )
    status: Mapped[NotificationStatus] = mapped_column(
        _enum(NotificationStatus, "notification_status"),
        default=NotificationStatus.PENDING,
        nullable=False,
    )
    stage: Mapped[ConsentStage | None] = mapped_column(
        _enum(ConsentStage, "notification_stage"), nullable=True
    )
    recipients: Mapped[list] = mapped_column(JSONType, default=list)
    content: Mapped[dict] = mapped_column(JSONType, default=dict)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_notification_log_status", "status", "created_at"),
    )
