"""
Decision repository: every query and write the engine performs.

State-changing writes on a decision go through ``compare_and_swap``: an
``UPDATE ... WHERE id = :id AND status = :expected_status AND current_stage IS
:expected_stage`` that also bumps ``version``. A write that matches no row means
someone else got there first and raises ``ConflictError``.
"""

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import (
    Ballot,
    BallotKind,
    ClarificationQuestion,
    ConsentStage,
    Decision,
    DecisionStatus,
    Participant,
    Proposal,
)
from .errors import ConflictError, NotFoundError


class _AnyStage:
    def __repr__(self) -> str:
        return "ANY_STAGE"


# Pass as expected_stage to skip the stage check
ANY_STAGE: Any = _AnyStage()


class DecisionRepository:
    """SQLAlchemy-backed storage for decisions, participants and ballots."""

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        return self._session

    # =========================================================================
    # DECISIONS
    # =========================================================================

    async def get_decision(
        self,
        decision_id: UUID,
        for_update: bool = False,
    ) -> Decision | None:
        query = select(Decision).where(Decision.id == decision_id)
        if for_update:
            query = query.with_for_update()
        result = await self._session.execute(query)
        return result.scalar_one_or_none()

    async def get_decision_or_raise(
        self,
        decision_id: UUID,
        for_update: bool = False,
    ) -> Decision:
        decision = await self.get_decision(decision_id, for_update=for_update)
        if decision is None:
            raise NotFoundError(f"Decision {decision_id} not found")
        return decision

    async def open_decision_ids(self) -> list[UUID]:
        """IDs of every OPEN decision, soonest deadline first."""
        result = await self._session.execute(
            select(Decision.id)
            .where(Decision.status == DecisionStatus.OPEN)
            .order_by(Decision.end_time.asc(), Decision.id)
        )
        return list(result.scalars().all())

    async def compare_and_swap(
        self,
        decision: Decision,
        values: dict[str, Any],
        expected_status: DecisionStatus = DecisionStatus.OPEN,
        expected_stage: ConsentStage | None = ANY_STAGE,
    ) -> Decision:
        """Apply ``values`` only if the decision is still in the expected state.

        Raises ConflictError when the row no longer matches; otherwise the
        in-memory decision is refreshed from the database.
        """
        conditions = [
            Decision.id == decision.id,
            Decision.status == expected_status,
        ]
        if expected_stage is not ANY_STAGE:
            if expected_stage is None:
                conditions.append(Decision.current_stage.is_(None))
            else:
                conditions.append(Decision.current_stage == expected_stage)

        stmt = (
            update(Decision)
            .where(*conditions)
            .values(**values, version=Decision.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount == 0:
            raise ConflictError(
                f"Decision {decision.id} changed concurrently "
                f"(expected status={expected_status.value}, stage={expected_stage!r})"
            )

        await self._session.refresh(decision)
        return decision

    # =========================================================================
    # PARTICIPANTS & PROPOSALS
    # =========================================================================

    async def participants(self, decision_id: UUID) -> Sequence[Participant]:
        result = await self._session.execute(
            select(Participant)
            .where(Participant.decision_id == decision_id)
            .order_by(Participant.created_at, Participant.id)
        )
        return result.scalars().all()

    async def participant_count(self, decision_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count(Participant.id)).where(
                Participant.decision_id == decision_id
            )
        )
        return result.scalar() or 0

    async def voted_count(self, decision_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count(Participant.id)).where(
                Participant.decision_id == decision_id,
                Participant.has_voted.is_(True),
            )
        )
        return result.scalar() or 0

    async def participant_for_user(
        self,
        decision_id: UUID,
        user_id: UUID,
    ) -> Participant | None:
        result = await self._session.execute(
            select(Participant).where(
                Participant.decision_id == decision_id,
                Participant.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def participant_for_email(
        self,
        decision_id: UUID,
        email: str,
    ) -> Participant | None:
        result = await self._session.execute(
            select(Participant).where(
                Participant.decision_id == decision_id,
                func.lower(Participant.external_email) == email.lower(),
            )
        )
        return result.scalar_one_or_none()

    async def proposals(self, decision_id: UUID) -> Sequence[Proposal]:
        result = await self._session.execute(
            select(Proposal)
            .where(Proposal.decision_id == decision_id)
            .order_by(Proposal.position, Proposal.id)
        )
        return result.scalars().all()

    # =========================================================================
    # BALLOTS
    # =========================================================================

    async def ballots(
        self,
        decision_id: UUID,
        kinds: Sequence[BallotKind] | None = None,
    ) -> Sequence[Ballot]:
        query = select(Ballot).where(Ballot.decision_id == decision_id)
        if kinds:
            query = query.where(Ballot.kind.in_(list(kinds)))
        result = await self._session.execute(query.order_by(Ballot.created_at, Ballot.id))
        return result.scalars().all()

    async def find_ballot(
        self,
        decision_id: UUID,
        kind: BallotKind,
        participant_id: UUID | None = None,
        fingerprint: str | None = None,
    ) -> Ballot | None:
        """Active ballot of one identity, locked for update."""
        query = select(Ballot).where(
            Ballot.decision_id == decision_id,
            Ballot.kind == kind,
        )
        if participant_id is not None:
            query = query.where(Ballot.participant_id == participant_id)
        else:
            query = query.where(Ballot.fingerprint == fingerprint)

        result = await self._session.execute(query.with_for_update())
        return result.scalar_one_or_none()

    async def insert_ballot(self, ballot: Ballot) -> Ballot:
        """Insert a new ballot; a concurrent insert for the same identity raises ConflictError."""
        self._session.add(ballot)
        try:
            await self._session.flush()
        except IntegrityError as e:
            raise ConflictError(f"Ballot already recorded concurrently: {e.orig}")
        return ballot

    # =========================================================================
    # CLARIFICATIONS
    # =========================================================================

    async def get_clarification(
        self,
        decision_id: UUID,
        question_id: UUID,
    ) -> ClarificationQuestion:
        result = await self._session.execute(
            select(ClarificationQuestion).where(
                ClarificationQuestion.id == question_id,
                ClarificationQuestion.decision_id == decision_id,
            )
        )
        question = result.scalar_one_or_none()
        if question is None:
            raise NotFoundError(f"Clarification question {question_id} not found")
        return question
