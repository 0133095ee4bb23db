"""
Shared fixtures: a throwaway SQLite database per test, a recording notifier
and factories that seed decisions in any state.
"""

import os

# Settings are read once at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-decido")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENVIRONMENT", "development")

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Sequence
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from decido.models import (
    AmendmentAction,
    Ballot,
    BallotKind,
    Base,
    ConsentStage,
    Decision,
    DecisionAlgorithm,
    DecisionLogEntry,
    DecisionStatus,
    NuancedScale,
    Participant,
    Proposal,
    StageLayout,
    VotingMode,
)
from decido.services import NotificationPort


# Fixed clock for engine tests
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'decido.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


# =============================================================================
# NOTIFIER
# =============================================================================


class RecordingNotifier(NotificationPort):
    """Keeps every notification request in memory."""

    def __init__(self):
        self.stage_transitions: list[tuple] = []
        self.closures: list[tuple] = []

    async def notify_stage_transition(self, decision_id, stage, recipients, stage_end_time):
        self.stage_transitions.append((decision_id, stage, list(recipients), stage_end_time))

    async def notify_closure(self, decision_id, result):
        self.closures.append((decision_id, result))


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# FACTORIES
# =============================================================================


@dataclass
class SeededDecision:
    id: UUID
    creator_id: UUID
    participant_user_ids: list[UUID] = field(default_factory=list)
    participant_ids: list[UUID] = field(default_factory=list)
    proposal_ids: list[UUID] = field(default_factory=list)


@pytest.fixture
def make_decision(session_factory):
    """Insert a decision directly, skipping launch validation."""

    async def _make(
        algorithm: DecisionAlgorithm = DecisionAlgorithm.CONSENSUS,
        status: DecisionStatus = DecisionStatus.OPEN,
        start_time: datetime | None = NOW - timedelta(days=1),
        end_time: datetime | None = NOW + timedelta(days=6),
        participants: int = 2,
        proposals: Sequence[str] = (),
        voting_mode: VotingMode = VotingMode.INVITED,
        stage_layout: StageLayout | None = None,
        current_stage: ConsentStage | None = None,
        amendment_action: AmendmentAction | None = None,
        nuanced_scale: NuancedScale | None = None,
        nuanced_winner_count: int = 1,
        binding_deadline: bool = True,
        proposal: str | None = "Adopt the four-day week",
        creator_id: UUID | None = None,
    ) -> SeededDecision:
        creator_id = creator_id or uuid4()
        user_ids = [uuid4() for _ in range(participants)]

        async with session_factory() as session:
            async with session.begin():
                decision = Decision(
                    creator_id=creator_id,
                    title=f"{algorithm.value} decision",
                    algorithm=algorithm,
                    status=status,
                    voting_mode=voting_mode,
                    start_time=start_time if status != DecisionStatus.DRAFT else None,
                    end_time=end_time if status != DecisionStatus.DRAFT else None,
                    stage_layout=stage_layout,
                    current_stage=current_stage,
                    amendment_action=amendment_action,
                    proposal=proposal,
                    initial_proposal=proposal,
                    nuanced_scale=nuanced_scale,
                    nuanced_winner_count=nuanced_winner_count,
                    binding_deadline=binding_deadline,
                    participants=[
                        Participant(user_id=user_id, display_name=f"Voter {i}")
                        for i, user_id in enumerate(user_ids, start=1)
                    ],
                    proposals=[
                        Proposal(title=title, position=i)
                        for i, title in enumerate(proposals)
                    ],
                )
                session.add(decision)
                await session.flush()

                return SeededDecision(
                    id=decision.id,
                    creator_id=creator_id,
                    participant_user_ids=user_ids,
                    participant_ids=[p.id for p in decision.participants],
                    proposal_ids=[p.id for p in decision.proposals],
                )

    return _make


@pytest.fixture
def add_ballot(session_factory):
    """Insert a ballot for a participant without going through the recorder."""

    async def _add(
        decision_id: UUID,
        participant_id: UUID,
        kind: BallotKind,
        value: str | None = None,
        proposal_id: UUID | None = None,
        text: str | None = None,
        withdrawn_at: datetime | None = None,
    ) -> None:
        async with session_factory() as session:
            async with session.begin():
                session.add(Ballot(
                    decision_id=decision_id,
                    participant_id=participant_id,
                    kind=kind,
                    value=value,
                    proposal_id=proposal_id,
                    text=text,
                    withdrawn_at=withdrawn_at,
                ))
                participant = await session.get(Participant, participant_id)
                participant.has_voted = True

    return _add


@pytest.fixture
def load_decision(session_factory):
    async def _load(decision_id: UUID) -> Decision | None:
        async with session_factory() as session:
            return await session.get(Decision, decision_id)

    return _load


@pytest.fixture
def log_entries(session_factory):
    async def _entries(decision_id: UUID) -> list[DecisionLogEntry]:
        async with session_factory() as session:
            result = await session.execute(
                select(DecisionLogEntry)
                .where(DecisionLogEntry.decision_id == decision_id)
                .order_by(DecisionLogEntry.created_at, DecisionLogEntry.id)
            )
            return list(result.scalars().all())

    return _entries
