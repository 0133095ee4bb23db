"""
Tests for the decision lifecycle.

These tests verify:
1. CREATE: drafts keep their proposals and participants, and are logged
2. LAUNCH: window, algorithm requirements and the consent initial stage
3. CLOSE: creator-only manual closure computes the result
4. DELETE: only drafts can be removed
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from decido.models import (
    BallotKind,
    ConsentStage,
    DecisionAlgorithm,
    DecisionEventType,
    DecisionResult,
    DecisionStatus,
    NuancedScale,
    StageLayout,
    VotingMode,
)
from decido.services import (
    CreateDecisionInput,
    DecisionLifecycle,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ParticipantInput,
    ProposalInput,
    ValidationError,
)
from decido.services.lifecycle import get_decision

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def lifecycle(session_factory, notifier) -> DecisionLifecycle:
    return DecisionLifecycle(session_factory, notifier)


def draft_input(algorithm=DecisionAlgorithm.CONSENSUS, **overrides) -> CreateDecisionInput:
    values = {
        "title": "Adopt a four-day week",
        "algorithm": algorithm,
        "proposal": "Everyone works Monday to Thursday",
        "participants": [
            ParticipantInput(user_id=uuid4(), display_name="Grace"),
            ParticipantInput(external_email="lin@example.org", external_name="Lin"),
        ],
    }
    values.update(overrides)
    return CreateDecisionInput(**values)


# =============================================================================
# CREATE / DELETE
# =============================================================================


class TestCreateDraft:
    async def test_creates_draft_with_children(self, lifecycle, session_factory, log_entries):
        creator = uuid4()
        decision = await lifecycle.create_draft(
            draft_input(
                DecisionAlgorithm.MAJORITY,
                proposals=[ProposalInput("Postgres"), ProposalInput("MySQL")],
            ),
            creator_id=creator,
            creator_name="Ada",
        )

        assert decision.status == DecisionStatus.DRAFT
        assert decision.creator_id == creator
        assert decision.start_time is None and decision.end_time is None
        assert decision.version == 1

        events = [e.event_type for e in await log_entries(decision.id)]
        assert events.count(DecisionEventType.CREATED) == 1
        assert events.count(DecisionEventType.PARTICIPANT_ADDED) == 2

    async def test_participant_must_be_member_or_invitee(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.create_draft(
                draft_input(participants=[ParticipantInput()]),
                creator_id=uuid4(),
            )

    async def test_title_required(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.create_draft(draft_input(title="   "), creator_id=uuid4())

    async def test_delete_draft(self, lifecycle, session_factory):
        creator = uuid4()
        decision = await lifecycle.create_draft(draft_input(), creator_id=creator)

        await lifecycle.delete_draft(decision.id, creator)

        with pytest.raises(NotFoundError):
            await get_decision(session_factory, decision.id)

    async def test_delete_requires_creator_and_draft(self, lifecycle, make_decision):
        seeded = await make_decision(status=DecisionStatus.OPEN)

        with pytest.raises(ForbiddenError):
            await lifecycle.delete_draft(seeded.id, uuid4())
        with pytest.raises(InvalidStateError):
            await lifecycle.delete_draft(seeded.id, seeded.creator_id)


# =============================================================================
# LAUNCH
# =============================================================================


class TestLaunch:
    async def test_launch_consensus(self, lifecycle, log_entries):
        creator = uuid4()
        draft = await lifecycle.create_draft(draft_input(), creator_id=creator)

        decision = await lifecycle.launch(
            draft.id, creator, end_time=NOW + timedelta(days=3), now=NOW
        )

        assert decision.status == DecisionStatus.OPEN
        assert decision.start_time == NOW
        assert decision.end_time == NOW + timedelta(days=3)
        assert decision.initial_proposal == "Everyone works Monday to Thursday"
        assert decision.current_stage is None
        assert decision.version == 2

        launched = [
            e for e in await log_entries(draft.id)
            if e.event_type == DecisionEventType.LAUNCHED
        ]
        assert launched[0].old_value == "draft"
        assert launched[0].new_value == "open"

    async def test_only_creator_launches(self, lifecycle):
        draft = await lifecycle.create_draft(draft_input(), creator_id=uuid4())

        with pytest.raises(ForbiddenError):
            await lifecycle.launch(draft.id, uuid4(), end_time=NOW + timedelta(days=3), now=NOW)

    async def test_launch_twice_fails(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(draft_input(), creator_id=creator)
        await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=3), now=NOW)

        with pytest.raises(InvalidStateError):
            await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=4), now=NOW)

    async def test_deadline_must_be_in_the_future(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(draft_input(), creator_id=creator)

        with pytest.raises(ValidationError):
            await lifecycle.launch(
                draft.id, creator,
                start_time=NOW - timedelta(days=3),
                end_time=NOW - timedelta(days=1),
                now=NOW,
            )

    async def test_consensus_needs_proposal_text(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(draft_input(proposal=None), creator_id=creator)

        with pytest.raises(ValidationError):
            await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=3), now=NOW)

    async def test_invited_needs_participants(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(draft_input(participants=[]), creator_id=creator)

        with pytest.raises(ValidationError):
            await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=3), now=NOW)

    async def test_public_link_launches_without_participants(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(
            draft_input(
                DecisionAlgorithm.ADVISORY,
                participants=[],
                voting_mode=VotingMode.PUBLIC_LINK,
            ),
            creator_id=creator,
        )

        decision = await lifecycle.launch(
            draft.id, creator, end_time=NOW + timedelta(days=1), now=NOW
        )
        assert decision.status == DecisionStatus.OPEN

    async def test_majority_needs_two_proposals(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(
            draft_input(DecisionAlgorithm.MAJORITY, proposals=[ProposalInput("Only one")]),
            creator_id=creator,
        )

        with pytest.raises(ValidationError):
            await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=3), now=NOW)

    async def test_nuanced_defaults_to_five_levels(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(
            draft_input(
                DecisionAlgorithm.NUANCED,
                proposals=[ProposalInput("A"), ProposalInput("B"), ProposalInput("C")],
                nuanced_winner_count=2,
            ),
            creator_id=creator,
        )

        decision = await lifecycle.launch(
            draft.id, creator, end_time=NOW + timedelta(days=3), now=NOW
        )
        assert decision.nuanced_scale == NuancedScale.FIVE_LEVELS
        assert decision.nuanced_winner_count == 2

    async def test_nuanced_winner_count_bounded_by_proposals(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(
            draft_input(
                DecisionAlgorithm.NUANCED,
                proposals=[ProposalInput("A"), ProposalInput("B")],
                nuanced_winner_count=3,
            ),
            creator_id=creator,
        )

        with pytest.raises(ValidationError):
            await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=3), now=NOW)


class TestLaunchConsent:
    async def test_sets_initial_stage_and_notifies(self, lifecycle, notifier):
        creator = uuid4()
        draft = await lifecycle.create_draft(
            draft_input(DecisionAlgorithm.CONSENT, stage_layout=StageLayout.MERGED),
            creator_id=creator,
        )

        decision = await lifecycle.launch(
            draft.id, creator, end_time=NOW + timedelta(days=9), now=NOW
        )

        assert decision.current_stage == ConsentStage.CLARIFAVIS
        decision_id, stage, recipients, stage_end = notifier.stage_transitions[0]
        assert (decision_id, stage) == (draft.id, ConsentStage.CLARIFAVIS)
        assert len(recipients) == 2
        assert stage_end == NOW + timedelta(days=6)

    async def test_requires_layout(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(
            draft_input(DecisionAlgorithm.CONSENT), creator_id=creator
        )

        with pytest.raises(ValidationError):
            await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=9), now=NOW)

    async def test_requires_minimum_duration(self, lifecycle):
        creator = uuid4()
        draft = await lifecycle.create_draft(
            draft_input(DecisionAlgorithm.CONSENT, stage_layout=StageLayout.DISTINCT),
            creator_id=creator,
        )

        with pytest.raises(ValidationError):
            await lifecycle.launch(draft.id, creator, end_time=NOW + timedelta(days=2), now=NOW)


# =============================================================================
# MANUAL CLOSE
# =============================================================================


class TestManualClose:
    async def test_creator_closes(
        self, lifecycle, make_decision, add_ballot, load_decision, notifier, log_entries
    ):
        seeded = await make_decision(participants=2)
        await add_ballot(seeded.id, seeded.participant_ids[0], BallotKind.VOTE, value="disagree")

        closure = await lifecycle.close(seeded.id, seeded.creator_id, now=NOW, actor_name="Ada")

        assert closure.result == DecisionResult.REJECTED
        assert closure.details["disagree_count"] == 1
        decision = await load_decision(seeded.id)
        assert decision.status == DecisionStatus.CLOSED
        assert notifier.closures == [(seeded.id, DecisionResult.REJECTED)]

        closed = [e for e in await log_entries(seeded.id) if e.event_type == DecisionEventType.CLOSED]
        assert closed[0].event_metadata["reason"] == "manual"
        assert closed[0].actor_id == seeded.creator_id

    async def test_only_creator_closes(self, lifecycle, make_decision):
        seeded = await make_decision()

        with pytest.raises(ForbiddenError):
            await lifecycle.close(seeded.id, uuid4(), now=NOW)

    async def test_cannot_close_twice(self, lifecycle, make_decision):
        seeded = await make_decision()
        await lifecycle.close(seeded.id, seeded.creator_id, now=NOW)

        with pytest.raises(InvalidStateError):
            await lifecycle.close(seeded.id, seeded.creator_id, now=NOW)

    async def test_unknown_decision(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.close(uuid4(), uuid4(), now=NOW)
