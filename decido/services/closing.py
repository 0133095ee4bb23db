"""
Shared write paths for stage transitions and closure.

Both the scheduler and the user-facing services (votes, manual close, creator
amendment actions) end up here, so a decision is always closed and advanced
the same way: one compare-and-swap write, log entries buffered on the
``EventLog``, and a notification intent returned to be dispatched after commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from ..models import (
    ConsentStage,
    Decision,
    DecisionAlgorithm,
    DecisionEventType,
    DecisionStatus,
    NotificationType,
)
from .event_log import EventLog
from .notifications import NotificationIntent, Recipient
from .repository import DecisionRepository
from .results import (
    BallotSnapshot,
    ProposalSnapshot,
    ResultInput,
    ResultOutcome,
    calculate_result,
)
from .stage_timing import stage_end_time

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class ClosureRecord:
    decision_id: UUID
    outcome: ResultOutcome
    notification: NotificationIntent


async def snapshot_result_input(
    repo: DecisionRepository,
    decision: Decision,
    amendment_action: Any = _UNSET,
) -> ResultInput:
    """Read everything the result calculator needs for ``decision``."""
    ballots = await repo.ballots(decision.id)
    proposals = await repo.proposals(decision.id)
    participant_count = await repo.participant_count(decision.id)

    return ResultInput(
        algorithm=decision.algorithm,
        participant_count=participant_count,
        ballots=[
            BallotSnapshot(
                kind=b.kind,
                participant_id=b.participant_id,
                value=b.value,
                proposal_id=b.proposal_id,
                mentions=b.mentions,
                withdrawn_at=b.withdrawn_at,
            )
            for b in ballots
        ],
        proposals=[
            ProposalSnapshot(id=p.id, title=p.title, position=p.position)
            for p in proposals
        ],
        amendment_action=(
            decision.amendment_action if amendment_action is _UNSET else amendment_action
        ),
        nuanced_scale=decision.nuanced_scale,
        winner_count=decision.nuanced_winner_count,
    )


async def stage_recipients(
    repo: DecisionRepository,
    decision: Decision,
    stage: ConsentStage,
) -> list[Recipient]:
    """AMENDEMENTS only concerns the creator; every other stage goes to all participants."""
    if stage == ConsentStage.AMENDEMENTS:
        return [Recipient(user_id=decision.creator_id)]
    participants = await repo.participants(decision.id)
    return [Recipient.from_participant(p) for p in participants]


async def advance_stage(
    repo: DecisionRepository,
    decision: Decision,
    new_stage: ConsentStage,
    events: EventLog,
    now: datetime,
    extra_values: dict | None = None,
    actor_id=None,
    actor_name: str | None = None,
) -> NotificationIntent:
    """Persist a CONSENT stage change (CAS on the currently loaded stage)."""
    old_stage = decision.current_stage
    values = {"current_stage": new_stage}
    values.update(extra_values or {})

    await repo.compare_and_swap(decision, values, expected_stage=old_stage)

    events.append(
        decision.id,
        DecisionEventType.CONSENT_STAGE_CHANGED,
        actor_id=actor_id,
        actor_name=actor_name,
        old_value=old_stage,
        new_value=new_stage,
        occurred_at=now,
    )
    logger.info(
        "Decision %s moved from %s to %s",
        decision.id,
        old_stage.value if old_stage else None,
        new_stage.value,
    )

    return NotificationIntent(
        notification_type=NotificationType.STAGE_TRANSITION,
        decision_id=decision.id,
        stage=new_stage,
        stage_end_time=stage_end_time(
            decision.start_time, decision.end_time, decision.stage_layout, new_stage
        ),
        recipients=await stage_recipients(repo, decision, new_stage),
    )


async def close_decision(
    repo: DecisionRepository,
    decision: Decision,
    events: EventLog,
    now: datetime,
    reason: str,
    extra_values: dict | None = None,
    actor_id=None,
    actor_name: str | None = None,
) -> ClosureRecord:
    """Compute the result and close an OPEN decision in one CAS write.

    ``extra_values`` are written alongside (and taken into account by the
    result, e.g. a withdrawn amendment action).
    """
    extra_values = dict(extra_values or {})
    data = await snapshot_result_input(
        repo,
        decision,
        amendment_action=extra_values.get("amendment_action", _UNSET),
    )
    outcome = calculate_result(data)

    old_stage = decision.current_stage
    values = {
        "status": DecisionStatus.CLOSED,
        "result": outcome.result,
        "result_details": outcome.details_dict(),
        "decided_at": now,
        **extra_values,
    }
    is_consent = decision.algorithm == DecisionAlgorithm.CONSENT
    if is_consent:
        values["current_stage"] = ConsentStage.TERMINEE

    await repo.compare_and_swap(decision, values, expected_stage=old_stage)

    if is_consent and old_stage != ConsentStage.TERMINEE:
        events.append(
            decision.id,
            DecisionEventType.CONSENT_STAGE_CHANGED,
            actor_id=actor_id,
            actor_name=actor_name,
            old_value=old_stage,
            new_value=ConsentStage.TERMINEE,
            occurred_at=now,
        )
    events.append(
        decision.id,
        DecisionEventType.STATUS_CHANGED,
        actor_id=actor_id,
        actor_name=actor_name,
        old_value=DecisionStatus.OPEN,
        new_value=DecisionStatus.CLOSED,
        occurred_at=now,
    )
    events.append(
        decision.id,
        DecisionEventType.CLOSED,
        actor_id=actor_id,
        actor_name=actor_name,
        new_value=outcome.result,
        metadata={"reason": reason, "result": outcome.result.value},
        occurred_at=now,
    )
    if is_consent:
        events.append(
            decision.id,
            DecisionEventType.CONSENT_DECISION_FINALIZED,
            actor_id=actor_id,
            actor_name=actor_name,
            new_value=outcome.result,
            metadata=outcome.details_dict(),
            occurred_at=now,
        )

    logger.info(
        "Closed decision %s (%s): %s", decision.id, reason, outcome.result.value
    )

    return ClosureRecord(
        decision_id=decision.id,
        outcome=outcome,
        notification=NotificationIntent(
            notification_type=NotificationType.CLOSURE,
            decision_id=decision.id,
            result=outcome.result,
        ),
    )
