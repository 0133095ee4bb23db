"""API routes for decision lifecycle, stages and the consent workflow."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from ..core.dependencies import (
    ConsentWorkflowDep,
    CurrentActorDep,
    LifecycleDep,
    SessionFactoryDep,
)
from ..models import (
    Decision,
    DecisionAlgorithm,
    NuancedScale,
    StageLayout,
    VotingMode,
)
from ..models.base import utcnow
from ..schemas import (
    AmendProposalRequest,
    ClarificationAnswer,
    ClarificationCreate,
    ClarificationResponse,
    ClosureResponse,
    DecisionCreate,
    DecisionResponse,
    LaunchRequest,
    StagesResponse,
    StageWindowResponse,
)
from ..services import (
    CreateDecisionInput,
    EngineError,
    ParticipantInput,
    ProposalInput,
    compute_stage_windows,
    current_stage,
)
from ..services.lifecycle import get_decision
from .errors import to_http_exception

router = APIRouter(prefix="/decisions", tags=["decisions"])


def decision_to_response(decision: Decision) -> DecisionResponse:
    return DecisionResponse.model_validate(decision)


# =============================================================================
# DECISION CRUD
# =============================================================================


@router.post("", response_model=DecisionResponse, status_code=status.HTTP_201_CREATED)
async def create_decision(
    data: DecisionCreate,
    actor: CurrentActorDep,
    lifecycle: LifecycleDep,
):
    """Create a draft decision with its proposals and participants."""
    try:
        decision = await lifecycle.create_draft(
            CreateDecisionInput(
                title=data.title,
                algorithm=DecisionAlgorithm(data.algorithm),
                description=data.description,
                proposal=data.proposal,
                organization_id=data.organization_id,
                voting_mode=VotingMode(data.voting_mode),
                stage_layout=StageLayout(data.stage_layout) if data.stage_layout else None,
                nuanced_scale=NuancedScale(data.nuanced_scale) if data.nuanced_scale else None,
                nuanced_winner_count=data.nuanced_winner_count,
                binding_deadline=data.binding_deadline,
                proposals=[
                    ProposalInput(title=p.title, description=p.description)
                    for p in data.proposals
                ],
                participants=[
                    ParticipantInput(**p.model_dump()) for p in data.participants
                ],
            ),
            creator_id=actor.id,
            creator_name=actor.name,
        )
    except EngineError as e:
        raise to_http_exception(e)

    return decision_to_response(decision)


@router.get("/{decision_id}", response_model=DecisionResponse)
async def read_decision(
    decision_id: UUID,
    actor: CurrentActorDep,
    session_factory: SessionFactoryDep,
):
    try:
        decision = await get_decision(session_factory, decision_id)
    except EngineError as e:
        raise to_http_exception(e)
    return decision_to_response(decision)


@router.delete("/{decision_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_decision(
    decision_id: UUID,
    actor: CurrentActorDep,
    lifecycle: LifecycleDep,
):
    """Delete a decision that was never launched."""
    try:
        await lifecycle.delete_draft(decision_id, actor.id)
    except EngineError as e:
        raise to_http_exception(e)


# =============================================================================
# LIFECYCLE
# =============================================================================


@router.post("/{decision_id}/launch", response_model=DecisionResponse)
async def launch_decision(
    decision_id: UUID,
    data: LaunchRequest,
    actor: CurrentActorDep,
    lifecycle: LifecycleDep,
):
    """Open a draft decision for voting (creator only)."""
    try:
        decision = await lifecycle.launch(
            decision_id,
            actor.id,
            start_time=data.start_time,
            end_time=data.end_time,
        )
    except EngineError as e:
        raise to_http_exception(e)
    return decision_to_response(decision)


@router.post("/{decision_id}/close", response_model=ClosureResponse)
async def close_decision(
    decision_id: UUID,
    actor: CurrentActorDep,
    lifecycle: LifecycleDep,
):
    """Close an open decision now (creator only)."""
    try:
        closure = await lifecycle.close(decision_id, actor.id, actor_name=actor.name)
    except EngineError as e:
        raise to_http_exception(e)
    return ClosureResponse(
        decision_id=closure.decision_id,
        result=closure.result,
        details=closure.details,
    )


@router.get("/{decision_id}/stages", response_model=StagesResponse)
async def read_stages(
    decision_id: UUID,
    actor: CurrentActorDep,
    session_factory: SessionFactoryDep,
):
    """Stage windows of a launched CONSENT decision, relative to now."""
    try:
        decision = await get_decision(session_factory, decision_id)
    except EngineError as e:
        raise to_http_exception(e)

    if decision.algorithm != DecisionAlgorithm.CONSENT or decision.stage_layout is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only consent decisions have stages",
        )
    if decision.start_time is None or decision.end_time is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="The decision has not been launched",
        )

    now = utcnow()
    windows = compute_stage_windows(
        decision.start_time, decision.end_time, decision.stage_layout, now
    )
    return StagesResponse(
        decision_id=decision.id,
        layout=decision.stage_layout,
        current_stage=current_stage(
            decision.start_time,
            decision.end_time,
            decision.stage_layout,
            decision.amendment_action,
            now,
        ),
        windows=[StageWindowResponse(**w.to_dict()) for w in windows],
    )


# =============================================================================
# CONSENT WORKFLOW
# =============================================================================


@router.post("/{decision_id}/consent/keep", response_model=DecisionResponse)
async def keep_proposal(
    decision_id: UUID,
    actor: CurrentActorDep,
    workflow: ConsentWorkflowDep,
):
    """Keep the proposal unchanged and open the objections stage."""
    try:
        decision = await workflow.keep_proposal(decision_id, actor.id, actor_name=actor.name)
    except EngineError as e:
        raise to_http_exception(e)
    return decision_to_response(decision)


@router.post("/{decision_id}/consent/amend", response_model=DecisionResponse)
async def amend_proposal(
    decision_id: UUID,
    data: AmendProposalRequest,
    actor: CurrentActorDep,
    workflow: ConsentWorkflowDep,
):
    """Replace the proposal text and open the objections stage."""
    try:
        decision = await workflow.amend_proposal(
            decision_id, actor.id, data.proposal, actor_name=actor.name
        )
    except EngineError as e:
        raise to_http_exception(e)
    return decision_to_response(decision)


@router.post("/{decision_id}/consent/withdraw", response_model=ClosureResponse)
async def withdraw_proposal(
    decision_id: UUID,
    actor: CurrentActorDep,
    workflow: ConsentWorkflowDep,
):
    """Withdraw the proposal; the decision closes as WITHDRAWN."""
    try:
        closure = await workflow.withdraw_proposal(decision_id, actor.id, actor_name=actor.name)
    except EngineError as e:
        raise to_http_exception(e)
    return ClosureResponse(
        decision_id=closure.decision_id,
        result=closure.result,
        details=closure.details,
    )


@router.post(
    "/{decision_id}/clarifications",
    response_model=ClarificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def post_clarification(
    decision_id: UUID,
    data: ClarificationCreate,
    actor: CurrentActorDep,
    workflow: ConsentWorkflowDep,
):
    try:
        question = await workflow.post_clarification(
            decision_id, actor.id, data.question, actor_name=actor.name
        )
    except EngineError as e:
        raise to_http_exception(e)
    return ClarificationResponse.model_validate(question)


@router.post(
    "/{decision_id}/clarifications/{question_id}/answer",
    response_model=ClarificationResponse,
)
async def answer_clarification(
    decision_id: UUID,
    question_id: UUID,
    data: ClarificationAnswer,
    actor: CurrentActorDep,
    workflow: ConsentWorkflowDep,
):
    try:
        question = await workflow.answer_clarification(
            decision_id, question_id, actor.id, data.answer, actor_name=actor.name
        )
    except EngineError as e:
        raise to_http_exception(e)
    return ClarificationResponse.model_validate(question)
