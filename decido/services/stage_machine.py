"""
Stage state machine for CONSENT decisions.

The active stage is a pure function of the decision's window, its layout, the
creator's amendment action and the caller's ``now``: nothing has to run in the
background for stages to advance. The scheduler compares the computed stage
with the persisted one to detect transitions.

    DISTINCT: CLARIFICATIONS -> AVIS -> AMENDEMENTS -> OBJECTIONS -> TERMINEE
    MERGED:   CLARIFAVIS -> AMENDEMENTS -> OBJECTIONS -> TERMINEE

An amendment action (kept, amended, withdrawn) jumps straight to OBJECTIONS.
"""

from datetime import datetime
from uuid import UUID

from ..models import AmendmentAction, ConsentStage, StageLayout
from .stage_timing import compute_stage_windows, first_stage


STAGE_ORDER: dict[ConsentStage, int] = {
    ConsentStage.CLARIFICATIONS: 0,
    ConsentStage.CLARIFAVIS: 0,
    ConsentStage.AVIS: 1,
    ConsentStage.AMENDEMENTS: 2,
    ConsentStage.OBJECTIONS: 3,
    ConsentStage.TERMINEE: 4,
}


def current_stage(
    start: datetime | None,
    end: datetime | None,
    layout: StageLayout | None,
    amendment_action: AmendmentAction | None,
    now: datetime,
) -> ConsentStage:
    """Stage a CONSENT decision is in at ``now``."""
    layout = layout or StageLayout.DISTINCT
    if start is None or end is None:
        return first_stage(layout)

    if now >= end:
        return ConsentStage.TERMINEE

    if amendment_action is not None:
        return ConsentStage.OBJECTIONS

    if now < start:
        return first_stage(layout)

    for window in compute_stage_windows(start, end, layout, now):
        if window.is_active:
            return window.stage

    # Unreachable while start <= now < end
    return first_stage(layout)


def has_transitioned(
    persisted: ConsentStage | None,
    computed: ConsentStage,
) -> bool:
    """True when the computed stage differs from the stored one."""
    if persisted is None:
        return True
    return persisted != computed


def is_forward(persisted: ConsentStage | None, computed: ConsentStage) -> bool:
    """Stages only move forward; a computed stage behind the stored one is ignored."""
    if persisted is None:
        return True
    return STAGE_ORDER[computed] > STAGE_ORDER[persisted]


# =============================================================================
# PERMISSIONS
# =============================================================================


def can_ask_clarification(stage: ConsentStage | None, layout: StageLayout | None) -> bool:
    if layout == StageLayout.MERGED:
        return stage == ConsentStage.CLARIFAVIS
    return stage in (ConsentStage.CLARIFICATIONS, ConsentStage.AVIS)


def can_give_opinion(stage: ConsentStage | None, layout: StageLayout | None) -> bool:
    if layout == StageLayout.MERGED:
        return stage == ConsentStage.CLARIFAVIS
    return stage == ConsentStage.AVIS


def can_amend_proposal(
    stage: ConsentStage | None,
    creator_id: UUID,
    actor_id: UUID | None,
) -> bool:
    """Only the creator, and only during AMENDEMENTS."""
    if actor_id is None or creator_id != actor_id:
        return False
    return stage == ConsentStage.AMENDEMENTS


def can_object(stage: ConsentStage | None) -> bool:
    return stage == ConsentStage.OBJECTIONS
