"""Trigger surface for the periodic closure scan."""

from fastapi import APIRouter

from ..core.dependencies import CronAuthDep, SchedulerDep
from ..schemas import ScanSummaryResponse

router = APIRouter(prefix="/cron", tags=["cron"])


@router.api_route(
    "/closure-scan",
    methods=["GET", "POST"],
    response_model=ScanSummaryResponse,
    summary="Advance consent stages and close due decisions",
    description="""
    Called by an external scheduler (every few minutes) with
    `Authorization: Bearer <CRON_SECRET>`.

    Each OPEN decision is processed in its own transaction; failures are
    reported in `errors` and never abort the pass.
    """,
)
async def closure_scan(
    _: CronAuthDep,
    scheduler: SchedulerDep,
):
    summary = await scheduler.run()
    return ScanSummaryResponse(**summary.to_dict())
