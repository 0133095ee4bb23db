"""API routes for Decido."""

from fastapi import APIRouter

from .cron import router as cron_router
from .decisions import router as decisions_router
from .votes import public_router as public_votes_router
from .votes import router as votes_router

# Main API router
api_router = APIRouter()

# Decision lifecycle, stages and consent workflow
api_router.include_router(decisions_router)

# Ballots (members, then anonymous public links)
api_router.include_router(votes_router)
api_router.include_router(public_votes_router)

# Periodic closure scan trigger
api_router.include_router(cron_router)

__all__ = ["api_router"]
