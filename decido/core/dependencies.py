"""FastAPI dependencies for authentication, trigger authorization and services."""

import logging
from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..services.closure_scheduler import ClosureScheduler
from ..services.consent_workflow import ConsentWorkflow
from ..services.lifecycle import DecisionLifecycle
from ..services.notifications import NotificationPort, OutboxNotifier
from ..services.vote_recorder import VoteRecorder
from .database import get_session_factory
from .security import decode_token, verify_cron_secret

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)

SessionFactoryDep = Annotated[
    async_sessionmaker[AsyncSession], Depends(get_session_factory)
]


@dataclass
class CurrentActor:
    """The authenticated caller, as asserted by the identity service's token."""
    id: UUID
    name: str | None = None


async def get_current_actor(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> CurrentActor:
    """Dependency to get the current authenticated user from a JWT bearer token."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )

    try:
        user_id = UUID(payload.sub)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token subject",
        )

    return CurrentActor(id=user_id, name=payload.name)


async def get_current_actor_optional(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
) -> CurrentActor | None:
    """Optional authentication - returns None if not authenticated."""
    if not credentials:
        return None

    try:
        return await get_current_actor(credentials)
    except HTTPException:
        return None


def require_cron_secret(
    authorization: Annotated[str | None, Header()] = None,
) -> None:
    """Reject trigger calls that do not carry ``Bearer <CRON_SECRET>``."""
    if not verify_cron_secret(authorization):
        logger.warning("Unauthorized closure scan trigger")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
        )


def get_client_key(request: Request) -> str:
    """Deduplication key for anonymous ballots: the client address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client:
        return request.client.host
    return "unknown"


# =============================================================================
# SERVICES
# =============================================================================


def get_notifier(session_factory: SessionFactoryDep) -> NotificationPort:
    return OutboxNotifier(session_factory)


NotifierDep = Annotated[NotificationPort, Depends(get_notifier)]


def get_vote_recorder(
    session_factory: SessionFactoryDep,
    notifier: NotifierDep,
) -> VoteRecorder:
    return VoteRecorder(session_factory, notifier)


def get_closure_scheduler(
    session_factory: SessionFactoryDep,
    notifier: NotifierDep,
) -> ClosureScheduler:
    return ClosureScheduler(session_factory, notifier)


def get_lifecycle(
    session_factory: SessionFactoryDep,
    notifier: NotifierDep,
) -> DecisionLifecycle:
    return DecisionLifecycle(session_factory, notifier)


def get_consent_workflow(
    session_factory: SessionFactoryDep,
    notifier: NotifierDep,
) -> ConsentWorkflow:
    return ConsentWorkflow(session_factory, notifier)


# Type aliases for cleaner dependency injection
CurrentActorDep = Annotated[CurrentActor, Depends(get_current_actor)]
OptionalActorDep = Annotated[CurrentActor | None, Depends(get_current_actor_optional)]
CronAuthDep = Annotated[None, Depends(require_cron_secret)]
ClientKeyDep = Annotated[str, Depends(get_client_key)]
VoteRecorderDep = Annotated[VoteRecorder, Depends(get_vote_recorder)]
SchedulerDep = Annotated[ClosureScheduler, Depends(get_closure_scheduler)]
LifecycleDep = Annotated[DecisionLifecycle, Depends(get_lifecycle)]
ConsentWorkflowDep = Annotated[ConsentWorkflow, Depends(get_consent_workflow)]
