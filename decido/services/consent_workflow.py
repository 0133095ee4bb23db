"""
Consent workflow: the creator's amendment step and clarification questions.

During AMENDEMENTS the creator either keeps the proposal, amends its text, or
withdraws it. Keeping or amending jumps straight to OBJECTIONS; withdrawing
closes the decision with a WITHDRAWN result.
"""

import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..models import (
    AmendmentAction,
    ClarificationQuestion,
    ConsentStage,
    Decision,
    DecisionAlgorithm,
    DecisionEventType,
    DecisionStatus,
)
from ..models.base import utcnow
from .closing import advance_stage, close_decision
from .errors import (
    ForbiddenError,
    InvalidStateError,
    OperationTimeoutError,
    ValidationError,
)
from .event_log import EventLog
from .lifecycle import ClosureResult
from .notifications import (
    NotificationIntent,
    NotificationPort,
    dispatch_notifications,
)
from .repository import DecisionRepository
from .stage_machine import can_amend_proposal, can_ask_clarification, current_stage

logger = logging.getLogger(__name__)

T = TypeVar("T")

Work = Callable[[DecisionRepository, EventLog, list[NotificationIntent]], Awaitable[T]]


class ConsentWorkflow:
    """Creator actions and clarifications on CONSENT decisions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: NotificationPort | None = None,
        timeout_seconds: float | None = None,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._timeout = timeout_seconds or get_settings().decision_timeout_seconds

    async def _run(self, work: Work) -> T:
        """One unit of work: transaction, then log flush, then notifications."""
        events = EventLog(self._session_factory)
        intents: list[NotificationIntent] = []

        async def _body():
            async with self._session_factory() as session:
                async with session.begin():
                    return await work(DecisionRepository(session), events, intents)

        try:
            result = await asyncio.wait_for(_body(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            events.discard()
            raise OperationTimeoutError(
                f"The operation took longer than {self._timeout}s, please retry"
            ) from e
        except BaseException:
            events.discard()
            raise

        await events.flush()
        await dispatch_notifications(self._notifier, intents)
        return result

    # =========================================================================
    # AMENDMENT ACTIONS
    # =========================================================================

    async def keep_proposal(
        self,
        decision_id: UUID,
        actor_id: UUID,
        now: datetime | None = None,
        actor_name: str | None = None,
    ) -> Decision:
        now = now or utcnow()

        async def work(repo, events, intents):
            decision = await self._load_for_amendment(repo, decision_id, actor_id, now)
            intents.append(await advance_stage(
                repo, decision, ConsentStage.OBJECTIONS, events, now,
                extra_values={"amendment_action": AmendmentAction.KEPT},
                actor_id=actor_id,
                actor_name=actor_name,
            ))
            events.append(
                decision.id,
                DecisionEventType.CONSENT_PROPOSAL_KEPT,
                actor_id=actor_id,
                actor_name=actor_name,
                new_value=decision.proposal,
                occurred_at=now,
            )
            return decision

        return await self._run(work)

    async def amend_proposal(
        self,
        decision_id: UUID,
        actor_id: UUID,
        new_text: str,
        now: datetime | None = None,
        actor_name: str | None = None,
    ) -> Decision:
        now = now or utcnow()
        if not new_text or not new_text.strip():
            raise ValidationError("The amended proposal cannot be empty")

        async def work(repo, events, intents):
            decision = await self._load_for_amendment(repo, decision_id, actor_id, now)
            old_text = decision.proposal
            intents.append(await advance_stage(
                repo, decision, ConsentStage.OBJECTIONS, events, now,
                extra_values={
                    "amendment_action": AmendmentAction.AMENDED,
                    "proposal": new_text.strip(),
                    "initial_proposal": decision.initial_proposal or old_text,
                },
                actor_id=actor_id,
                actor_name=actor_name,
            ))
            events.append(
                decision.id,
                DecisionEventType.CONSENT_PROPOSAL_AMENDED,
                actor_id=actor_id,
                actor_name=actor_name,
                old_value=old_text,
                new_value=decision.proposal,
                occurred_at=now,
            )
            return decision

        return await self._run(work)

    async def withdraw_proposal(
        self,
        decision_id: UUID,
        actor_id: UUID,
        now: datetime | None = None,
        actor_name: str | None = None,
    ) -> ClosureResult:
        now = now or utcnow()

        async def work(repo, events, intents):
            decision = await self._load_for_amendment(repo, decision_id, actor_id, now)
            record = await close_decision(
                repo, decision, events, now,
                reason="withdrawn",
                extra_values={"amendment_action": AmendmentAction.WITHDRAWN},
                actor_id=actor_id,
                actor_name=actor_name,
            )
            events.append(
                decision.id,
                DecisionEventType.CONSENT_PROPOSAL_WITHDRAWN,
                actor_id=actor_id,
                actor_name=actor_name,
                old_value=decision.proposal,
                occurred_at=now,
            )
            intents.append(record.notification)
            return ClosureResult(
                decision_id=record.decision_id,
                result=record.outcome.result,
                details=record.outcome.details_dict(),
            )

        return await self._run(work)

    async def _load_for_amendment(
        self,
        repo: DecisionRepository,
        decision_id: UUID,
        actor_id: UUID,
        now: datetime,
    ) -> Decision:
        decision = await repo.get_decision_or_raise(decision_id, for_update=True)
        self._require_open_consent(decision)

        if decision.amendment_action is not None:
            raise InvalidStateError(
                f"The proposal was already {decision.amendment_action.value}"
            )

        stage = self._stage(decision, now)
        if decision.creator_id != actor_id:
            raise ForbiddenError("Only the creator can amend, keep or withdraw the proposal")
        if not can_amend_proposal(stage, decision.creator_id, actor_id):
            raise InvalidStateError(
                f"The proposal can only be amended during the amendements stage "
                f"(current stage: {stage.value})"
            )
        return decision

    # =========================================================================
    # CLARIFICATIONS
    # =========================================================================

    async def post_clarification(
        self,
        decision_id: UUID,
        user_id: UUID,
        question: str,
        now: datetime | None = None,
        actor_name: str | None = None,
    ) -> ClarificationQuestion:
        now = now or utcnow()
        if not question or not question.strip():
            raise ValidationError("The question cannot be empty")

        async def work(repo, events, intents):
            decision = await repo.get_decision_or_raise(decision_id)
            self._require_open_consent(decision)

            participant = await repo.participant_for_user(decision.id, user_id)
            if participant is None:
                raise ForbiddenError("Only participants can ask clarification questions")

            stage = self._stage(decision, now)
            if not can_ask_clarification(stage, decision.stage_layout):
                raise ForbiddenError(
                    f"Clarification questions are closed (current stage: {stage.value})"
                )

            entry = ClarificationQuestion(
                decision_id=decision.id,
                participant_id=participant.id,
                question=question.strip(),
            )
            repo.session.add(entry)
            await repo.session.flush()

            events.append(
                decision.id,
                DecisionEventType.CONSENT_QUESTION_POSTED,
                actor_id=user_id,
                actor_name=actor_name or participant.name,
                new_value=entry.question,
                metadata={"question_id": str(entry.id)},
                occurred_at=now,
            )
            return entry

        return await self._run(work)

    async def answer_clarification(
        self,
        decision_id: UUID,
        question_id: UUID,
        actor_id: UUID,
        answer: str,
        now: datetime | None = None,
        actor_name: str | None = None,
    ) -> ClarificationQuestion:
        now = now or utcnow()
        if not answer or not answer.strip():
            raise ValidationError("The answer cannot be empty")

        async def work(repo, events, intents):
            decision = await repo.get_decision_or_raise(decision_id)
            self._require_open_consent(decision)
            if decision.creator_id != actor_id:
                raise ForbiddenError("Only the creator can answer clarification questions")

            entry = await repo.get_clarification(decision.id, question_id)
            old_answer = entry.answer
            entry.answer = answer.strip()
            entry.answered_at = now
            entry.answered_by = actor_id
            await repo.session.flush()

            events.append(
                decision.id,
                DecisionEventType.CONSENT_QUESTION_ANSWERED,
                actor_id=actor_id,
                actor_name=actor_name,
                old_value=old_answer,
                new_value=entry.answer,
                metadata={"question_id": str(entry.id)},
                occurred_at=now,
            )
            return entry

        return await self._run(work)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _require_open_consent(self, decision: Decision) -> None:
        if decision.algorithm != DecisionAlgorithm.CONSENT:
            raise InvalidStateError("Only consent decisions have this workflow")
        if decision.status != DecisionStatus.OPEN:
            raise InvalidStateError(f"Decision is {decision.status.value}")

    def _stage(self, decision: Decision, now: datetime) -> ConsentStage:
        return current_stage(
            decision.start_time,
            decision.end_time,
            decision.stage_layout,
            decision.amendment_action,
            now,
        )
