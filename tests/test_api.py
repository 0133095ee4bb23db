"""
Tests for the HTTP surface: authentication, error mapping and the cron trigger.

The app runs in-process through httpx's ASGI transport against the per-test
SQLite database.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import httpx
import pytest

from decido.core.database import get_session_factory
from decido.core.security import create_access_token
from decido.main import app
from decido.models import (
    ConsentStage,
    DecisionAlgorithm,
    DecisionStatus,
    StageLayout,
    VotingMode,
)
from decido.services import OperationTimeoutError, VoteRecorder

API = "/api/v1"
CRON_AUTH = {"Authorization": "Bearer test-cron-secret"}


def auth(user_id, name: str | None = None) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, name=name)}"}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@pytest.fixture
async def client(session_factory):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


# =============================================================================
# BASICS
# =============================================================================


class TestBasics:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_requires_token(self, client):
        response = await client.post(f"{API}/decisions", json={"title": "x", "algorithm": "consensus"})
        assert response.status_code == 401

    async def test_rejects_forged_token(self, client):
        response = await client.get(
            f"{API}/decisions/{uuid4()}",
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    async def test_unknown_decision_is_404(self, client):
        response = await client.get(f"{API}/decisions/{uuid4()}", headers=auth(uuid4()))
        assert response.status_code == 404


# =============================================================================
# DECISION FLOW
# =============================================================================


class TestDecisionFlow:
    async def test_create_launch_and_reach_consensus(self, client):
        creator, alice, bob = uuid4(), uuid4(), uuid4()

        created = await client.post(
            f"{API}/decisions",
            headers=auth(creator, "Ada"),
            json={
                "title": "Adopt a four-day week",
                "algorithm": "consensus",
                "proposal": "Everyone works Monday to Thursday",
                "participants": [
                    {"user_id": str(alice), "display_name": "Alice"},
                    {"user_id": str(bob), "display_name": "Bob"},
                ],
            },
        )
        assert created.status_code == 201
        decision_id = created.json()["id"]
        assert created.json()["status"] == "draft"

        launched = await client.post(
            f"{API}/decisions/{decision_id}/launch",
            headers=auth(creator),
            json={"end_time": (utcnow() + timedelta(days=3)).isoformat()},
        )
        assert launched.status_code == 200
        assert launched.json()["status"] == "open"

        first = await client.post(
            f"{API}/decisions/{decision_id}/votes/consensus",
            headers=auth(alice),
            json={"value": "agree"},
        )
        assert first.status_code == 201
        assert first.json()["decision_closed"] is False

        second = await client.post(
            f"{API}/decisions/{decision_id}/votes/consensus",
            headers=auth(bob),
            json={"value": "agree", "comment": "Long overdue"},
        )
        assert second.status_code == 201
        assert second.json()["decision_closed"] is True
        assert second.json()["result"] == "approved"

        read = await client.get(f"{API}/decisions/{decision_id}", headers=auth(alice))
        assert read.json()["status"] == "closed"
        assert read.json()["result"] == "approved"

    async def test_outsider_vote_is_forbidden(self, client, make_decision):
        seeded = await make_decision(
            start_time=utcnow() - timedelta(hours=1),
            end_time=utcnow() + timedelta(days=1),
        )

        response = await client.post(
            f"{API}/decisions/{seeded.id}/votes/consensus",
            headers=auth(uuid4()),
            json={"value": "agree"},
        )
        assert response.status_code == 403

    async def test_slow_vote_is_service_unavailable(self, client, make_decision, monkeypatch):
        seeded = await make_decision(
            start_time=utcnow() - timedelta(hours=1),
            end_time=utcnow() + timedelta(days=1),
        )

        async def too_slow(self, *args, **kwargs):
            raise OperationTimeoutError("Recording the ballot took longer than 30s, please retry")

        monkeypatch.setattr(VoteRecorder, "record_ballot", too_slow)
        response = await client.post(
            f"{API}/decisions/{seeded.id}/votes/consensus",
            headers=auth(seeded.participant_user_ids[0]),
            json={"value": "agree"},
        )

        assert response.status_code == 503
        assert "please retry" in response.json()["detail"]

    async def test_launch_by_other_user_is_forbidden(self, client, make_decision):
        seeded = await make_decision(status=DecisionStatus.DRAFT)

        response = await client.post(
            f"{API}/decisions/{seeded.id}/launch",
            headers=auth(uuid4()),
            json={"end_time": (utcnow() + timedelta(days=3)).isoformat()},
        )
        assert response.status_code == 403

    async def test_manual_close_then_close_again_conflicts(self, client, make_decision):
        seeded = await make_decision(
            start_time=utcnow() - timedelta(hours=1),
            end_time=utcnow() + timedelta(days=1),
        )

        closed = await client.post(
            f"{API}/decisions/{seeded.id}/close", headers=auth(seeded.creator_id)
        )
        assert closed.status_code == 200
        assert closed.json()["result"] == "rejected"

        again = await client.post(
            f"{API}/decisions/{seeded.id}/close", headers=auth(seeded.creator_id)
        )
        assert again.status_code == 409

    async def test_objection_without_text_is_unprocessable(self, client, make_decision):
        start = utcnow() - timedelta(days=8)
        seeded = await make_decision(
            algorithm=DecisionAlgorithm.CONSENT,
            stage_layout=StageLayout.DISTINCT,
            current_stage=ConsentStage.OBJECTIONS,
            start_time=start,
            end_time=start + timedelta(days=9),
        )

        response = await client.post(
            f"{API}/decisions/{seeded.id}/objections",
            headers=auth(seeded.participant_user_ids[0]),
            json={"status": "objection"},
        )
        assert response.status_code == 422

    async def test_stages_of_consent_decision(self, client, make_decision):
        start = utcnow() - timedelta(days=1)
        seeded = await make_decision(
            algorithm=DecisionAlgorithm.CONSENT,
            stage_layout=StageLayout.DISTINCT,
            current_stage=ConsentStage.CLARIFICATIONS,
            start_time=start,
            end_time=start + timedelta(days=9),
        )

        response = await client.get(
            f"{API}/decisions/{seeded.id}/stages", headers=auth(seeded.creator_id)
        )

        assert response.status_code == 200
        body = response.json()
        assert body["current_stage"] == "clarifications"
        assert [w["stage"] for w in body["windows"]] == [
            "clarifications", "avis", "amendements", "objections",
        ]
        assert [w["is_active"] for w in body["windows"]] == [True, False, False, False]


# =============================================================================
# PUBLIC LINKS
# =============================================================================


class TestPublicVotes:
    async def test_anonymous_votes_are_deduplicated(self, client, make_decision):
        seeded = await make_decision(
            algorithm=DecisionAlgorithm.ADVISORY,
            voting_mode=VotingMode.PUBLIC_LINK,
            participants=0,
            start_time=utcnow() - timedelta(hours=1),
            end_time=utcnow() + timedelta(days=1),
        )
        url = f"{API}/public/decisions/{seeded.id}/votes/consensus"
        headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}

        first = await client.post(url, headers=headers, json={"value": "agree"})
        second = await client.post(url, headers=headers, json={"value": "disagree"})

        assert first.status_code == 201 and first.json()["created"] is True
        assert second.status_code == 201 and second.json()["created"] is False

    async def test_invited_decision_rejects_anonymous_voters(self, client, make_decision):
        seeded = await make_decision(
            start_time=utcnow() - timedelta(hours=1),
            end_time=utcnow() + timedelta(days=1),
        )

        response = await client.post(
            f"{API}/public/decisions/{seeded.id}/votes/consensus",
            json={"value": "agree"},
        )
        assert response.status_code == 403


# =============================================================================
# CRON TRIGGER
# =============================================================================


class TestCronTrigger:
    async def test_requires_secret(self, client):
        missing = await client.post(f"{API}/cron/closure-scan")
        wrong = await client.post(
            f"{API}/cron/closure-scan", headers={"Authorization": "Bearer nope"}
        )
        assert missing.status_code == 401
        assert wrong.status_code == 401

    async def test_scan_closes_due_decisions(self, client, make_decision, load_decision):
        seeded = await make_decision(
            start_time=utcnow() - timedelta(days=3),
            end_time=utcnow() - timedelta(minutes=1),
        )

        response = await client.get(f"{API}/cron/closure-scan", headers=CRON_AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["processed"] == 1
        assert body["closures"] == 1
        assert body["errors"] == []
        assert (await load_decision(seeded.id)).status == DecisionStatus.CLOSED
