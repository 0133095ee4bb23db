"""Tests for the standalone closure job and its alerting."""

from datetime import datetime, timedelta, timezone

import pytest

from decido.jobs import closure_cron
from decido.models import DecisionStatus
from decido.services import ClosureScheduler


@pytest.fixture
def database_url(engine, tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'decido.db'}"


@pytest.fixture
def alerts(monkeypatch) -> list[dict]:
    sent: list[dict] = []

    async def record(title, message, severity="error", details=None):
        sent.append({"title": title, "severity": severity, "details": details})

    monkeypatch.setattr(closure_cron, "send_alert", record)
    return sent


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TestClosureJob:
    async def test_closes_due_decisions(self, database_url, make_decision, load_decision, alerts):
        seeded = await make_decision(
            start_time=utcnow() - timedelta(days=3),
            end_time=utcnow() - timedelta(minutes=1),
        )

        results = await closure_cron.run_closure_job(database_url)

        assert results["processed"] == 1
        assert results["closures"] == 1
        assert results["errors"] == []
        assert alerts == []
        assert (await load_decision(seeded.id)).status == DecisionStatus.CLOSED

    async def test_alerts_on_failed_decisions(
        self, database_url, make_decision, alerts, monkeypatch
    ):
        await make_decision(
            start_time=utcnow() - timedelta(days=3),
            end_time=utcnow() - timedelta(minutes=1),
        )

        async def explode(self, *args, **kwargs):
            raise RuntimeError("bad row")

        monkeypatch.setattr(ClosureScheduler, "_process", explode)
        results = await closure_cron.run_closure_job(database_url)

        assert len(results["errors"]) == 1
        assert alerts[0]["severity"] == "warning"

    async def test_crash_alerts_and_reraises(self, database_url, alerts, monkeypatch):
        async def crash(self, now=None):
            raise RuntimeError("database unreachable")

        monkeypatch.setattr(ClosureScheduler, "run", crash)

        with pytest.raises(RuntimeError):
            await closure_cron.run_closure_job(database_url)

        assert alerts[0]["severity"] == "critical"
        assert "database unreachable" in alerts[0]["details"]["error"]


class TestSendAlert:
    async def test_logs_without_webhooks(self, monkeypatch, caplog):
        monkeypatch.delenv("SLACK_ALERTS_WEBHOOK_URL", raising=False)
        monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)

        await closure_cron.send_alert("Scan failed", "boom", severity="critical")

        assert "[CRON ALERT] Scan failed: boom" in caplog.text
