"""
Closure Cron Job: periodic stage transitions and decision closures.

Runs the closure scheduler once (or every ``--interval-minutes``) against the
database, as an alternative to calling the ``/cron/closure-scan`` endpoint.

Typical cron schedule: */15 * * * * (every 15 minutes)
"""

import asyncio
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ..core.config import get_settings
from ..services.closure_scheduler import ClosureScheduler
from ..services.notifications import OutboxNotifier


logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
) -> None:
    """
    Send an alert when the scan crashes or some decisions failed.

    Supports multiple channels:
    - Slack webhook (SLACK_ALERTS_WEBHOOK_URL)
    - Generic webhook (ALERT_WEBHOOK_URL)
    - Logs (always)
    """
    log_message = f"[CRON ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    slack_webhook_url = os.getenv("SLACK_ALERTS_WEBHOOK_URL")
    if slack_webhook_url:
        try:
            await _send_slack_alert(slack_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error("Failed to send Slack alert: %s", e)

    alert_webhook_url = os.getenv("ALERT_WEBHOOK_URL")
    if alert_webhook_url:
        try:
            await _send_webhook_alert(alert_webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error("Failed to send webhook alert: %s", e)


async def _send_slack_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    color = "#dc2626" if severity == "critical" else "#f59e0b"

    blocks = [
        {
            "type": "header",
            "text": {"type": "plain_text", "text": title},
        },
        {
            "type": "section",
            "text": {"type": "mrkdwn", "text": message},
        },
    ]

    if details:
        details_text = "\n".join(f"• *{k}*: {v}" for k, v in details.items())
        blocks.append({
            "type": "section",
            "text": {"type": "mrkdwn", "text": details_text},
        })

    blocks.append({
        "type": "context",
        "elements": [
            {
                "type": "mrkdwn",
                "text": (
                    f"Severity: *{severity.upper()}* | "
                    f"Time: {datetime.now(timezone.utc).isoformat()}"
                ),
            },
        ],
    })

    async with httpx.AsyncClient() as client:
        response = await client.post(
            webhook_url,
            json={"attachments": [{"color": color, "blocks": blocks}]},
            timeout=10,
        )
        response.raise_for_status()


async def _send_webhook_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "decido-closure-cron",
        "details": details or {},
    }

    async with httpx.AsyncClient() as client:
        response = await client.post(webhook_url, json=payload, timeout=10)
        response.raise_for_status()


# =============================================================================
# JOB
# =============================================================================


async def run_closure_job(database_url: str) -> dict[str, Any]:
    """
    Run one closure scan pass with its own engine.

    Returns the scan summary as a dict. Raises if the pass itself crashed;
    failures on single decisions are reported in ``errors`` instead.
    """
    logger.info("Starting closure job")

    engine = create_async_engine(database_url, pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    scheduler = ClosureScheduler(session_factory, notifier=OutboxNotifier(session_factory))

    try:
        summary = await scheduler.run()
    except Exception as e:
        await send_alert(
            title="Closure Cron Job Failed",
            message="The closure scan crashed before finishing its pass.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
            },
        )
        raise
    finally:
        await engine.dispose()

    results = summary.to_dict()

    if results["errors"]:
        await send_alert(
            title="Closure Job Completed with Errors",
            message=f"{len(results['errors'])} decisions could not be processed.",
            severity="warning",
            details={
                "processed": results["processed"],
                "closures": results["closures"],
                "errors": results["errors"][:5],
            },
        )

    return results


async def run_forever(database_url: str, interval_minutes: int) -> None:
    """Run the closure job every ``interval_minutes`` until cancelled."""
    while True:
        try:
            await run_closure_job(database_url)
        except Exception:
            logger.exception("Closure job failed, retrying next interval")
        await asyncio.sleep(interval_minutes * 60)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the closure job."""
    import argparse

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Run the decision closure scan")
    parser.add_argument(
        "--database-url",
        default=settings.database_url_async,
        help="Database connection string (async driver)",
    )
    parser.add_argument(
        "--interval-minutes",
        type=int,
        default=None,
        help=(
            "Keep running and scan every N minutes "
            f"(configured default: {settings.stage_check_interval_minutes})"
        ),
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.interval_minutes:
        asyncio.run(run_forever(args.database_url, args.interval_minutes))
        return

    try:
        results = asyncio.run(run_closure_job(args.database_url))
    except Exception as e:
        logger.error("Job failed: %s", e)
        sys.exit(1)

    logger.info("Job completed: %s", results)
    if results["errors"]:
        sys.exit(2)


if __name__ == "__main__":
    main()
