"""
Notification Dispatch Job: email delivery sweep for the notification outbox.

Request handlers hand new notifications to the dispatcher right after
commit. Anything that was not delivered then (process restart, SMTP
outage before the row was marked) stays pending; this job picks those
rows up in batches.

Typical cron schedule: */10 * * * * (every 10 minutes)
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ..core.config import get_settings
from ..services.mailer import EmailChannel, EmailConfig
from ..services.notifications import NotificationDispatcher


logger = logging.getLogger(__name__)


# =============================================================================
# ALERTING
# =============================================================================


async def send_alert(
    title: str,
    message: str,
    severity: str = "error",
    details: dict | None = None,
    webhook_url: str | None = None,
) -> None:
    """
    Send an alert when the dispatch job fails.

    Always logs; additionally posts to ALERT_WEBHOOK_URL (PagerDuty,
    Opsgenie, custom) when configured.
    """
    log_message = f"[DISPATCH ALERT] {title}: {message}"
    if details:
        log_message += f" | Details: {details}"

    if severity == "critical":
        logger.critical(log_message)
    else:
        logger.error(log_message)

    webhook_url = webhook_url or get_settings().alert_webhook_url
    if webhook_url:
        try:
            await _send_webhook_alert(webhook_url, title, message, severity, details)
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook alert: {e}")


async def _send_webhook_alert(
    webhook_url: str,
    title: str,
    message: str,
    severity: str,
    details: dict | None,
) -> None:
    """Send alert to generic webhook endpoint."""
    payload = {
        "title": title,
        "message": message,
        "severity": severity,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "source": "grievance-dispatch",
        "details": details or {},
    }

    async with httpx.AsyncClient() as client:
        response = await client.post(webhook_url, json=payload, timeout=10)
        response.raise_for_status()


# =============================================================================
# JOB
# =============================================================================


async def run_dispatch_job(
    database_url: str,
    email_config: EmailConfig | None = None,
    batch_size: int = 100,
    max_batches: int = 10,
) -> dict[str, Any]:
    """
    Main entry point for the dispatch job.

    Sends pending notification emails batch by batch until a batch comes
    back short or max_batches is reached.

    Args:
        database_url: Async SQLAlchemy connection string
        email_config: SMTP configuration (defaults to the environment)
        batch_size: Notifications per pass
        max_batches: Upper bound on passes per run

    Returns:
        Job result summary
    """
    start_time = datetime.now(timezone.utc)
    logger.info(f"Starting dispatch job at {start_time.isoformat()}")

    email_config = email_config or EmailConfig.from_settings(get_settings())
    channel = EmailChannel(email_config)

    engine = create_async_engine(database_url)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    dispatcher = NotificationDispatcher(
        session_factory,
        channel,
        email_enabled=email_config.enabled,
        link_builder=channel.case_link,
    )

    results = {
        "started_at": start_time.isoformat(),
        "completed_at": None,
        "batches": 0,
        "sent": 0,
        "failed": 0,
        "skipped": 0,
        "errors": [],
    }

    try:
        for _ in range(max_batches):
            report = await dispatcher.deliver_pending(batch_size=batch_size)
            results["batches"] += 1
            results["sent"] += report.sent
            results["failed"] += report.failed
            results["skipped"] += report.skipped
            results["errors"].extend(report.errors)

            if report.sent + report.failed + report.skipped < batch_size:
                break

    except Exception as e:
        error_msg = f"Dispatch job failed: {e}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

        await send_alert(
            title="Notification Dispatch Job Failed",
            message="The notification email sweep crashed unexpectedly.",
            severity="critical",
            details={
                "error": str(e),
                "traceback": traceback.format_exc()[-500:],
                "started_at": results["started_at"],
                "sent_before_crash": results["sent"],
            },
        )
        raise

    finally:
        await engine.dispose()

    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()

    logger.info(
        f"Dispatch job completed in {results['duration_seconds']:.2f}s: "
        f"{results['sent']} sent, {results['failed']} failed, {results['skipped']} skipped"
    )

    if results["failed"] > 0:
        await send_alert(
            title="Notification Dispatch Completed with Warnings",
            message=f"{results['failed']} notification emails failed to send.",
            severity="warning",
            details={
                "sent": results["sent"],
                "failed": results["failed"],
                "errors": results["errors"][:5],
            },
        )

    return results


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for the dispatch job."""
    import argparse
    import sys

    settings = get_settings()

    parser = argparse.ArgumentParser(description="Send pending grievance notification emails")
    parser.add_argument(
        "--database-url",
        default=settings.database_url_async,
        help="Database connection string",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=100,
        help="Notifications per delivery pass",
    )
    parser.add_argument(
        "--max-batches",
        type=int,
        default=10,
        help="Maximum delivery passes per run",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        results = asyncio.run(run_dispatch_job(
            database_url=args.database_url,
            batch_size=args.batch_size,
            max_batches=args.max_batches,
        ))
        print(f"Job completed: {results}")
    except Exception as e:
        print(f"Job failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
