"""Scheduled job endpoints, triggered by an external scheduler."""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, TypeVar

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import verify_cron_secret
from .connectors import PaymentsClientBase
from .database import get_db
from .dependencies import get_stripe_client
from .health import SlackNotifier, cron_job_failed
from .reconciliation.sweeper import StaleDonationSweeper
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"])

T = TypeVar("T")

# Sundays at 03:00 UTC
CLEANUP_PENDING_DONATIONS_SCHEDULE = "0 3 * * 0"


async def execute_cron_job(
    name: str,
    handler: Callable[[], Awaitable[T]],
    schedule: Optional[str] = None,
    notifier: Optional[SlackNotifier] = None,
) -> T:
    """Run a cron handler, logging start, completion and failure with duration.

    A failure is reported to Slack when a notifier is given, then re-raised.
    """
    start = time.monotonic()
    logger.info(f"Cron job {name} started (schedule: {schedule or 'manual'})")
    try:
        result = await handler()
    except Exception as e:
        duration_ms = int((time.monotonic() - start) * 1000)
        logger.error(f"Cron job {name} failed after {duration_ms}ms: {e}")
        if notifier is not None:
            await asyncio.to_thread(notifier.send, cron_job_failed(name, str(e)))
        raise
    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(f"Cron job {name} completed in {duration_ms}ms")
    return result


@router.get("/cleanup-pending-donations", dependencies=[Depends(verify_cron_secret)])
async def cleanup_pending_donations(
    db: AsyncSession = Depends(get_db),
    payments_client: PaymentsClientBase = Depends(get_stripe_client),
    settings: Settings = Depends(get_settings),
):
    """
    Resolve donations stuck in pending for longer than the staleness window.

    Per-donation failures are reported in ``errors`` with a 200 response. Only a
    failure of the whole run (e.g. the database is unreachable) returns 500.
    """
    sweeper = StaleDonationSweeper(
        db,
        payments_client,
        stale_after_days=settings.stale_donation_days,
    )
    try:
        result = await execute_cron_job(
            "cleanup-pending-donations",
            sweeper.run,
            schedule=CLEANUP_PENDING_DONATIONS_SCHEDULE,
            notifier=SlackNotifier(settings.slack_webhook_url),
        )
    except Exception as e:
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return {"success": True, **result.to_response_dict()}
