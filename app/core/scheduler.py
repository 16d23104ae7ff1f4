"""
Optional in-process trigger for the nightly reconciliation.

Production runs rely on the external cron hitting
/api/v1/cron/nightly-scoring; set RUN_SCHEDULER=true to run the same job from
the API process instead (single-instance deployments, local dev).
"""

import asyncio
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import Session

from app.core.config import settings
from app.core.errors import capture_exception
from app.core.logging_config import get_logger
from app.db import engine
from app.services.events import default_event_sink
from app.services.reconciliation import ReconciliationOutcome, ReconciliationPolicy, run_reconciliation

logger = get_logger(__name__)

scheduler = AsyncIOScheduler()

JOB_ID = "job_nightly_reconciliation"


def _run_reconciliation_sync() -> ReconciliationOutcome:
    with Session(engine) as session:
        return run_reconciliation(session, default_event_sink(), ReconciliationPolicy.from_settings(settings))


async def job_nightly_reconciliation() -> Optional[ReconciliationOutcome]:
    """Scheduled entry point. DB work runs in a worker thread."""
    try:
        return await asyncio.to_thread(_run_reconciliation_sync)
    except Exception as e:
        capture_exception(e, context={"job": JOB_ID})
        return None


def start_scheduler() -> None:
    # max_instances=1: never overlap two runs
    # coalesce=True: collapse missed runs into one
    scheduler.add_job(
        job_nightly_reconciliation,
        CronTrigger(hour=settings.RECONCILE_CRON_HOUR, minute=settings.RECONCILE_CRON_MINUTE),
        id=JOB_ID,
        max_instances=1,
        misfire_grace_time=3600,  # 1 hour
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        "scheduler started",
        job=JOB_ID,
        hour=settings.RECONCILE_CRON_HOUR,
        minute=settings.RECONCILE_CRON_MINUTE,
    )


def stop_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
