from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import logging

from ptsa import database
from ptsa.services import coppa_service, email_service, retention_service
from ptsa.services.data_request_service import run_supervisor

scheduler = AsyncIOScheduler(timezone="UTC")

logger = logging.getLogger(__name__)


async def run_email_queue() -> dict:
    async with database.AsyncSessionLocal() as db:
        return await email_service.process_email_queue(db)


async def run_data_retention() -> dict:
    async with database.AsyncSessionLocal() as db:
        results = await retention_service.run_retention_policies(db)
    return {"results": results}


async def run_temp_cleanup() -> dict:
    async with database.AsyncSessionLocal() as db:
        return await retention_service.cleanup_temporary_data(db)


async def run_daily_maintenance() -> dict:
    """Retention policies followed by temporary data cleanup."""
    async with database.AsyncSessionLocal() as db:
        retention = await retention_service.run_retention_policies(db)
        cleanup = await retention_service.cleanup_temporary_data(db)
    logger.info("[Scheduler] Daily maintenance finished")
    return {"retention": retention, "cleanup": cleanup}


async def run_coppa_age_out() -> dict:
    async with database.AsyncSessionLocal() as db:
        return await coppa_service.process_coppa_age_out(db)


async def _run_safely(job) -> None:
    try:
        await job()
    except Exception as e:
        logger.error(f"[Scheduler] Job {job.__name__} failed: {type(e).__name__}: {e}")


def register_jobs() -> None:
    jobs = (
        (run_supervisor, IntervalTrigger(minutes=1), "data_jobs"),
        (run_email_queue, IntervalTrigger(minutes=1), "email_queue"),
        (run_daily_maintenance, CronTrigger(hour=2, minute=0), "daily_maintenance"),
        (run_coppa_age_out, CronTrigger(hour=3, minute=0), "coppa_age_out"),
    )
    for job, trigger, job_id in jobs:
        scheduler.add_job(
            _run_safely,
            trigger=trigger,
            args=[job],
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"[Scheduler] Registered job {job_id}")


def start_scheduler() -> None:
    if scheduler.running:
        return
    register_jobs()
    scheduler.start()


def shutdown_scheduler() -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
