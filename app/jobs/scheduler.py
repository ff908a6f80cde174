"""
APScheduler setup for commission settlement.

- The scheduler fires run_scheduled_job(job_name) on its cron/interval
- run_scheduled_job opens a session, runs the named job from
  SCHEDULED_JOBS and logs its summary
- Overlap inside one process is prevented by max_instances=1; across
  processes the settlement jobs take a JobLock row
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from app.config import settings

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(
    jobstores={'default': MemoryJobStore()},
    executors={'default': AsyncIOExecutor()},
    job_defaults={
        'coalesce': True,  # A missed 02:00 run fires once, not once per missed day
        'max_instances': 1,
        'misfire_grace_time': 300,
    },
    timezone=settings.SCHEDULER_TIMEZONE,
)


async def run_scheduled_job(job_name: str):
    """
    Entry point APScheduler calls for every settlement job.

    Jobs report their own errors in the returned summary; anything that
    still escapes is logged here so the scheduler keeps running.
    """
    from app.database import get_db_session
    from app.jobs.settlement_jobs import SCHEDULED_JOBS

    job = SCHEDULED_JOBS[job_name]
    try:
        async with get_db_session() as db:
            summary = await job(db)
    except Exception as e:
        logger.error(f"Job '{job_name}' crashed: {e}")
        return

    if summary.get("errors"):
        logger.error(f"Job '{job_name}' finished with errors: {summary['errors']}")
    else:
        logger.info(f"Job '{job_name}' finished: {summary}")


def start_scheduler():
    if scheduler.running:
        return

    from app.jobs.settlement_jobs import register_settlement_jobs

    register_settlement_jobs(scheduler)
    scheduler.start()
    logger.info("Background job scheduler started")

    for job in scheduler.get_jobs():
        logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Id, name, next run and trigger of each registered job."""
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]
