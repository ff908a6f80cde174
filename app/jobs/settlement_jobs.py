"""
Commission settlement jobs.

- Daily settlement batch (PENDING -> CONFIRMED)
- Daily payout sweep (PENDING payouts -> payment rail)
- Hourly recovery of abandoned PROCESSING batches

Triggers:
- Scheduled jobs (via APScheduler)

Settlement and payout runs take a job lock keyed by job name and date,
so a second process starting the same job skips instead of running twice.
"""
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.commission_batch import BatchTrigger
from app.services.job_lock_service import JobLockService, lock_key_for
from app.services.payment_rail import PaymentRail
from app.services.payout_engine import PayoutEngine
from app.services.settlement_batch_runner import SettlementBatchRunner

logger = logging.getLogger(__name__)

SETTLEMENT_JOB = "settlement"
PAYOUT_SWEEP_JOB = "payout_sweep"


async def run_settlement_job(db: AsyncSession, run_date: Optional[date] = None) -> Dict[str, Any]:
    """
    Scheduled settlement batch. Errors are logged, never raised.

    Returns:
        Summary of the run
    """
    run_date = run_date or datetime.now(timezone.utc).date()
    lock_key = lock_key_for(SETTLEMENT_JOB, run_date)

    results = {
        "started_at": datetime.now(timezone.utc).isoformat(),
        "lock_key": lock_key,
        "skipped": False,
        "batch_id": None,
        "processed_count": 0,
        "skipped_count": 0,
        "total_commissions": "0.00",
        "errors": [],
    }

    locks = JobLockService(db)
    if not await locks.acquire(lock_key):
        logger.info(f"Settlement for {run_date} already running elsewhere, skipping")
        results["skipped"] = True
        return results

    try:
        batch = await SettlementBatchRunner(db).run(
            batch_date=run_date,
            trigger=BatchTrigger.SCHEDULED,
        )
        results["batch_id"] = str(batch.batch_id)
        results["processed_count"] = batch.processed_count
        results["skipped_count"] = batch.skipped_count
        results["total_commissions"] = str(batch.total_commissions)
    except Exception as e:
        await db.rollback()
        logger.error(f"Scheduled settlement for {run_date} failed: {e}")
        results["errors"].append(str(e))
    finally:
        await locks.release(lock_key)

    logger.info(
        f"Settlement job complete: {results['processed_count']} confirmed, "
        f"{results['skipped_count']} skipped, {len(results['errors'])} errors"
    )
    return results


async def run_payout_sweep_job(
    db: AsyncSession,
    run_date: Optional[date] = None,
    rail: Optional[PaymentRail] = None,
) -> Dict[str, Any]:
    """Scheduled payout sweep. Errors are logged, never raised."""
    run_date = run_date or datetime.now(timezone.utc).date()
    lock_key = lock_key_for(PAYOUT_SWEEP_JOB, run_date)

    results = {
        "started_at": datetime.now(timezone.utc).isoformat(),
        "lock_key": lock_key,
        "skipped": False,
        "processed": 0,
        "paid": 0,
        "failed": 0,
        "errors": [],
    }

    locks = JobLockService(db)
    if not await locks.acquire(lock_key):
        logger.info(f"Payout sweep for {run_date} already running elsewhere, skipping")
        results["skipped"] = True
        return results

    try:
        sweep = await PayoutEngine(db, rail=rail).process_pending_payouts()
        results.update(sweep.model_dump())
    except Exception as e:
        await db.rollback()
        logger.error(f"Automatic payout processing failed: {e}")
        results["errors"].append(str(e))
    finally:
        await locks.release(lock_key)

    return results


async def run_stale_batch_recovery_job(db: AsyncSession) -> Dict[str, Any]:
    results = {"recovered": 0, "errors": []}
    try:
        results["recovered"] = await SettlementBatchRunner(db).recover_stale_batches()
    except Exception as e:
        await db.rollback()
        logger.error(f"Stale batch recovery failed: {e}")
        results["errors"].append(str(e))

    if results["recovered"]:
        logger.warning(f"Recovered {results['recovered']} abandoned commission batches")
    return results


SCHEDULED_JOBS = {
    'commission_settlement': run_settlement_job,
    'payout_sweep': run_payout_sweep_job,
    'stale_batch_recovery': run_stale_batch_recovery_job,
}


def register_settlement_jobs(scheduler):
    """
    Register the settlement jobs with APScheduler.

    Settlement runs daily at SETTLEMENT_CRON_HOUR, the payout sweep at
    PAYOUT_SWEEP_CRON_HOUR:PAYOUT_SWEEP_CRON_MINUTE, recovery hourly.
    """
    from app.jobs.scheduler import run_scheduled_job

    scheduler.add_job(
        run_scheduled_job,
        'cron',
        hour=settings.SETTLEMENT_CRON_HOUR,
        minute=0,
        args=['commission_settlement'],
        id='commission_settlement',
        name='Daily commission settlement batch',
        replace_existing=True,
    )

    scheduler.add_job(
        run_scheduled_job,
        'cron',
        hour=settings.PAYOUT_SWEEP_CRON_HOUR,
        minute=settings.PAYOUT_SWEEP_CRON_MINUTE,
        args=['payout_sweep'],
        id='payout_sweep',
        name='Daily partner payout sweep',
        replace_existing=True,
    )

    scheduler.add_job(
        run_scheduled_job,
        'interval',
        hours=1,
        args=['stale_batch_recovery'],
        id='stale_batch_recovery',
        name='Recover abandoned commission batches',
        replace_existing=True,
    )

    logger.info(
        f"Settlement jobs registered: batch at {settings.SETTLEMENT_CRON_HOUR:02d}:00, "
        f"payouts at {settings.PAYOUT_SWEEP_CRON_HOUR:02d}:{settings.PAYOUT_SWEEP_CRON_MINUTE:02d} "
        f"({settings.SCHEDULER_TIMEZONE})"
    )
