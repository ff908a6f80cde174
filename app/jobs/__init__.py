"""
Background Jobs Module

Handles scheduled tasks for:
- Commission settlement batches
- Partner payout sweeps
- Recovery of abandoned batches
"""

from app.jobs.scheduler import scheduler, start_scheduler, shutdown_scheduler, get_job_status
from app.jobs.settlement_jobs import (
    run_settlement_job,
    run_payout_sweep_job,
    run_stale_batch_recovery_job,
)

__all__ = [
    "scheduler",
    "start_scheduler",
    "shutdown_scheduler",
    "get_job_status",
    "run_settlement_job",
    "run_payout_sweep_job",
    "run_stale_batch_recovery_job",
]
