"""
Job Lock Service

Advisory locks for scheduled jobs, stored in the job_locks table so they
hold across processes. A lock is one row keyed by job name and date:

    settlement:2026-10-19
    payout_sweep:2026-10-19

Locks expire after JOB_LOCK_TTL_MINUTES; an expired lock is taken over
by the next caller.
"""

import logging
import os
import socket
from contextlib import asynccontextmanager
from datetime import date, timedelta
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.dates import as_utc, utc_now
from app.core.exceptions import JobAlreadyRunning
from app.models.job_lock import JobLock

logger = logging.getLogger(__name__)


def lock_key_for(job_name: str, run_date: date) -> str:
    return f"{job_name}:{run_date.isoformat()}"


def default_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class JobLockService:

    def __init__(self, db: AsyncSession, owner: Optional[str] = None):
        self.db = db
        self.owner = owner or default_owner()

    async def acquire(self, lock_key: str, ttl: Optional[timedelta] = None) -> bool:
        """Take the lock. Returns False if someone else holds an unexpired one."""
        ttl = ttl or timedelta(minutes=settings.JOB_LOCK_TTL_MINUTES)
        now = utc_now()

        existing = await self.db.get(
            JobLock, lock_key, with_for_update=True, populate_existing=True
        )
        if existing:
            if as_utc(existing.expires_at) > now:
                logger.info(f"Lock {lock_key} held by {existing.owner} until {existing.expires_at}")
                return False

            logger.warning(f"Taking over expired lock {lock_key} from {existing.owner}")
            existing.owner = self.owner
            existing.acquired_at = now
            existing.expires_at = now + ttl
            await self.db.commit()
            return True

        try:
            async with self.db.begin_nested():
                self.db.add(JobLock(
                    lock_key=lock_key,
                    owner=self.owner,
                    acquired_at=now,
                    expires_at=now + ttl,
                ))
        except IntegrityError:
            logger.info(f"Lock {lock_key} was taken concurrently")
            return False

        await self.db.commit()
        return True

    async def release(self, lock_key: str) -> None:
        await self.db.execute(
            delete(JobLock)
            .where(JobLock.lock_key == lock_key)
            .where(JobLock.owner == self.owner)
        )
        await self.db.commit()

    @asynccontextmanager
    async def hold(self, lock_key: str, ttl: Optional[timedelta] = None):
        """
        Hold the lock for the duration of the block.

        Raises:
            JobAlreadyRunning: lock is held elsewhere
        """
        if not await self.acquire(lock_key, ttl):
            raise JobAlreadyRunning(lock_key)
        try:
            yield
        finally:
            await self.release(lock_key)
