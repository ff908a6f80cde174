"""Tests for scheduled-job locks."""
from datetime import date, timedelta

import pytest

from app.core.exceptions import JobAlreadyRunning
from app.services.job_lock_service import JobLockService, lock_key_for


def test_lock_key_format():
    assert lock_key_for("settlement", date(2026, 10, 19)) == "settlement:2026-10-19"


@pytest.mark.asyncio
async def test_second_owner_is_refused(db):
    first = JobLockService(db, owner="worker-1")
    second = JobLockService(db, owner="worker-2")

    assert await first.acquire("settlement:2026-10-19") is True
    assert await second.acquire("settlement:2026-10-19") is False
    assert await second.acquire("settlement:2026-10-20") is True


@pytest.mark.asyncio
async def test_release_frees_the_lock(db):
    first = JobLockService(db, owner="worker-1")
    second = JobLockService(db, owner="worker-2")

    await first.acquire("payout_sweep:2026-10-19")
    await first.release("payout_sweep:2026-10-19")

    assert await second.acquire("payout_sweep:2026-10-19") is True


@pytest.mark.asyncio
async def test_release_by_other_owner_is_ignored(db):
    first = JobLockService(db, owner="worker-1")
    second = JobLockService(db, owner="worker-2")

    await first.acquire("settlement:2026-10-19")
    await second.release("settlement:2026-10-19")

    assert await second.acquire("settlement:2026-10-19") is False


@pytest.mark.asyncio
async def test_expired_lock_is_taken_over(db):
    crashed = JobLockService(db, owner="crashed-worker")
    second = JobLockService(db, owner="worker-2")

    await crashed.acquire("settlement:2026-10-19", ttl=timedelta(seconds=-1))

    assert await second.acquire("settlement:2026-10-19") is True
    assert await crashed.acquire("settlement:2026-10-19") is False


@pytest.mark.asyncio
async def test_hold_raises_when_taken(db):
    first = JobLockService(db, owner="worker-1")
    second = JobLockService(db, owner="worker-2")

    async with first.hold("settlement:2026-10-19"):
        with pytest.raises(JobAlreadyRunning):
            async with second.hold("settlement:2026-10-19"):
                pass

    async with second.hold("settlement:2026-10-19"):
        pass
