"""Tests for settlement batches."""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from app.core.dates import utc_now
from app.models.affiliate_earning import AffiliateEarning, EarningStatus
from app.models.audit_log import AuditLog
from app.models.commission_batch import CommissionBatch, BatchStatus, BatchTrigger
from app.services.earning_ledger import EarningLedger
from app.services.payout_engine import PayoutEngine
from app.services.settlement_batch_runner import SettlementBatchRunner
from tests.factories import create_partner, create_offer, create_earning


@pytest.mark.asyncio
async def test_batch_confirms_pending_earnings(db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    first = await create_earning(db, partner, offer, "100.00", booking_value="1000", status=EarningStatus.PENDING)
    second = await create_earning(db, partner, offer, "25.00", booking_value="250", status=EarningStatus.PENDING)
    already = await create_earning(db, partner, offer, "40.00", status=EarningStatus.CONFIRMED)

    result = await SettlementBatchRunner(db).run()

    assert result.processed_count == 2
    assert result.skipped_count == 0
    assert result.total_commissions == Decimal("125.00")
    assert first.status == EarningStatus.CONFIRMED.value
    assert second.status == EarningStatus.CONFIRMED.value
    assert f"Confirmed by commission batch {result.batch_id}" in first.notes
    assert already.notes is None

    batch = await db.get(CommissionBatch, result.batch_id)
    assert batch.status == BatchStatus.COMPLETED.value
    assert batch.processed_count == 2
    assert batch.total_commissions == Decimal("125.00")
    assert batch.trigger == BatchTrigger.MANUAL.value


@pytest.mark.asyncio
async def test_batch_recalculates_from_booking_value(db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    earning = await create_earning(db, partner, offer, "100.00", booking_value="1000", status=EarningStatus.PENDING)

    offer.commission_structure = {"type": "percentage", "value": "15"}
    await db.commit()

    await SettlementBatchRunner(db).run()

    assert earning.amount_earned == Decimal("150.00")


@pytest.mark.asyncio
async def test_batch_keeps_adjustments(db):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    earning = await create_earning(
        db, partner, offer, "80.00", booking_value="1000",
        status=EarningStatus.PENDING, adjustment_total="-20.00",
    )

    result = await SettlementBatchRunner(db).run()

    assert earning.amount_earned == Decimal("80.00")
    assert result.total_commissions == Decimal("80.00")


@pytest.mark.asyncio
async def test_batch_applies_partner_override(db):
    partner = await create_partner(db, override=Decimal("0.18"))
    offer = await create_offer(db, partner)
    earning = await create_earning(db, partner, offer, "100.00", booking_value="1000", status=EarningStatus.PENDING)

    await SettlementBatchRunner(db).run()

    assert earning.amount_earned == Decimal("180.00")


@pytest.mark.asyncio
async def test_expired_offer_earning_is_skipped(db):
    partner = await create_partner(db)
    now = utc_now()
    offer = await create_offer(db, partner, valid_from=now - timedelta(days=30), valid_to=now - timedelta(days=1))
    earning = await create_earning(
        db, partner, offer, "10.00", booking_value="100",
        status=EarningStatus.PENDING, transaction_date=now - timedelta(days=5),
    )
    earning_id = earning.id

    result = await SettlementBatchRunner(db).run()

    assert result.processed_count == 0
    assert result.skipped_count == 1
    earning = await db.get(AffiliateEarning, earning_id, populate_existing=True)
    assert earning.status == EarningStatus.PENDING.value


@pytest.mark.asyncio
async def test_reactivated_split_remainder_keeps_unpaid_amount(db, rail):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    start = utc_now() - timedelta(days=2)
    await create_earning(db, partner, offer, "70.00", transaction_date=start)
    partly_paid = await create_earning(db, partner, offer, "80.00", transaction_date=start + timedelta(days=1))
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")
    await engine.process_payout(payout.id)

    sibling = (await db.execute(
        select(AffiliateEarning).where(AffiliateEarning.split_from_id == partly_paid.id)
    )).scalar_one()
    ledger = EarningLedger(db)
    await ledger.update_status(sibling.id, EarningStatus.CANCELLED, reason="Disputed")
    await ledger.update_status(sibling.id, EarningStatus.PENDING, reason="Dispute resolved")

    result = await SettlementBatchRunner(db).run()

    assert result.processed_count == 1
    assert result.total_commissions == Decimal("50.00")
    assert sibling.status == EarningStatus.CONFIRMED.value
    assert sibling.amount_earned == Decimal("50.00")
    assert partly_paid.amount_earned + sibling.amount_earned == Decimal("80.00")


@pytest.mark.asyncio
async def test_split_remainder_with_inactive_offer_is_skipped(db, rail):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    partly_paid = await create_earning(db, partner, offer, "80.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("60"), "USD", "razorpay")
    await engine.process_payout(payout.id)

    sibling = (await db.execute(
        select(AffiliateEarning).where(AffiliateEarning.split_from_id == partly_paid.id)
    )).scalar_one()
    sibling_id = sibling.id
    ledger = EarningLedger(db)
    await ledger.update_status(sibling_id, EarningStatus.CANCELLED)
    await ledger.update_status(sibling_id, EarningStatus.PENDING)
    offer.is_active = False
    await db.commit()

    result = await SettlementBatchRunner(db).run()

    assert result.skipped_count == 1
    sibling = await db.get(AffiliateEarning, sibling_id, populate_existing=True)
    assert sibling.status == EarningStatus.PENDING.value
    assert sibling.amount_earned == Decimal("20.00")


@pytest.mark.asyncio
async def test_failing_earning_is_skipped(db):
    partner = await create_partner(db)
    good_offer = await create_offer(db, partner)
    bad_offer = await create_offer(db, partner)
    good = await create_earning(db, partner, good_offer, "10.00", booking_value="100", status=EarningStatus.PENDING)
    bad = await create_earning(db, partner, bad_offer, "10.00", booking_value="100", status=EarningStatus.PENDING)
    good_id, bad_id = good.id, bad.id

    bad_offer.is_active = False
    await db.commit()

    result = await SettlementBatchRunner(db).run()

    assert result.processed_count == 1
    assert result.skipped_count == 1
    assert result.total_commissions == Decimal("10.00")

    bad = await db.get(AffiliateEarning, bad_id, populate_existing=True)
    good = await db.get(AffiliateEarning, good_id, populate_existing=True)
    assert bad.status == EarningStatus.PENDING.value
    assert good.status == EarningStatus.CONFIRMED.value

    batch = await db.get(CommissionBatch, result.batch_id)
    assert batch.status == BatchStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_empty_batch_completes(db):
    result = await SettlementBatchRunner(db).run(trigger=BatchTrigger.SCHEDULED)

    assert result.processed_count == 0
    assert result.total_commissions == Decimal("0.00")

    logs = (await db.execute(
        select(AuditLog).where(AuditLog.action_type == "COMMISSION_BATCH_COMPLETED")
    )).scalars().all()
    assert len(logs) == 1
    assert logs[0].details["trigger"] == "SCHEDULED"


@pytest.mark.asyncio
async def test_fetch_failure_marks_batch_failed(db):
    runner = SettlementBatchRunner(db)
    runner._fetch_pending_earnings = AsyncMock(side_effect=RuntimeError("connection lost"))

    with pytest.raises(RuntimeError):
        await runner.run()

    [batch] = await runner.list_batches()
    assert batch.status == BatchStatus.FAILED.value
    assert batch.error_message == "connection lost"


@pytest.mark.asyncio
async def test_recover_stale_batches(db):
    stale = CommissionBatch(
        batch_date=utc_now().date(),
        status=BatchStatus.PROCESSING.value,
        created_at=utc_now() - timedelta(hours=7),
    )
    running = CommissionBatch(batch_date=utc_now().date(), status=BatchStatus.PROCESSING.value)
    db.add_all([stale, running])
    await db.commit()

    recovered = await SettlementBatchRunner(db).recover_stale_batches()

    assert recovered == 1
    assert stale.status == BatchStatus.FAILED.value
    assert stale.error_message.startswith("Batch abandoned")
    assert running.status == BatchStatus.PROCESSING.value


@pytest.mark.asyncio
async def test_list_batches_newest_first(db):
    runner = SettlementBatchRunner(db)
    first = await runner.run()
    second = await runner.run()

    batches = await runner.list_batches(limit=1)

    assert [b.id for b in batches] == [second.batch_id]
    assert first.batch_id != second.batch_id
