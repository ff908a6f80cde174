"""Tests for partner payouts."""
import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from app.config import settings
from app.core.dates import utc_now
from app.core.exceptions import (
    ValidationError,
    StateError,
    PartnerNotFound,
    PayoutNotFound,
    InsufficientFunds,
    BelowMinimum,
    ExternalRailError,
)
from app.models.affiliate_earning import AffiliateEarning, EarningStatus
from app.models.audit_log import AuditLog
from app.models.payout import Invoice, InvoiceStatus, PayoutStatus
from app.services.payment_rail import RailError, RailTimeout
from app.services.payout_engine import PayoutEngine
from tests.factories import ACCOUNT_ID, create_partner, create_offer, create_earning


async def partner_with_earnings(db, *amounts, status=EarningStatus.CONFIRMED, **partner_kwargs):
    partner = await create_partner(db, **partner_kwargs)
    offer = await create_offer(db, partner)
    start = utc_now() - timedelta(days=len(amounts))
    earnings = []
    for i, amount in enumerate(amounts):
        earnings.append(await create_earning(
            db, partner, offer, amount, status=status, transaction_date=start + timedelta(days=i)
        ))
    return partner, earnings


# ==================== Requests ====================

@pytest.mark.asyncio
async def test_available_earnings_counts_pending_and_confirmed(db, rail):
    partner = await create_partner(db)
    offer = await create_offer(db, partner)
    await create_earning(db, partner, offer, "10.00", status=EarningStatus.PENDING)
    await create_earning(db, partner, offer, "20.00", status=EarningStatus.CONFIRMED)
    await create_earning(db, partner, offer, "30.00", status=EarningStatus.PAID)
    await create_earning(db, partner, offer, "40.00", status=EarningStatus.CANCELLED)

    available = await PayoutEngine(db, rail=rail).get_available_earnings(partner.id)

    assert available == Decimal("30.00")


@pytest.mark.asyncio
async def test_request_payout_creates_pending_payout(db, rail):
    partner, _ = await partner_with_earnings(db, "70.00", "80.00")

    payout = await PayoutEngine(db, rail=rail).request_payout(partner.id, Decimal("100"), "USD", "razorpay")

    assert payout.status == PayoutStatus.PENDING.value
    assert payout.amount == Decimal("100.00")
    assert payout.invoice_id is None
    rail.submit_transfer.assert_not_called()


@pytest.mark.asyncio
async def test_request_payout_insufficient_funds(db, rail):
    partner, _ = await partner_with_earnings(db, "70.00")

    with pytest.raises(InsufficientFunds) as exc_info:
        await PayoutEngine(db, rail=rail).request_payout(partner.id, Decimal("70.01"), "USD", "razorpay")

    assert exc_info.value.details["available"] == "70.00"


@pytest.mark.asyncio
async def test_request_payout_below_minimum(db, rail, monkeypatch):
    monkeypatch.setattr(settings, "MINIMUM_PAYOUT_AMOUNT", Decimal("50"))
    partner, _ = await partner_with_earnings(db, "100.00")

    with pytest.raises(BelowMinimum) as exc_info:
        await PayoutEngine(db, rail=rail).request_payout(partner.id, Decimal("25"), "USD", "razorpay")

    assert exc_info.value.message == "Minimum payout amount is 50 USD"


@pytest.mark.asyncio
async def test_request_payout_exactly_minimum(db, rail, monkeypatch):
    monkeypatch.setattr(settings, "MINIMUM_PAYOUT_AMOUNT", Decimal("50"))
    partner, _ = await partner_with_earnings(db, "100.00")

    payout = await PayoutEngine(db, rail=rail).request_payout(partner.id, Decimal("50"), "USD", "razorpay")

    assert payout.amount == Decimal("50.00")


@pytest.mark.asyncio
async def test_request_payout_rejects_non_positive_amount(db, rail):
    partner, _ = await partner_with_earnings(db, "100.00")

    with pytest.raises(ValidationError):
        await PayoutEngine(db, rail=rail).request_payout(partner.id, Decimal("0"), "USD", "razorpay")


@pytest.mark.asyncio
async def test_request_payout_unknown_or_inactive_partner(db, rail):
    partner, _ = await partner_with_earnings(db, "100.00", is_active=False)
    engine = PayoutEngine(db, rail=rail)

    with pytest.raises(PartnerNotFound):
        await engine.request_payout(uuid.uuid4(), Decimal("60"), "USD", "razorpay")
    with pytest.raises(PartnerNotFound):
        await engine.request_payout(partner.id, Decimal("60"), "USD", "razorpay")


# ==================== Invoices ====================

@pytest.mark.asyncio
async def test_bank_transfer_generates_invoice(db, rail):
    partner, earnings = await partner_with_earnings(db, "70.00", "80.00")

    payout = await PayoutEngine(db, rail=rail).request_payout(partner.id, Decimal("100"), "USD", "Bank_Transfer")

    invoice = await db.get(Invoice, payout.invoice_id)
    period = utc_now().strftime("%Y%m")
    assert invoice.invoice_number == f"INV-{period}-0001"
    assert invoice.status == InvoiceStatus.SENT.value
    assert invoice.amount_due == Decimal("100.00")
    assert len(invoice.line_items) == 2
    assert invoice.line_items[0]["description"] == f"Commission for booking {earnings[0].conversion_reference_id}"
    assert invoice.line_items[0]["total_price"] == "70.00"
    assert invoice.notes.startswith("Affiliate commission payout for period ending")
    assert (invoice.due_date - invoice.issue_date).days == settings.INVOICE_DUE_DAYS


@pytest.mark.asyncio
async def test_invoice_numbers_are_sequential(db, rail):
    partner, _ = await partner_with_earnings(db, "200.00")
    engine = PayoutEngine(db, rail=rail)

    first = await engine.request_payout(partner.id, Decimal("60"), "USD", "wire_transfer")
    second = await engine.request_payout(partner.id, Decimal("60"), "USD", "ach")

    numbers = [
        (await db.get(Invoice, first.invoice_id)).invoice_number,
        (await db.get(Invoice, second.invoice_id)).invoice_number,
    ]
    assert [n[-4:] for n in numbers] == ["0001", "0002"]


# ==================== Settlement ====================

@pytest.mark.asyncio
async def test_process_payout_pays_and_splits(db, rail):
    partner, (older, newer) = await partner_with_earnings(db, "70.00", "80.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")

    payout = await engine.process_payout(payout.id)

    assert payout.status == PayoutStatus.PAID.value
    assert payout.transaction_id == "trf_test_0001"
    assert payout.payout_date is not None
    rail.submit_transfer.assert_awaited_once_with(
        10000,
        "USD",
        ACCOUNT_ID,
        {"payout_id": str(payout.id), "partner_id": str(partner.id)},
    )

    assert older.status == EarningStatus.PAID.value
    assert older.amount_earned == Decimal("70.00")
    assert newer.status == EarningStatus.PAID.value
    assert newer.amount_earned == Decimal("30.00")

    sibling = (await db.execute(
        select(AffiliateEarning).where(AffiliateEarning.split_from_id == newer.id)
    )).scalar_one()
    assert sibling.status == EarningStatus.CONFIRMED.value
    assert sibling.amount_earned == Decimal("50.00")
    assert sibling.booking_value == newer.booking_value
    assert f"Split from earning {newer.id} - unpaid portion" in sibling.notes

    assert await engine.get_available_earnings(partner.id) == Decimal("50.00")


@pytest.mark.asyncio
async def test_exact_payout_does_not_split(db, rail):
    partner, earnings = await partner_with_earnings(db, "60.00", "40.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")

    await engine.process_payout(payout.id)

    assert all(e.status == EarningStatus.PAID.value for e in earnings)
    siblings = (await db.execute(
        select(AffiliateEarning).where(AffiliateEarning.split_from_id.is_not(None))
    )).scalars().all()
    assert siblings == []


@pytest.mark.asyncio
@pytest.mark.parametrize("amounts,paid_amount,split_count", [
    (["70.00", "80.00"], "100.00", 1),
    (["60.00", "40.00"], "100.00", 0),
    (["25.00", "25.00", "50.00"], "50.00", 0),
    (["25.00", "25.00", "50.00"], "75.00", 1),
    (["70.00", "80.00"], "10.00", 1),
    (["33.33", "33.33", "33.34"], "50.00", 1),
    (["10.00", "15.00"], "40.00", 0),
])
async def test_mark_earnings_as_paid_preserves_totals(db, rail, amounts, paid_amount, split_count):
    partner, _ = await partner_with_earnings(db, *amounts)
    total = sum(Decimal(a) for a in amounts)

    await PayoutEngine(db, rail=rail).mark_earnings_as_paid(partner.id, Decimal(paid_amount))

    rows = (await db.execute(
        select(AffiliateEarning).where(AffiliateEarning.partner_id == partner.id)
    )).scalars().all()
    paid = sum(r.amount_earned for r in rows if r.status == EarningStatus.PAID.value)
    unpaid = sum(r.amount_earned for r in rows if r.status == EarningStatus.CONFIRMED.value)
    siblings = [r for r in rows if r.split_from_id is not None]

    assert paid == min(Decimal(paid_amount), total)
    assert paid + unpaid == total
    assert len(siblings) == split_count
    for sibling in siblings:
        original = next(r for r in rows if r.id == sibling.split_from_id)
        assert original.status == EarningStatus.PAID.value
        assert sibling.status == EarningStatus.CONFIRMED.value


@pytest.mark.asyncio
async def test_pending_earnings_settled_before_confirmation(db, rail):
    partner, [earning] = await partner_with_earnings(db, "75.00", status=EarningStatus.PENDING)
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("75"), "USD", "razorpay")

    await engine.process_payout(payout.id)

    assert earning.status == EarningStatus.PAID.value
    assert "(settled before confirmation)" in earning.notes


@pytest.mark.asyncio
async def test_rail_failure_marks_payout_failed(db, rail):
    rail.submit_transfer.side_effect = RailError("BAD_REQUEST_ERROR", "Account is not activated")
    partner, earnings = await partner_with_earnings(db, "100.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")

    with pytest.raises(ExternalRailError) as exc_info:
        await engine.process_payout(payout.id)

    assert exc_info.value.details["rail_error"] == "BAD_REQUEST_ERROR"
    assert payout.status == PayoutStatus.FAILED.value
    assert payout.failure_reason == "BAD_REQUEST_ERROR: Account is not activated"
    assert earnings[0].status == EarningStatus.CONFIRMED.value

    actions = (await db.execute(
        select(AuditLog.action_type).where(AuditLog.entity_id == payout.id)
    )).scalars().all()
    assert "PAYOUT_FAILED" in actions
    assert "PAYOUT_COMPLETED" not in actions


async def assert_left_for_reconciliation(db, engine, payout, earnings):
    assert payout.status == PayoutStatus.PROCESSING.value
    assert payout.failure_reason.startswith("TIMEOUT:")
    assert all(e.status == EarningStatus.CONFIRMED.value for e in earnings)

    actions = (await db.execute(
        select(AuditLog.action_type).where(AuditLog.entity_id == payout.id)
    )).scalars().all()
    assert "PAYOUT_OUTCOME_UNKNOWN" in actions
    assert "PAYOUT_FAILED" not in actions

    # The amount stays reserved and the sweep leaves the payout alone
    with pytest.raises(InsufficientFunds) as exc_info:
        await engine.request_payout(payout.partner_id, Decimal("100"), "USD", "razorpay")
    assert exc_info.value.details["available"] == "0.00"
    assert (await engine.process_pending_payouts()).processed == 0


@pytest.mark.asyncio
async def test_slow_rail_leaves_payout_processing(db, rail, monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_RAIL_TIMEOUT_SECONDS", 0.01)

    async def slow_transfer(*args):
        await asyncio.sleep(1)
        return "trf_late"

    rail.submit_transfer.side_effect = slow_transfer
    partner, earnings = await partner_with_earnings(db, "100.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")

    with pytest.raises(ExternalRailError) as exc_info:
        await engine.process_payout(payout.id)

    assert exc_info.value.details["rail_error"] == "TIMEOUT"
    await assert_left_for_reconciliation(db, engine, payout, earnings)


@pytest.mark.asyncio
async def test_rail_read_timeout_leaves_payout_processing(db, rail):
    rail.submit_transfer.side_effect = RailTimeout("TIMEOUT", "No response from Razorpay within 30s")
    partner, earnings = await partner_with_earnings(db, "100.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")

    with pytest.raises(ExternalRailError):
        await engine.process_payout(payout.id)

    assert payout.failure_reason == "TIMEOUT: No response from Razorpay within 30s"
    await assert_left_for_reconciliation(db, engine, payout, earnings)


@pytest.mark.asyncio
async def test_missing_payout_account(db, rail):
    partner, _ = await partner_with_earnings(db, "100.00", contact_info={"email": "ops@example.com"})
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")

    with pytest.raises(ValidationError):
        await engine.process_payout(payout.id)

    assert payout.status == PayoutStatus.FAILED.value
    assert payout.failure_reason.startswith("ACCOUNT_NOT_CONFIGURED:")
    rail.submit_transfer.assert_not_called()


@pytest.mark.asyncio
async def test_process_payout_requires_pending(db, rail):
    partner, _ = await partner_with_earnings(db, "100.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "razorpay")
    await engine.process_payout(payout.id)

    with pytest.raises(StateError):
        await engine.process_payout(payout.id)
    with pytest.raises(PayoutNotFound):
        await engine.process_payout(uuid.uuid4())


@pytest.mark.asyncio
async def test_sweep_continues_after_failure(db, rail):
    good_partner, _ = await partner_with_earnings(db, "100.00")
    bad_partner, _ = await partner_with_earnings(db, "100.00", contact_info={})
    engine = PayoutEngine(db, rail=rail)
    bad = await engine.request_payout(bad_partner.id, Decimal("100"), "USD", "razorpay")
    good = await engine.request_payout(good_partner.id, Decimal("100"), "USD", "razorpay")
    bad_id, good_id = bad.id, good.id

    sweep = await engine.process_pending_payouts()

    assert (sweep.processed, sweep.paid, sweep.failed) == (2, 1, 1)
    payouts = {p.id: p.status for p in await engine.list_payouts()}
    assert payouts[good_id] == PayoutStatus.PAID.value
    assert payouts[bad_id] == PayoutStatus.FAILED.value


# ==================== Admin ====================

@pytest.mark.asyncio
async def test_cancel_payout_voids_invoice(db, rail):
    partner, _ = await partner_with_earnings(db, "100.00")
    engine = PayoutEngine(db, rail=rail)
    payout = await engine.request_payout(partner.id, Decimal("100"), "USD", "bank_transfer")

    await engine.cancel_payout(payout.id, "Duplicate request")

    invoice = await db.get(Invoice, payout.invoice_id)
    assert payout.status == PayoutStatus.CANCELLED.value
    assert payout.failure_reason == "Cancelled: Duplicate request"
    assert invoice.status == InvoiceStatus.VOID.value

    sweep = await engine.process_pending_payouts()
    assert sweep.processed == 0


@pytest.mark.asyncio
async def test_list_payouts_by_partner(db, rail):
    partner, _ = await partner_with_earnings(db, "200.00")
    other, _ = await partner_with_earnings(db, "200.00")
    engine = PayoutEngine(db, rail=rail)
    await engine.request_payout(partner.id, Decimal("60"), "USD", "razorpay")
    await engine.request_payout(partner.id, Decimal("70"), "USD", "razorpay")
    await engine.request_payout(other.id, Decimal("80"), "USD", "razorpay")

    payouts = await engine.list_payouts(partner_id=partner.id)

    assert sorted(p.amount for p in payouts) == [Decimal("60.00"), Decimal("70.00")]
