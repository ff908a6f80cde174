"""
Payout Engine

Settles accumulated partner earnings into payouts:
1. request_payout: check balance and minimum, create a PENDING payout,
   issue an invoice for formal payment methods
2. process_payout / process_pending_payouts: transfer the money on the
   payment rail, then mark earnings PAID oldest-first, splitting the
   last earning when the payout only covers part of it

Failed transfers are recorded FAILED and never retried automatically. A
transfer that times out stays PROCESSING: it may have been paid, so its
amount is held back from further requests until someone reconciles it.
"""
import asyncio
import logging
import uuid
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.dates import utc_now
from app.core.exceptions import (
    CommissionEngineError,
    ValidationError,
    StateError,
    PartnerNotFound,
    PayoutNotFound,
    InsufficientFunds,
    BelowMinimum,
    ExternalRailError,
)
from app.core.money import ZERO, quantize_money, to_decimal, to_minor_units
from app.models.affiliate_earning import AffiliateEarning, EarningStatus
from app.models.partner import Partner
from app.models.payout import Payout, PayoutStatus, Invoice, InvoiceStatus
from app.schemas.payout import InvoiceLineItem, PayoutSweepResult
from app.services.audit_service import AuditService
from app.services.earning_state_machine import PAYABLE_STATUSES, transition_earning
from app.services.invoice_sequence_service import InvoiceSequenceService
from app.services.payment_rail import PaymentRail, RailError, RailTimeout, RazorpayRail

logger = logging.getLogger(__name__)


class PayoutEngine:
    """Partner payouts, invoices and earning settlement."""

    def __init__(
        self,
        db: AsyncSession,
        rail: Optional[PaymentRail] = None,
        audit: Optional[AuditService] = None,
        invoice_sequence: Optional[InvoiceSequenceService] = None,
    ):
        self.db = db
        self.rail = rail or RazorpayRail()
        self.audit = audit or AuditService(db)
        self.invoice_sequence = invoice_sequence or InvoiceSequenceService(db)

    # ==================== Requests ====================

    async def request_payout(
        self,
        partner_id: uuid.UUID,
        amount,
        currency: str,
        payment_method: str,
        actor: Optional[uuid.UUID] = None,
    ) -> Payout:
        """
        Create a PENDING payout for a partner.

        Raises:
            ValidationError: amount <= 0
            PartnerNotFound: missing or inactive partner
            InsufficientFunds: amount above the available balance
            BelowMinimum: amount under MINIMUM_PAYOUT_AMOUNT
        """
        requested = quantize_money(amount)
        if requested <= ZERO:
            raise ValidationError(
                "Payout amount must be greater than 0",
                {"amount": str(requested)},
            )

        partner = await self.db.get(Partner, partner_id)
        if not partner or not partner.is_active:
            raise PartnerNotFound(partner_id)

        available = await self.get_available_earnings(partner_id)
        available -= await self.get_unreconciled_payout_total(partner_id)
        if requested > available:
            raise InsufficientFunds(requested, available)

        minimum = to_decimal(settings.MINIMUM_PAYOUT_AMOUNT)
        if requested < minimum:
            raise BelowMinimum(requested, minimum, currency)

        payout = Payout(
            partner_id=partner_id,
            amount=requested,
            currency=currency,
            status=PayoutStatus.PENDING.value,
            payment_method=payment_method,
        )
        self.db.add(payout)
        await self.db.flush()

        if self.should_generate_invoice(payment_method):
            invoice = await self._generate_invoice(partner_id, payout)
            payout.invoice_id = invoice.id

        await self.audit.log_payout_action(
            "PAYOUT_REQUESTED",
            payout.id,
            partner_id,
            {
                "amount": requested,
                "currency": currency,
                "payment_method": payment_method,
                "available_earnings": available,
                "invoice_id": payout.invoice_id,
            },
            user_id=actor,
        )

        await self.db.commit()
        logger.info(f"Payout request created: {payout.id} ({requested} {currency}) for partner {partner_id}")
        return payout

    def should_generate_invoice(self, payment_method: str) -> bool:
        return payment_method.lower() in settings.INVOICE_PAYMENT_METHODS

    async def _generate_invoice(self, partner_id: uuid.UUID, payout: Payout) -> Invoice:
        """Invoice covering every payable earning. Flushes, does not commit."""
        earnings = await self._get_payable_earnings(partner_id)

        line_items = []
        for earning in earnings:
            day = earning.transaction_date.date().isoformat()
            reference = earning.conversion_reference_id or earning.booking_id or "N/A"
            line_items.append(InvoiceLineItem(
                description=f"Commission for booking {reference}",
                quantity=1,
                unit_price=earning.amount_earned,
                total_price=earning.amount_earned,
                period={"from": day, "to": day},
            ).model_dump(mode="json"))

        issued_at = utc_now()
        invoice_number = await self.invoice_sequence.next_invoice_number(issued_at)

        invoice = Invoice(
            partner_id=partner_id,
            invoice_number=invoice_number,
            issue_date=issued_at,
            due_date=issued_at + timedelta(days=settings.INVOICE_DUE_DAYS),
            amount_due=payout.amount,
            currency=payout.currency,
            status=InvoiceStatus.SENT.value,
            line_items=line_items,
            notes=f"Affiliate commission payout for period ending {issued_at.date().isoformat()}",
        )
        self.db.add(invoice)
        await self.db.flush()

        await self.audit.log_action(
            action_type="INVOICE_GENERATED",
            entity_type="affiliate_invoice",
            entity_id=invoice.id,
            partner_id=partner_id,
            details={
                "invoice_number": invoice_number,
                "amount": invoice.amount_due,
                "currency": invoice.currency,
                "line_item_count": len(line_items),
                "payout_id": payout.id,
            },
        )

        logger.info(f"Generated invoice {invoice_number} for payout {payout.id}")
        return invoice

    # ==================== Settlement ====================

    async def process_pending_payouts(self) -> PayoutSweepResult:
        """Settle every PENDING payout. One failure does not stop the sweep."""
        result = await self.db.execute(
            select(Payout.id)
            .where(Payout.status == PayoutStatus.PENDING.value)
            .order_by(Payout.created_at.asc())
        )
        payout_ids = list(result.scalars().all())

        sweep = PayoutSweepResult()
        for payout_id in payout_ids:
            payout = await self.db.get(Payout, payout_id)
            if not payout or payout.status != PayoutStatus.PENDING.value:
                continue

            sweep.processed += 1
            try:
                await self._settle(payout)
                sweep.paid += 1
            except CommissionEngineError as e:
                # Drop anything the failed payout left uncommitted
                await self.db.rollback()
                sweep.failed += 1
                logger.error(f"Failed to process payout {payout_id}: {e.message}")

        logger.info(
            f"Processed {sweep.processed} pending payouts: "
            f"{sweep.paid} paid, {sweep.failed} failed"
        )
        return sweep

    async def process_payout(self, payout_id: uuid.UUID) -> Payout:
        """
        Settle one PENDING payout.

        Raises:
            PayoutNotFound
            StateError: payout is not PENDING
            ValidationError: partner has no payout account configured
            ExternalRailError: the transfer failed
        """
        payout = await self.db.get(Payout, payout_id)
        if not payout:
            raise PayoutNotFound(payout_id)
        if payout.status != PayoutStatus.PENDING.value:
            raise StateError(
                f"Payout is not pending: {payout_id}",
                {"payout_id": str(payout_id), "status": payout.status},
            )
        return await self._settle(payout)

    async def _settle(self, payout: Payout) -> Payout:
        logger.info(f"Processing payout {payout.id} for partner {payout.partner_id}")

        payout.status = PayoutStatus.PROCESSING.value
        await self.db.commit()

        try:
            account_id = await self._get_partner_account(payout.partner_id)
        except ValidationError as e:
            await self._record_failure(payout, "ACCOUNT_NOT_CONFIGURED", e.message)
            raise

        try:
            transaction_id = await asyncio.wait_for(
                self.rail.submit_transfer(
                    to_minor_units(payout.amount),
                    payout.currency,
                    account_id,
                    {"payout_id": str(payout.id), "partner_id": str(payout.partner_id)},
                ),
                timeout=settings.PAYMENT_RAIL_TIMEOUT_SECONDS,
            )
        except RailTimeout as e:
            await self._record_unknown_outcome(payout, e.message)
            raise ExternalRailError(
                f"Payout {payout.id} outcome unknown: {e.message}",
                {"payout_id": str(payout.id), "rail_error": e.code},
            ) from e
        except asyncio.TimeoutError as e:
            message = f"Payment rail did not respond within {settings.PAYMENT_RAIL_TIMEOUT_SECONDS}s"
            await self._record_unknown_outcome(payout, message)
            raise ExternalRailError(
                f"Payout {payout.id} outcome unknown: {message}",
                {"payout_id": str(payout.id), "rail_error": "TIMEOUT"},
            ) from e
        except RailError as e:
            await self._record_failure(payout, e.code, e.message)
            raise ExternalRailError(
                f"Payout {payout.id} failed: {e.message}",
                {"payout_id": str(payout.id), "rail_error": e.code},
            ) from e

        payout.status = PayoutStatus.PAID.value
        payout.transaction_id = transaction_id
        payout.payout_date = utc_now()

        await self.mark_earnings_as_paid(payout.partner_id, payout.amount, payout_id=payout.id)

        await self.audit.log_payout_action(
            "PAYOUT_COMPLETED",
            payout.id,
            payout.partner_id,
            {
                "transaction_id": transaction_id,
                "amount": payout.amount,
                "currency": payout.currency,
            },
        )

        await self.db.commit()
        logger.info(f"Payout {payout.id} completed successfully ({transaction_id})")
        return payout

    async def _record_failure(self, payout: Payout, code: str, message: str) -> None:
        payout.status = PayoutStatus.FAILED.value
        payout.failure_reason = f"{code}: {message}"

        await self.audit.log_payout_action(
            "PAYOUT_FAILED",
            payout.id,
            payout.partner_id,
            {"error": message, "rail_error": code},
        )
        await self.db.commit()
        logger.error(f"Payout {payout.id} failed ({code}): {message}")

    async def _record_unknown_outcome(self, payout: Payout, message: str) -> None:
        """
        Leave the payout PROCESSING for manual reconciliation. Its amount
        stays reserved against the partner's balance and the sweep skips it.
        """
        payout.failure_reason = f"TIMEOUT: {message}"

        await self.audit.log_payout_action(
            "PAYOUT_OUTCOME_UNKNOWN",
            payout.id,
            payout.partner_id,
            {"error": message, "rail_error": "TIMEOUT", "amount": payout.amount},
        )
        await self.db.commit()
        logger.error(f"Payout {payout.id} outcome unknown, needs reconciliation: {message}")

    async def _get_partner_account(self, partner_id: uuid.UUID) -> str:
        partner = await self.db.get(Partner, partner_id)
        if not partner:
            raise PartnerNotFound(partner_id)

        key = settings.PAYOUT_ACCOUNT_METADATA_KEY
        account_id = (partner.contact_info or {}).get(key)
        if not account_id:
            raise ValidationError(
                f"Payout account not configured for partner: {partner_id}",
                {"partner_id": str(partner_id), "contact_info_key": key},
            )
        return account_id

    # ==================== Earnings ====================

    async def get_available_earnings(self, partner_id: uuid.UUID) -> Decimal:
        """Sum of CONFIRMED and PENDING earnings."""
        result = await self.db.execute(
            select(func.sum(AffiliateEarning.amount_earned))
            .where(AffiliateEarning.partner_id == partner_id)
            .where(AffiliateEarning.status.in_(PAYABLE_STATUSES))
        )
        total = result.scalar()
        return quantize_money(total) if total is not None else Decimal("0.00")

    async def get_unreconciled_payout_total(self, partner_id: uuid.UUID) -> Decimal:
        """Sum of PROCESSING payouts whose transfer outcome is not yet known."""
        result = await self.db.execute(
            select(func.sum(Payout.amount))
            .where(Payout.partner_id == partner_id)
            .where(Payout.status == PayoutStatus.PROCESSING.value)
        )
        total = result.scalar()
        return quantize_money(total) if total is not None else Decimal("0.00")

    async def _get_payable_earnings(self, partner_id: uuid.UUID) -> List[AffiliateEarning]:
        result = await self.db.execute(
            select(AffiliateEarning)
            .where(AffiliateEarning.partner_id == partner_id)
            .where(AffiliateEarning.status.in_(PAYABLE_STATUSES))
            .order_by(AffiliateEarning.transaction_date.asc(), AffiliateEarning.created_at.asc())
        )
        return list(result.scalars().all())

    async def mark_earnings_as_paid(
        self,
        partner_id: uuid.UUID,
        paid_amount,
        payout_id: Optional[uuid.UUID] = None,
    ) -> List[AffiliateEarning]:
        """
        Mark payable earnings PAID oldest-first until paid_amount is used up.

        When an earning is larger than what is left, it is split: the
        original keeps the paid portion (PAID) and a new CONFIRMED
        earning holds the rest. At most one split per call, and the two
        rows always sum to the original amount.

        Flushes, does not commit. Returns the earnings marked PAID.
        """
        remaining = quantize_money(paid_amount)
        reference = f"payout {payout_id}" if payout_id else "payout"
        paid = []

        for earning in await self._get_payable_earnings(partner_id):
            if remaining <= ZERO:
                break

            earning_amount = earning.amount_earned
            if earning_amount <= remaining:
                self._mark_paid(earning, f"Paid by {reference}")
                remaining -= earning_amount
            else:
                unpaid_portion = earning_amount - remaining

                earning.amount_earned = remaining
                self._mark_paid(
                    earning,
                    f"Partially paid by {reference}: {remaining} of {earning_amount}",
                )

                sibling = AffiliateEarning(
                    partner_id=earning.partner_id,
                    offer_id=earning.offer_id,
                    link_id=earning.link_id,
                    user_id=earning.user_id,
                    booking_id=earning.booking_id,
                    conversion_reference_id=earning.conversion_reference_id,
                    booking_value=earning.booking_value,
                    amount_earned=unpaid_portion,
                    adjustment_total=Decimal("0.00"),
                    currency=earning.currency,
                    status=EarningStatus.CONFIRMED.value,
                    transaction_date=earning.transaction_date,
                    split_from_id=earning.id,
                )
                sibling.append_note(f"Split from earning {earning.id} - unpaid portion")
                self.db.add(sibling)
                remaining = ZERO

            paid.append(earning)

        await self.db.flush()
        return paid

    def _mark_paid(self, earning: AffiliateEarning, note: str) -> None:
        if earning.status == EarningStatus.PENDING.value:
            # Payout settlement only; PENDING -> PAID is not a ledger transition
            earning.status = EarningStatus.PAID.value
            earning.append_note(f"Status changed from PENDING to PAID: {note} (settled before confirmation)")
        else:
            transition_earning(earning, EarningStatus.PAID, note=note)

    # ==================== Admin ====================

    async def cancel_payout(
        self,
        payout_id: uuid.UUID,
        reason: str,
        actor: Optional[uuid.UUID] = None,
    ) -> Payout:
        """Cancel a PENDING payout and void its invoice."""
        payout = await self.db.get(Payout, payout_id)
        if not payout:
            raise PayoutNotFound(payout_id)
        if payout.status != PayoutStatus.PENDING.value:
            raise StateError(
                f"Only pending payouts can be cancelled: {payout_id}",
                {"payout_id": str(payout_id), "status": payout.status},
            )

        payout.status = PayoutStatus.CANCELLED.value
        payout.failure_reason = f"Cancelled: {reason}"

        if payout.invoice_id:
            invoice = await self.db.get(Invoice, payout.invoice_id)
            if invoice:
                invoice.status = InvoiceStatus.VOID.value

        await self.audit.log_payout_action(
            "PAYOUT_CANCELLED",
            payout.id,
            payout.partner_id,
            {"reason": reason},
            user_id=actor,
        )
        await self.db.commit()
        logger.info(f"Payout {payout.id} cancelled: {reason}")
        return payout

    async def list_payouts(
        self,
        partner_id: Optional[uuid.UUID] = None,
        limit: int = 100,
    ) -> List[Payout]:
        query = select(Payout)
        if partner_id:
            query = query.where(Payout.partner_id == partner_id)
        query = query.order_by(Payout.created_at.desc()).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())
