"""
Earning Ledger

Records conversions as PENDING earnings and moves earnings through their
lifecycle. Status changes go through earning_state_machine; every change
appends a note line and an audit entry.
"""
import logging
import uuid
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dates import utc_now
from app.core.exceptions import (
    ValidationError,
    StateError,
    LinkNotFound,
    OfferNotFound,
    PartnerNotFound,
    OfferInactive,
    PartnerInactive,
    EarningNotFound,
)
from app.core.money import ZERO, quantize_money, to_decimal
from app.models.affiliate_earning import AffiliateEarning, EarningStatus
from app.models.affiliate_offer import AffiliateOffer, AffiliateLink
from app.models.partner import Partner
from app.schemas.commission import AdjustmentType
from app.schemas.earning import (
    ConversionDetails,
    ConversionReport,
    ConversionReportFilters,
    ConversionTotals,
    EarningResponse,
)
from app.services.audit_service import AuditService
from app.services.commission_calculator import CommissionCalculator
from app.services.earning_state_machine import get_transition_action, transition_earning

logger = logging.getLogger(__name__)


class EarningLedger:
    """Affiliate earnings: creation, status changes, adjustments, reporting."""

    def __init__(
        self,
        db: AsyncSession,
        calculator: Optional[CommissionCalculator] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.calculator = calculator or CommissionCalculator(db, self.audit)

    async def get_earning(self, earning_id: uuid.UUID) -> AffiliateEarning:
        earning = await self.db.get(AffiliateEarning, earning_id)
        if not earning:
            raise EarningNotFound(earning_id)
        return earning

    async def record_conversion(
        self,
        link_id: uuid.UUID,
        details: Union[ConversionDetails, dict],
        actor: Optional[uuid.UUID] = None,
    ) -> AffiliateEarning:
        """
        Record a booking converted through an affiliate link.

        Creates a PENDING earning and bumps the link's conversion counter.

        Raises:
            ValidationError: amount <= 0
            LinkNotFound / OfferNotFound / PartnerNotFound
            OfferInactive / PartnerInactive / OfferExpired
        """
        if not isinstance(details, ConversionDetails):
            details = ConversionDetails.model_validate(details)

        booking_value = to_decimal(details.amount)
        if booking_value <= ZERO:
            raise ValidationError(
                "Conversion amount must be greater than 0",
                {"amount": str(booking_value)},
            )

        link = await self.db.get(AffiliateLink, link_id)
        if not link:
            raise LinkNotFound(link_id)

        offer = await self.db.get(AffiliateOffer, link.offer_id)
        if not offer:
            raise OfferNotFound(link.offer_id)

        partner = await self.db.get(Partner, offer.partner_id)
        if not partner:
            raise PartnerNotFound(offer.partner_id)

        if not offer.is_active:
            raise OfferInactive(offer.id)
        if not partner.is_active:
            raise PartnerInactive(partner.id)

        result = await self.calculator.calculate_for_offer(
            partner.id,
            offer.id,
            booking_value,
            details.currency,
            user_id=actor or details.user_id,
        )

        now = utc_now()
        earning = AffiliateEarning(
            partner_id=partner.id,
            offer_id=offer.id,
            link_id=link.id,
            user_id=details.user_id or link.user_id,
            booking_id=details.booking_id,
            conversion_reference_id=details.conversion_reference_id,
            booking_value=quantize_money(booking_value),
            amount_earned=result.amount_earned_rounded,
            adjustment_total=Decimal("0.00"),
            currency=details.currency,
            status=EarningStatus.PENDING.value,
            transaction_date=now,
        )
        earning.append_note(f"Conversion recorded via link {link.unique_code}", at=now)
        self.db.add(earning)

        link.conversions = (link.conversions or 0) + 1
        await self.db.flush()

        await self.audit.log_earning_action(
            "EARNING_CREATED",
            earning.id,
            partner.id,
            {
                "link_id": link.id,
                "offer_id": offer.id,
                "booking_value": earning.booking_value,
                "amount_earned": earning.amount_earned,
                "currency": earning.currency,
                "calculation_details": result.calculation_details.model_dump(mode="json"),
            },
            user_id=actor,
        )

        await self.db.commit()
        logger.info(
            f"Recorded conversion for partner {partner.id}: "
            f"{earning.amount_earned} {earning.currency} (link {link.unique_code})"
        )
        return earning

    async def update_status(
        self,
        earning_id: uuid.UUID,
        new_status: Union[str, EarningStatus],
        reason: Optional[str] = None,
        actor: Optional[uuid.UUID] = None,
    ) -> AffiliateEarning:
        """
        Move an earning to a new status.

        Raises:
            EarningNotFound
            InvalidTransition: not allowed by the transition table
        """
        earning = await self.get_earning(earning_id)

        note = reason
        if actor:
            note = f"{reason or 'No reason given'} (by {actor})"
        old_status = transition_earning(earning, new_status, note=note)

        await self.audit.log_earning_action(
            "EARNING_STATUS_CHANGED",
            earning.id,
            earning.partner_id,
            {
                "old_status": old_status,
                "new_status": earning.status,
                "action": get_transition_action(old_status, earning.status),
                "amount_earned": earning.amount_earned,
                "reason": reason,
            },
            user_id=actor,
        )

        await self.db.commit()
        logger.info(f"Earning {earning.id} status changed: {old_status} -> {earning.status}")
        return earning

    async def adjust_commission(
        self,
        earning_id: uuid.UUID,
        amount,
        adjustment_type: Union[str, AdjustmentType],
        reason: str,
        actor: Optional[uuid.UUID] = None,
    ) -> AffiliateEarning:
        """
        Apply a signed adjustment to an earning (clawback is negative).

        Raises:
            ValidationError: unknown type, or the result would be negative
            StateError: earning is PAID or CANCELLED
        """
        try:
            adjustment_type = AdjustmentType(adjustment_type).value
        except ValueError:
            raise ValidationError(
                f"Unsupported adjustment type: {adjustment_type}",
                {"adjustment_type": str(adjustment_type)},
            )

        earning = await self.get_earning(earning_id)
        if earning.status in (EarningStatus.PAID.value, EarningStatus.CANCELLED.value):
            raise StateError(
                f"Cannot adjust an earning in {earning.status} status",
                {"earning_id": str(earning.id), "status": earning.status},
            )

        adjustment = quantize_money(amount)
        original_amount = earning.amount_earned
        new_amount = original_amount + adjustment
        if new_amount < ZERO:
            raise ValidationError(
                "Commission adjustment would result in negative earning amount",
                {
                    "original_amount": str(original_amount),
                    "adjustment_amount": str(adjustment),
                },
            )

        earning.amount_earned = new_amount
        earning.adjustment_total = (earning.adjustment_total or Decimal("0.00")) + adjustment
        earning.append_note(f"{adjustment_type}: {adjustment} - {reason}")

        await self.audit.log_earning_action(
            f"COMMISSION_{adjustment_type}",
            earning.id,
            earning.partner_id,
            {
                "original_amount": original_amount,
                "adjustment_amount": adjustment,
                "new_amount": new_amount,
                "reason": reason,
            },
            user_id=actor,
        )

        await self.db.commit()
        logger.info(f"Commission {adjustment_type.lower()} processed for earning {earning.id}: {adjustment}")
        return earning

    async def get_conversion_report(
        self,
        partner_id: uuid.UUID,
        filters: Optional[ConversionReportFilters] = None,
    ) -> ConversionReport:
        """Earnings for a partner with per-status totals."""
        filters = filters or ConversionReportFilters()

        query = select(AffiliateEarning).where(AffiliateEarning.partner_id == partner_id)
        if filters.status:
            query = query.where(AffiliateEarning.status == filters.status.value)
        if filters.offer_id:
            query = query.where(AffiliateEarning.offer_id == filters.offer_id)
        if filters.start_date:
            query = query.where(AffiliateEarning.transaction_date >= filters.start_date)
        if filters.end_date:
            query = query.where(AffiliateEarning.transaction_date <= filters.end_date)
        query = query.order_by(AffiliateEarning.transaction_date.desc())

        result = await self.db.execute(query)
        earnings = list(result.scalars().all())

        sums = {status.value: Decimal("0.00") for status in EarningStatus}
        for earning in earnings:
            sums[earning.status] += earning.amount_earned

        totals = ConversionTotals(
            pending=sums[EarningStatus.PENDING.value],
            confirmed=sums[EarningStatus.CONFIRMED.value],
            paid=sums[EarningStatus.PAID.value],
            cancelled=sums[EarningStatus.CANCELLED.value],
        )

        return ConversionReport(
            partner_id=partner_id,
            earnings=[EarningResponse.model_validate(e) for e in earnings],
            totals=totals,
            conversion_count=len(earnings),
        )
