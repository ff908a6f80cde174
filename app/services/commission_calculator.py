"""
Commission Calculator

Turns a booking value and an offer's commission structure into an
earning amount.

Structure types:
- percentage: amount = booking_value * value / 100
- fixed:      amount = value (rate reported for audit only)
- tiered:     highest tier whose threshold <= booking_value; below every
              threshold falls back to the lowest tier and sets
              tier_fallback on the result

A partner override rate replaces the structure amount entirely. The
difference is recorded as a "partner_override" adjustment.

All arithmetic is Decimal in MONEY_CONTEXT. The result is unrounded;
callers persist amount_earned_rounded.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dates import as_utc, utc_now
from app.core.exceptions import (
    ValidationError,
    UnsupportedStructureType,
    PartnerNotFound,
    OfferNotFound,
    OfferInactive,
    OfferExpired,
)
from app.core.money import HUNDRED, ZERO, money_context, to_decimal
from app.models.affiliate_offer import AffiliateOffer
from app.models.partner import Partner
from app.schemas.commission import (
    CommissionStructure,
    CommissionTier,
    CommissionResult,
    CalculationDetails,
    CommissionAdjustment,
    StructureType,
    TierValueType,
)
from app.services.audit_service import AuditService

logger = logging.getLogger(__name__)


def parse_structure(structure: Union[CommissionStructure, dict]) -> CommissionStructure:
    """Parse a stored commission_structure JSON blob."""
    if isinstance(structure, CommissionStructure):
        return structure
    try:
        return CommissionStructure.model_validate(structure)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid commission structure",
            {"errors": e.errors(include_url=False, include_context=False)},
        ) from e


def _apply_value(booking_value: Decimal, value: Optional[Decimal], value_type: str) -> Tuple[Decimal, Decimal]:
    """Return (amount, rate) for a single percentage or fixed value."""
    if value is None:
        raise ValidationError(f"Commission value is required for {value_type} commission")

    if value_type == TierValueType.PERCENTAGE.value:
        rate = value / HUNDRED
        return booking_value * rate, rate

    if value_type == TierValueType.FIXED.value:
        return value, value / booking_value

    raise UnsupportedStructureType(value_type)


def _select_tier(tiers, booking_value: Decimal) -> Tuple[CommissionTier, bool]:
    """Highest tier at or below booking_value, else the lowest tier (fallback)."""
    ordered = sorted(tiers, key=lambda t: t.threshold)
    selected = None
    for tier in ordered:
        if tier.threshold <= booking_value:
            selected = tier
    if selected is None:
        return ordered[0], True
    return selected, False


class CommissionCalculator:
    """
    Commission calculation.

    calculate() is pure and needs no session. calculate_for_offer()
    loads the partner and offer, enforces offer state, and audits.
    """

    def __init__(self, db: Optional[AsyncSession] = None, audit: Optional[AuditService] = None):
        self.db = db
        self.audit = audit or (AuditService(db) if db is not None else None)

    def calculate(
        self,
        booking_value,
        currency: str,
        structure: Union[CommissionStructure, dict],
        override_rate=None,
    ) -> CommissionResult:
        """
        Calculate commission for one booking.

        Raises:
            ValidationError: booking_value <= 0, override outside [0, 1],
                empty tier list or a missing value
            UnsupportedStructureType: unknown structure or tier type
        """
        booking_value = to_decimal(booking_value)
        if booking_value <= ZERO:
            raise ValidationError(
                "Booking value must be greater than 0",
                {"booking_value": str(booking_value)},
            )

        if override_rate is not None:
            override_rate = to_decimal(override_rate)
            if override_rate < ZERO or override_rate > 1:
                raise ValidationError(
                    "Commission rate override must be between 0 and 1",
                    {"override_rate": str(override_rate)},
                )

        structure = parse_structure(structure)

        with money_context():
            tier_applied = None
            tier_fallback = False

            if structure.type in (StructureType.PERCENTAGE.value, StructureType.FIXED.value):
                amount, rate = _apply_value(booking_value, structure.value, structure.type)

            elif structure.type == StructureType.TIERED.value:
                if not structure.tiers:
                    raise ValidationError("Tiered commission requires at least one tier")
                tier, tier_fallback = _select_tier(structure.tiers, booking_value)
                amount, rate = _apply_value(booking_value, tier.value, tier.value_type)
                tier_applied = f"threshold {tier.threshold}"
                if tier_fallback:
                    logger.warning(
                        f"Booking value {booking_value} is below every tier threshold, "
                        f"falling back to lowest tier ({tier.threshold})"
                    )

            else:
                raise UnsupportedStructureType(structure.type)

            adjustments = []
            if override_rate is not None:
                override_amount = booking_value * override_rate
                adjustments.append(CommissionAdjustment(
                    type="partner_override",
                    amount=override_amount - amount,
                    reason=f"Partner commission rate override {override_rate}",
                ))
                amount = override_amount
                rate = override_rate

        return CommissionResult(
            amount_earned=amount,
            currency=currency,
            calculation_details=CalculationDetails(
                base_amount=booking_value,
                commission_rate=rate,
                commission_type=structure.type,
                tier_applied=tier_applied,
                tier_fallback=tier_fallback,
                adjustments=adjustments,
            ),
        )

    async def load_offer(
        self,
        partner_id: uuid.UUID,
        offer_id: uuid.UUID,
        now: Optional[datetime] = None,
    ) -> Tuple[Partner, AffiliateOffer]:
        """
        Load partner and offer and check the offer can earn commission at `now`.

        Raises:
            PartnerNotFound, OfferNotFound, OfferInactive, OfferExpired
        """
        partner = await self.db.get(Partner, partner_id)
        if not partner:
            raise PartnerNotFound(partner_id)

        offer = await self.db.get(AffiliateOffer, offer_id)
        if not offer or offer.partner_id != partner.id:
            raise OfferNotFound(offer_id)

        if not offer.is_active:
            raise OfferInactive(offer_id)

        now = as_utc(now) if now else utc_now()
        valid_from, valid_to = as_utc(offer.valid_from), as_utc(offer.valid_to)
        if now < valid_from or now > valid_to:
            raise OfferExpired(offer_id, valid_from, valid_to)

        return partner, offer

    async def calculate_for_offer(
        self,
        partner_id: uuid.UUID,
        offer_id: uuid.UUID,
        booking_value,
        currency: str,
        *,
        now: Optional[datetime] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> CommissionResult:
        """Calculate against a stored offer, applying the partner's override."""
        partner, offer = await self.load_offer(partner_id, offer_id, now)

        result = self.calculate(
            booking_value,
            currency,
            offer.commission_structure,
            override_rate=partner.commission_rate_override,
        )

        await self.audit.log_action(
            action_type="COMMISSION_CALCULATED",
            entity_type="commission_calculation",
            entity_id=offer.id,
            user_id=user_id,
            partner_id=partner.id,
            details={
                "offer_id": offer.id,
                "booking_value": result.calculation_details.base_amount,
                "amount_earned": result.amount_earned_rounded,
                "currency": currency,
                "calculation_details": result.calculation_details.model_dump(mode="json"),
            },
        )

        return result
