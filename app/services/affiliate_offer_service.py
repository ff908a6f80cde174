"""
Affiliate Offer Service

Partner and offer administration:
- Partner registration
- Offer creation and updates (structure shape + FRS compliance)
- Trackable link generation and click tracking
"""

import logging
import random
import string
import uuid
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dates import as_utc, utc_now
from app.core.exceptions import (
    ValidationError,
    PartnerNotFound,
    PartnerInactive,
    OfferNotFound,
    OfferInactive,
    OfferExpired,
    LinkNotFound,
)
from app.core.money import HUNDRED, ZERO
from app.models.affiliate_offer import AffiliateOffer, AffiliateLink
from app.models.partner import Partner
from app.schemas.commission import (
    CommissionStructure,
    OfferCreate,
    OfferUpdate,
    PartnerCreate,
    StructureType,
    TierValueType,
)
from app.services.compliance_validator import ComplianceValidator

logger = logging.getLogger(__name__)

LINK_CODE_LENGTH = 10


def validate_commission_structure(structure: CommissionStructure) -> None:
    """Shape checks for a commission structure. Raises ValidationError."""
    if not structure.type:
        raise ValidationError("Commission structure type is required.")

    if structure.type in (StructureType.PERCENTAGE.value, StructureType.FIXED.value):
        if structure.value is None or structure.value < ZERO:
            raise ValidationError(f"Invalid value for {structure.type} commission.")
        if structure.type == StructureType.PERCENTAGE.value and structure.value > HUNDRED:
            raise ValidationError("Percentage value cannot exceed 100.")

    elif structure.type == StructureType.TIERED.value:
        if not structure.tiers:
            raise ValidationError("Tiers are required for tiered commission.")
        for tier in structure.tiers:
            if (
                tier.threshold < ZERO
                or tier.value < ZERO
                or tier.value_type not in (TierValueType.PERCENTAGE.value, TierValueType.FIXED.value)
            ):
                raise ValidationError("Invalid tier structure in tiered commission.")
            if tier.value_type == TierValueType.PERCENTAGE.value and tier.value > HUNDRED:
                raise ValidationError("Tier percentage value cannot exceed 100.")

    else:
        raise ValidationError(f"Unsupported commission structure type: {structure.type}")


def structure_to_json(structure: CommissionStructure) -> dict:
    """Stored form: Decimals as strings, unset keys dropped."""
    return structure.model_dump(mode="json", exclude_none=True)


class AffiliateOfferService:
    """Service for partner, offer and link administration"""

    def __init__(self, db: AsyncSession, compliance: Optional[ComplianceValidator] = None):
        self.db = db
        self.compliance = compliance or ComplianceValidator()

    # ========================================================================
    # Partners
    # ========================================================================

    async def register_partner(self, data: Union[PartnerCreate, dict]) -> Partner:
        if not isinstance(data, PartnerCreate):
            data = PartnerCreate.model_validate(data)

        existing = await self.db.execute(
            select(Partner.id).where(Partner.name == data.name)
        )
        if existing.scalar_one_or_none():
            raise ValidationError(
                f'Partner with name "{data.name}" already exists.',
                {"name": data.name},
            )

        partner = Partner(
            name=data.name,
            category=data.category.value,
            contact_info=data.contact_info,
            commission_rate_override=data.commission_rate_override,
            is_active=data.is_active,
        )
        self.db.add(partner)
        await self.db.commit()

        logger.info(f"Registered partner {partner.name} ({partner.category})")
        return partner

    async def get_partner(self, partner_id: uuid.UUID) -> Partner:
        partner = await self.db.get(Partner, partner_id)
        if not partner:
            raise PartnerNotFound(partner_id)
        return partner

    # ========================================================================
    # Offers
    # ========================================================================

    async def create_offer(self, partner_id: uuid.UUID, data: Union[OfferCreate, dict]) -> AffiliateOffer:
        """
        Create an offer for a partner.

        Raises:
            PartnerNotFound / PartnerInactive
            ValidationError: date range or structure shape
            ComplianceError: percentage rate outside the category's FRS range
        """
        if not isinstance(data, OfferCreate):
            data = OfferCreate.model_validate(data)

        partner = await self.get_partner(partner_id)
        if not partner.is_active:
            raise PartnerInactive(partner_id)

        self._validate_offer(partner, data.commission_structure, data.valid_from, data.valid_to)

        offer = AffiliateOffer(
            partner_id=partner.id,
            title=data.title,
            description=data.description,
            commission_structure=structure_to_json(data.commission_structure),
            valid_from=data.valid_from,
            valid_to=data.valid_to,
            terms_conditions=data.terms_conditions,
            is_active=data.is_active,
        )
        self.db.add(offer)
        await self.db.commit()

        logger.info(f"Created offer '{offer.title}' for partner {partner.name}")
        return offer

    async def get_offer(self, offer_id: uuid.UUID) -> AffiliateOffer:
        offer = await self.db.get(AffiliateOffer, offer_id)
        if not offer:
            raise OfferNotFound(offer_id)
        return offer

    async def update_offer(self, offer_id: uuid.UUID, data: Union[OfferUpdate, dict]) -> AffiliateOffer:
        """Partial update. The merged offer is validated as a whole."""
        if not isinstance(data, OfferUpdate):
            data = OfferUpdate.model_validate(data)

        offer = await self.get_offer(offer_id)
        partner = await self.get_partner(offer.partner_id)

        updates = data.model_dump(exclude_unset=True)
        structure = data.commission_structure or CommissionStructure.model_validate(offer.commission_structure)
        valid_from = updates.get("valid_from") or offer.valid_from
        valid_to = updates.get("valid_to") or offer.valid_to

        self._validate_offer(partner, structure, valid_from, valid_to)

        for field, value in updates.items():
            if field == "commission_structure":
                offer.commission_structure = structure_to_json(structure)
            elif value is not None:
                setattr(offer, field, value)

        await self.db.commit()
        logger.info(f"Updated offer {offer.id}: {', '.join(updates.keys()) or 'no changes'}")
        return offer

    def _validate_offer(self, partner: Partner, structure: CommissionStructure, valid_from, valid_to) -> None:
        if as_utc(valid_from) >= as_utc(valid_to):
            raise ValidationError("validFrom date must be before validTo date.")
        validate_commission_structure(structure)
        self.compliance.validate_structure(structure, partner.category)

    # ========================================================================
    # Links
    # ========================================================================

    async def generate_link_code(self) -> str:
        """Unique 10-character link code, e.g. K7R2XM9QAB"""
        while True:
            code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=LINK_CODE_LENGTH))
            result = await self.db.execute(
                select(AffiliateLink.id).where(AffiliateLink.unique_code == code)
            )
            if not result.scalar_one_or_none():
                return code

    async def create_link(self, offer_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> AffiliateLink:
        offer = await self.get_offer(offer_id)
        if not offer.is_active:
            raise OfferInactive(offer_id)

        link = AffiliateLink(
            offer_id=offer.id,
            user_id=user_id,
            unique_code=await self.generate_link_code(),
            clicks=0,
            conversions=0,
        )
        self.db.add(link)
        await self.db.commit()

        logger.info(f"Created affiliate link {link.unique_code} for offer {offer.id}")
        return link

    async def track_click(self, unique_code: str) -> AffiliateLink:
        """Count a click on a link whose offer is active and in its validity window."""
        result = await self.db.execute(
            select(AffiliateLink).where(AffiliateLink.unique_code == unique_code)
        )
        link = result.scalar_one_or_none()
        if not link:
            logger.warning(f"Affiliate link with code {unique_code} not found.")
            raise LinkNotFound(unique_code)

        offer = await self.db.get(AffiliateOffer, link.offer_id)
        if not offer or not offer.is_active:
            logger.warning(f"Offer for link {unique_code} is inactive or not found.")
            raise OfferInactive(link.offer_id)

        now = utc_now()
        if now < as_utc(offer.valid_from) or now > as_utc(offer.valid_to):
            logger.warning(f"Offer for link {unique_code} is expired or not yet valid.")
            raise OfferExpired(offer.id, as_utc(offer.valid_from), as_utc(offer.valid_to))

        link.clicks = (link.clicks or 0) + 1
        await self.db.commit()
        logger.info(f"Click tracked for link {unique_code}. New click count: {link.clicks}")
        return link
