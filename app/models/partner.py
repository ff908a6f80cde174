"""Affiliate partner model.

A partner is a supplier (tour operator, restaurant, transport company...)
that publishes offers and earns commission on bookings converted through
its affiliate links.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import JSONType, UUIDType

if TYPE_CHECKING:
    from app.models.affiliate_offer import AffiliateOffer
    from app.models.affiliate_earning import AffiliateEarning


# ==================== ENUMS (stored as VARCHAR) ====================

class PartnerCategory(str, Enum):
    """Partner category. Each category has a fixed FRS commission range."""
    TOUR_OPERATOR = "TOUR_OPERATOR"
    ACTIVITY_PROVIDER = "ACTIVITY_PROVIDER"
    RESTAURANT = "RESTAURANT"
    TRANSPORTATION = "TRANSPORTATION"
    ECOMMERCE = "ECOMMERCE"


# ==================== MODELS ====================

class Partner(Base):
    """
    Affiliate partner.

    contact_info is free-form JSON. By convention it also carries the
    partner's payment-rail account id under settings.PAYOUT_ACCOUNT_METADATA_KEY.
    """
    __tablename__ = "affiliate_partners"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    category: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        comment="TOUR_OPERATOR, ACTIVITY_PROVIDER, RESTAURANT, TRANSPORTATION, ECOMMERCE"
    )

    contact_info: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    # e.g. 0.1000 for 10%. Replaces the offer's structure when set.
    commission_rate_override: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 4),
        nullable=True
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    offers: Mapped[List["AffiliateOffer"]] = relationship(
        "AffiliateOffer",
        back_populates="partner"
    )
    earnings: Mapped[List["AffiliateEarning"]] = relationship(
        "AffiliateEarning",
        back_populates="partner"
    )

    def __repr__(self) -> str:
        return f"<Partner(name={self.name}, category={self.category})>"
