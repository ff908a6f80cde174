"""Affiliate offer and trackable link models."""
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import JSONType, UUIDType

if TYPE_CHECKING:
    from app.models.partner import Partner


class AffiliateOffer(Base):
    """
    Commission offer published by a partner.

    commission_structure JSON shapes:
        {"type": "percentage", "value": "10"}
        {"type": "fixed", "value": "25.00"}
        {"type": "tiered", "tiers": [
            {"threshold": "0", "value": "5", "value_type": "percentage"},
            {"threshold": "500", "value": "8", "value_type": "percentage"},
        ]}
    """
    __tablename__ = "affiliate_offers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    partner_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    commission_structure: Mapped[dict] = mapped_column(JSONType, nullable=False)

    valid_from: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    valid_to: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    terms_conditions: Mapped[str] = mapped_column(Text, nullable=False, default="")
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
    partner: Mapped["Partner"] = relationship("Partner", back_populates="offers")
    links: Mapped[List["AffiliateLink"]] = relationship(
        "AffiliateLink",
        back_populates="offer"
    )

    def __repr__(self) -> str:
        return f"<AffiliateOffer(title={self.title}, type={self.commission_structure.get('type')})>"


class AffiliateLink(Base):
    """Trackable link for an offer. Conversions are counted per link."""
    __tablename__ = "affiliate_links"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    offer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_offers.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # User who owns the link
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    unique_code: Mapped[str] = mapped_column(
        String(50),
        unique=True,
        nullable=False,
        index=True
    )

    clicks: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    conversions: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    offer: Mapped["AffiliateOffer"] = relationship("AffiliateOffer", back_populates="links")

    def __repr__(self) -> str:
        return f"<AffiliateLink(code={self.unique_code}, conversions={self.conversions})>"
