"""Affiliate earning model.

One row per converted booking. Status only moves along the table in
app/services/earning_state_machine.py. Rows are never deleted; a payout
that only partly covers an earning splits it into a PAID row and a
CONFIRMED sibling (split_from_id points at the original).
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import MoneyType, UUIDType

if TYPE_CHECKING:
    from app.models.partner import Partner
    from app.models.affiliate_offer import AffiliateOffer


class EarningStatus(str, Enum):
    """Earning lifecycle status."""
    PENDING = "PENDING"           # Conversion recorded, awaiting settlement batch
    CONFIRMED = "CONFIRMED"       # Re-validated by a settlement batch
    PAID = "PAID"                 # Covered by a completed payout
    CANCELLED = "CANCELLED"       # Voided (can be reactivated to PENDING)


class AffiliateEarning(Base):
    __tablename__ = "affiliate_earnings"
    __table_args__ = (
        Index('ix_affiliate_earnings_partner_status', 'partner_id', 'status'),
        Index('ix_affiliate_earnings_transaction_date', 'transaction_date'),
    )

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
    offer_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_offers.id", ondelete="CASCADE"),
        nullable=False
    )
    link_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_links.id", ondelete="SET NULL"),
        nullable=True
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    booking_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    conversion_reference_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Booking value the commission was computed from; settlement batches
    # recompute from this, not from amount_earned.
    booking_value: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    amount_earned: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)

    # Net of CLAWBACK / BONUS / CORRECTION adjustments applied so far
    adjustment_total: Mapped[Decimal] = mapped_column(
        MoneyType,
        nullable=False,
        default=Decimal("0.00")
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=EarningStatus.PENDING.value,
        nullable=False,
        comment="PENDING, CONFIRMED, PAID, CANCELLED"
    )

    # Append-only log, one timestamped line per event
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    transaction_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    split_from_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_earnings.id", ondelete="SET NULL"),
        nullable=True
    )

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
    partner: Mapped["Partner"] = relationship("Partner", back_populates="earnings")
    offer: Mapped["AffiliateOffer"] = relationship("AffiliateOffer")

    def append_note(self, line: str, at: Optional[datetime] = None) -> None:
        """Append a timestamped line. Existing notes are never rewritten."""
        stamp = (at or datetime.now(timezone.utc)).isoformat()
        entry = f"[{stamp}] {line}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry

    def __repr__(self) -> str:
        return f"<AffiliateEarning(amount={self.amount_earned} {self.currency}, status={self.status})>"
