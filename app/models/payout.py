"""Partner payout and invoice models."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, DateTime, ForeignKey, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import JSONType, MoneyType, UUIDType


# ==================== ENUMS (stored as VARCHAR) ====================

class PayoutStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    PAID = "PAID"
    VOID = "VOID"
    OVERDUE = "OVERDUE"


# ==================== MODELS ====================

class Payout(Base):
    __tablename__ = "affiliate_payouts"

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

    amount: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=PayoutStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="PENDING, PROCESSING, PAID, FAILED, CANCELLED"
    )
    payment_method: Mapped[str] = mapped_column(String(100), nullable=False)

    # Payment-rail transfer id
    transaction_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    invoice_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("affiliate_invoices.id", ondelete="SET NULL"),
        nullable=True
    )
    payout_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    def __repr__(self) -> str:
        return f"<Payout(amount={self.amount} {self.currency}, status={self.status})>"


class Invoice(Base):
    """
    Invoice issued with a payout for formal payment methods.

    line_items: [{"description", "quantity", "unit_price", "total_price",
                  "period": {"from", "to"}}], money values as strings.
    """
    __tablename__ = "affiliate_invoices"

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

    # INV-YYYYMM-NNNN
    invoice_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)

    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    amount_due: Mapped[Decimal] = mapped_column(MoneyType, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT.value,
        nullable=False,
        comment="DRAFT, SENT, PAID, VOID, OVERDUE"
    )
    line_items: Mapped[List[dict]] = mapped_column(JSONType, nullable=False, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<Invoice({self.invoice_number}: {self.amount_due} {self.currency})>"


class InvoiceSequence(Base):
    """
    Monthly invoice counter.

    One row per period (YYYYMM). Locked with SELECT FOR UPDATE while
    incrementing so concurrent payouts never share a number.

    Example:
        period = "202610", current_number = 41
        -> next invoice: INV-202610-0042
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        UniqueConstraint("period", name="uq_invoice_sequence_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    period: Mapped[str] = mapped_column(String(6), nullable=False, comment="YYYYMM")
    current_number: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Last used sequence number"
    )
    padding_length: Mapped[int] = mapped_column(Integer, default=4, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def get_next_number(self) -> str:
        """
        Increment and format the next invoice number.

        NOTE: does NOT commit. The caller owns the transaction.
        """
        self.current_number += 1
        seq = str(self.current_number).zfill(self.padding_length)
        return f"INV-{self.period}-{seq}"

    def __repr__(self) -> str:
        return f"<InvoiceSequence({self.period}: {self.current_number})>"
