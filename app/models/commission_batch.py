import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, Date, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import MoneyType, UUIDType


class BatchStatus(str, Enum):
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class BatchTrigger(str, Enum):
    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class CommissionBatch(Base):
    """
    One settlement run: a cohort of PENDING earnings re-validated and
    moved to CONFIRMED, with aggregate totals for audit.
    """
    __tablename__ = "commission_batches"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    batch_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    total_commissions: Mapped[Decimal] = mapped_column(
        MoneyType,
        default=Decimal("0.00"),
        nullable=False
    )
    processed_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=BatchStatus.PROCESSING.value,
        nullable=False,
        comment="PROCESSING, COMPLETED, FAILED"
    )
    trigger: Mapped[str] = mapped_column(
        String(20),
        default=BatchTrigger.MANUAL.value,
        nullable=False,
        comment="SCHEDULED, MANUAL"
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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
        return f"<CommissionBatch({self.batch_date}: {self.status}, {self.processed_count} earnings)>"
