import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import JSONType, UUIDType


class AuditLog(Base):
    """
    Append-only audit trail for the commission engine.
    Records: commission calculations, earning status changes, adjustments,
    batch runs, payout requests/completions/failures, invoices.
    """
    __tablename__ = "affiliate_audit_logs"
    __table_args__ = (
        Index('ix_affiliate_audit_logs_entity', 'entity_id', 'entity_type'),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    # Who performed the action (None for scheduled jobs)
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)
    partner_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    # Entity being modified
    entity_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    # Entity types: commission_calculation, affiliate_earning, affiliate_payout,
    #               affiliate_invoice, commission_batch

    action_type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # Actions: COMMISSION_CALCULATED, EARNING_CREATED, EARNING_STATUS_CHANGED,
    #          COMMISSION_CLAWBACK, COMMISSION_BONUS, COMMISSION_CORRECTION,
    #          PAYOUT_REQUESTED, PAYOUT_COMPLETED, PAYOUT_FAILED, PAYOUT_OUTCOME_UNKNOWN,
    #          INVOICE_GENERATED, etc.

    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Request metadata
    ip_address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action_type}', entity='{self.entity_type}', id='{self.entity_id}')>"
