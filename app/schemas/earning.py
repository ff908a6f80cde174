"""Pydantic schemas for conversions, earnings and conversion reports."""

from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer

from app.models.affiliate_earning import EarningStatus
from app.schemas.base import BaseCreateSchema, BaseResponseSchema


class ConversionDetails(BaseCreateSchema):
    """A booking converted through an affiliate link."""
    amount: Decimal  # Booking value
    currency: str = Field("USD", min_length=3, max_length=3)
    booking_id: Optional[UUID] = None
    conversion_reference_id: Optional[str] = None
    user_id: Optional[UUID] = None


class ConversionReportFilters(BaseModel):
    status: Optional[EarningStatus] = None
    offer_id: Optional[UUID] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class EarningResponse(BaseResponseSchema):
    id: UUID
    partner_id: UUID
    offer_id: UUID
    link_id: Optional[UUID] = None
    booking_id: Optional[UUID] = None
    conversion_reference_id: Optional[str] = None
    booking_value: Decimal
    amount_earned: Decimal
    currency: str
    status: str
    notes: Optional[str] = None
    transaction_date: datetime
    split_from_id: Optional[UUID] = None


class ConversionTotals(BaseModel):
    """
    Per-status sums. Held as Decimal; rendered as display floats only
    when serialized.
    """
    pending: Decimal = Decimal("0.00")
    confirmed: Decimal = Decimal("0.00")
    paid: Decimal = Decimal("0.00")
    cancelled: Decimal = Decimal("0.00")

    @property
    def total(self) -> Decimal:
        return self.pending + self.confirmed + self.paid

    @field_serializer("pending", "confirmed", "paid", "cancelled")
    def serialize_amount(self, value: Decimal) -> float:
        return float(value)


class ConversionReport(BaseModel):
    partner_id: UUID
    earnings: List[EarningResponse]
    totals: ConversionTotals
    conversion_count: int
