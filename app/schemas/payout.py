"""Pydantic schemas for payouts and invoices."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.base import BaseCreateSchema, BaseResponseSchema


class PayoutRequest(BaseCreateSchema):
    amount: Decimal
    currency: str = Field("USD", min_length=3, max_length=3)
    payment_method: str = Field(..., min_length=1, max_length=100)
    notes: Optional[str] = None


class PayoutResponse(BaseResponseSchema):
    id: UUID
    partner_id: UUID
    amount: Decimal
    currency: str
    status: str
    payment_method: str
    transaction_id: Optional[str] = None
    invoice_id: Optional[UUID] = None
    payout_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class InvoiceLineItem(BaseModel):
    description: str
    quantity: int = 1
    unit_price: Decimal
    total_price: Decimal
    period: Optional[dict] = None  # {"from": "YYYY-MM-DD", "to": "YYYY-MM-DD"}


class PayoutSweepResult(BaseModel):
    """Outcome of one payout settlement sweep."""
    processed: int = 0
    paid: int = 0
    failed: int = 0


class PayoutAuditEntry(BaseResponseSchema):
    """One audit row in a payout's history."""
    id: UUID
    timestamp: datetime
    action_type: str
    user_id: Optional[UUID] = None
    details: Optional[dict] = None
