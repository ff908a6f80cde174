"""
Pydantic schemas for commission structures and calculation results.

Structures are stored as JSON on AffiliateOffer.commission_structure and
parsed with CommissionStructure.model_validate(). Money and rates are
Decimal; they serialize to strings in JSON mode so nothing passes
through float.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field

from app.core.money import quantize_money
from app.models.partner import PartnerCategory
from app.schemas.base import BaseCreateSchema, BaseResponseSchema, BaseUpdateSchema


# ============================================================================
# Enums
# ============================================================================

class StructureType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    TIERED = "tiered"


class TierValueType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class AdjustmentType(str, Enum):
    CLAWBACK = "CLAWBACK"
    BONUS = "BONUS"
    CORRECTION = "CORRECTION"


# ============================================================================
# Commission Structure
# ============================================================================

class CommissionTier(BaseModel):
    """threshold is a booking value; value is a percentage (0-100) or a flat amount."""
    threshold: Decimal
    value: Decimal
    value_type: str = TierValueType.PERCENTAGE.value


class CommissionStructure(BaseModel):
    # Kept as a plain string so unknown types reach the calculator,
    # which raises UnsupportedStructureType.
    type: str
    value: Optional[Decimal] = None
    tiers: Optional[List[CommissionTier]] = None


# ============================================================================
# Calculation Result
# ============================================================================

class CommissionAdjustment(BaseModel):
    type: str
    amount: Decimal
    reason: str


class CalculationDetails(BaseModel):
    base_amount: Decimal
    commission_rate: Decimal
    commission_type: str
    tier_applied: Optional[str] = None
    # True when booking value was below every tier threshold
    tier_fallback: bool = False
    adjustments: List[CommissionAdjustment] = Field(default_factory=list)


class CommissionResult(BaseModel):
    """amount_earned is unrounded; use amount_earned_rounded for storage."""
    amount_earned: Decimal
    currency: str
    calculation_details: CalculationDetails

    @property
    def amount_earned_rounded(self) -> Decimal:
        return quantize_money(self.amount_earned)


# ============================================================================
# Partner & Offer administration
# ============================================================================

class PartnerCreate(BaseCreateSchema):
    name: str = Field(..., min_length=1, max_length=255)
    category: PartnerCategory
    contact_info: dict = Field(default_factory=dict)
    commission_rate_override: Optional[Decimal] = Field(None, ge=0, le=1)
    is_active: bool = True


class OfferCreate(BaseCreateSchema):
    title: str = Field(..., min_length=1, max_length=255)
    description: str = ""
    commission_structure: CommissionStructure
    valid_from: datetime
    valid_to: datetime
    terms_conditions: str = ""
    is_active: bool = True


class OfferUpdate(BaseUpdateSchema):
    title: Optional[str] = None
    description: Optional[str] = None
    commission_structure: Optional[CommissionStructure] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    terms_conditions: Optional[str] = None
    is_active: Optional[bool] = None


# ============================================================================
# Settlement batches
# ============================================================================

class BatchResult(BaseModel):
    """Outcome of one settlement run."""
    batch_id: UUID
    processed_count: int
    skipped_count: int
    total_commissions: Decimal


class CommissionBatchResponse(BaseResponseSchema):
    id: UUID
    batch_date: date
    total_commissions: Decimal
    processed_count: int
    status: str
    trigger: str
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
