"""
Shared Pydantic base classes.

Response schemas read straight from ORM rows (Payout, CommissionBatch,
AffiliateEarning), so they inherit from_attributes. Input schemas drop
unknown keys so clients can send a superset of the fields we use.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """Built with Model.model_validate(orm_row)."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class BaseCreateSchema(BaseModel):
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)


class BaseUpdateSchema(BaseModel):
    """
    Partial update. Every field is optional; services apply
    model_dump(exclude_unset=True) so omitted fields are left alone.
    """
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)
