"""Database-agnostic type definitions for SQLAlchemy models.

This module provides type definitions that work with both SQLite and PostgreSQL.
"""
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import JSON, BigInteger, Uuid
from sqlalchemy.types import TypeDecorator

# Use JSON instead of JSONB for cross-database compatibility
# JSONB is PostgreSQL-specific, JSON works with both SQLite and PostgreSQL
JSONType = JSON

# UUID type that works with both databases (native UUID on PostgreSQL, CHAR(32) elsewhere)
UUIDType = Uuid

CENT = Decimal("0.01")


class MoneyType(TypeDecorator):
    """
    Fixed-point money column.

    Stores an integer count of minor units (cents) and hands back a
    Decimal quantized to two places. Values are rounded ROUND_HALF_UP
    on the way in.

    Example:
        Decimal("12.345") -> 1235 in the database -> Decimal("12.35")
    """
    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        amount = Decimal(str(value)) if not isinstance(value, Decimal) else value
        return int(amount.quantize(CENT, rounding=ROUND_HALF_UP) * 100)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(int(value)) / 100).quantize(CENT)
