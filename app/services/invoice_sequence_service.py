"""
Invoice Sequence Service for Atomic Number Generation

- Calendar-month numbering, restarting at 0001 every month
- Atomic increment with database-level locking
- Format: INV-{YYYYMM}-{SEQUENCE}

USAGE:
    service = InvoiceSequenceService(db)
    invoice_number = await service.next_invoice_number(issued_at)
    # Returns: INV-202610-0001
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dates import as_utc, utc_now
from app.models.payout import InvoiceSequence

INVOICE_PADDING = 4


def period_for(issued_at: datetime) -> str:
    """YYYYMM for the month the invoice is issued in (UTC)."""
    return as_utc(issued_at).strftime("%Y%m")


class InvoiceSequenceService:
    """
    Generates invoice numbers.

    Uses SELECT FOR UPDATE on the month's row so concurrent payouts never
    receive the same number. SQLite ignores FOR UPDATE; its writes are
    already serialized.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def next_invoice_number(self, issued_at: Optional[datetime] = None) -> str:
        """
        Increment the month's counter and return the formatted number.

        Flushes but does NOT commit; the caller owns the transaction.
        """
        period = period_for(issued_at or utc_now())
        sequence = await self._get_or_create_sequence(period)
        invoice_number = sequence.get_next_number()
        await self.db.flush()
        return invoice_number

    async def preview_next_number(self, issued_at: Optional[datetime] = None) -> str:
        """What the next number would be, without incrementing."""
        period = period_for(issued_at or utc_now())
        current = await self.get_current_number(issued_at)
        return f"INV-{period}-{str(current + 1).zfill(INVOICE_PADDING)}"

    async def get_current_number(self, issued_at: Optional[datetime] = None) -> int:
        """Last used number for the month (0 if none issued yet)."""
        period = period_for(issued_at or utc_now())
        result = await self.db.execute(
            select(InvoiceSequence.current_number)
            .where(InvoiceSequence.period == period)
        )
        current = result.scalar_one_or_none()
        return current or 0

    async def _get_or_create_sequence(self, period: str) -> InvoiceSequence:
        """Get the month's row with a row lock, creating it on first use."""
        sequence = await self._select_for_update(period)
        if sequence:
            return sequence

        sequence = InvoiceSequence(
            period=period,
            current_number=0,
            padding_length=INVOICE_PADDING,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(sequence)
        except IntegrityError:
            # Another transaction created the month's row first
            sequence = await self._select_for_update(period)

        return sequence

    async def _select_for_update(self, period: str) -> Optional[InvoiceSequence]:
        result = await self.db.execute(
            select(InvoiceSequence)
            .where(InvoiceSequence.period == period)
            .with_for_update()
        )
        return result.scalar_one_or_none()
