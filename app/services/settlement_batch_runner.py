"""
Settlement Batch Runner

Confirms PENDING earnings in batches:
1. Open a CommissionBatch (PROCESSING)
2. Re-calculate each PENDING earning against the current offer and
   partner, using the stored booking value plus accumulated adjustments
3. Move it to CONFIRMED
4. Close the batch (COMPLETED) with totals

A failure on one earning rolls back that earning's savepoint and the
batch moves on. A failure fetching the cohort fails the whole batch.
"""
import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.dates import utc_now
from app.core.exceptions import ValidationError
from app.core.money import ZERO
from app.models.affiliate_earning import AffiliateEarning, EarningStatus
from app.models.commission_batch import CommissionBatch, BatchStatus, BatchTrigger
from app.schemas.commission import BatchResult
from app.services.audit_service import AuditService
from app.services.commission_calculator import CommissionCalculator
from app.services.earning_state_machine import transition_earning

logger = logging.getLogger(__name__)


class SettlementBatchRunner:
    """Moves PENDING earnings to CONFIRMED."""

    def __init__(
        self,
        db: AsyncSession,
        calculator: Optional[CommissionCalculator] = None,
        audit: Optional[AuditService] = None,
    ):
        self.db = db
        self.audit = audit or AuditService(db)
        self.calculator = calculator or CommissionCalculator(db, self.audit)

    async def run(
        self,
        batch_date: Optional[date] = None,
        trigger: Union[str, BatchTrigger] = BatchTrigger.MANUAL,
    ) -> BatchResult:
        """
        Run one settlement batch.

        Raises:
            Exception: whatever the cohort fetch raised. The batch is
                marked FAILED first.
        """
        trigger = BatchTrigger(trigger).value
        batch = CommissionBatch(
            batch_date=batch_date or utc_now().date(),
            status=BatchStatus.PROCESSING.value,
            trigger=trigger,
            total_commissions=Decimal("0.00"),
            processed_count=0,
        )
        self.db.add(batch)
        await self.db.commit()
        batch_id = batch.id

        logger.info(f"Starting commission batch {batch_id} for {batch.batch_date} ({trigger})")

        try:
            earnings = await self._fetch_pending_earnings()
        except Exception as e:
            await self.db.rollback()
            batch.status = BatchStatus.FAILED.value
            batch.error_message = str(e)
            await self.db.commit()
            logger.error(f"Commission batch {batch_id} failed: {e}")
            raise

        processed = 0
        skipped = 0
        total = Decimal("0.00")

        for earning in earnings:
            earning_id = earning.id
            try:
                async with self.db.begin_nested():
                    amount = await self._settle_earning(earning, batch_id)
            except Exception as e:
                skipped += 1
                logger.error(f"Error processing earning {earning_id} in batch {batch_id}: {e}")
                continue

            processed += 1
            total += amount

        batch.status = BatchStatus.COMPLETED.value
        batch.total_commissions = total
        batch.processed_count = processed

        await self.audit.log_action(
            action_type="COMMISSION_BATCH_COMPLETED",
            entity_type="commission_batch",
            entity_id=batch.id,
            details={
                "batch_date": batch.batch_date,
                "trigger": trigger,
                "processed_count": processed,
                "skipped_count": skipped,
                "total_commissions": total,
            },
        )
        await self.db.commit()

        logger.info(
            f"Commission batch {batch.id} completed: {processed} earnings, "
            f"{skipped} skipped, total {total}"
        )

        return BatchResult(
            batch_id=batch.id,
            processed_count=processed,
            skipped_count=skipped,
            total_commissions=total,
        )

    async def _fetch_pending_earnings(self) -> List[AffiliateEarning]:
        result = await self.db.execute(
            select(AffiliateEarning)
            .where(AffiliateEarning.status == EarningStatus.PENDING.value)
            .order_by(AffiliateEarning.transaction_date.asc())
        )
        return list(result.scalars().all())

    async def _settle_earning(self, earning: AffiliateEarning, batch_id: uuid.UUID) -> Decimal:
        """
        Recalculate and confirm one earning. Returns the confirmed amount.

        A split remainder (split_from_id set) keeps its stored amount, the
        unpaid part of a partly paid commission. Its offer is still checked.
        """
        if earning.split_from_id:
            await self.calculator.load_offer(earning.partner_id, earning.offer_id)
            new_amount = earning.amount_earned
        else:
            result = await self.calculator.calculate_for_offer(
                earning.partner_id,
                earning.offer_id,
                earning.booking_value,
                earning.currency,
            )
            new_amount = result.amount_earned_rounded + (earning.adjustment_total or ZERO)

        if new_amount < ZERO:
            raise ValidationError(
                "Recalculated amount with adjustments is negative",
                {"earning_id": str(earning.id), "amount": str(new_amount)},
            )

        old_amount = earning.amount_earned
        old_status = earning.status
        earning.amount_earned = new_amount
        transition_earning(
            earning,
            EarningStatus.CONFIRMED,
            note=f"Confirmed by commission batch {batch_id}",
        )

        await self.audit.log_earning_action(
            "EARNING_STATUS_CHANGED",
            earning.id,
            earning.partner_id,
            {
                "old_status": old_status,
                "new_status": earning.status,
                "old_amount": old_amount,
                "amount_earned": new_amount,
                "batch_id": batch_id,
            },
        )
        await self.db.flush()
        return new_amount

    async def list_batches(self, limit: int = 50) -> List[CommissionBatch]:
        result = await self.db.execute(
            select(CommissionBatch)
            .order_by(CommissionBatch.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def recover_stale_batches(self, older_than: Optional[timedelta] = None) -> int:
        """
        Mark PROCESSING batches older than the threshold FAILED.

        A batch only stays PROCESSING if its run died mid-way.
        """
        older_than = older_than or timedelta(hours=settings.STALE_BATCH_HOURS)
        cutoff = utc_now() - older_than

        result = await self.db.execute(
            select(CommissionBatch)
            .where(CommissionBatch.status == BatchStatus.PROCESSING.value)
            .where(CommissionBatch.created_at < cutoff)
        )
        stale = list(result.scalars().all())

        for batch in stale:
            batch.status = BatchStatus.FAILED.value
            batch.error_message = f"Batch abandoned: still PROCESSING after {older_than}"
            logger.warning(f"Marked stale commission batch {batch.id} ({batch.batch_date}) as FAILED")

        if stale:
            await self.db.commit()
        return len(stale)
