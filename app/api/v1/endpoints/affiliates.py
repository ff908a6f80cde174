"""API endpoints for affiliate commission settlement administration."""
from datetime import date
from typing import Optional, List
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from app.api.deps import DB, Actor, Rail
from app.core.dates import end_of_day, start_of_day
from app.core.exceptions import PayoutNotFound
from app.jobs.scheduler import get_job_status
from app.models.affiliate_earning import EarningStatus
from app.models.commission_batch import BatchTrigger
from app.models.payout import Payout
from app.schemas.commission import BatchResult, CommissionBatchResponse
from app.schemas.earning import ConversionReport, ConversionReportFilters
from app.schemas.payout import PayoutAuditEntry, PayoutRequest, PayoutResponse
from app.services.audit_service import AuditService
from app.services.earning_ledger import EarningLedger
from app.services.payout_engine import PayoutEngine
from app.services.settlement_batch_runner import SettlementBatchRunner

router = APIRouter()


class BatchRunRequest(BaseModel):
    batch_date: Optional[date] = None


# ==================== Commission Batches ====================

@router.post("/commission-batches", response_model=BatchResult, status_code=status.HTTP_201_CREATED)
async def run_commission_batch(
    db: DB,
    run_in: Optional[BatchRunRequest] = None,
):
    """
    Run a settlement batch now.

    Unlike the scheduled run, a failure to load the cohort is returned
    to the caller.
    """
    runner = SettlementBatchRunner(db)
    return await runner.run(
        batch_date=run_in.batch_date if run_in else None,
        trigger=BatchTrigger.MANUAL,
    )


@router.get("/commission-batches", response_model=List[CommissionBatchResponse])
async def list_commission_batches(
    db: DB,
    limit: int = Query(50, ge=1, le=200),
):
    """Most recent settlement batches first."""
    runner = SettlementBatchRunner(db)
    return await runner.list_batches(limit=limit)


# ==================== Payouts ====================

@router.post(
    "/partners/{partner_id}/payouts",
    response_model=PayoutResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_partner_payout(
    partner_id: UUID,
    payout_in: PayoutRequest,
    db: DB,
    rail: Rail,
    actor: Actor,
):
    """Request a payout from a partner's available earnings."""
    engine = PayoutEngine(db, rail=rail)
    return await engine.request_payout(
        partner_id,
        payout_in.amount,
        payout_in.currency,
        payout_in.payment_method,
        actor=actor,
    )


@router.get("/partners/{partner_id}/payouts", response_model=List[PayoutResponse])
async def list_partner_payouts(
    partner_id: UUID,
    db: DB,
    rail: Rail,
    limit: int = Query(100, ge=1, le=500),
):
    engine = PayoutEngine(db, rail=rail)
    return await engine.list_payouts(partner_id=partner_id, limit=limit)


@router.get("/payouts/{payout_id}/audit-trail", response_model=List[PayoutAuditEntry])
async def get_payout_audit_trail(
    payout_id: UUID,
    db: DB,
):
    """
    Audit history of one payout, oldest first. Used to reconcile payouts
    left PROCESSING after a rail timeout.
    """
    if not await db.get(Payout, payout_id):
        raise PayoutNotFound(payout_id)
    audit = AuditService(db)
    return await audit.get_entity_audit_trail("affiliate_payout", payout_id)


# ==================== Reports ====================

@router.get("/partners/{partner_id}/conversion-report", response_model=ConversionReport)
async def get_conversion_report(
    partner_id: UUID,
    db: DB,
    status_filter: Optional[EarningStatus] = Query(None, alias="status"),
    offer_id: Optional[UUID] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    """Partner earnings with per-status totals."""
    filters = ConversionReportFilters(
        status=status_filter,
        offer_id=offer_id,
        start_date=start_of_day(start_date) if start_date else None,
        end_date=end_of_day(end_date) if end_date else None,
    )
    ledger = EarningLedger(db)
    return await ledger.get_conversion_report(partner_id, filters)


# ==================== Jobs ====================

@router.get("/jobs")
async def list_scheduled_jobs():
    """Status of the scheduled settlement jobs."""
    return get_job_status()
