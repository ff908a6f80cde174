"""Models module. Importing this registers every table with Base.metadata."""
from app.models.partner import Partner, PartnerCategory
from app.models.affiliate_offer import AffiliateOffer, AffiliateLink
from app.models.affiliate_earning import AffiliateEarning, EarningStatus
from app.models.commission_batch import CommissionBatch, BatchStatus, BatchTrigger
from app.models.payout import Payout, PayoutStatus, Invoice, InvoiceStatus, InvoiceSequence
from app.models.audit_log import AuditLog
from app.models.job_lock import JobLock

__all__ = [
    "Partner",
    "PartnerCategory",
    "AffiliateOffer",
    "AffiliateLink",
    "AffiliateEarning",
    "EarningStatus",
    "CommissionBatch",
    "BatchStatus",
    "BatchTrigger",
    "Payout",
    "PayoutStatus",
    "Invoice",
    "InvoiceStatus",
    "InvoiceSequence",
    "AuditLog",
    "JobLock",
]
