# Services module
from app.services.audit_service import AuditService
from app.services.commission_calculator import CommissionCalculator
from app.services.compliance_validator import ComplianceValidator
from app.services.earning_ledger import EarningLedger
from app.services.settlement_batch_runner import SettlementBatchRunner
from app.services.payout_engine import PayoutEngine
from app.services.invoice_sequence_service import InvoiceSequenceService
from app.services.payment_rail import PaymentRail, RazorpayRail, RailError
from app.services.affiliate_offer_service import AffiliateOfferService
from app.services.job_lock_service import JobLockService

__all__ = [
    "AuditService",
    "CommissionCalculator",
    "ComplianceValidator",
    "EarningLedger",
    "SettlementBatchRunner",
    "PayoutEngine",
    "InvoiceSequenceService",
    "PaymentRail",
    "RazorpayRail",
    "RailError",
    "AffiliateOfferService",
    "JobLockService",
]
