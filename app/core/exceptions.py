"""
Commission engine error taxonomy.

Every error carries a human-readable ``message`` and a ``details`` dict
that is safe to put in an audit record or an HTTP response body.

    CommissionEngineError
    ├── ValidationError          bad amount / date / structure
    │   └── UnsupportedStructureType
    ├── NotFoundError            missing Partner / Offer / Link / Earning / Payout
    ├── StateError               inactive or expired entity, invalid transition
    ├── ComplianceError          rate outside the FRS range for the category
    ├── FundsError               insufficient balance, below minimum payout
    ├── ExternalRailError        transfer failure on the payment rail
    └── AuditLoggingError        audit sink failed, operation aborted
"""
from typing import Any, Dict, Optional


class CommissionEngineError(Exception):
    """Base exception for the commission and settlement engine."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ==================== Validation ====================

class ValidationError(CommissionEngineError):
    """Invalid amount, date range or commission structure."""
    pass


class UnsupportedStructureType(ValidationError):
    def __init__(self, structure_type: Any):
        super().__init__(
            f"Unsupported commission structure type: {structure_type}",
            {"structure_type": str(structure_type)},
        )


# ==================== Not found ====================

class NotFoundError(CommissionEngineError):
    entity = "Entity"

    def __init__(self, entity_id: Any):
        super().__init__(f"{self.entity} not found: {entity_id}", {"id": str(entity_id)})


class PartnerNotFound(NotFoundError):
    entity = "Partner"


class OfferNotFound(NotFoundError):
    entity = "Offer"


class LinkNotFound(NotFoundError):
    entity = "Affiliate link"


class EarningNotFound(NotFoundError):
    entity = "Earning"


class PayoutNotFound(NotFoundError):
    entity = "Payout"


# ==================== State ====================

class StateError(CommissionEngineError):
    """Entity is in a state that does not allow the operation."""
    pass


class OfferInactive(StateError):
    def __init__(self, offer_id: Any):
        super().__init__(f"Offer is not active: {offer_id}", {"offer_id": str(offer_id)})


class OfferExpired(StateError):
    def __init__(self, offer_id: Any, valid_from: Any = None, valid_to: Any = None):
        super().__init__(
            f"Offer is not valid for current date: {offer_id}",
            {
                "offer_id": str(offer_id),
                "valid_from": valid_from.isoformat() if valid_from else None,
                "valid_to": valid_to.isoformat() if valid_to else None,
            },
        )


class PartnerInactive(StateError):
    def __init__(self, partner_id: Any):
        super().__init__(f"Partner is not active: {partner_id}", {"partner_id": str(partner_id)})


class InvalidTransition(StateError):
    def __init__(self, current_status: str, new_status: str, allowed: Optional[list] = None):
        allowed = allowed or []
        allowed_text = ", ".join(allowed) if allowed else "none (terminal state)"
        super().__init__(
            f"Cannot transition from {current_status} to {new_status}. Allowed: {allowed_text}",
            {"current_status": current_status, "new_status": new_status, "allowed": allowed},
        )


class JobAlreadyRunning(StateError):
    def __init__(self, lock_key: str):
        super().__init__(f"Job already running: {lock_key}", {"lock_key": lock_key})


# ==================== Compliance ====================

class ComplianceError(CommissionEngineError):
    """Commission rate outside the FRS range for the partner category."""
    pass


# ==================== Funds ====================

class FundsError(CommissionEngineError):
    pass


class InsufficientFunds(FundsError):
    def __init__(self, requested: Any, available: Any):
        super().__init__(
            f"Insufficient available earnings. Requested: {requested}, Available: {available}",
            {"requested": str(requested), "available": str(available)},
        )


class BelowMinimum(FundsError):
    def __init__(self, requested: Any, minimum: Any, currency: str):
        super().__init__(
            f"Minimum payout amount is {minimum} {currency}",
            {"requested": str(requested), "minimum": str(minimum), "currency": currency},
        )


# ==================== External ====================

class ExternalRailError(CommissionEngineError):
    """The payment rail rejected or failed a transfer."""
    pass


class AuditLoggingError(CommissionEngineError):
    """Audit sink failure. Aborts the operation that triggered it."""
    pass
