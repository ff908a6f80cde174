"""
Affiliate Earning State Machine

This module is the SINGLE SOURCE OF TRUTH for all earning status transitions.
All ledger status changes must go through this module.

    PENDING ──> CONFIRMED ──> PAID
       │  ^          │
       v  │          v
      CANCELLED <────┘

The one exception is payout settlement, which may mark a PENDING earning
PAID directly (see PayoutEngine.mark_earnings_as_paid). That path is not a
ledger transition and is noted on the earning instead.
"""

from typing import List, Dict, Optional
from datetime import datetime, timezone

from app.core.exceptions import InvalidTransition
from app.models.affiliate_earning import EarningStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

# Format: current_status -> [list of allowed next statuses]
EARNING_TRANSITIONS: Dict[str, List[str]] = {
    EarningStatus.PENDING.value: [
        EarningStatus.CONFIRMED.value,   # Settlement batch
        EarningStatus.CANCELLED.value,   # Void before settlement
    ],
    EarningStatus.CONFIRMED.value: [
        EarningStatus.PAID.value,        # Covered by a payout
        EarningStatus.CANCELLED.value,   # Void after settlement
    ],
    EarningStatus.PAID.value: [],        # Terminal state
    EarningStatus.CANCELLED.value: [
        EarningStatus.PENDING.value,     # Reactivate
    ],
}

TRANSITION_ACTIONS: Dict[tuple, str] = {
    (EarningStatus.PENDING.value, EarningStatus.CONFIRMED.value): "Confirm",
    (EarningStatus.PENDING.value, EarningStatus.CANCELLED.value): "Cancel",
    (EarningStatus.CONFIRMED.value, EarningStatus.PAID.value): "Mark Paid",
    (EarningStatus.CONFIRMED.value, EarningStatus.CANCELLED.value): "Cancel",
    (EarningStatus.CANCELLED.value, EarningStatus.PENDING.value): "Reactivate",
}

# Count toward a partner's available balance and can be covered by a payout
PAYABLE_STATUSES = (EarningStatus.CONFIRMED.value, EarningStatus.PENDING.value)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def _value(status) -> str:
    return status.value if isinstance(status, EarningStatus) else status


def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed. Same-status is never allowed."""
    allowed = EARNING_TRANSITIONS.get(_value(current_status), [])
    return _value(new_status) in allowed


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return list(EARNING_TRANSITIONS.get(_value(current_status), []))


def get_transition_action(current_status: str, new_status: str) -> str:
    current_status, new_status = _value(current_status), _value(new_status)
    return TRANSITION_ACTIONS.get((current_status, new_status), f"{current_status} -> {new_status}")


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition.

    Raises:
        InvalidTransition: if the table does not allow it, including
            PENDING -> PENDING style no-op transitions.
    """
    if not can_transition(current_status, new_status):
        raise InvalidTransition(
            _value(current_status),
            _value(new_status),
            get_allowed_transitions(current_status),
        )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_earning(earning, new_status: str, note: Optional[str] = None) -> str:
    """
    Move an earning to a new status and append a note line.

    Args:
        earning: AffiliateEarning model instance
        new_status: Target status
        note: Extra text for the note line

    Returns:
        The previous status

    Raises:
        InvalidTransition: If transition is not allowed
    """
    old_status = earning.status
    validate_transition(old_status, new_status)

    earning.status = _value(new_status)

    line = f"Status changed from {old_status} to {earning.status}"
    if note:
        line = f"{line}: {note}"
    earning.append_note(line, at=datetime.now(timezone.utc))
    return old_status
