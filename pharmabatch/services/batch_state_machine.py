"""
Batch & Quarantine State Machine

This module is the single place that decides which status changes are
legal for a batch and for a quarantine record. Services compute the
target status here and then apply it; they never assign status strings
directly.
"""

from typing import Optional, List, Dict, Tuple

from pharmabatch.core.result import Err, invalid_transition
from pharmabatch.models.batch import BatchStatus, AdjustmentType
from pharmabatch.models.quarantine import QuarantineStatus, QuarantineAction


# =============================================================================
# BATCH TRANSITION RULES
# =============================================================================

# current_status -> allowed next statuses
BATCH_TRANSITIONS: Dict[str, List[str]] = {
    BatchStatus.ACTIVE.value: [
        BatchStatus.ACTIVE.value,       # Restock / partial consume
        BatchStatus.DEPLETED.value,     # Consumed to zero
        BatchStatus.QUARANTINED.value,  # Flagged for review
        BatchStatus.EXPIRED.value,      # Expiry sweep
    ],
    BatchStatus.DEPLETED.value: [
        BatchStatus.ACTIVE.value,       # Restocked
        BatchStatus.DEPLETED.value,     # Stock-take confirms zero
        BatchStatus.QUARANTINED.value,  # Flagged for review
    ],
    BatchStatus.QUARANTINED.value: [
        BatchStatus.ACTIVE.value,       # Released
        BatchStatus.DEPLETED.value,     # Released with nothing on hand
        BatchStatus.EXPIRED.value,      # Disposed / returned to supplier
    ],
    BatchStatus.EXPIRED.value: [
        BatchStatus.ACTIVE.value,       # Released after review
        BatchStatus.DEPLETED.value,
        BatchStatus.EXPIRED.value,      # Disposed / returned
    ],
}

# Statuses on which ADD / CONSUME / ADJUST may operate
SELLABLE_STATUSES = (BatchStatus.ACTIVE.value, BatchStatus.DEPLETED.value)

# Statuses whose quantity counts toward the product's on-hand aggregate
ON_HAND_STATUSES = (BatchStatus.ACTIVE.value, BatchStatus.QUARANTINED.value)

ADJUSTMENT_ALIASES: Dict[str, str] = {
    "INCREASE": AdjustmentType.ADD.value,
    "DECREASE": AdjustmentType.CONSUME.value,
    "SET": AdjustmentType.ADJUST.value,
}


# =============================================================================
# QUARANTINE TRANSITION RULES
# =============================================================================

QUARANTINE_TRANSITIONS: Dict[str, List[str]] = {
    QuarantineStatus.PENDING_REVIEW.value: [
        QuarantineStatus.DISPOSED.value,
        QuarantineStatus.RETURNED.value,
        QuarantineStatus.RELEASED.value,
    ],
    QuarantineStatus.DISPOSED.value: [],
    QuarantineStatus.RETURNED.value: [],
    QuarantineStatus.RELEASED.value: [],
}

# action -> (record status after, whether batch stock is written off)
QUARANTINE_ACTION_OUTCOMES: Dict[str, Tuple[str, bool]] = {
    QuarantineAction.DISPOSE.value: (QuarantineStatus.DISPOSED.value, True),
    QuarantineAction.RETURN.value: (QuarantineStatus.RETURNED.value, True),
    QuarantineAction.RELEASE.value: (QuarantineStatus.RELEASED.value, False),
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a batch status transition is allowed."""
    return new_status in BATCH_TRANSITIONS.get(current_status, [])


def get_allowed_transitions(current_status: str) -> List[str]:
    return BATCH_TRANSITIONS.get(current_status, [])


def check_transition(current_status: str, new_status: str, action: str) -> Optional[Err]:
    """Return an InvalidTransition error if the move is illegal, else None."""
    if not can_transition(current_status, new_status):
        return invalid_transition(current_status, action, target_status=new_status)
    return None


def normalize_adjustment_type(raw: str) -> Optional[str]:
    """Map aliases (INCREASE/DECREASE/SET) onto canonical adjustment types."""
    value = (raw or "").strip().upper()
    value = ADJUSTMENT_ALIASES.get(value, value)
    if value in {t.value for t in AdjustmentType}:
        return value
    return None


def status_for_quantity(quantity: int) -> str:
    """Sellable status implied by an on-hand quantity."""
    return BatchStatus.DEPLETED.value if quantity == 0 else BatchStatus.ACTIVE.value


def can_adjust(status: str) -> bool:
    """Can stock be added/consumed/set on a batch in this status?"""
    return status in SELLABLE_STATUSES


def can_quarantine(status: str) -> bool:
    return BatchStatus.QUARANTINED.value in BATCH_TRANSITIONS.get(status, [])


def can_auto_expire(status: str) -> bool:
    return status == BatchStatus.ACTIVE.value


# =============================================================================
# QUARANTINE HELPERS
# =============================================================================

def can_process_action(record_status: str) -> bool:
    """Only open (PENDING_REVIEW) records accept an action."""
    return bool(QUARANTINE_TRANSITIONS.get(record_status))


def quarantine_outcome(action: str) -> Optional[Tuple[str, bool]]:
    return QUARANTINE_ACTION_OUTCOMES.get(action)


def batch_status_after_action(action: str, quantity: int) -> str:
    """Batch status once a quarantine action closes the record."""
    _, writes_off = QUARANTINE_ACTION_OUTCOMES[action]
    if writes_off:
        return BatchStatus.EXPIRED.value
    return status_for_quantity(quantity)
