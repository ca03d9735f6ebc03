from .request_state import (
    ALLOWED_TRANSITIONS,
    EXPIRY_WINDOWS,
    TERMINAL_STATUSES,
    RequestStateException,
    can_transition,
    compute_expires_at,
    ensure_transition,
    escalation_due,
    is_overdue,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "EXPIRY_WINDOWS",
    "TERMINAL_STATUSES",
    "RequestStateException",
    "can_transition",
    "compute_expires_at",
    "ensure_transition",
    "escalation_due",
    "is_overdue",
]
