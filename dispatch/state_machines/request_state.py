from datetime import datetime, timedelta
from typing import Dict, FrozenSet

from blood_requests.errors import ConflictError
from blood_requests.models import BloodRequest, RequestStatus, Urgency

# Fixed at creation, never extended.
EXPIRY_WINDOWS: Dict[Urgency, timedelta] = {
    Urgency.CRITICAL: timedelta(hours=2),
    Urgency.URGENT: timedelta(hours=6),
    Urgency.NORMAL: timedelta(hours=24),
}

ALLOWED_TRANSITIONS: Dict[RequestStatus, FrozenSet[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.MATCHED, RequestStatus.EXPIRED, RequestStatus.CANCELLED}),
    RequestStatus.MATCHED: frozenset({RequestStatus.COMPLETED, RequestStatus.CANCELLED}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.EXPIRED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(status for status, targets in ALLOWED_TRANSITIONS.items() if not targets)


class RequestStateException(ConflictError):
    """Raised when an invalid request transition is attempted."""
    pass


def compute_expires_at(urgency: Urgency, created_at: datetime) -> datetime:
    return created_at + EXPIRY_WINDOWS[Urgency.parse(urgency)]


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(request: BloodRequest, target: RequestStatus) -> None:
    """
    Guard used before any conditional write that changes status.
    The write itself still re-checks the status atomically.
    """
    if not can_transition(request.status, target):
        raise RequestStateException(
            f"Cannot move request {request.id} from {request.status.value} to {target.value}"
        )


def is_overdue(request: BloodRequest, now: datetime) -> bool:
    """
    A pending request whose expiry time has passed. At exactly expires_at it is still open.
    Matched requests never expire; they wait for completion or cancellation.
    """
    return request.status == RequestStatus.PENDING and now > request.expires_at


def escalation_due(request: BloodRequest, now: datetime, fraction: float, max_escalations: int) -> bool:
    """
    Silent requests widen their search in steps:
    level n is due once (n + 1) * fraction of the lifetime passed with zero responses.
    """
    if request.status != RequestStatus.PENDING or is_overdue(request, now):
        return False

    if request.response_count > 0 or request.escalation_count >= max_escalations:
        return False

    elapsed = (now - request.created_at).total_seconds()
    threshold = fraction * (request.escalation_count + 1) * request.lifetime_seconds
    return elapsed >= threshold
