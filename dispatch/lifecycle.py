"""
Purpose: Persisted request transitions (the "time" layer).
What it does:
- observe(): lazy expiry, applied on every read through the core
- escalate(): bumps escalation_count of a silent pending request
- complete() / cancel(): the operator driven transitions
- sweep(): the periodic tick, expires overdue requests and escalates silent ones

Every status change is ONE conditional write (store.compare_and_set) guarded
by the status it expects, so a sweep racing a match can never clobber it.

Rule: expires_at is computed once at creation and never written again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional

from blood_requests.errors import ExpiredError, NotFoundError
from blood_requests.models import BloodRequest, RequestFilters, RequestStatus, ResponseStatus
from blood_requests.store import RequestStore

from .policy import DispatchPolicy, default_dispatch_policy
from .state_machines.request_state import RequestStateException, ensure_transition, escalation_due, is_overdue

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SweepReport:
    expired: List[str] = field(default_factory=list)
    escalated: List[str] = field(default_factory=list)


class RequestLifecycle:
    def __init__(
        self,
        store: RequestStore,
        *,
        policy: Optional[DispatchPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.policy = policy or default_dispatch_policy()
        self.clock = clock

    # --- reads ---

    def load(self, request_id: str, now: Optional[datetime] = None) -> BloodRequest:
        """Fetch a request with lazy expiry applied. Raises NotFoundError."""
        request = self.store.find_request(request_id)
        if request is None:
            raise NotFoundError("Request", request_id)
        return self.observe(request, now or self.clock())

    def observe(self, request: BloodRequest, now: datetime) -> BloodRequest:
        """
        Returns the request as it stands at `now`. An overdue pending request
        is written back as expired first.
        """
        if not is_overdue(request, now):
            return request

        self.expire(request)
        return self.store.find_request(request.id)

    def load_open(self, request_id: str, now: Optional[datetime] = None) -> BloodRequest:
        """Like load(), but an expired request raises ExpiredError."""
        request = self.load(request_id, now)
        if request.status == RequestStatus.EXPIRED:
            raise ExpiredError(request_id)
        return request

    # --- transitions ---

    def expire(self, request: BloodRequest) -> bool:
        """pending -> expired. False if something else changed the request first."""
        expired = self.store.compare_and_set(
            request.id,
            expected={"status": RequestStatus.PENDING},
            changes={"status": RequestStatus.EXPIRED},
        )
        if expired:
            logger.info("Request %s expired at %s", request.id, request.expires_at.isoformat())
        return expired

    def escalate(self, request: BloodRequest, now: datetime) -> Optional[BloodRequest]:
        """
        Bump escalation_count if escalation is due. Returns the escalated
        request, or None when not due or another tick escalated it first.
        """
        if not escalation_due(request, now, self.policy.escalation_fraction, self.policy.max_escalations):
            return None

        escalated = self.store.compare_and_set(
            request.id,
            expected={
                "status": RequestStatus.PENDING,
                "escalation_count": request.escalation_count,
                "response_count": 0,
            },
            changes={"escalation_count": request.escalation_count + 1},
        )
        if not escalated:
            return None

        logger.info("Request %s escalated to level %d", request.id, request.escalation_count + 1)
        return self.store.find_request(request.id)

    def complete(self, request_id: str, now: Optional[datetime] = None) -> BloodRequest:
        """matched -> completed (the donation happened)."""
        request = self.load_open(request_id, now)
        ensure_transition(request, RequestStatus.COMPLETED)

        self._conditional_status(
            request,
            expected={"status": RequestStatus.MATCHED, "matched_donor_id": request.matched_donor_id},
            changes={"status": RequestStatus.COMPLETED},
        )
        return self.store.find_request(request_id)

    def cancel(self, request_id: str, now: Optional[datetime] = None) -> BloodRequest:
        """
        pending|matched -> cancelled. Clears the match and cancels every
        outstanding response so no donor keeps travelling for it.
        """
        now = now or self.clock()
        request = self.load_open(request_id, now)
        ensure_transition(request, RequestStatus.CANCELLED)

        self._conditional_status(
            request,
            expected={"status": request.status, "matched_donor_id": request.matched_donor_id},
            changes={"status": RequestStatus.CANCELLED, "matched_donor_id": None, "matched_at": None},
        )

        for response in self.store.list_responses(request_id):
            if response.status != ResponseStatus.CANCELLED:
                self.store.set_response_status(response.id, ResponseStatus.CANCELLED, now)

        logger.info("Request %s cancelled", request_id)
        return self.store.find_request(request_id)

    def _conditional_status(self, request: BloodRequest, expected: dict, changes: dict) -> None:
        if self.store.compare_and_set(request.id, expected=expected, changes=changes):
            return

        current = self.store.find_request(request.id)
        if current.status == RequestStatus.EXPIRED:
            raise ExpiredError(request.id)
        # re-run the guard against whatever won the race, it names the real conflict
        ensure_transition(current, changes["status"])
        raise RequestStateException(f"Request {request.id} changed while it was being updated")

    # --- periodic tick ---

    def sweep(
        self,
        now: Optional[datetime] = None,
        on_escalated: Optional[Callable[[BloodRequest], None]] = None,
    ) -> SweepReport:
        """
        One pass over pending requests. Overdue ones expire, silent ones
        escalate and are handed to on_escalated for re-dispatch.
        """
        now = now or self.clock()
        report = SweepReport()

        for request in self.store.list_requests(RequestFilters(status=RequestStatus.PENDING)):
            if is_overdue(request, now):
                if self.expire(request):
                    report.expired.append(request.id)
                continue

            escalated = self.escalate(request, now)
            if escalated is not None:
                report.escalated.append(escalated.id)
                if on_escalated is not None:
                    on_escalated(escalated)

        if report.expired or report.escalated:
            logger.info("Sweep: %d expired, %d escalated", len(report.expired), len(report.escalated))
        return report

    def sweep_expirations(self, now: Optional[datetime] = None) -> List[str]:
        """Expiry only, no escalation. Returns the ids that expired in this pass."""
        now = now or self.clock()
        expired = []
        for request in self.store.list_requests(RequestFilters(status=RequestStatus.PENDING)):
            if is_overdue(request, now) and self.expire(request):
                expired.append(request.id)
        return expired
