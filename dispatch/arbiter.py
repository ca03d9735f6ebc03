"""
Purpose: Race resolver for accepts (the "exactly one donor" layer).
What it does:
Called when a donor's accept arrives. Guarantees two donors can never both be
bound to the same request, without any lock held across calls.

    result = arbiter.try_match(request_id, donor_id)
    result.bound            -> True for exactly one caller per request
    result.raise_if_lost()  -> ConflictError for everyone else

The binding is ONE conditional write:
    expected {status: pending, matched_donor_id: None}
    changes  {status: matched, matched_donor_id: donor, matched_at: now}
Whoever's write lands first wins; the store serializes the rest.

Rule: losing a race is an expected outcome, logged at INFO, never a fault.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from blood_requests.errors import ConflictError, ExpiredError, ValidationError
from blood_requests.models import BloodRequest, DonorResponse, RequestStatus, ResponseKind, ResponseStatus
from blood_requests.store import RequestStore

from .lifecycle import RequestLifecycle

logger = logging.getLogger(__name__)

MatchHook = Callable[[BloodRequest, DonorResponse], None]


class MatchReason(str, Enum):
    BOUND = "bound"
    ALREADY_MATCHED = "already_matched"
    CLOSED = "closed"


@dataclass(frozen=True)
class MatchResult:
    bound: bool
    reason: MatchReason
    request: BloodRequest
    response: Optional[DonorResponse] = None

    def raise_if_lost(self) -> MatchResult:
        if not self.bound:
            raise ConflictError(f"Request {self.request.id} is {self.reason.value}")
        return self


def _reason_for(status: RequestStatus) -> MatchReason:
    if status in (RequestStatus.MATCHED, RequestStatus.COMPLETED):
        return MatchReason.ALREADY_MATCHED
    return MatchReason.CLOSED


class MatchArbiter:
    def __init__(self, store: RequestStore, lifecycle: RequestLifecycle, on_bound: Optional[MatchHook] = None):
        self.store = store
        self.lifecycle = lifecycle
        self.on_bound = on_bound

    def try_match(self, request_id: str, donor_id: str, now: Optional[datetime] = None) -> MatchResult:
        """
        Bind donor_id to request_id if the request is still pending.

        Raises:
        - NotFoundError: unknown request
        - ExpiredError: the request expired (observed lazily here)
        - ValidationError: the donor has no accept response on this request
        """
        now = now or self.lifecycle.clock()
        request = self.lifecycle.load_open(request_id, now)

        response = self.store.find_response(request_id, donor_id)
        if response is None or response.kind != ResponseKind.ACCEPT:
            raise ValidationError(f"Donor {donor_id} has not accepted request {request_id}")

        if request.status != RequestStatus.PENDING:
            return self._lost(request, donor_id)

        won = self.store.compare_and_set(
            request_id,
            expected={"status": RequestStatus.PENDING, "matched_donor_id": None},
            changes={"status": RequestStatus.MATCHED, "matched_donor_id": donor_id, "matched_at": now},
        )
        if not won:
            current = self.store.find_request(request_id)
            if current.status == RequestStatus.EXPIRED:
                raise ExpiredError(request_id)
            return self._lost(current, donor_id)

        confirmed = self.store.set_response_status(response.id, ResponseStatus.CONFIRMED, now)
        bound = self.store.find_request(request_id)
        logger.info("Request %s matched to donor %s", request_id, donor_id)

        if self.on_bound is not None:
            # the match is committed, a failing hook must not undo or hide it
            try:
                self.on_bound(bound, confirmed)
            except Exception:
                logger.exception("Match hook failed for request %s", request_id)

        return MatchResult(bound=True, reason=MatchReason.BOUND, request=bound, response=confirmed)

    @staticmethod
    def _lost(request: BloodRequest, donor_id: str) -> MatchResult:
        reason = _reason_for(request.status)
        logger.info("Donor %s lost request %s: %s", donor_id, request.id, reason.value)
        return MatchResult(bound=False, reason=reason, request=request)
