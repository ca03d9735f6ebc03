"""
Purpose: Fan-out of one request's alert to its ranked donors.
What it does:

    report = notifier.dispatch(request_id, candidates, template, context, cap=10)

1. Walks the top `cap` candidates in rank order.
2. For each one: peek both quotas, consume the global quota, then consume the
   donor's quota, so a donor's slot is only spent once the global slot is
   secured. Anything denied is recorded as RATE_LIMITED with the reason and
   retry_after_ms, and no delivery is attempted.
3. Allowed deliveries run on a bounded thread pool. Each transport call
   carries send_timeout_s. Transient failures are retried up to max_retries
   with linear backoff, permanent failures are recorded once.
4. The whole cycle waits at most cycle_timeout_s. Deliveries still running
   after that are recorded as TIMED_OUT.

Candidates are anything with .donor (carrying .id and .recipient),
.distance_km and .eta_minutes, which is what dispatch.scoring produces.

Rule: the report lists outcomes in rank order, whatever order deliveries finished in.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from ratelimit import GLOBAL_NOTIFY_KEY, RATE_LIMITS, RateLimitConfig, RateLimiter, donor_notify_key

from .transport import DeliveryStatus, Transport, TransportError

logger = logging.getLogger(__name__)


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    RATE_LIMITED = "rate_limited"
    TIMED_OUT = "timed_out"


class SkipReason(str, Enum):
    DONOR_RATE_LIMITED = "donor_rate_limited"
    GLOBAL_RATE_LIMITED = "global_rate_limited"


class _Blank(dict):
    # unknown placeholders stay visible instead of raising KeyError
    def __missing__(self, key):
        return "{" + key + "}"


@dataclass(frozen=True)
class NotificationTemplate:
    kind: str
    title: str
    body: str

    def render(self, context: Dict[str, Any]) -> Dict[str, Any]:
        values = _Blank(context)
        return {
            "kind": self.kind,
            "title": self.title.format_map(values),
            "body": self.body.format_map(values),
        }


BLOOD_REQUEST_ALERT = NotificationTemplate(
    kind="blood_request",
    title="{urgency_label} blood request: {blood_type}",
    body=(
        "{units_needed} unit(s) of {blood_type} needed at {hospital_name}. "
        "You are about {distance_km} km away (~{eta_minutes} min). Reply to help."
    ),
)

MATCH_CONFIRMED = NotificationTemplate(
    kind="match_confirmed",
    title="Donor found for your {blood_type} request",
    body="Donor {donor_name} accepted request {request_id}. Expected in ~{eta_minutes} min.",
)


@dataclass(frozen=True)
class NotificationOutcome:
    donor_id: str
    status: NotificationStatus
    attempts: int = 0
    reason: Optional[SkipReason] = None
    retry_after_ms: Optional[int] = None
    error: Optional[str] = None


@dataclass
class DispatchReport:
    request_id: str
    outcomes: List[NotificationOutcome] = field(default_factory=list)

    def _with_status(self, status: NotificationStatus) -> List[NotificationOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    @property
    def sent(self) -> List[NotificationOutcome]:
        return self._with_status(NotificationStatus.SENT)

    @property
    def failed(self) -> List[NotificationOutcome]:
        return self._with_status(NotificationStatus.FAILED)

    @property
    def rate_limited(self) -> List[NotificationOutcome]:
        return self._with_status(NotificationStatus.RATE_LIMITED)

    @property
    def timed_out(self) -> List[NotificationOutcome]:
        return self._with_status(NotificationStatus.TIMED_OUT)

    def summary(self) -> Dict[str, int]:
        return {status.value: len(self._with_status(status)) for status in NotificationStatus}


class NotificationDispatcher:
    """
    Owns its thread pool. Call close() (or use it as a context manager) when done.
    """

    def __init__(
        self,
        transport: Transport,
        rate_limiter: RateLimiter,
        *,
        donor_limit: RateLimitConfig = RATE_LIMITS["DONOR_NOTIFY"],
        global_limit: RateLimitConfig = RATE_LIMITS["GLOBAL_NOTIFY"],
        max_workers: int = 4,
        max_retries: int = 2,
        retry_backoff_s: float = 0.5,
        send_timeout_s: float = 5.0,
        cycle_timeout_s: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self.transport = transport
        self.rate_limiter = rate_limiter
        self.donor_limit = donor_limit
        self.global_limit = global_limit
        self.max_retries = max_retries
        self.retry_backoff_s = retry_backoff_s
        self.send_timeout_s = send_timeout_s
        self.cycle_timeout_s = cycle_timeout_s
        self.sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def __enter__(self) -> NotificationDispatcher:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # --- public API ---

    def dispatch(
        self,
        request_id: str,
        candidates: Sequence[Any],
        template: NotificationTemplate = BLOOD_REQUEST_ALERT,
        context: Optional[Dict[str, Any]] = None,
        cap: Optional[int] = None,
    ) -> DispatchReport:
        selected = list(candidates) if cap is None else list(candidates)[: max(cap, 0)]
        outcomes: List[Optional[NotificationOutcome]] = [None] * len(selected)
        pending: Dict[Future, int] = {}

        for index, candidate in enumerate(selected):
            donor = candidate.donor

            skipped = self._admit(donor.id)
            if skipped is not None:
                outcomes[index] = skipped
                continue

            payload = template.render(
                {
                    **(context or {}),
                    "request_id": request_id,
                    "donor_name": donor.name or donor.id,
                    "distance_km": round(candidate.distance_km, 1),
                    "eta_minutes": candidate.eta_minutes,
                }
            )
            payload["request_id"] = request_id
            future = self._executor.submit(self._deliver, donor.id, donor.recipient, payload)
            pending[future] = index

        if pending:
            done, not_done = wait(pending, timeout=self.cycle_timeout_s)
            for future in done:
                outcomes[pending[future]] = future.result()
            for future in not_done:
                future.cancel()
                donor_id = selected[pending[future]].donor.id
                logger.warning("Alert for request %s to donor %s did not finish in %ss", request_id, donor_id, self.cycle_timeout_s)
                outcomes[pending[future]] = NotificationOutcome(
                    donor_id=donor_id,
                    status=NotificationStatus.TIMED_OUT,
                    error=f"not finished after {self.cycle_timeout_s}s",
                )

        report = DispatchReport(request_id=request_id, outcomes=[outcome for outcome in outcomes if outcome is not None])
        logger.info("Dispatch cycle for request %s: %s", request_id, report.summary())
        return report

    def send_one(self, recipient: str, payload: Dict[str, Any], donor_id: str = "") -> Future:
        """
        Fire-and-forget single delivery (no rate limiting), e.g. telling a
        request's creator that a donor was matched. The future resolves to a
        NotificationOutcome for callers that do want to wait.
        """
        return self._executor.submit(self._deliver, donor_id or recipient, recipient, payload)

    # --- internals ---

    def _admit(self, donor_id: str) -> Optional[NotificationOutcome]:
        global_peek = self.rate_limiter.check(GLOBAL_NOTIFY_KEY, self.global_limit)
        if not global_peek.allowed:
            return self._rate_limited(donor_id, SkipReason.GLOBAL_RATE_LIMITED, global_peek.retry_after_ms)

        donor_key = donor_notify_key(donor_id)
        donor_peek = self.rate_limiter.check(donor_key, self.donor_limit)
        if not donor_peek.allowed:
            return self._rate_limited(donor_id, SkipReason.DONOR_RATE_LIMITED, donor_peek.retry_after_ms)

        # another worker may have taken the last global slot since the peek
        global_result = self.rate_limiter.consume(GLOBAL_NOTIFY_KEY, self.global_limit)
        if not global_result.allowed:
            return self._rate_limited(donor_id, SkipReason.GLOBAL_RATE_LIMITED, global_result.retry_after_ms)

        donor_result = self.rate_limiter.consume(donor_key, self.donor_limit)
        if not donor_result.allowed:
            return self._rate_limited(donor_id, SkipReason.DONOR_RATE_LIMITED, donor_result.retry_after_ms)

        return None

    @staticmethod
    def _rate_limited(donor_id: str, reason: SkipReason, retry_after_ms: Optional[int]) -> NotificationOutcome:
        logger.debug("Skipping donor %s: %s (retry after %sms)", donor_id, reason.value, retry_after_ms)
        return NotificationOutcome(
            donor_id=donor_id,
            status=NotificationStatus.RATE_LIMITED,
            reason=reason,
            retry_after_ms=retry_after_ms,
        )

    def _deliver(self, donor_id: str, recipient: str, payload: Dict[str, Any]) -> NotificationOutcome:
        attempts = 0
        while True:
            attempts += 1
            error = None
            try:
                status = self.transport.send(recipient, payload, self.send_timeout_s)
            except TransportError as exc:
                status, error = exc.status, str(exc)
            except Exception as exc:
                logger.exception("Transport crashed sending to donor %s", donor_id)
                status, error = DeliveryStatus.PERMANENT_ERROR, repr(exc)

            if status == DeliveryStatus.SUCCESS:
                return NotificationOutcome(donor_id=donor_id, status=NotificationStatus.SENT, attempts=attempts)

            if status == DeliveryStatus.PERMANENT_ERROR or attempts > self.max_retries:
                logger.warning("Giving up on donor %s after %d attempt(s): %s", donor_id, attempts, error or status.value)
                return NotificationOutcome(
                    donor_id=donor_id,
                    status=NotificationStatus.FAILED,
                    attempts=attempts,
                    error=error or status.value,
                )

            self.sleep(self.retry_backoff_s * attempts)
