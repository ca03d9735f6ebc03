"""
Purpose: Orchestrator / decision pipeline (the "glue").
What it does:
Accepts a request draft, ranks compatible donors around it, pushes alerts
through the rate limited notifier, records donor responses and hands accepts
to the MatchArbiter. A periodic tick (sweep) expires and escalates.

    dispatcher = Dispatcher(store, notifier, rate_limiter)
    request = dispatcher.create_request(RequestDraft.new("O-", 2, "critical", latitude=..., longitude=...))
    report = dispatcher.dispatch(request.id)
    dispatcher.submit_response(request.id, donor_id, "accept", eta_minutes=12)

Every read goes through RequestLifecycle.load, so an overdue request is
seen (and written back) as expired no matter which entry point touched it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from blood_requests.errors import ConflictError, ExpiredError, NotFoundError, ValidationError
from blood_requests.models import (
    BloodRequest,
    DonorResponse,
    RequestDraft,
    RequestFilters,
    RequestStatus,
    ResponseKind,
)
from blood_requests.store import RequestStore
from donors.policy import DonorPolicy, default_donor_policy
from notifications import (
    BLOOD_REQUEST_ALERT,
    MATCH_CONFIRMED,
    DispatchReport,
    LoggingTransport,
    NotificationDispatcher,
    Transport,
    WebhookTransport,
)
from ratelimit import RateLimitConfig, RateLimiter, RateLimitResult

from .arbiter import MatchArbiter, MatchHook, MatchResult
from .candidate_filter import build_base_candidates, compatible_donor_types
from .lifecycle import RequestLifecycle, SweepReport, utc_now
from .policy import DispatchPolicy, default_dispatch_policy
from .scoring import Candidate, rank_candidates
from .settings import Settings
from .state_machines.request_state import compute_expires_at

logger = logging.getLogger(__name__)

URGENCY_LABELS = {"critical": "CRITICAL", "urgent": "Urgent", "normal": "New"}


def build_notifier(transport: Transport, rate_limiter: RateLimiter, policy: DispatchPolicy) -> NotificationDispatcher:
    return NotificationDispatcher(
        transport,
        rate_limiter,
        donor_limit=policy.donor_limit,
        global_limit=policy.global_limit,
        max_workers=policy.max_workers,
        max_retries=policy.max_retries,
        retry_backoff_s=policy.retry_backoff_s,
        send_timeout_s=policy.send_timeout_s,
        cycle_timeout_s=policy.cycle_timeout_s,
    )


class Dispatcher:
    """
    The one object callers (HTTP views, scripts, tests) talk to.
    Holds no request state of its own; everything lives in the store.
    """

    def __init__(
        self,
        store: RequestStore,
        notifier: NotificationDispatcher,
        rate_limiter: RateLimiter,
        *,
        donor_policy: Optional[DonorPolicy] = None,
        dispatch_policy: Optional[DispatchPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        on_match: Optional[MatchHook] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.rate_limiter = rate_limiter
        self.donor_policy = donor_policy or default_donor_policy()
        self.dispatch_policy = dispatch_policy or default_dispatch_policy()
        self.clock = clock
        self.on_match = on_match

        self.lifecycle = RequestLifecycle(store, policy=self.dispatch_policy, clock=clock)
        self.arbiter = MatchArbiter(store, self.lifecycle, on_bound=self._matched)

    @classmethod
    def from_settings(
        cls,
        store: RequestStore,
        settings: Optional[Settings] = None,
        transport: Optional[Transport] = None,
        **kwargs,
    ) -> Dispatcher:
        """
        Wire a dispatcher from environment settings:
        Redis when REDIS_URL is set, the webhook when NOTIFY_WEBHOOK_URL is set,
        otherwise process-local counters and log-only delivery.
        """
        settings = settings or Settings.from_env()
        policy = settings.dispatch_policy()
        rate_limiter = RateLimiter.from_url(settings.redis_url, settings.redis_timeout_s)

        if transport is None:
            transport = WebhookTransport(settings.notify_webhook_url) if settings.notify_webhook_url else LoggingTransport()

        notifier = build_notifier(transport, rate_limiter, policy)
        return cls(store, notifier, rate_limiter, dispatch_policy=policy, **kwargs)

    def close(self) -> None:
        self.notifier.close()

    # --- requests ---

    def create_request(self, draft: Union[RequestDraft, Dict[str, Any]]) -> BloodRequest:
        """
        Validate, fix expires_at from urgency, persist as pending.
        Raises ValidationError before anything is written.
        """
        if isinstance(draft, dict):
            try:
                draft = RequestDraft.new(**draft)
            except TypeError as exc:
                raise ValidationError(f"Invalid request payload: {exc}") from exc
        else:
            draft.validate()

        now = self.clock()
        request = BloodRequest.new(draft, created_at=now, expires_at=compute_expires_at(draft.urgency, now))
        self.store.insert_request(request)

        logger.info(
            "Created %s request %s for %d unit(s) of %s, expires %s",
            request.urgency.value,
            request.id,
            request.units_needed,
            request.blood_type.value,
            request.expires_at.isoformat(),
        )
        return request

    def get_request(self, request_id: str) -> BloodRequest:
        return self.lifecycle.load(request_id)

    def list_requests(self, filters: Optional[RequestFilters] = None) -> List[BloodRequest]:
        now = self.clock()
        observed = [self.lifecycle.observe(request, now) for request in self.store.list_requests()]
        filters = filters or RequestFilters()
        return [request for request in observed if filters.matches(request)]

    def complete_request(self, request_id: str) -> BloodRequest:
        return self.lifecycle.complete(request_id)

    def cancel_request(self, request_id: str) -> BloodRequest:
        return self.lifecycle.cancel(request_id)

    # --- ranking + fan-out ---

    def rank_candidates(self, request_id: str) -> List[Candidate]:
        now = self.clock()
        return self._rank(self.lifecycle.load(request_id, now), now)

    def dispatch(self, request_id: str) -> DispatchReport:
        """
        One notification cycle for a pending request.
        Expired requests raise ExpiredError; matched or closed ones notify nobody.
        """
        now = self.clock()
        request = self.lifecycle.load_open(request_id, now)

        if request.status != RequestStatus.PENDING:
            logger.info("Request %s is %s, nothing to dispatch", request_id, request.status.value)
            return DispatchReport(request_id=request_id)

        return self._dispatch_cycle(request, now)

    def _rank(self, request: BloodRequest, now: datetime) -> List[Candidate]:
        donors = self.store.list_donors(compatible_donor_types(request.blood_type))
        eligible = build_base_candidates(donors, request.blood_type)
        return rank_candidates(
            request.location,
            request.blood_type,
            eligible,
            now=now,
            policy=self.donor_policy,
            escalation_level=request.escalation_count,
        )

    def _dispatch_cycle(self, request: BloodRequest, now: datetime) -> DispatchReport:
        candidates = self._rank(request, now)
        cap = self.dispatch_policy.cap_for_level(request.escalation_count)
        logger.info(
            "Dispatching request %s (level %d): %d candidate(s), cap %d",
            request.id,
            request.escalation_count,
            len(candidates),
            cap,
        )
        return self.notifier.dispatch(request.id, candidates, BLOOD_REQUEST_ALERT, self._alert_context(request), cap)

    @staticmethod
    def _alert_context(request: BloodRequest) -> Dict[str, Any]:
        return {
            "blood_type": request.blood_type.value,
            "units_needed": request.units_needed,
            "urgency": request.urgency.value,
            "urgency_label": URGENCY_LABELS[request.urgency.value],
            "hospital_name": request.hospital_name or "the requesting hospital",
        }

    # --- responses + matching ---

    def submit_response(
        self,
        request_id: str,
        donor_id: str,
        kind: Union[ResponseKind, str],
        eta_minutes: Optional[int] = None,
        notes: str = "",
    ) -> DonorResponse:
        """
        Record (or update) a donor's answer. An accept on a pending request
        goes straight to the arbiter; if it wins, the returned response is
        already confirmed.
        """
        kind = ResponseKind.parse(kind)
        if eta_minutes is not None:
            if isinstance(eta_minutes, bool) or not isinstance(eta_minutes, int) or eta_minutes < 0:
                raise ValidationError("eta_minutes must be a non-negative integer")

        now = self.clock()
        request = self.lifecycle.load_open(request_id, now)

        if request.status not in (RequestStatus.PENDING, RequestStatus.MATCHED):
            raise ConflictError(f"Request {request_id} is {request.status.value} and takes no responses")

        if request.status == RequestStatus.MATCHED and request.matched_donor_id == donor_id:
            raise ConflictError(f"Donor {donor_id} is already confirmed for request {request_id}")

        if self.store.find_donor(donor_id) is None:
            raise NotFoundError("Donor", donor_id)

        response, created = self.store.upsert_response(
            request_id, donor_id, kind, now, eta_minutes=eta_minutes, notes=notes
        )
        if created:
            self.store.increment_response_count(request_id)

        logger.info("Donor %s answered %s on request %s", donor_id, kind.value, request_id)

        if kind == ResponseKind.ACCEPT and request.status == RequestStatus.PENDING:
            result = self.arbiter.try_match(request_id, donor_id, now)
            if result.bound:
                return result.response

        return response

    def list_responses(self, request_id: str) -> List[DonorResponse]:
        self.lifecycle.load(request_id)
        return self.store.list_responses(request_id)

    def try_match(self, request_id: str, donor_id: str) -> MatchResult:
        return self.arbiter.try_match(request_id, donor_id)

    def _matched(self, request: BloodRequest, response: DonorResponse) -> None:
        if request.contact_phone:
            donor = self.store.find_donor(response.donor_id)
            payload = MATCH_CONFIRMED.render(
                {
                    "blood_type": request.blood_type.value,
                    "request_id": request.id,
                    "donor_name": (donor.name if donor else "") or response.donor_id,
                    "eta_minutes": response.eta_minutes if response.eta_minutes is not None else "?",
                }
            )
            payload["request_id"] = request.id
            self.notifier.send_one(request.contact_phone, payload)

        if self.on_match is not None:
            self.on_match(request, response)

    # --- rate limits ---

    def check_rate_limit(self, key: str, config: RateLimitConfig, consume: bool = True) -> RateLimitResult:
        if consume:
            return self.rate_limiter.consume(key, config)
        return self.rate_limiter.check(key, config)

    # --- periodic tick ---

    def sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Expire overdue requests, escalate silent ones and re-dispatch them wider."""
        now = now or self.clock()
        return self.lifecycle.sweep(now, on_escalated=lambda request: self._dispatch_cycle(request, now))

    def sweep_expirations(self, now: Optional[datetime] = None) -> List[str]:
        return self.lifecycle.sweep_expirations(now)
