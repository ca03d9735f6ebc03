"""
Purpose: Central configuration for dispatch cycles, escalation and fan-out.
What it does:

Stores all tunable parameters for how a request is pushed to donors:

NOTIFY_CAP = 10 donors per cycle (+5 per escalation level)
DONOR QUOTA = 3 alerts per donor per hour
GLOBAL QUOTA = 100 alerts per minute across the system
ESCALATION = after 25% of the lifetime with no response, at most 3 times
WORKERS / RETRIES / TIMEOUTS for the notification thread pool

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from ratelimit import RATE_LIMITS, FailMode, RateLimitConfig


@dataclass(frozen=True)
class DispatchPolicy:
    """
    Central configuration for dispatch cycles.
    """

    # --- Fan-out size ---
    notify_cap: int = 10
    # Each escalation level notifies this many more donors.
    escalation_cap_step: int = 5

    # --- Quotas ---
    donor_limit: RateLimitConfig = field(default_factory=lambda: RATE_LIMITS["DONOR_NOTIFY"])
    global_limit: RateLimitConfig = field(default_factory=lambda: RATE_LIMITS["GLOBAL_NOTIFY"])

    # --- Escalation ---
    # Level n fires once (n + 1) * fraction of the lifetime passed without any response.
    escalation_fraction: float = 0.25
    max_escalations: int = 3

    # --- Notification thread pool ---
    max_workers: int = 4
    max_retries: int = 2
    retry_backoff_s: float = 0.5
    send_timeout_s: float = 5.0
    cycle_timeout_s: float = 30.0

    def cap_for_level(self, escalation_level: int) -> int:
        return self.notify_cap + self.escalation_cap_step * max(escalation_level, 0)

    def with_fail_mode(self, fail_mode: FailMode) -> DispatchPolicy:
        """Same policy with both quotas answering fail_mode when no store can decide."""
        return replace(
            self,
            donor_limit=replace(self.donor_limit, on_failure=fail_mode),
            global_limit=replace(self.global_limit, on_failure=fail_mode),
        )

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.notify_cap <= 0:
            raise ValueError("notify_cap must be > 0")

        if self.escalation_cap_step < 0:
            raise ValueError("escalation_cap_step must be >= 0")

        if not 0 < self.escalation_fraction < 1:
            raise ValueError("escalation_fraction must be between 0 and 1")

        if self.max_escalations < 0:
            raise ValueError("max_escalations must be >= 0")

        if self.max_workers <= 0:
            raise ValueError("max_workers must be > 0")

        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        if self.send_timeout_s <= 0 or self.cycle_timeout_s <= 0:
            raise ValueError("timeouts must be > 0")

        self.donor_limit.validate()
        self.global_limit.validate()


def default_dispatch_policy() -> DispatchPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DispatchPolicy()
    p.validate()
    return p
