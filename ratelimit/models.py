"""
Purpose: Types shared by every rate limiting algorithm and store.
What it does:
- RateLimitConfig (window, quota, algorithm, failure behaviour)
- RateLimitResult (what a check returns)
- RateLimitExceeded (raised by callers that want an exception instead of a result)
- Enums: RateLimitStrategy, FailMode, StoreMode

Rule: No store access here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class RateLimitStrategy(str, Enum):
    FIXED_WINDOW = "fixed_window"
    SLIDING_WINDOW = "sliding_window"
    TOKEN_BUCKET = "token_bucket"


class FailMode(str, Enum):
    """
    What to answer when neither the shared nor the local store can decide.
    DENY is the conservative default for outbound messaging.
    """
    ALLOW = "allow"
    DENY = "deny"


class StoreMode(str, Enum):
    DISTRIBUTED = "distributed"  # shared Redis counters, cluster consistent
    LOCAL = "local"  # process-local fallback, NOT shared between instances
    FAILSAFE = "failsafe"  # no store answered, decided by FailMode


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Quota for one key: at most max_requests per window_ms.
    """
    window_ms: int
    max_requests: int
    strategy: RateLimitStrategy = RateLimitStrategy.SLIDING_WINDOW
    on_failure: FailMode = FailMode.DENY

    @property
    def refill_per_ms(self) -> float:
        """Token bucket refill rate."""
        return self.max_requests / self.window_ms

    def validate(self) -> None:
        if self.window_ms <= 0:
            raise ValueError("window_ms must be > 0")

        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")


@dataclass(frozen=True)
class Decision:
    """
    Raw verdict of one algorithm step, before the store mode is attached.
    """
    allowed: bool
    remaining: int
    reset_at_ms: int
    retry_after_ms: Optional[int]
    total_hits: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at_ms: int
    retry_after_ms: Optional[int] = None
    total_hits: int = 0
    mode: StoreMode = StoreMode.LOCAL

    @classmethod
    def from_decision(cls, decision: Decision, config: RateLimitConfig, mode: StoreMode) -> RateLimitResult:
        return cls(
            allowed=decision.allowed,
            limit=config.max_requests,
            remaining=decision.remaining,
            reset_at_ms=decision.reset_at_ms,
            retry_after_ms=decision.retry_after_ms,
            total_hits=decision.total_hits,
            mode=mode,
        )

    @property
    def retry_after_seconds(self) -> Optional[int]:
        """Whole seconds, rounded up, for Retry-After headers."""
        if self.retry_after_ms is None:
            return None
        return -(-self.retry_after_ms // 1000)

    def raise_for_limit(self, key: str = "") -> RateLimitResult:
        if not self.allowed:
            raise RateLimitExceeded(key, self.retry_after_ms)
        return self


class RateLimitExceeded(Exception):
    """A quota was exhausted. retry_after_ms says when to try again."""

    def __init__(self, key: str, retry_after_ms: Optional[int]):
        super().__init__(f"Rate limit exceeded for {key or 'key'}, retry after {retry_after_ms}ms")
        self.key = key
        self.retry_after_ms = retry_after_ms
