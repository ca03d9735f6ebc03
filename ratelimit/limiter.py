"""
Purpose: The rate limiter callers talk to.
What it does:

    limiter.check(key, config)    -> peek, never registers a hit
    limiter.consume(key, config)  -> registers a hit only if allowed (atomic per store)

Store selection, per call:
1. Shared store (Redis) if configured and not cooling down after a failure.
2. Process-local MemoryCounterStore otherwise. Result.mode says LOCAL so
   callers can tell they are running on the weaker, per-process guarantee.
3. If the local store fails too, the answer comes from config.on_failure
   (FailMode.DENY or FailMode.ALLOW) with mode FAILSAFE.

A check never raises and never blocks longer than the Redis socket timeout.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from .models import Decision, FailMode, RateLimitConfig, RateLimitResult, StoreMode
from .stores import MemoryCounterStore, RedisCounterStore

logger = logging.getLogger(__name__)


def _wall_clock_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    """
    Explicitly constructed, no module-level singleton: tests build as many
    isolated limiters as they need.
    """

    def __init__(
        self,
        distributed: Optional[RedisCounterStore] = None,
        fallback: Optional[MemoryCounterStore] = None,
        *,
        clock_ms: Optional[Callable[[], int]] = None,
        degrade_for_ms: int = 5000,
    ):
        self.distributed = distributed
        self.fallback = fallback if fallback is not None else MemoryCounterStore()
        self.clock_ms = clock_ms or _wall_clock_ms
        # after a shared store failure, skip it for this long before trying again
        self.degrade_for_ms = degrade_for_ms
        self._degraded_until_ms = 0

    @classmethod
    def from_url(cls, redis_url: Optional[str], timeout_s: float = 0.25, **kwargs) -> RateLimiter:
        """Shared mode when a Redis URL is configured, local mode otherwise."""
        distributed = RedisCounterStore(redis_url=redis_url, timeout_s=timeout_s) if redis_url else None
        return cls(distributed=distributed, **kwargs)

    # --- mode reporting ---

    @property
    def is_degraded(self) -> bool:
        """True while a configured shared store is being bypassed after a failure."""
        return self.distributed is not None and self.clock_ms() < self._degraded_until_ms

    @property
    def mode(self) -> StoreMode:
        if self.distributed is None or self.is_degraded:
            return StoreMode.LOCAL
        return StoreMode.DISTRIBUTED

    # --- public API ---

    def check(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        return self._evaluate(key, config, consume=False)

    def consume(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        return self._evaluate(key, config, consume=True)

    def usage(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """Current standing for a key without spending quota."""
        return self.check(key, config)

    def reset(self, key: str) -> None:
        """
        Explicit reset is the only way state is deleted early.
        Local state is always cleared; shared store errors propagate.
        """
        self.fallback.reset(key)
        if self.distributed is not None:
            self.distributed.reset(key)

    # --- internals ---

    def _evaluate(self, key: str, config: RateLimitConfig, consume: bool) -> RateLimitResult:
        now_ms = self.clock_ms()

        if self.distributed is not None and now_ms >= self._degraded_until_ms:
            try:
                decision = self.distributed.apply(key, config, now_ms, consume)
                return RateLimitResult.from_decision(decision, config, StoreMode.DISTRIBUTED)
            except Exception:
                self._degraded_until_ms = now_ms + self.degrade_for_ms
                logger.warning(
                    "Shared rate limit store failed for %s, using process-local counters for %sms",
                    key,
                    self.degrade_for_ms,
                    exc_info=True,
                )

        try:
            decision = self.fallback.apply(key, config, now_ms, consume)
            return RateLimitResult.from_decision(decision, config, StoreMode.LOCAL)
        except Exception:
            logger.error("Local rate limit store failed for %s, answering %s", key, config.on_failure.value, exc_info=True)

        return self._failsafe(config, now_ms)

    @staticmethod
    def _failsafe(config: RateLimitConfig, now_ms: int) -> RateLimitResult:
        allowed = config.on_failure == FailMode.ALLOW
        decision = Decision(
            allowed=allowed,
            remaining=0,
            reset_at_ms=now_ms + config.window_ms,
            retry_after_ms=None if allowed else config.window_ms,
            total_hits=0,
        )
        return RateLimitResult.from_decision(decision, config, StoreMode.FAILSAFE)
