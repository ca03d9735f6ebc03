"""
Rate limiting package.

Public API:
- RateLimiter (check / consume / usage / reset, shared + local stores)
- Stores: RedisCounterStore, MemoryCounterStore
- Types: RateLimitConfig, RateLimitResult, RateLimitExceeded, RateLimitStrategy, FailMode, StoreMode
- Presets and key builders: RATE_LIMITS, compose_key, by_ip, by_user, by_action, ...
"""

from .limiter import RateLimiter
from .models import (
    FailMode,
    RateLimitConfig,
    RateLimitExceeded,
    RateLimitResult,
    RateLimitStrategy,
    StoreMode,
)
from .presets import (
    GLOBAL_NOTIFY_KEY,
    RATE_LIMITS,
    by_action,
    by_ip,
    by_user,
    compose_key,
    donor_notify_key,
)
from .stores import MemoryCounterStore, RedisCounterStore

__all__ = [
    "RateLimiter",
    "MemoryCounterStore",
    "RedisCounterStore",
    "FailMode",
    "RateLimitConfig",
    "RateLimitExceeded",
    "RateLimitResult",
    "RateLimitStrategy",
    "StoreMode",
    "RATE_LIMITS",
    "GLOBAL_NOTIFY_KEY",
    "compose_key",
    "by_action",
    "by_ip",
    "by_user",
    "donor_notify_key",
]
