"""
Purpose: Where rate limit state lives.
What it does:

- RedisCounterStore: the shared, cluster consistent store. Each check is ONE
  server-side Lua script call, so read-modify-write is atomic for every
  process contacting the same key. Socket timeouts bound every call.
- MemoryCounterStore: process-local fallback. A lock makes it atomic for the
  threads of this process only; two instances each keep their own counters,
  so the effective quota during an outage is (instances x max_requests).
  Second-class by construction: use it only when Redis is unreachable.

Both expose the same two methods:
- apply(key, config, now_ms, consume) -> Decision
- reset(key)

Rule: stores never swallow their own errors, the limiter decides what a failure means.
"""

from __future__ import annotations

import threading
import uuid
from typing import Any, Dict, Optional, Tuple

import redis

from .algorithms import SlidingWindow, algorithm_for
from .models import Decision, RateLimitConfig, RateLimitStrategy


class MemoryCounterStore:
    """
    Thread-safe in-memory store (per-process).
    Entries carry an absolute expiry and are purged lazily, no timer thread.
    """

    PURGE_EVERY = 256

    def __init__(self):
        self._lock = threading.Lock()
        # key -> (state, expires_at_ms)
        self._entries: Dict[str, Tuple[Dict[str, Any], int]] = {}
        self._ops = 0

    def apply(self, key: str, config: RateLimitConfig, now_ms: int, consume: bool) -> Decision:
        algorithm = algorithm_for(config.strategy)

        with self._lock:
            self._ops += 1
            if self._ops % self.PURGE_EVERY == 0:
                self._purge(now_ms)

            state = None
            entry = self._entries.get(key)
            if entry is not None and entry[1] > now_ms:
                state = entry[0]

            new_state, decision = algorithm.step(state, now_ms, config, consume)
            if new_state is not None:
                self._entries[key] = (new_state, now_ms + algorithm.ttl_ms(new_state, now_ms, config))

        return decision

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        """Reset all state (useful for tests)."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _purge(self, now_ms: int) -> None:
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now_ms]
        for key in expired:
            del self._entries[key]


class RedisCounterStore:
    """Redis backend for shared counters, one Lua script per algorithm."""

    def __init__(
        self,
        redis_client: Any | None = None,
        redis_url: str = "redis://localhost:6379/0",
        timeout_s: float = 0.25,
        key_prefix: str = "ratelimit:",
    ) -> None:
        if redis_client is None:
            redis_client = redis.Redis.from_url(
                redis_url,
                socket_timeout=timeout_s,
                socket_connect_timeout=timeout_s,
                decode_responses=True,
            )
        self.client = redis_client
        self.key_prefix = key_prefix
        # register_script does not talk to the server, it only hashes the source
        self._scripts = {
            strategy: self.client.register_script(algorithm_for(strategy).LUA)
            for strategy in RateLimitStrategy
        }

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def apply(self, key: str, config: RateLimitConfig, now_ms: int, consume: bool) -> Decision:
        strategy = RateLimitStrategy(config.strategy)
        args = [now_ms, config.window_ms, config.max_requests, 1 if consume else 0]
        if strategy == SlidingWindow.strategy:
            # sorted set members must be unique even for hits in the same ms
            args.append(f"{now_ms}-{uuid.uuid4().hex}")

        raw = self._scripts[strategy](keys=[self._key(key)], args=args)
        return self._to_decision(raw)

    def reset(self, key: str) -> None:
        self.client.delete(self._key(key))

    @staticmethod
    def _to_decision(raw) -> Decision:
        allowed, remaining, reset_at_ms, retry_after_ms, total_hits = (int(value) for value in raw)
        retry: Optional[int] = None if retry_after_ms < 0 else retry_after_ms
        return Decision(
            allowed=bool(allowed),
            remaining=remaining,
            reset_at_ms=reset_at_ms,
            retry_after_ms=retry,
            total_hits=total_hits,
        )
