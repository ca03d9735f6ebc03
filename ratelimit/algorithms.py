"""
Purpose: The three quota algorithms, each written twice.
What it does:

Every algorithm exposes:
- step(state, now_ms, config, consume) -> (new_state | None, Decision)
  a pure Python read-modify-write used by the process-local store
- LUA: the same read-modify-write as a server-side script, so the shared
  Redis store stays atomic across every process hitting the same key
- ttl_ms(...): how long a state may live untouched before it is meaningless

new_state is None when nothing should be written (peek, or nothing changed).

Tradeoffs:
- FixedWindow: counter aligned to wall-clock boundaries of window_ms. A burst
  straddling a boundary can admit up to 2x max_requests. Accepted.
- SlidingWindow: exact, keeps one timestamp per admitted hit in the trailing
  window. Memory is O(max_requests) per key since denied hits are not stored.
- TokenBucket: capacity max_requests, refilled at max_requests/window_ms,
  computed lazily from the last write (no background timer).

Rule: Lua scripts return {allowed, remaining, reset_at_ms, retry_after_ms (-1 = none), total_hits}.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple

from .models import Decision, RateLimitConfig, RateLimitStrategy

State = Optional[Dict[str, Any]]


class FixedWindow:
    strategy = RateLimitStrategy.FIXED_WINDOW

    LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local consume = tonumber(ARGV[4])

local window_start = now - (now % window)
local reset_at = window_start + window

local stored = redis.call('HMGET', key, 'window_start', 'count')
local count = 0
if stored[1] and tonumber(stored[1]) == window_start then
  count = tonumber(stored[2])
end

local allowed = 0
if count < limit then
  allowed = 1
  if consume == 1 then
    count = count + 1
    redis.call('HSET', key, 'window_start', window_start, 'count', count)
    redis.call('PEXPIRE', key, reset_at - now)
  end
end

local retry_after = -1
if allowed == 0 then
  retry_after = reset_at - now
end
return {allowed, math.max(limit - count, 0), reset_at, retry_after, count}
"""

    @staticmethod
    def step(state: State, now_ms: int, config: RateLimitConfig, consume: bool) -> Tuple[State, Decision]:
        window_start = now_ms - now_ms % config.window_ms
        reset_at_ms = window_start + config.window_ms

        count = 0
        if state and state.get("window_start") == window_start:
            count = state["count"]

        allowed = count < config.max_requests
        new_state = None
        if allowed and consume:
            count += 1
            new_state = {"window_start": window_start, "count": count}

        return new_state, Decision(
            allowed=allowed,
            remaining=max(config.max_requests - count, 0),
            reset_at_ms=reset_at_ms,
            retry_after_ms=None if allowed else reset_at_ms - now_ms,
            total_hits=count,
        )

    @staticmethod
    def ttl_ms(state: Dict[str, Any], now_ms: int, config: RateLimitConfig) -> int:
        return state["window_start"] + config.window_ms - now_ms


class SlidingWindow:
    strategy = RateLimitStrategy.SLIDING_WINDOW

    LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local consume = tonumber(ARGV[4])
local member = ARGV[5]

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)

local allowed = 0
if count < limit then
  allowed = 1
  if consume == 1 then
    redis.call('ZADD', key, now, member)
    redis.call('PEXPIRE', key, window)
    count = count + 1
  end
end

local oldest = now
local first = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
if #first > 0 then
  oldest = tonumber(first[2])
end

local retry_after = -1
if allowed == 0 then
  retry_after = oldest + window - now
end
return {allowed, math.max(limit - count, 0), oldest + window, retry_after, count}
"""

    @staticmethod
    def step(state: State, now_ms: int, config: RateLimitConfig, consume: bool) -> Tuple[State, Decision]:
        window_floor = now_ms - config.window_ms
        # hits at exactly now - window have left the window
        hits = [timestamp for timestamp in (state or {}).get("hits", []) if timestamp > window_floor]

        allowed = len(hits) < config.max_requests
        if allowed and consume:
            hits.append(now_ms)

        new_state = {"hits": hits} if consume else None
        oldest = hits[0] if hits else now_ms

        return new_state, Decision(
            allowed=allowed,
            remaining=max(config.max_requests - len(hits), 0),
            reset_at_ms=oldest + config.window_ms,
            retry_after_ms=None if allowed else oldest + config.window_ms - now_ms,
            total_hits=len(hits),
        )

    @staticmethod
    def ttl_ms(state: Dict[str, Any], now_ms: int, config: RateLimitConfig) -> int:
        return config.window_ms


class TokenBucket:
    strategy = RateLimitStrategy.TOKEN_BUCKET

    LUA = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local consume = tonumber(ARGV[4])
local rate = limit / window

local stored = redis.call('HMGET', key, 'tokens', 'updated_at')
local tokens = limit
if stored[1] then
  local elapsed = math.max(0, now - tonumber(stored[2]))
  tokens = math.min(limit, tonumber(stored[1]) + elapsed * rate)
end

local allowed = 0
if tokens >= 1 then
  allowed = 1
  if consume == 1 then
    tokens = tokens - 1
  end
end

if consume == 1 then
  redis.call('HSET', key, 'tokens', tostring(tokens), 'updated_at', now)
  redis.call('PEXPIRE', key, window)
end

local remaining = math.floor(tokens)
local retry_after = -1
if allowed == 0 then
  retry_after = math.ceil((1 - tokens) / rate)
end
return {allowed, remaining, now + math.ceil((limit - tokens) / rate), retry_after, limit - remaining}
"""

    @staticmethod
    def step(state: State, now_ms: int, config: RateLimitConfig, consume: bool) -> Tuple[State, Decision]:
        rate = config.refill_per_ms
        capacity = float(config.max_requests)

        if state is None:
            tokens = capacity
        else:
            elapsed = max(0, now_ms - state["updated_at"])
            tokens = min(capacity, state["tokens"] + elapsed * rate)

        allowed = tokens >= 1
        if allowed and consume:
            tokens -= 1

        new_state = {"tokens": tokens, "updated_at": now_ms} if consume else None
        remaining = int(math.floor(tokens))

        return new_state, Decision(
            allowed=allowed,
            remaining=remaining,
            reset_at_ms=now_ms + int(math.ceil((capacity - tokens) / rate)),
            retry_after_ms=None if allowed else int(math.ceil((1 - tokens) / rate)),
            total_hits=config.max_requests - remaining,
        )

    @staticmethod
    def ttl_ms(state: Dict[str, Any], now_ms: int, config: RateLimitConfig) -> int:
        # an untouched bucket is full again after one window
        return config.window_ms


ALGORITHMS = {
    RateLimitStrategy.FIXED_WINDOW: FixedWindow,
    RateLimitStrategy.SLIDING_WINDOW: SlidingWindow,
    RateLimitStrategy.TOKEN_BUCKET: TokenBucket,
}


def algorithm_for(strategy: RateLimitStrategy):
    return ALGORITHMS[RateLimitStrategy(strategy)]
