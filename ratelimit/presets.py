"""
Purpose: Predefined quotas and key builders.
What it does:
- RATE_LIMITS: named RateLimitConfig presets for the actions the system meters
- key builders so every caller composes keys the same way: scope + action

Rule: No logic here beyond string formatting.
"""

from .models import RateLimitConfig, RateLimitStrategy

MINUTE_MS = 60 * 1000
HOUR_MS = 60 * MINUTE_MS

RATE_LIMITS = {
    # Public API writes: opening a request, answering one
    "API_STRICT": RateLimitConfig(window_ms=MINUTE_MS, max_requests=20),
    "API_SENSITIVE": RateLimitConfig(window_ms=MINUTE_MS, max_requests=10),

    # Donor alerts: a donor hears about at most 3 requests an hour,
    # the whole system sends at most 100 alerts a minute.
    "DONOR_NOTIFY": RateLimitConfig(window_ms=HOUR_MS, max_requests=3),
    "GLOBAL_NOTIFY": RateLimitConfig(
        window_ms=MINUTE_MS, max_requests=100, strategy=RateLimitStrategy.TOKEN_BUCKET
    ),
}


def compose_key(scope: str, action: str) -> str:
    """The canonical key shape: action:<action>:<scope>."""
    return f"action:{action}:{scope}"


def by_ip(ip: str) -> str:
    return f"ip:{ip}"


def by_user(user_id: str) -> str:
    return f"user:{user_id}"


def by_action(action: str, identifier: str) -> str:
    return compose_key(identifier, action)


def donor_notify_key(donor_id: str) -> str:
    return compose_key(f"donor:{donor_id}", "notify")


GLOBAL_NOTIFY_KEY = compose_key("global", "notify")
