import math
import threading
from datetime import datetime, timedelta, timezone

import pytest

from blood_requests.store import InMemoryRequestStore
from dispatch import Dispatcher, DispatchPolicy
from donors.models import Donor
from notifications import DeliveryStatus, NotificationDispatcher, Transport
from ratelimit import RateLimitConfig, RateLimiter
from routing.distance import EARTH_RADIUS_KM

# Harare city centre
CENTER = (-17.824858, 31.053028)

# km per degree of latitude for the 6371 km earth radius used by haversine_km
KM_PER_DEGREE = EARTH_RADIUS_KM * math.pi / 180


def point_north(km, origin=CENTER):
    """A point `km` due north of origin (same longitude, so haversine gives km back)."""
    return (origin[0] + km / KM_PER_DEGREE, origin[1])


def donor_at(donor_id, blood_type, km=None, **kwargs):
    if km is None:
        return Donor.new(donor_id, blood_type, **kwargs)
    lat, lon = point_north(km)
    return Donor.new(donor_id, blood_type, lat, lon, **kwargs)


class Clock:
    """Controllable UTC clock, shared by the core (datetime) and the limiter (ms)."""

    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now

    def ms(self):
        return int(self.now.timestamp() * 1000)

    def advance(self, **delta):
        self.now += timedelta(**delta)


class FakeTransport(Transport):
    """
    Records every send. `script` maps a recipient to the results its next sends
    return, in order: a DeliveryStatus, or an exception to raise.
    """

    def __init__(self, script=None, default=DeliveryStatus.SUCCESS):
        self.script = {recipient: list(results) for recipient, results in (script or {}).items()}
        self.default = default
        self.calls = []
        self.delivered = threading.Event()
        self._lock = threading.Lock()

    def send(self, recipient, payload, timeout):
        with self._lock:
            self.calls.append((recipient, payload))
            queue = self.script.get(recipient)
            result = queue.pop(0) if queue else self.default

        if isinstance(result, Exception):
            raise result
        if result == DeliveryStatus.SUCCESS:
            self.delivered.set()
        return result

    def recipients(self):
        with self._lock:
            return [recipient for recipient, _ in self.calls]


@pytest.fixture
def clock():
    return Clock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter(clock_ms=clock.ms)


@pytest.fixture
def dispatch_policy():
    # One alert per donor per minute keeps rate limiting visible in short tests
    return DispatchPolicy(
        donor_limit=RateLimitConfig(window_ms=60_000, max_requests=1),
        global_limit=RateLimitConfig(window_ms=60_000, max_requests=100),
        retry_backoff_s=0.0,
        cycle_timeout_s=5.0,
    )


@pytest.fixture
def notifier(transport, rate_limiter, dispatch_policy):
    notifier = NotificationDispatcher(
        transport,
        rate_limiter,
        donor_limit=dispatch_policy.donor_limit,
        global_limit=dispatch_policy.global_limit,
        max_workers=4,
        max_retries=dispatch_policy.max_retries,
        retry_backoff_s=0.0,
        send_timeout_s=1.0,
        cycle_timeout_s=dispatch_policy.cycle_timeout_s,
        sleep=lambda seconds: None,
    )
    yield notifier
    notifier.close()


@pytest.fixture
def donors(clock):
    return [
        donor_at("d1", "O-", 1, phone="+263771000001", last_donation_at=clock.now - timedelta(days=60)),
        donor_at("d5", "O-", 5, phone="+263771000005"),
        donor_at("d20", "O-", 20, phone="+263771000020"),
        donor_at("d40", "O-", 40, phone="+263771000040"),
        donor_at("a1", "A+", 1, phone="+263771000101"),
        donor_at("off", "O-", 2, available=False),
        donor_at("quiet", "O-", 2, notifications_opt_in=False),
    ]


@pytest.fixture
def store(donors):
    return InMemoryRequestStore(donors)


@pytest.fixture
def dispatcher(store, notifier, rate_limiter, dispatch_policy, clock):
    return Dispatcher(store, notifier, rate_limiter, dispatch_policy=dispatch_policy, clock=clock)


@pytest.fixture
def critical_draft():
    return {
        "blood_type": "O-",
        "units_needed": 2,
        "urgency": "critical",
        "latitude": CENTER[0],
        "longitude": CENTER[1],
        "hospital_name": "Parirenyatwa",
        "contact_phone": "+263772000000",
    }
