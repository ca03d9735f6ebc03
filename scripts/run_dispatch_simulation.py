"""
End-to-end run of the matching core against a generated donor pool:
create requests, dispatch, let some donors accept concurrently, then sweep
the clock forward to exercise escalation and expiry.

    python scripts/run_dispatch_simulation.py

Writes dispatch_results.csv next to the repository root.
"""

import logging
import os
import random
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import List

import pandas as pd

from blood_requests.models import RequestDraft, ResponseKind
from blood_requests.store import InMemoryRequestStore
from dispatch import Dispatcher, Settings, build_notifier
from donors.models import Donor
from notifications import LoggingTransport
from ratelimit import RateLimiter

from generate_mock_donors import generate_mock_donors

logger = logging.getLogger("simulation")


class SimulatedClock:
    """Wall clock that can be pushed forward to trigger escalation and expiry."""

    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta):
        self.now += timedelta(**delta)


def load_donors(df: pd.DataFrame) -> List[Donor]:
    donors = []
    for row in df.to_dict(orient="records"):
        last = row["last_donation_at"]
        donors.append(
            Donor.new(
                row["donor_id"],
                row["blood_type"],
                None if pd.isna(row["lat"]) else float(row["lat"]),
                None if pd.isna(row["lon"]) else float(row["lon"]),
                available=bool(row["available"]),
                notifications_opt_in=bool(row["notifications_opt_in"]),
                last_donation_at=None if pd.isna(last) else datetime.fromisoformat(last),
                name=row["name"],
                phone=row["phone"],
            )
        )
    return donors


def run_simulation(num_donors=300, seed=7):
    settings = Settings.from_env()
    settings.configure_logging()
    random.seed(seed)

    print("=== STARTING END-TO-END BLOOD DISPATCH SIMULATION ===")

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    donors_csv = os.path.join(base_dir, "mock_donors.csv")
    donors = load_donors(generate_mock_donors(num_donors, donors_csv, seed=seed))

    clock = SimulatedClock()
    store = InMemoryRequestStore(donors)
    policy = settings.dispatch_policy()
    rate_limiter = RateLimiter.from_url(settings.redis_url, settings.redis_timeout_s)
    transport = LoggingTransport()
    notifier = build_notifier(transport, rate_limiter, policy)
    dispatcher = Dispatcher(store, notifier, rate_limiter, dispatch_policy=policy, clock=clock)
    print(f"Loaded {len(donors)} donors. Rate limiter mode: {rate_limiter.mode.value}\n")

    drafts = [
        RequestDraft.new("O-", 2, "critical", latitude=-17.8292, longitude=31.0522, hospital_name="Parirenyatwa"),
        RequestDraft.new("A+", 1, "urgent", latitude=-17.8100, longitude=31.0450, hospital_name="Avenues Clinic"),
        RequestDraft.new("AB-", 3, "normal", latitude=-17.7800, longitude=31.1000, hospital_name="Borrowdale Trauma"),
    ]

    rows = []
    for draft in drafts:
        request = dispatcher.create_request(draft)
        report = dispatcher.dispatch(request.id)
        print(f"Request {request.id[:8]} {draft.blood_type.value} ({draft.urgency.value}): {report.summary()}")

        rows.append({"request_id": request.id, "phase": "initial", **report.summary()})

        # First request: three notified donors race to accept it
        if draft is drafts[0] and len(report.sent) >= 3:
            racers = [outcome.donor_id for outcome in report.sent[:3]]
            with ThreadPoolExecutor(max_workers=3) as pool:
                responses = list(
                    pool.map(lambda donor_id: dispatcher.submit_response(request.id, donor_id, ResponseKind.ACCEPT, eta_minutes=15), racers)
                )
            winner = dispatcher.get_request(request.id).matched_donor_id
            confirmed = [response.donor_id for response in responses if response.status.value == "confirmed"]
            print(f"  Race between {racers}: bound {winner}, confirmed responses {confirmed}")

    # Push the clock through the escalation thresholds and past the critical expiry
    for hours in (1, 2, 6):
        clock.advance(hours=hours)
        report = dispatcher.sweep()
        print(f"Sweep after +{hours}h: expired {len(report.expired)}, escalated {len(report.escalated)}")
        rows.append({"request_id": "*", "phase": f"sweep+{hours}h", "expired": len(report.expired), "escalated": len(report.escalated)})

    output_path = os.path.join(base_dir, "dispatch_results.csv")
    pd.DataFrame(rows).to_csv(output_path, index=False)

    print("\nFinal request states:")
    for request in dispatcher.list_requests():
        print(f"  {request.id[:8]} {request.blood_type.value:>3} {request.status.value:<9} escalations={request.escalation_count}")
    print(f"\n{len(transport.sent)} alerts delivered. Results saved to '{output_path}'")

    dispatcher.close()


if __name__ == "__main__":
    run_simulation()
