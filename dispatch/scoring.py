#Purpose: Ranking/selection model (the "who is best" layer).
#Takes donors (already eligible) + features (distance, type match, rest since last donation)
#Produces:
#a score per donor AND an ordered list
#Typical responsibilities:
#weighted scoring function (v1)
#tie-breaking rules (deterministic)
#search radius per escalation level
#Output: ranked donors for the notification sequence.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from blood_requests.models import BloodType
from donors.models import Donor
from donors.policy import DonorPolicy, default_donor_policy
from routing.distance import distance_or_default
from routing.eta_service import estimate_eta_minutes

LatLon = Tuple[float, float]


@dataclass(frozen=True)
class Candidate:
    """
    A ranked donor with the metrics that produced the rank.
    """
    donor: Donor
    distance_km: float
    eta_minutes: int
    score: float
    exact_match: bool

    @property
    def donor_id(self) -> str:
        return self.donor.id


def cooldown_bonus(last_donation_at: Optional[datetime], now: datetime, policy: DonorPolicy) -> float:
    """
    Reward donors who have rested since their last donation.
    Never donated (None) earns nothing.
    """
    if last_donation_at is None:
        return 0.0

    days_since = (now - last_donation_at).total_seconds() / 86400
    if days_since >= policy.full_cooldown_days:
        return policy.full_cooldown_bonus
    if days_since >= policy.partial_cooldown_days:
        return policy.partial_cooldown_bonus
    return 0.0


def score_candidate(
    donor_type: BloodType,
    required_type: BloodType,
    distance_km: float,
    last_donation_at: Optional[datetime],
    now: datetime,
    policy: Optional[DonorPolicy] = None,
) -> float:
    """
    base + exact-type bonus - capped distance penalty + cooldown bonus, floored at 0.
    """
    policy = policy or default_donor_policy()

    score = policy.base_score
    if donor_type == required_type:
        score += policy.exact_match_bonus

    score -= min(distance_km * policy.distance_penalty_per_km, policy.max_distance_penalty)
    score += cooldown_bonus(last_donation_at, now, policy)

    return max(score, 0.0)


def rank_candidates(
    request_location: Optional[LatLon],
    required_type: BloodType,
    donors: Iterable[Donor],
    *,
    now: datetime,
    policy: Optional[DonorPolicy] = None,
    escalation_level: int = 0,
) -> List[Candidate]:
    """
    Score eligible donors against a request and order them best first.

    Donors beyond the search radius of the given escalation level are dropped.
    Order: score descending, then distance ascending, then donor id, so equal
    scores (e.g. two donors both past the distance penalty cap) still rank the
    closer one first and every run is reproducible.
    """
    policy = policy or default_donor_policy()
    radius_km = policy.radius_for_level(escalation_level)

    candidates: List[Candidate] = []
    for donor in donors:
        distance_km = distance_or_default(request_location, donor.location, policy.default_distance_km)

        if radius_km is not None and distance_km > radius_km:
            continue

        candidates.append(
            Candidate(
                donor=donor,
                distance_km=distance_km,
                eta_minutes=estimate_eta_minutes(distance_km, policy.eta_minutes_per_km),
                score=score_candidate(
                    donor.blood_type,
                    required_type,
                    distance_km,
                    donor.last_donation_at,
                    now,
                    policy,
                ),
                exact_match=donor.blood_type == required_type,
            )
        )

    candidates.sort(key=lambda candidate: (-candidate.score, candidate.distance_km, candidate.donor_id))
    return candidates
