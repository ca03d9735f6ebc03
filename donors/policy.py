"""
Purpose: Central configuration for donor eligibility and ranking.
What it does:

Stores all tunable thresholds for scoring donors against a request:

BASE_SCORE = 100
EXACT_MATCH_BONUS = 50
DISTANCE_PENALTY = 2 points per km, capped at 30
COOLDOWN BONUS = +20 after 56 days, +10 after 42 days
SEARCH_RADII_KM = [25, 50, 100, unbounded] (one per escalation level)

Rule: No logic here, just parameters so you can tune without rewriting code.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class DonorPolicy:
    """
    Central configuration for donor scoring and search radius.
    """

    # --- Score formula ---
    base_score: float = 100.0
    exact_match_bonus: float = 50.0

    # Each km costs this many points, never more than the cap.
    distance_penalty_per_km: float = 2.0
    max_distance_penalty: float = 30.0

    # --- Donation cooldown reward ---
    # Donors rested past the full cooldown are preferred, partially rested ones less so.
    full_cooldown_days: int = 56
    full_cooldown_bonus: float = 20.0
    partial_cooldown_days: int = 42
    partial_cooldown_bonus: float = 10.0

    # --- Unknown coordinates ---
    # Used when either the request or the donor has no location.
    default_distance_km: float = 5.0

    # --- ETA ---
    # Linear approximation, not a routing engine result.
    eta_minutes_per_km: float = 2.0

    # --- Search rings ---
    # Index = escalation level. None means no radius limit.
    # Levels past the end reuse the last ring.
    search_radii_km: List[Optional[float]] = field(default_factory=lambda: [25.0, 50.0, 100.0, None])

    def radius_for_level(self, escalation_level: int) -> Optional[float]:
        index = min(max(escalation_level, 0), len(self.search_radii_km) - 1)
        return self.search_radii_km[index]

    def validate(self) -> None:
        """
        Basic sanity checks.
        """
        if self.distance_penalty_per_km < 0 or self.max_distance_penalty < 0:
            raise ValueError("distance penalties must be >= 0")

        if self.partial_cooldown_days > self.full_cooldown_days:
            raise ValueError("partial_cooldown_days must be <= full_cooldown_days")

        if self.default_distance_km < 0:
            raise ValueError("default_distance_km must be >= 0")

        if self.eta_minutes_per_km <= 0:
            raise ValueError("eta_minutes_per_km must be > 0")

        if not self.search_radii_km:
            raise ValueError("Must provide at least one search radius.")

        if None in self.search_radii_km[:-1]:
            raise ValueError("Only the last search radius may be unbounded (None).")

        bounded = [radius for radius in self.search_radii_km if radius is not None]
        if bounded != sorted(bounded) or any(radius <= 0 for radius in bounded):
            raise ValueError("search_radii_km must be positive and widen with each level")


def default_donor_policy() -> DonorPolicy:
    """
    Convenience factory for the default policy.
    """
    p = DonorPolicy()
    p.validate()
    return p
