#Purpose: ETA estimation policy.
#Converts a straight-line distance into the "arrives in X minutes" shown to requesters.
#This is a linear estimate (minutes per km), explicitly approximate,
#not a routing-engine result. Traffic/time-of-day factors are not modelled.

import math


def estimate_eta_minutes(distance_km: float, minutes_per_km: float = 2.0) -> int:
    """
    Whole minutes for a donor to cover distance_km, halves rounded up.
    """
    if distance_km <= 0:
        return 0
    return int(math.floor(distance_km * minutes_per_km + 0.5))
