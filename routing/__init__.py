#Marks routing as a package.
#Re-exports clean public APIs (haversine_km, estimate_eta_minutes)
#so other modules import from routing without knowing internal file names.
#No business logic.

from .distance import haversine_km, distance_or_default
from .eta_service import estimate_eta_minutes

__all__ = [
    "haversine_km",
    "distance_or_default",
    "estimate_eta_minutes",
]
