#Purpose: Great-circle distance between two (lat, lon) points.
#Used by the ranking layer to turn donor coordinates into km from the request.
#Typical responsibilities:
#haversine distance in km
#fallback distance when a side has no coordinates (never fail the ranking)
#No routing engine calls here; road distance is out of scope.

import math
from typing import Optional, Tuple

#internal coordinate type :(lat,lon)
LatLon = Tuple[float, float]

EARTH_RADIUS_KM = 6371.0


def haversine_km(origin: LatLon, destination: LatLon) -> float:
    """
    Great-circle distance in kilometres between two (lat, lon) points.
    """
    origin_lat, origin_lon = origin
    destination_lat, destination_lon = destination

    delta_lat = math.radians(destination_lat - origin_lat)
    delta_lon = math.radians(destination_lon - origin_lon)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(math.radians(origin_lat)) * math.cos(math.radians(destination_lat)) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def distance_or_default(origin: Optional[LatLon], destination: Optional[LatLon], default_km: float) -> float:
    """
    Haversine distance, or default_km when either location is unknown.
    """
    if origin is None or destination is None:
        return default_km
    return haversine_km(origin, destination)
