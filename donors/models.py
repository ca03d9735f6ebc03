"""
Purpose: Core data models for the donors domain.
What it does:
Defines the structure of a Donor (the responder pool) without relying on Django ORM constraints.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from blood_requests.models import BloodType

LatLon = Tuple[float, float]


@dataclass(frozen=True)
class Donor:
    """
    A stateless snapshot of a donor as the ranking engine sees them.
    location is None when the donor has not shared coordinates.
    """
    id: str
    blood_type: BloodType
    location: Optional[LatLon] = None

    available: bool = True
    notifications_opt_in: bool = True
    last_donation_at: Optional[datetime] = None

    name: str = ""
    phone: str = ""

    @classmethod
    def new(
        cls,
        donor_id: str,
        blood_type: str | BloodType,
        lat: Optional[float] = None,
        lon: Optional[float] = None,
        *,
        available: bool = True,
        notifications_opt_in: bool = True,
        last_donation_at: Optional[datetime] = None,
        name: str = "",
        phone: str = "",
    ) -> Donor:
        location = None
        if lat is not None and lon is not None:
            location = (float(lat), float(lon))

        return cls(
            id=donor_id,
            blood_type=BloodType.parse(blood_type),
            location=location,
            available=available,
            notifications_opt_in=notifications_opt_in,
            last_donation_at=last_donation_at,
            name=name,
            phone=phone,
        )

    @property
    def recipient(self) -> str:
        """Address handed to the transport. Falls back to the donor id."""
        return self.phone or self.id
