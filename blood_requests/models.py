"""
Purpose: Domain models for the blood request capability.
What it does:
- Defines core data structures:
- BloodRequest (id, blood type, units, urgency, status, expiry, counters, match)
- DonorResponse (one row per donor/request pair)
- RequestDraft (the validated shape accepted by create_request)

Defines enums/constants:
- BloodType = the 8 ABO/Rh combinations
- Urgency = normal | urgent | critical
- RequestStatus = pending | matched | completed | expired | cancelled
- ResponseKind = accept | decline | maybe
- ResponseStatus = pending | confirmed | cancelled

Rule: No store access, no ranking logic. Models only.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from .errors import ValidationError

LatLon = Tuple[float, float]


def _parse_enum(enum_cls, value, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Unknown {label} {value!r}. Expected one of: {allowed}")


class BloodType(str, Enum):
    O_NEG = "O-"
    O_POS = "O+"
    A_NEG = "A-"
    A_POS = "A+"
    B_NEG = "B-"
    B_POS = "B+"
    AB_NEG = "AB-"
    AB_POS = "AB+"

    @classmethod
    def parse(cls, value) -> BloodType:
        if isinstance(value, str):
            value = value.strip().upper()
        return _parse_enum(cls, value, "blood type")


class Urgency(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value) -> Urgency:
        return _parse_enum(cls, value, "urgency")


class RequestStatus(str, Enum):
    PENDING = "pending"
    MATCHED = "matched"
    COMPLETED = "completed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value) -> RequestStatus:
        return _parse_enum(cls, value, "request status")


class ResponseKind(str, Enum):
    ACCEPT = "accept"
    DECLINE = "decline"
    MAYBE = "maybe"

    @classmethod
    def parse(cls, value) -> ResponseKind:
        return _parse_enum(cls, value, "response kind")


class ResponseStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RequestDraft:
    """
    Everything a caller supplies to open a request.
    The core derives status, expiry and counters itself.
    """
    blood_type: BloodType
    units_needed: int
    urgency: Urgency = Urgency.NORMAL

    patient_name: str = ""
    hospital_name: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    additional_info: str = ""
    location: Optional[LatLon] = None

    @classmethod
    def new(
        cls,
        blood_type: str | BloodType,
        units_needed: int,
        urgency: str | Urgency = Urgency.NORMAL,
        *,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        **details,
    ) -> RequestDraft:
        location = None
        if latitude is not None or longitude is not None:
            if latitude is None or longitude is None:
                raise ValidationError("latitude and longitude must be given together")
            try:
                location = (float(latitude), float(longitude))
            except (TypeError, ValueError):
                raise ValidationError(f"Coordinates must be numbers, got {latitude!r}, {longitude!r}")

        draft = cls(
            blood_type=BloodType.parse(blood_type),
            units_needed=units_needed,
            urgency=Urgency.parse(urgency),
            location=location,
            **details,
        )
        draft.validate()
        return draft

    def validate(self) -> None:
        if not isinstance(self.blood_type, BloodType):
            raise ValidationError(f"Unknown blood type {self.blood_type!r}")

        if not isinstance(self.urgency, Urgency):
            raise ValidationError(f"Unknown urgency {self.urgency!r}")

        # bool is an int subclass, reject it explicitly
        if isinstance(self.units_needed, bool) or not isinstance(self.units_needed, int):
            raise ValidationError("units_needed must be an integer")

        if self.units_needed <= 0:
            raise ValidationError("units_needed must be > 0")

        if self.location is not None:
            lat, lng = self.location
            if not -90.0 <= lat <= 90.0:
                raise ValidationError(f"latitude {lat} out of range")
            if not -180.0 <= lng <= 180.0:
                raise ValidationError(f"longitude {lng} out of range")


@dataclass(frozen=True)
class BloodRequest:
    """
    A persisted blood request.
    Invariant: matched_donor_id is set iff status is MATCHED or COMPLETED.
    """
    id: str
    blood_type: BloodType
    units_needed: int
    urgency: Urgency
    status: RequestStatus
    created_at: datetime
    expires_at: datetime

    escalation_count: int = 0
    response_count: int = 0
    matched_donor_id: Optional[str] = None
    matched_at: Optional[datetime] = None

    patient_name: str = ""
    hospital_name: str = ""
    contact_name: str = ""
    contact_phone: str = ""
    additional_info: str = ""
    location: Optional[LatLon] = None

    @staticmethod
    def new(draft: RequestDraft, created_at: datetime, expires_at: datetime) -> BloodRequest:
        return BloodRequest(
            id=str(uuid.uuid4()),
            blood_type=draft.blood_type,
            units_needed=draft.units_needed,
            urgency=draft.urgency,
            status=RequestStatus.PENDING,
            created_at=created_at,
            expires_at=expires_at,
            patient_name=draft.patient_name,
            hospital_name=draft.hospital_name,
            contact_name=draft.contact_name,
            contact_phone=draft.contact_phone,
            additional_info=draft.additional_info,
            location=draft.location,
        )

    @property
    def lifetime_seconds(self) -> float:
        return (self.expires_at - self.created_at).total_seconds()


@dataclass(frozen=True)
class DonorResponse:
    """
    A donor's answer to a request. Resubmitting updates the same row.
    """
    id: str
    donor_id: str
    request_id: str
    kind: ResponseKind
    status: ResponseStatus = ResponseStatus.PENDING

    eta_minutes: Optional[int] = None
    notes: str = ""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    @staticmethod
    def new(
        request_id: str,
        donor_id: str,
        kind: ResponseKind,
        now: datetime,
        eta_minutes: Optional[int] = None,
        notes: str = "",
    ) -> DonorResponse:
        return DonorResponse(
            id=str(uuid.uuid4()),
            donor_id=donor_id,
            request_id=request_id,
            kind=kind,
            eta_minutes=eta_minutes,
            notes=notes,
            created_at=now,
            updated_at=now,
        )


@dataclass
class RequestFilters:
    """Optional filters for listing requests (all None = everything)."""
    status: Optional[RequestStatus] = None
    blood_type: Optional[BloodType] = None
    urgency: Optional[Urgency] = None
    hospital: Optional[str] = None

    def matches(self, request: BloodRequest) -> bool:
        if self.status is not None and request.status != self.status:
            return False
        if self.blood_type is not None and request.blood_type != self.blood_type:
            return False
        if self.urgency is not None and request.urgency != self.urgency:
            return False
        if self.hospital and self.hospital.lower() not in request.hospital_name.lower():
            return False
        return True
