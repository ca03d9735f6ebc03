"""
Purpose: RequestStore backed by the Django ORM.
What it does:
Translates between the frozen domain records and the bloodbank models.

compare_and_set is a single conditional UPDATE:

    BloodRequestRecord.objects.filter(pk=id, status="pending", matched_donor_id__isnull=True)
                              .update(status="matched", matched_donor_id=..., matched_at=...)

The database applies the WHERE and the SET atomically, so exactly one of
several concurrent writers sees "1 row updated".
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.db import transaction
from django.db.models import F

from blood_requests.errors import NotFoundError
from blood_requests.models import (
    BloodRequest,
    BloodType,
    DonorResponse,
    RequestFilters,
    RequestStatus,
    ResponseKind,
    ResponseStatus,
    Urgency,
)
from blood_requests.store import RequestStore
from donors.models import Donor

from .models import BloodRequestRecord, DonorRecord, DonorResponseRecord


def _db(value):
    return value.value if isinstance(value, Enum) else value


def _phone(value) -> str:
    return str(value) if value else ""


def _location(lat, lng):
    if lat is None or lng is None:
        return None
    return (lat, lng)


def request_from_record(record: BloodRequestRecord) -> BloodRequest:
    return BloodRequest(
        id=record.id,
        blood_type=BloodType(record.blood_type),
        units_needed=record.units_needed,
        urgency=Urgency(record.urgency),
        status=RequestStatus(record.status),
        created_at=record.created_at,
        expires_at=record.expires_at,
        escalation_count=record.escalation_count,
        response_count=record.response_count,
        matched_donor_id=record.matched_donor_id,
        matched_at=record.matched_at,
        patient_name=record.patient_name,
        hospital_name=record.hospital_name,
        contact_name=record.contact_name,
        contact_phone=_phone(record.contact_phone),
        additional_info=record.additional_info,
        location=_location(record.lat, record.lng),
    )


def response_from_record(record: DonorResponseRecord) -> DonorResponse:
    return DonorResponse(
        id=record.id,
        donor_id=record.donor_id,
        request_id=record.request_id,
        kind=ResponseKind(record.kind),
        status=ResponseStatus(record.status),
        eta_minutes=record.eta_minutes,
        notes=record.notes,
        created_at=record.created_at,
        updated_at=record.updated_at,
        confirmed_at=record.confirmed_at,
    )


def donor_from_record(record: DonorRecord) -> Donor:
    return Donor(
        id=record.id,
        blood_type=BloodType(record.blood_type),
        location=_location(record.lat, record.lng),
        available=record.is_available,
        notifications_opt_in=record.notifications_opt_in,
        last_donation_at=record.last_donation_at,
        name=record.name,
        phone=_phone(record.phone_number),
    )


class DjangoRequestStore(RequestStore):

    # --- requests ---

    def insert_request(self, request: BloodRequest) -> BloodRequest:
        lat, lng = request.location if request.location else (None, None)
        BloodRequestRecord.objects.create(
            id=request.id,
            blood_type=_db(request.blood_type),
            units_needed=request.units_needed,
            urgency=_db(request.urgency),
            status=_db(request.status),
            patient_name=request.patient_name,
            hospital_name=request.hospital_name,
            contact_name=request.contact_name,
            contact_phone=request.contact_phone,
            additional_info=request.additional_info,
            lat=lat,
            lng=lng,
            created_at=request.created_at,
            expires_at=request.expires_at,
            escalation_count=request.escalation_count,
            response_count=request.response_count,
            matched_donor_id=request.matched_donor_id,
            matched_at=request.matched_at,
        )
        return request

    def find_request(self, request_id: str) -> Optional[BloodRequest]:
        record = BloodRequestRecord.objects.filter(pk=request_id).first()
        return request_from_record(record) if record else None

    def list_requests(self, filters: Optional[RequestFilters] = None) -> List[BloodRequest]:
        filters = filters or RequestFilters()
        queryset = BloodRequestRecord.objects.all()

        if filters.status is not None:
            queryset = queryset.filter(status=_db(filters.status))
        if filters.blood_type is not None:
            queryset = queryset.filter(blood_type=_db(filters.blood_type))
        if filters.urgency is not None:
            queryset = queryset.filter(urgency=_db(filters.urgency))
        if filters.hospital:
            queryset = queryset.filter(hospital_name__icontains=filters.hospital)

        return [request_from_record(record) for record in queryset.order_by("-created_at")]

    def compare_and_set(self, request_id: str, expected: Dict[str, Any], changes: Dict[str, Any]) -> bool:
        lookups = {}
        for name, value in expected.items():
            if value is None:
                lookups[f"{name}__isnull"] = True
            else:
                lookups[name] = _db(value)

        updates = {name: _db(value) for name, value in changes.items()}
        updated = BloodRequestRecord.objects.filter(pk=request_id, **lookups).update(**updates)
        if updated:
            return True

        if not BloodRequestRecord.objects.filter(pk=request_id).exists():
            raise NotFoundError("Request", request_id)
        return False

    def increment_response_count(self, request_id: str) -> None:
        updated = BloodRequestRecord.objects.filter(pk=request_id).update(response_count=F("response_count") + 1)
        if not updated:
            raise NotFoundError("Request", request_id)

    # --- responses ---

    def upsert_response(
        self,
        request_id: str,
        donor_id: str,
        kind: ResponseKind,
        now,
        eta_minutes: Optional[int] = None,
        notes: str = "",
    ) -> Tuple[DonorResponse, bool]:
        with transaction.atomic():
            # the unique (request, donor) constraint makes get_or_create race safe
            record, created = DonorResponseRecord.objects.get_or_create(
                request_id=request_id,
                donor_id=donor_id,
                defaults={
                    "kind": _db(kind),
                    "eta_minutes": eta_minutes,
                    "notes": notes,
                    "created_at": now,
                    "updated_at": now,
                },
            )
            if not created:
                record.kind = _db(kind)
                record.eta_minutes = eta_minutes
                record.notes = notes
                record.status = ResponseStatus.PENDING.value
                record.updated_at = now
                record.save(update_fields=["kind", "eta_minutes", "notes", "status", "updated_at"])

        return response_from_record(record), created

    def find_response(self, request_id: str, donor_id: str) -> Optional[DonorResponse]:
        record = DonorResponseRecord.objects.filter(request_id=request_id, donor_id=donor_id).first()
        return response_from_record(record) if record else None

    def list_responses(self, request_id: str) -> List[DonorResponse]:
        records = DonorResponseRecord.objects.filter(request_id=request_id).order_by("-created_at")
        return [response_from_record(record) for record in records]

    def set_response_status(self, response_id: str, status: ResponseStatus, now) -> DonorResponse:
        record = DonorResponseRecord.objects.filter(pk=response_id).first()
        if record is None:
            raise NotFoundError("Response", response_id)

        record.status = _db(status)
        record.updated_at = now
        if status == ResponseStatus.CONFIRMED:
            record.confirmed_at = now
        record.save(update_fields=["status", "updated_at", "confirmed_at"])
        return response_from_record(record)

    # --- donors ---

    def insert_donor(self, donor: Donor) -> Donor:
        lat, lng = donor.location if donor.location else (None, None)
        DonorRecord.objects.update_or_create(
            pk=donor.id,
            defaults={
                "name": donor.name,
                "phone_number": donor.phone or None,
                "blood_type": _db(donor.blood_type),
                "lat": lat,
                "lng": lng,
                "is_available": donor.available,
                "notifications_opt_in": donor.notifications_opt_in,
                "last_donation_at": donor.last_donation_at,
            },
        )
        return donor

    def find_donor(self, donor_id: str) -> Optional[Donor]:
        record = DonorRecord.objects.filter(pk=donor_id).first()
        return donor_from_record(record) if record else None

    def list_donors(self, blood_types: Iterable[BloodType]) -> List[Donor]:
        wanted = [_db(blood_type) for blood_type in blood_types]
        return [donor_from_record(record) for record in DonorRecord.objects.filter(blood_type__in=wanted)]
