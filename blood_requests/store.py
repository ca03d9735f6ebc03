"""
Purpose: The persistence collaborator contract + an in-memory implementation.
What it does:

Defines RequestStore, the only thing the core talks to for requests, donors
and responses. The one primitive the whole core depends on for correctness is
compare_and_set: a single atomic conditional write.

    compare_and_set(request_id, expected={"status": PENDING}, changes={...}) -> bool

returns True only if every expected field still held at write time.

InMemoryRequestStore keeps everything in dicts behind a lock. It is what the
tests and the simulation script run against; production wires in the Django
store from backend/bloodbank/store.py.

Rule: Store owns rows, not rules. No status transition logic here.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from donors.models import Donor

from .errors import NotFoundError
from .models import (
    BloodRequest,
    BloodType,
    DonorResponse,
    RequestFilters,
    ResponseKind,
    ResponseStatus,
)


class RequestStore:
    """
    Interface every persistence backend implements.
    """

    # --- requests ---

    def insert_request(self, request: BloodRequest) -> BloodRequest:
        raise NotImplementedError

    def find_request(self, request_id: str) -> Optional[BloodRequest]:
        raise NotImplementedError

    def list_requests(self, filters: Optional[RequestFilters] = None) -> List[BloodRequest]:
        raise NotImplementedError

    def compare_and_set(self, request_id: str, expected: Dict[str, Any], changes: Dict[str, Any]) -> bool:
        raise NotImplementedError

    def increment_response_count(self, request_id: str) -> None:
        raise NotImplementedError

    # --- responses ---

    def upsert_response(
        self,
        request_id: str,
        donor_id: str,
        kind: ResponseKind,
        now: datetime,
        eta_minutes: Optional[int] = None,
        notes: str = "",
    ) -> Tuple[DonorResponse, bool]:
        """
        Insert or update the single response for (donor, request).
        Returns (response, created).
        """
        raise NotImplementedError

    def find_response(self, request_id: str, donor_id: str) -> Optional[DonorResponse]:
        raise NotImplementedError

    def list_responses(self, request_id: str) -> List[DonorResponse]:
        raise NotImplementedError

    def set_response_status(self, response_id: str, status: ResponseStatus, now: datetime) -> DonorResponse:
        raise NotImplementedError

    # --- donors ---

    def insert_donor(self, donor: Donor) -> Donor:
        raise NotImplementedError

    def find_donor(self, donor_id: str) -> Optional[Donor]:
        raise NotImplementedError

    def list_donors(self, blood_types: Iterable[BloodType]) -> List[Donor]:
        """Donors of the given types. Availability gates are applied by the caller."""
        raise NotImplementedError


class InMemoryRequestStore(RequestStore):
    """
    Dict backed store. Every method holds one lock, so compare_and_set is atomic
    for all threads of this process (and only this process).
    """

    def __init__(self, donors: Optional[Iterable[Donor]] = None):
        self._lock = threading.RLock()
        self._requests: Dict[str, BloodRequest] = {}
        self._donors: Dict[str, Donor] = {}
        self._responses: Dict[str, DonorResponse] = {}
        # (request_id, donor_id) -> response id, enforces one row per pair
        self._response_index: Dict[Tuple[str, str], str] = {}

        for donor in donors or []:
            self.insert_donor(donor)

    # --- requests ---

    def insert_request(self, request: BloodRequest) -> BloodRequest:
        with self._lock:
            if request.id in self._requests:
                raise ValueError(f"Request {request.id} already exists")
            self._requests[request.id] = request
            return request

    def find_request(self, request_id: str) -> Optional[BloodRequest]:
        with self._lock:
            return self._requests.get(request_id)

    def list_requests(self, filters: Optional[RequestFilters] = None) -> List[BloodRequest]:
        filters = filters or RequestFilters()
        with self._lock:
            snapshot = list(self._requests.values())
        matching = [request for request in snapshot if filters.matches(request)]
        # newest first, like the dashboard listing
        matching.sort(key=lambda request: request.created_at, reverse=True)
        return matching

    def compare_and_set(self, request_id: str, expected: Dict[str, Any], changes: Dict[str, Any]) -> bool:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise NotFoundError("Request", request_id)

            for field_name, value in expected.items():
                if getattr(current, field_name) != value:
                    return False

            self._requests[request_id] = replace(current, **changes)
            return True

    def increment_response_count(self, request_id: str) -> None:
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                raise NotFoundError("Request", request_id)
            self._requests[request_id] = replace(current, response_count=current.response_count + 1)

    # --- responses ---

    def upsert_response(
        self,
        request_id: str,
        donor_id: str,
        kind: ResponseKind,
        now: datetime,
        eta_minutes: Optional[int] = None,
        notes: str = "",
    ) -> Tuple[DonorResponse, bool]:
        with self._lock:
            existing_id = self._response_index.get((request_id, donor_id))
            if existing_id is not None:
                updated = replace(
                    self._responses[existing_id],
                    kind=kind,
                    eta_minutes=eta_minutes,
                    notes=notes,
                    status=ResponseStatus.PENDING,
                    updated_at=now,
                )
                self._responses[existing_id] = updated
                return updated, False

            response = DonorResponse.new(request_id, donor_id, kind, now, eta_minutes=eta_minutes, notes=notes)
            self._responses[response.id] = response
            self._response_index[(request_id, donor_id)] = response.id
            return response, True

    def find_response(self, request_id: str, donor_id: str) -> Optional[DonorResponse]:
        with self._lock:
            response_id = self._response_index.get((request_id, donor_id))
            return self._responses.get(response_id) if response_id else None

    def list_responses(self, request_id: str) -> List[DonorResponse]:
        with self._lock:
            responses = [r for r in self._responses.values() if r.request_id == request_id]
        responses.sort(key=lambda response: response.created_at, reverse=True)
        return responses

    def set_response_status(self, response_id: str, status: ResponseStatus, now: datetime) -> DonorResponse:
        with self._lock:
            current = self._responses.get(response_id)
            if current is None:
                raise NotFoundError("Response", response_id)
            confirmed_at = now if status == ResponseStatus.CONFIRMED else current.confirmed_at
            updated = replace(current, status=status, updated_at=now, confirmed_at=confirmed_at)
            self._responses[response_id] = updated
            return updated

    # --- donors ---

    def insert_donor(self, donor: Donor) -> Donor:
        with self._lock:
            self._donors[donor.id] = donor
            return donor

    def find_donor(self, donor_id: str) -> Optional[Donor]:
        with self._lock:
            return self._donors.get(donor_id)

    def list_donors(self, blood_types: Iterable[BloodType]) -> List[Donor]:
        wanted = set(blood_types)
        with self._lock:
            return [donor for donor in self._donors.values() if donor.blood_type in wanted]
