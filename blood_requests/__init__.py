"""
Blood requests domain package.

Public API:
- Domain models: BloodRequest, DonorResponse, RequestDraft, RequestFilters
- Enums: BloodType, Urgency, RequestStatus, ResponseKind, ResponseStatus
- Errors: BloodLinkError, ValidationError, NotFoundError, ConflictError, ExpiredError

The store contract lives in blood_requests.store (imported explicitly, it
depends on the donors package).
"""
from .errors import BloodLinkError, ConflictError, ExpiredError, NotFoundError, ValidationError
from .models import (
    BloodRequest,
    BloodType,
    DonorResponse,
    RequestDraft,
    RequestFilters,
    RequestStatus,
    ResponseKind,
    ResponseStatus,
    Urgency,
)

__all__ = [
    "BloodRequest",
    "BloodType",
    "DonorResponse",
    "RequestDraft",
    "RequestFilters",
    "RequestStatus",
    "ResponseKind",
    "ResponseStatus",
    "Urgency",
    "BloodLinkError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "ExpiredError",
]
