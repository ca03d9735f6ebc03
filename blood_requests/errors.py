"""
Purpose: Error taxonomy shared by the matching core.
What it does:
Gives every expected failure its own type so callers (HTTP layer, sweep tick,
simulation scripts) can map them without string matching.

Rule: ConflictError is an expected outcome (a lost race), not a system fault.
"""


class BloodLinkError(Exception):
    """Base class for all domain errors raised by the core."""


class ValidationError(BloodLinkError, ValueError):
    """Malformed input, rejected before any state is written."""


class NotFoundError(BloodLinkError):
    """Unknown request, donor or response id."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} {identifier} not found")
        self.kind = kind
        self.identifier = identifier


class ConflictError(BloodLinkError):
    """The action lost a race or the request is no longer open for it."""


class ExpiredError(BloodLinkError):
    """The request passed its expires_at before the action was attempted."""

    def __init__(self, request_id: str):
        super().__init__(f"Request {request_id} has expired")
        self.request_id = request_id
