"""
Maps core errors onto HTTP statuses:

ValidationError -> 400, NotFoundError -> 404, ConflictError -> 409,
ExpiredError -> 410, RateLimitExceeded -> 429 (+ Retry-After).
Anything else goes to the stock DRF handler.
"""

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from blood_requests.errors import ConflictError, ExpiredError, NotFoundError, ValidationError
from ratelimit import RateLimitExceeded

logger = logging.getLogger(__name__)

STATUS_BY_ERROR = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ExpiredError, status.HTTP_410_GONE),
    (ConflictError, status.HTTP_409_CONFLICT),
]


def bloodlink_exception_handler(exc, context):
    if isinstance(exc, RateLimitExceeded):
        response = Response({"error": str(exc), "retry_after_ms": exc.retry_after_ms}, status=status.HTTP_429_TOO_MANY_REQUESTS)
        if exc.retry_after_ms is not None:
            response["Retry-After"] = str(-(-exc.retry_after_ms // 1000))
        return response

    for error_cls, http_status in STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            if error_cls is ConflictError:
                logger.info("Conflict: %s", exc)
            return Response({"error": str(exc)}, status=http_status)

    return exception_handler(exc, context)
