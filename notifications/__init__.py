"""
Notifications package.

Public API:
- NotificationDispatcher (rate limited, retrying fan-out on a thread pool)
- DispatchReport, NotificationOutcome, NotificationStatus, SkipReason
- NotificationTemplate + the stock templates BLOOD_REQUEST_ALERT, MATCH_CONFIRMED
- Transports: Transport, WebhookTransport, LoggingTransport, DeliveryStatus, TransportError
"""

from .dispatcher import (
    BLOOD_REQUEST_ALERT,
    MATCH_CONFIRMED,
    DispatchReport,
    NotificationDispatcher,
    NotificationOutcome,
    NotificationStatus,
    NotificationTemplate,
    SkipReason,
)
from .transport import DeliveryStatus, LoggingTransport, Transport, TransportError, WebhookTransport

__all__ = [
    "NotificationDispatcher",
    "DispatchReport",
    "NotificationOutcome",
    "NotificationStatus",
    "NotificationTemplate",
    "SkipReason",
    "BLOOD_REQUEST_ALERT",
    "MATCH_CONFIRMED",
    "DeliveryStatus",
    "LoggingTransport",
    "Transport",
    "TransportError",
    "WebhookTransport",
]
