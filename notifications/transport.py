#Purpose: The outbound delivery "adapter/client".
#Sole responsibility: hand one rendered alert to one recipient and classify the outcome.
#Encapsulates delivery specifics:
#URL + payload shape for the webhook gateway (SMS / WhatsApp / push bridge)
#timeouts
#mapping HTTP status codes to success / transient / permanent
#It should not contain ranking, rate limiting or retry rules (the dispatcher owns those).


from dotenv import load_dotenv
import logging
import os
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import requests

# Read the gateway URL from environment
# Example in .env:
# NOTIFY_WEBHOOK_URL=http://localhost:8080/notify
load_dotenv()
NOTIFY_WEBHOOK_URL = os.getenv("NOTIFY_WEBHOOK_URL")

logger = logging.getLogger(__name__)

# Rate limited / timed out / not ready yet: worth trying again
TRANSIENT_STATUS_CODES = {408, 425, 429}


class DeliveryStatus(str, Enum):
    SUCCESS = "success"
    TRANSIENT_ERROR = "transient_error"
    PERMANENT_ERROR = "permanent_error"


class TransportError(Exception):
    """
    Raised by a transport that cannot deliver.
    transient=True means the same send may succeed on retry.
    """

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient

    @property
    def status(self) -> DeliveryStatus:
        return DeliveryStatus.TRANSIENT_ERROR if self.transient else DeliveryStatus.PERMANENT_ERROR


class Transport:
    """
    Interface every delivery channel implements.
    send() either returns a DeliveryStatus or raises TransportError; both are accepted.
    """

    def send(self, recipient: str, payload: Dict[str, Any], timeout: float) -> DeliveryStatus:
        raise NotImplementedError


class WebhookTransport(Transport):
    """
    POSTs {"to": recipient, **payload} as JSON to a delivery gateway.

    - 2xx                        -> SUCCESS
    - 408 / 425 / 429 / 5xx      -> TransportError(transient=True)
    - any other 4xx              -> TransportError(transient=False)
    - timeouts / network errors  -> TransportError(transient=True)
    """

    def __init__(self, url: Optional[str] = None, session: Optional[requests.Session] = None, headers: Optional[Dict[str, str]] = None):
        self.url = url or NOTIFY_WEBHOOK_URL
        self.session = session or requests.Session()
        self.headers = headers or {}

        if not self.url:
            raise ValueError("Notification webhook URL not set. Please set NOTIFY_WEBHOOK_URL in the .env file.")

    def send(self, recipient: str, payload: Dict[str, Any], timeout: float) -> DeliveryStatus:
        body = {"to": recipient, **payload}

        try:
            response = self.session.post(self.url, json=body, headers=self.headers, timeout=timeout)
        except requests.Timeout as exc:
            raise TransportError(f"Gateway timed out after {timeout}s: {exc}", transient=True) from exc
        except requests.RequestException as exc:
            raise TransportError(f"Gateway unreachable: {exc}", transient=True) from exc

        code = response.status_code
        if 200 <= code < 300:
            return DeliveryStatus.SUCCESS

        if code in TRANSIENT_STATUS_CODES or code >= 500:
            raise TransportError(f"Gateway returned {code}", transient=True)

        raise TransportError(f"Gateway rejected message with {code}: {response.text[:200]}", transient=False)


class LoggingTransport(Transport):
    """
    Writes alerts to the log instead of delivering them. Also keeps what it
    sent, which the simulation script prints at the end.
    """

    def __init__(self):
        self.sent: List[Tuple[str, Dict[str, Any]]] = []

    def send(self, recipient: str, payload: Dict[str, Any], timeout: float) -> DeliveryStatus:
        logger.info("Alert to %s: %s", recipient, payload.get("body", payload))
        self.sent.append((recipient, payload))
        return DeliveryStatus.SUCCESS
