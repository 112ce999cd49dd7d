"""
NUDGE Notifiers - Delivery Capability

The scheduler never talks to a chat transport itself. It builds a
Notification and hands it to a Notifier; raising from deliver() means the
attempt failed. Retries, if any, belong to the Notifier.

Available:
- LogNotifier: writes deliveries to the log (default, no transport)
- WebhookNotifier: POSTs the notification as JSON to an HTTP endpoint
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests

from nudge.errors import DeliveryError

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """What gets delivered, and where."""
    destination: str
    text: str
    reminder_id: Optional[str] = None
    use_broadcast_mention: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not isinstance(self.destination, str) or not self.destination.strip():
            raise ValueError("Notification destination cannot be empty")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "destination": self.destination,
            "text": self.text,
            "reminderId": self.reminder_id,
            "useBroadcastMention": self.use_broadcast_mention,
            "metadata": dict(self.metadata),
        }


class Notifier(ABC):
    """
    Abstract delivery channel.

    Implementations must raise on failure (DeliveryError preferred) and
    return normally only when the notification was handed off.
    """

    @abstractmethod
    def deliver(self, notification: Notification) -> None:
        pass


class LogNotifier(Notifier):
    """Logs every notification instead of sending it."""

    def __init__(self, level: int = logging.INFO):
        self.level = level

    def deliver(self, notification: Notification) -> None:
        logger.log(
            self.level,
            f"[notify] -> {notification.destination}: {notification.text}"
        )


class WebhookNotifier(Notifier):
    """
    Deliver notifications to an HTTP endpoint.

    The request body is Notification.to_dict() as JSON. Any connection
    error, timeout or non-2xx status raises DeliveryError.

    Example:
        >>> notifier = WebhookNotifier("http://localhost:8080/notify", timeout=5)
        >>> notifier.deliver(Notification("group-1", "Standup in 15 minutes"))
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        """
        Args:
            url: Endpoint receiving POSTed notifications
            timeout: Per-request timeout in seconds
            session: Optional requests.Session (connection reuse, tests)
            headers: Extra headers, e.g. Authorization
        """
        if not url:
            raise ValueError("WebhookNotifier needs a URL")
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._headers = {"Content-Type": "application/json", **(headers or {})}

        logger.info(f"WebhookNotifier initialized (url={self.url}, timeout={timeout}s)")

    def deliver(self, notification: Notification) -> None:
        try:
            resp = self._session.post(
                self.url,
                json=notification.to_dict(),
                headers=self._headers,
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except requests.exceptions.Timeout as e:
            raise DeliveryError(f"Webhook timed out after {self.timeout}s") from e
        except requests.exceptions.RequestException as e:
            raise DeliveryError(f"Webhook delivery failed: {e}") from e

        logger.debug(f"Webhook delivered to {notification.destination} (HTTP {resp.status_code})")

    def close(self):
        self._session.close()
