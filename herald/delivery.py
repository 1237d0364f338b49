"""Delivery gateways and tracking sinks.

HttpDeliveryGateway posts notifications to the notification API and reports
every problem (timeouts included) as a failed DeliveryResult, which the
dispatch loop turns into a retry.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import requests

from herald.config import GatewayConfig
from herald.scheduler.models import DeliveryResult, NotificationPayload, TrackingEvent

logger = logging.getLogger(__name__)


class HttpDeliveryGateway:
    """Sends via ``POST {base_url}/api/notifications/send``."""

    def __init__(
        self,
        config: GatewayConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config or GatewayConfig()
        self._base_url = self._config.base_url.rstrip("/")
        self._session = session or requests.Session()

    def send(self, user_id: str, payload: NotificationPayload) -> DeliveryResult:
        url = f"{self._base_url}/api/notifications/send"
        try:
            response = self._session.post(
                url,
                json={"userId": user_id, "payload": payload.to_dict()},
                timeout=self._config.timeout_seconds,
            )
        except requests.Timeout:
            return DeliveryResult(
                success=False,
                error=f"Timed out after {self._config.timeout_seconds:g}s",
            )
        except requests.RequestException as e:
            return DeliveryResult(success=False, error=str(e) or "Network error")

        if not response.ok:
            return DeliveryResult(
                success=False,
                error=f"HTTP {response.status_code}: {response.reason}",
            )

        try:
            body: dict[str, Any] = response.json()
        except ValueError:
            body = {}
        return DeliveryResult(success=True, message_id=body.get("messageId"))


class HttpTrackingSink:
    """Reports delivery outcomes via ``POST {base_url}/api/notifications/track``."""

    def __init__(
        self,
        config: GatewayConfig | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._config = config or GatewayConfig()
        self._base_url = self._config.base_url.rstrip("/")
        self._session = session or requests.Session()

    def track(self, event: TrackingEvent) -> None:
        if not self._config.tracking_enabled:
            return

        body: dict[str, Any] = {
            "notificationId": event.item_id,
            "action": "delivered" if event.outcome == "sent" else event.outcome,
            "messageId": event.message_id,
            "timestamp": event.timestamp.isoformat(),
        }
        if event.error:
            body["error"] = event.error

        try:
            response = self._session.post(
                f"{self._base_url}/api/notifications/track",
                json=body,
                timeout=self._config.timeout_seconds,
            )
            if not response.ok:
                logger.warning(
                    f"Tracking {event.item_id} returned HTTP {response.status_code}"
                )
        except requests.RequestException as e:
            logger.error(f"Failed to track delivery of {event.item_id}: {e}")


class LoggingTrackingSink:
    """Logs outcomes and keeps them for inspection."""

    def __init__(self) -> None:
        self._events: list[TrackingEvent] = []
        self._lock = threading.Lock()

    @property
    def events(self) -> list[TrackingEvent]:
        with self._lock:
            return list(self._events)

    def track(self, event: TrackingEvent) -> None:
        with self._lock:
            self._events.append(event)
        logger.info(f"Notification {event.item_id} {event.outcome}")


__all__ = ["HttpDeliveryGateway", "HttpTrackingSink", "LoggingTrackingSink"]
