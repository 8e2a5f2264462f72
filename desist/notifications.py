"""
Desist Notifications
Delivers emergency alerts to recipients through a webhook.

The webhook is whatever relays the alert onwards: an SMS gateway,
a Slack/Discord hook, or PagerDuty. One POST per recipient, so a
failure for one recipient never blocks the others.
"""

import asyncio
import logging
import time
import requests
from typing import Optional, Dict, Any

from .errors import TransientIOError
from .interfaces import Location, Recipient

logger = logging.getLogger(__name__)


def format_alert_message(
    template: str,
    location: Optional[Location],
    recipient: Optional[Recipient] = None
) -> str:
    """
    Render the alert text for one recipient.

    A recipient's custom message wins over the template. `{location}`
    becomes a maps link, or "location unavailable".
    """
    location_text = location.maps_url if location else "location unavailable"
    if recipient is not None and recipient.custom_message:
        return f"{recipient.custom_message}\n\nLocation: {location_text}"
    return template.replace("{location}", location_text)


def build_alert_payload(
    message: str,
    location: Optional[Location],
    trigger: str = "gesture"
) -> Dict[str, Any]:
    """The recipient-independent part of an emergency alert."""
    return {
        "event": "panic",
        "trigger": trigger,
        "message": message,
        "location": (
            {"latitude": location.latitude, "longitude": location.longitude}
            if location else None
        ),
        "timestamp": int(time.time()),
    }


class WebhookNotificationDispatcher:
    """
    Sends emergency alerts to a webhook.

    Supports:
    - Generic JSON (SMS gateways, Slack-compatible hooks)
    - PagerDuty Events API v2
    """

    REQUEST_TIMEOUT_SECONDS = 5

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        webhook_type: str = "generic",  # "generic" | "pagerduty"
        webhook_key: Optional[str] = None,
    ):
        """
        Args:
            webhook_url: URL to POST alerts to
            webhook_type: Payload format ("generic", "pagerduty")
            webhook_key: Routing key for PagerDuty
        """
        self.webhook_url = webhook_url
        self.webhook_type = webhook_type
        self.webhook_key = webhook_key

    async def send_to_recipient(self, recipient: Recipient, payload: Dict[str, Any]) -> bool:
        """
        POST one alert.

        Raises:
            TransientIOError: no webhook configured, network failure or non-2xx
        """
        if not self.webhook_url:
            raise TransientIOError("No webhook_url configured")

        body = self._format_webhook_payload(recipient, payload)
        try:
            response = await asyncio.to_thread(
                requests.post,
                self.webhook_url,
                json=body,
                timeout=self.REQUEST_TIMEOUT_SECONDS,
                headers={"Content-Type": "application/json"}
            )
        except requests.RequestException as e:
            raise TransientIOError(f"Alert to {recipient.name} failed: {e}") from e

        if not response.ok:
            raise TransientIOError(
                f"Alert to {recipient.name} rejected: HTTP {response.status_code}"
            )
        logger.debug("Alert delivered to %s", recipient.name)
        return True

    def _format_webhook_payload(
        self,
        recipient: Recipient,
        payload: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Format the alert body based on webhook_type."""
        message = payload.get("message", "")
        if recipient.custom_message:
            location = payload.get("location")
            message = format_alert_message(
                message,
                Location(**location) if location else None,
                recipient
            )

        # PAGERDUTY FORMAT
        if self.webhook_type == "pagerduty":
            return {
                "routing_key": self.webhook_key,
                "event_action": "trigger",
                "dedup_key": f"desist-panic-{recipient.id}-{payload.get('timestamp', int(time.time()))}",
                "payload": {
                    "summary": f"Desist emergency alert for {recipient.name}",
                    "source": "desist-daemon",
                    "severity": "critical",
                    "custom_details": {
                        "message": message,
                        "recipient": recipient.name,
                        "phone": recipient.phone,
                        "location": payload.get("location"),
                        "trigger": payload.get("trigger"),
                    }
                }
            }

        # GENERIC FORMAT
        return {
            "event": payload.get("event", "panic"),
            "level": "critical",
            "to": recipient.phone,
            "recipient": {"id": recipient.id, "name": recipient.name},
            "message": f"🚨 {message}",
            "location": payload.get("location"),
            "timestamp": payload.get("timestamp", int(time.time())),
        }
