from __future__ import annotations

import logging
import os
from typing import Any, Mapping, MutableMapping, Optional

import httpx
from fastapi.encoders import jsonable_encoder

from .models import Principal, utcnow


logger = logging.getLogger(__name__)


def resolve_webhook_url(default: Optional[str] = None) -> Optional[str]:
    """Return the notification gateway URL from environment or provided default."""
    return os.getenv("NOTIFICATION_WEBHOOK_URL", default)


def build_notification_payload(
    *,
    channel: str,
    principal: Principal,
    body: str,
    subject: Optional[str] = None,
) -> MutableMapping[str, Any]:
    """Create a JSON-serializable payload for the notification gateway."""
    payload: MutableMapping[str, Any] = {
        "channel": channel,
        "principal": {
            "principal_id": principal.principal_id,
            "email": principal.email,
            "display_name": principal.display_name,
            "phone_number": principal.phone_number,
        },
        "subject": subject,
        "body": body,
        "sent_at": utcnow(),
    }
    return jsonable_encoder(payload)


def deliver_webhook(webhook_url: Optional[str], payload: Mapping[str, Any], timeout: float = 5.0) -> None:
    """POST the payload to the gateway. HTTP failures propagate to the caller."""
    if not webhook_url:
        logger.debug("No notification webhook configured; dropping %s message", payload.get("channel"))
        return

    with httpx.Client(timeout=timeout) as client:
        response = client.post(str(webhook_url), json=payload)
        response.raise_for_status()


class WebhookNotifier:
    """Notifier that forwards email, SMS and admin messages to an HTTP gateway."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0):
        self.webhook_url = webhook_url or resolve_webhook_url()
        self.timeout = timeout

    def send_email(self, principal: Principal, subject: str, body: str) -> None:
        self._send("email", principal, body, subject)

    def send_sms(self, principal: Principal, body: str) -> None:
        self._send("sms", principal, body)

    def notify_admins(self, principal: Principal, summary: str) -> None:
        self._send("admin", principal, summary, "Security alert - action required")

    def _send(self, channel: str, principal: Principal, body: str, subject: Optional[str] = None) -> None:
        payload = build_notification_payload(channel=channel, principal=principal, body=body, subject=subject)
        deliver_webhook(self.webhook_url, payload, timeout=self.timeout)


class WebhookAccountStatus:
    """Forwards account-status changes to the account service's webhook."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0):
        self.webhook_url = webhook_url or os.getenv("ACCOUNT_STATUS_WEBHOOK_URL")
        self.timeout = timeout

    def set_under_surveillance(self, principal_id: str, flag: bool) -> None:
        self._send({"action": "set_under_surveillance", "principal_id": principal_id, "value": flag})

    def reactivate(self, principal_id: str) -> None:
        self._send({"action": "reactivate", "principal_id": principal_id})

    def _send(self, payload: MutableMapping[str, Any]) -> None:
        payload["channel"] = "account_status"
        deliver_webhook(self.webhook_url, jsonable_encoder(payload), timeout=self.timeout)
