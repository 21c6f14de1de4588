"""Notification service boundary.

Workflow steps never talk to SMTP or push providers themselves; they hand a
template name plus variables to the notification service, which renders and
delivers it. One endpoint per channel:

    EMAIL -> POST /notification/email/template
    SMS   -> POST /notification/sms
    PUSH  -> POST /notification/push
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

import httpx

from core.exceptions import DispatchError

logger = logging.getLogger(__name__)


# ─── Data Types ────────────────────────────────────────────────

class NotificationChannel(str, Enum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"


@dataclass
class TemplatedNotification:
    """A template-based notification request."""
    recipient: str
    template_name: str
    channel: NotificationChannel = NotificationChannel.EMAIL
    variables: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {
            "to": self.recipient,
            "template": self.template_name,
            "templateVariables": self.variables,
        }


@dataclass
class DeliveryResult:
    """Result of a notification delivery attempt."""
    success: bool
    channel: NotificationChannel
    recipient: str
    message: str = ""
    error: Optional[str] = None
    delivered_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivered": self.success,
            "channel": self.channel.value,
            "recipient": self.recipient,
            "message": self.message,
            "error": self.error,
            "delivered_at": self.delivered_at,
        }


# ─── Port ──────────────────────────────────────────────────────

class NotificationPort(ABC):
    """Abstract notification service."""

    @abstractmethod
    async def send_templated(
        self,
        recipient: str,
        template_name: str,
        variables: dict[str, Any],
        channel: NotificationChannel = NotificationChannel.EMAIL,
    ) -> DeliveryResult:
        """Deliver a templated notification.

        An unconfirmed delivery is reported through ``DeliveryResult``;
        an exception means the service could not be reached at all.
        """
        ...


# ─── HTTP Implementation ───────────────────────────────────────

class HttpNotificationClient(NotificationPort):
    """Notification boundary backed by the notification service REST API."""

    _PATHS = {
        NotificationChannel.EMAIL: "/notification/email/template",
        NotificationChannel.SMS: "/notification/sms",
        NotificationChannel.PUSH: "/notification/push",
    }

    def __init__(self, base_url: str, timeout_seconds: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send_templated(
        self,
        recipient: str,
        template_name: str,
        variables: dict[str, Any],
        channel: NotificationChannel = NotificationChannel.EMAIL,
    ) -> DeliveryResult:
        channel = NotificationChannel(channel)
        notification = TemplatedNotification(
            recipient=recipient,
            template_name=template_name,
            channel=channel,
            variables=variables or {},
        )
        client = await self._get_client()
        try:
            response = await client.post(self._PATHS[channel], json=notification.to_payload())
        except httpx.HTTPError as e:
            raise DispatchError(f"Notification service unreachable: {e}")

        if response.is_success:
            logger.info(f"Notification {template_name} sent via {channel.value} to {recipient}")
            return DeliveryResult(
                success=True,
                channel=channel,
                recipient=recipient,
                message=f"Template {template_name} accepted",
                delivered_at=datetime.now(timezone.utc).isoformat(),
            )

        logger.warning(
            f"Notification {template_name} via {channel.value} not confirmed: "
            f"HTTP {response.status_code}"
        )
        return DeliveryResult(
            success=False,
            channel=channel,
            recipient=recipient,
            error=f"HTTP {response.status_code}: {response.text[:200]}",
        )
