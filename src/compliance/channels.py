"""Notification channels for compliance messages.

A channel delivers one rendered ``Notification`` (recipient, title,
body). ``LogChannel`` writes it to the structured log and is the default
transport; ``WebhookChannel`` POSTs it as JSON to an HTTP endpoint such
as a mail relay.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import httpx
import structlog

logger = logging.getLogger(__name__)

# Event name receivers use to route compliance messages
WEBHOOK_EVENT = "compliance.notification"

RecipientKind = Literal["advisor", "owner"]


@dataclass(frozen=True)
class Recipient:
    """Who a notification is for: an advisor, or the system owner."""

    kind: RecipientKind
    name: str
    recipient_id: int | None = None
    address: str | None = None

    @classmethod
    def owner(cls, name: str = "System Owner", address: str | None = None) -> "Recipient":
        return cls(kind="owner", name=name, address=address)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "recipient_id": self.recipient_id,
            "address": self.address,
        }


@dataclass(frozen=True)
class Notification:
    """A rendered message ready for delivery."""

    recipient: Recipient
    title: str
    body: str
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipient": self.recipient.to_dict(),
            "title": self.title,
            "body": self.body,
            "created_at": self.created_at.isoformat(),
        }


class NotificationChannel(ABC):
    """Abstract base for notification delivery channels."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel (e.g. 'log', 'webhook')."""

    @abstractmethod
    async def send(self, notification: Notification) -> bool:
        """Deliver a notification through this channel.

        Args:
            notification: Message to deliver.

        Returns:
            True if delivery succeeded, False otherwise.
        """


class LogChannel(NotificationChannel):
    """Writes notifications to the structured log. Never fails."""

    def __init__(self) -> None:
        self._logger = structlog.get_logger("compliance.notifications")

    @property
    def name(self) -> str:
        return "log"

    async def send(self, notification: Notification) -> bool:
        self._logger.info(
            "Compliance notification",
            recipient_kind=notification.recipient.kind,
            recipient=notification.recipient.name,
            recipient_id=notification.recipient.recipient_id,
            title=notification.title,
            body=notification.body,
        )
        return True


class WebhookChannel(NotificationChannel):
    """Delivers notifications as JSON POST to an HTTP endpoint.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling);
    notifications are a handful per scan.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "webhook"

    async def send(self, notification: Notification) -> bool:
        recipient = notification.recipient
        payload = {"event": WEBHOOK_EVENT, **notification.to_dict()}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json=payload, headers=self._headers)
        except httpx.TimeoutException:
            logger.warning(
                "Compliance webhook gave no answer within %.0fs for %s %s",
                self._timeout, recipient.kind, recipient.name,
            )
            return False
        except httpx.HTTPError as e:
            logger.warning(
                "Compliance webhook unreachable for %s %s: %s",
                recipient.kind, recipient.name, e,
            )
            return False

        if not resp.is_success:
            logger.warning(
                "Compliance webhook rejected %r for %s %s (HTTP %d)",
                notification.title, recipient.kind, recipient.name, resp.status_code,
            )
            return False
        return True
