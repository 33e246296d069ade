"""Notification dispatcher delivering compliance messages across channels.

Retries each channel a configured number of times. A notification counts
as delivered if at least one channel accepted it. Delivery failures are
reported as ``False`` and never raised, so one advisor's failed message
cannot stop the rest of a scan run.
"""

import asyncio
import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.compliance.channels import (
    LogChannel,
    Notification,
    NotificationChannel,
    Recipient,
    WebhookChannel,
)
from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class NotificationConfig(BaseSettings):
    """Configuration for notification rendering and dispatch."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum send attempts per channel per notification",
    )
    retry_delays: list[float] = Field(
        default=[1.0, 5.0, 30.0],
        description="Per-attempt delay in seconds before each retry",
    )
    webhook_url: str | None = Field(
        default=None,
        description="Optional HTTP endpoint receiving every notification as JSON",
    )
    webhook_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)
    owner_name: str = Field(
        default="System Owner",
        description="Display name of the system owner receiving run summaries",
    )
    owner_address: str | None = Field(
        default=None,
        description="Delivery address of the system owner",
    )
    max_warning_lines: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Warnings listed individually in an advisor summary",
    )

    @property
    def owner(self) -> Recipient:
        return Recipient.owner(name=self.owner_name, address=self.owner_address)


def build_channels(config: NotificationConfig) -> list[NotificationChannel]:
    """Channels implied by configuration: always the log, plus the webhook if set."""
    channels: list[NotificationChannel] = [LogChannel()]
    if config.webhook_url:
        channels.append(
            WebhookChannel(url=config.webhook_url, timeout=config.webhook_timeout_seconds)
        )
    return channels


class NotificationDispatcher:
    """Delivers notifications to every configured channel with retry."""

    def __init__(
        self,
        channels: list[NotificationChannel] | None = None,
        config: NotificationConfig | None = None,
    ) -> None:
        self._config = config or NotificationConfig()
        self._channels = channels if channels is not None else build_channels(self._config)

    @property
    def channels(self) -> list[NotificationChannel]:
        return self._channels

    @property
    def config(self) -> NotificationConfig:
        return self._config

    async def deliver(self, notification: Notification) -> bool:
        """Send a notification to all channels.

        Args:
            notification: Rendered message.

        Returns:
            True if at least one channel accepted it.
        """
        results: list[tuple[str, bool]] = []
        for channel in self._channels:
            success = await self._send_with_retry(channel, notification)
            results.append((channel.name, success))

        delivered = any(ok for _, ok in results)
        get_metrics().record_notification(notification.recipient.kind, delivered)

        failed = [name for name, ok in results if not ok]
        if not delivered:
            logger.error(
                "No channel accepted %r for %s %s (tried: %s)",
                notification.title, notification.recipient.kind,
                notification.recipient.name, ", ".join(failed),
            )
        elif failed:
            logger.warning(
                "%r delivered, but not through: %s",
                notification.title, ", ".join(failed),
            )
        return delivered

    def _retry_delay(self, retry: int) -> float:
        """Seconds to wait before the ``retry``-th retry (1-based).

        The last configured delay repeats once the schedule runs out.
        """
        delays = self._config.retry_delays
        if not delays:
            return 0.0
        return delays[min(retry, len(delays)) - 1]

    async def _send_with_retry(
        self,
        channel: NotificationChannel,
        notification: Notification,
    ) -> bool:
        attempts = self._config.retry_max_attempts

        for attempt in range(1, attempts + 1):
            if attempt > 1:
                await asyncio.sleep(self._retry_delay(attempt - 1))

            try:
                accepted = await channel.send(notification)
            except Exception as e:
                accepted = False
                logger.warning(
                    "%s channel raised on attempt %d/%d for %r: %s",
                    channel.name, attempt, attempts, notification.title, e,
                )

            if accepted:
                if attempt > 1:
                    logger.info(
                        "%r reached %s channel after %d attempts",
                        notification.title, channel.name, attempt,
                    )
                return True

        logger.warning(
            "Giving up on %s channel for %r to %s after %d attempts",
            channel.name, notification.title, notification.recipient.name, attempts,
        )
        return False
