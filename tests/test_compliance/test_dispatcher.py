"""Tests for notification channels and the dispatcher."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import NOW
from src.compliance.channels import (
    LogChannel,
    Notification,
    NotificationChannel,
    Recipient,
    WebhookChannel,
)
from src.compliance.dispatcher import (
    NotificationConfig,
    NotificationDispatcher,
    build_channels,
)


# ── Fixtures ────────────────────────────────────────────


@pytest.fixture
def notification():
    return Notification(
        recipient=Recipient(kind="advisor", name="Jane Advisor", recipient_id=7),
        title="Compliance Alert Summary - 1 Critical, 0 Warnings",
        body="Dear Jane Advisor,",
        created_at=NOW,
    )


@pytest.fixture
def fast_config():
    return NotificationConfig(retry_max_attempts=3, retry_delays=[0.0, 0.0, 0.0])


def _mock_response(status_code: int = 200) -> httpx.Response:
    """Create a mock httpx.Response."""
    return httpx.Response(status_code=status_code, request=httpx.Request("POST", "http://test"))


class StubChannel(NotificationChannel):
    """Channel returning scripted results."""

    def __init__(self, name: str, results: list):
        self._name = name
        self._results = list(results)
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def send(self, notification: Notification) -> bool:
        self.calls += 1
        result = self._results.pop(0) if self._results else False
        if isinstance(result, Exception):
            raise result
        return result


# ── WebhookChannel ──────────────────────────────────────


class TestWebhookChannel:
    """Tests for WebhookChannel."""

    @pytest.mark.asyncio
    async def test_successful_send(self, notification):
        channel = WebhookChannel(url="https://example.com/hook", headers={"X-Token": "t"})

        with patch("src.compliance.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.return_value = _mock_response(200)
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)

            result = await channel.send(notification)

        assert result is True
        call_kwargs = mock_client.post.call_args.kwargs
        assert call_kwargs["json"]["title"] == notification.title
        assert call_kwargs["json"]["recipient"]["recipient_id"] == 7
        assert call_kwargs["headers"] == {"X-Token": "t"}
        assert call_kwargs["json"]["event"] == "compliance.notification"

    @pytest.mark.asyncio
    async def test_error_status(self, notification):
        channel = WebhookChannel(url="https://example.com/hook")

        with patch("src.compliance.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.return_value = _mock_response(503)
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)

            assert await channel.send(notification) is False

    @pytest.mark.asyncio
    async def test_timeout(self, notification):
        channel = WebhookChannel(url="https://example.com/hook")

        with patch("src.compliance.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.side_effect = httpx.ReadTimeout("slow")
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)

            assert await channel.send(notification) is False

    @pytest.mark.asyncio
    async def test_connection_refused(self, notification):
        channel = WebhookChannel(url="https://example.com/hook")

        with patch("src.compliance.channels.httpx.AsyncClient") as mock_client_cls:
            mock_client = AsyncMock()
            mock_client.post.side_effect = httpx.ConnectError("refused")
            mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)

            assert await channel.send(notification) is False


class TestLogChannel:
    """Tests for LogChannel."""

    @pytest.mark.asyncio
    async def test_always_succeeds(self, notification):
        channel = LogChannel()
        assert channel.name == "log"
        assert await channel.send(notification) is True


# ── Dispatcher ──────────────────────────────────────────


class TestBuildChannels:
    """Tests for channel construction from config."""

    def test_log_only_by_default(self):
        channels = build_channels(NotificationConfig())
        assert [c.name for c in channels] == ["log"]

    def test_webhook_when_configured(self):
        channels = build_channels(NotificationConfig(webhook_url="https://example.com/hook"))
        assert [c.name for c in channels] == ["log", "webhook"]


class TestNotificationDispatcher:
    """Tests for NotificationDispatcher delivery and retry."""

    @pytest.mark.asyncio
    async def test_delivered_on_first_try(self, notification, fast_config):
        channel = StubChannel("stub", [True])
        dispatcher = NotificationDispatcher([channel], fast_config)

        assert await dispatcher.deliver(notification) is True
        assert channel.calls == 1

    @pytest.mark.asyncio
    async def test_retries_until_success(self, notification, fast_config):
        channel = StubChannel("stub", [False, RuntimeError("boom"), True])
        dispatcher = NotificationDispatcher([channel], fast_config)

        assert await dispatcher.deliver(notification) is True
        assert channel.calls == 3

    @pytest.mark.asyncio
    async def test_all_attempts_fail(self, notification, fast_config):
        channel = StubChannel("stub", [False, False, False, True])
        dispatcher = NotificationDispatcher([channel], fast_config)

        assert await dispatcher.deliver(notification) is False
        assert channel.calls == 3

    @pytest.mark.asyncio
    async def test_partial_delivery_counts_as_delivered(self, notification, fast_config):
        good = StubChannel("good", [True])
        bad = StubChannel("bad", [])
        dispatcher = NotificationDispatcher([bad, good], fast_config)

        assert await dispatcher.deliver(notification) is True

    @pytest.mark.asyncio
    async def test_retry_delays_used(self, notification):
        config = NotificationConfig(retry_max_attempts=3, retry_delays=[1.0, 5.0])
        channel = StubChannel("stub", [False, False, False])
        dispatcher = NotificationDispatcher([channel], config)

        with patch("src.compliance.dispatcher.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await dispatcher.deliver(notification)

        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 5.0]

    @pytest.mark.asyncio
    async def test_last_delay_repeats(self, notification):
        config = NotificationConfig(retry_max_attempts=4, retry_delays=[1.0, 5.0])
        channel = StubChannel("stub", [False, False, False, True])
        dispatcher = NotificationDispatcher([channel], config)

        with patch("src.compliance.dispatcher.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            assert await dispatcher.deliver(notification) is True

        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 5.0, 5.0]
        assert channel.calls == 4

    def test_owner_recipient(self):
        config = NotificationConfig(owner_name="Ops Desk", owner_address="ops@example.com")
        owner = config.owner

        assert owner.kind == "owner"
        assert owner.name == "Ops Desk"
        assert owner.address == "ops@example.com"
