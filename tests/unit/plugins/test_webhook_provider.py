"""Unit tests for the webhook channel provider."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

import pytest

from event_notifications.config.models import EventTypeConfig, WebhookProviderConfig
from event_notifications.core.router import NO_HEALTHY_PROVIDER, ChannelRouter
from event_notifications.plugins.webhook import WebhookProvider, WebhookResponse, create_provider
from event_notifications.types import ChannelProvider, DeliveryStatus, NotificationContext
from tests.fixtures.providers import instant_retry_executor


@dataclass
class PostedRequest:
    url: str
    payload: Mapping[str, object]
    timeout: float
    headers: Mapping[str, str] | None


@dataclass
class FakeHTTPClient:
    """HTTPClient double returning queued responses or raising queued errors."""

    responses: list[WebhookResponse | Exception] = field(default_factory=list)
    requests: list[PostedRequest] = field(default_factory=list)

    async def post(
        self,
        url: str,
        payload: Mapping[str, object],
        *,
        timeout: float,
        headers: Mapping[str, str] | None = None,
    ) -> WebhookResponse:
        self.requests.append(PostedRequest(url, payload, timeout, headers))
        outcome = self.responses.pop(0) if self.responses else WebhookResponse(status=200)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@dataclass
class ManualClock:
    now: float = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def webhook_config() -> WebhookProviderConfig:
    return WebhookProviderConfig(
        name="ops",
        url="https://hooks.example.com/ops?token=abc",
        headers={"X-Team": "ops"},
        timeout=3.0,
        unhealthy_threshold=2,
    )


@pytest.fixture
def http_client() -> FakeHTTPClient:
    return FakeHTTPClient()


@pytest.fixture
def provider(webhook_config: WebhookProviderConfig, http_client: FakeHTTPClient) -> WebhookProvider:
    return create_provider(config=webhook_config, http_client=http_client)


@pytest.fixture
def context() -> NotificationContext:
    return NotificationContext(
        event_id="evt-1",
        correlation_id="corr-1",
        event_type="order.shipped",
        attempt=2,
        metadata={"source": "tests"},
    )


class TestWebhookProvider:
    def test_satisfies_protocol(self, provider: WebhookProvider) -> None:
        assert isinstance(provider, ChannelProvider)
        assert provider.channel == "webhook"
        assert provider.name == "ops"

    @pytest.mark.asyncio
    async def test_send_posts_event_envelope(
        self, provider: WebhookProvider, http_client: FakeHTTPClient, context: NotificationContext
    ) -> None:
        result = await provider.send({"orderId": 7}, context)

        assert result.status is DeliveryStatus.SENT
        assert result.attempts == 2
        assert result.metadata["status_code"] == 200
        assert "delivery_time_ms" in result.metadata

        request = http_client.requests[0]
        assert request.url == "https://hooks.example.com/ops?token=abc"
        assert request.timeout == 3.0
        assert request.headers == {"X-Team": "ops"}
        assert request.payload == {
            "event": {
                "eventId": "evt-1",
                "correlationId": "corr-1",
                "eventType": "order.shipped",
                "attempt": 2,
                "metadata": {"source": "tests"},
            },
            "payload": {"orderId": 7},
        }

    @pytest.mark.asyncio
    async def test_http_error_status(
        self, provider: WebhookProvider, http_client: FakeHTTPClient, context: NotificationContext
    ) -> None:
        http_client.responses.append(WebhookResponse(status=503))

        result = await provider.send({}, context)

        assert result.status is DeliveryStatus.FAILED
        assert result.error == "Webhook responded with HTTP 503"
        assert result.metadata["status_code"] == 503
        assert result.metadata["retryable"] is True

    @pytest.mark.asyncio
    async def test_client_error_is_sanitized(
        self, provider: WebhookProvider, http_client: FakeHTTPClient, context: NotificationContext
    ) -> None:
        http_client.responses.append(ConnectionError("POST https://hooks.example.com/ops?token=abc refused"))

        result = await provider.send({}, context)

        assert result.status is DeliveryStatus.FAILED
        assert result.error is not None
        assert result.error.startswith("ConnectionError: ")
        assert "token=abc" not in result.error
        assert result.metadata["retryable"] is True

    @pytest.mark.asyncio
    async def test_client_error_not_retryable(
        self, provider: WebhookProvider, http_client: FakeHTTPClient, context: NotificationContext
    ) -> None:
        http_client.responses.append(WebhookResponse(status=404))

        result = await provider.send({}, context)

        assert result.metadata["retryable"] is False

    @pytest.mark.asyncio
    async def test_health_follows_consecutive_failures(
        self, provider: WebhookProvider, http_client: FakeHTTPClient, context: NotificationContext
    ) -> None:
        http_client.responses.extend([WebhookResponse(status=500), WebhookResponse(status=500)])

        _ = await provider.send({}, context)
        assert await provider.health_check() is True

        _ = await provider.send({}, context)
        assert await provider.health_check() is False
        status = provider.health_status()
        assert status.consecutive_failures == 2
        assert status.error_message is not None

        _ = await provider.send({}, context)
        assert await provider.health_check() is True
        assert provider.consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_reports_healthy_again_after_recovery_timeout(
        self, webhook_config: WebhookProviderConfig, http_client: FakeHTTPClient, context: NotificationContext
    ) -> None:
        clock = ManualClock()
        provider = WebhookProvider(
            config=webhook_config.model_copy(update={"recovery_timeout": 30.0}),
            http_client=http_client,
            clock=clock,
        )
        http_client.responses.extend([WebhookResponse(status=503)] * 3)

        _ = await provider.send({}, context)
        _ = await provider.send({}, context)
        clock.now += 29.0
        assert await provider.health_check() is False

        clock.now += 1.0
        assert await provider.health_check() is True
        assert provider.health_status().error_message is not None

        _ = await provider.send({}, context)
        assert await provider.health_check() is False
        assert provider.consecutive_failures == 3

    def test_validate_config(self, provider: WebhookProvider) -> None:
        assert provider.validate_config({"name": "ops", "url": "https://hooks.example.com"}) is True

        errors = provider.validate_config({"name": "ops", "url": "ftp://hooks.example.com"})
        assert isinstance(errors, list)
        assert errors[0].startswith("url: ")


class TestRoutingAfterOutage:
    @pytest.mark.asyncio
    async def test_channel_recovers_once_endpoint_is_back(
        self, webhook_config: WebhookProviderConfig, http_client: FakeHTTPClient, context: NotificationContext
    ) -> None:
        clock = ManualClock()
        provider = WebhookProvider(
            config=webhook_config.model_copy(update={"unhealthy_threshold": 3, "recovery_timeout": 30.0}),
            http_client=http_client,
            clock=clock,
        )
        executor, _ = instant_retry_executor()
        router = ChannelRouter(
            {"order.shipped": EventTypeConfig(channels=["webhook"], retry_attempts=3)},
            retry_executor=executor,
        )
        router.register_provider(provider)
        http_client.responses.extend([WebhookResponse(status=503)] * 3)

        [outage] = await router.route("order.shipped", {}, context)
        assert outage.status is DeliveryStatus.FAILED
        assert outage.error == "Webhook responded with HTTP 503"
        assert len(http_client.requests) == 3

        [rejected] = await router.route("order.shipped", {}, context)
        assert rejected.error == NO_HEALTHY_PROVIDER
        assert len(http_client.requests) == 3

        clock.now += 31.0
        [recovered] = await router.route("order.shipped", {}, context)
        assert recovered.status is DeliveryStatus.SENT
        assert len(http_client.requests) == 4
        assert provider.consecutive_failures == 0
