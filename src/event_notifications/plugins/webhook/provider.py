"""Webhook channel provider.

Posts each event as JSON to a configured URL::

    {"event": {"eventId": ..., "correlationId": ..., "eventType": ...,
               "attempt": 1, "metadata": {...}},
     "payload": ...}

A 2xx or 3xx response is a successful delivery. Health is passive: the
provider reports unhealthy after ``unhealthy_threshold`` consecutive failed
deliveries. Once ``recovery_timeout`` seconds have passed since the last
failure it reports healthy again (half-open) so the router sends a trial
delivery; a success closes the circuit and a failure reopens it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import ValidationError

from event_notifications.config.models import WebhookProviderConfig
from event_notifications.core.retry import is_retryable_error
from event_notifications.plugins.webhook.client import HTTPClient
from event_notifications.types import DeliveryStatus, HealthStatus, NotificationContext, NotificationResult, utc_now
from event_notifications.utils.logging import log_with_context
from event_notifications.utils.sanitization import sanitize_exception, sanitize_url

__all__ = ["WebhookProvider", "create_provider"]


@dataclass(slots=True)
class WebhookProvider:
    """Channel provider delivering events to an HTTP webhook.

    Attributes:
        config: Webhook target, headers and timeout
        http_client: HTTP client used for delivery (injected dependency)
        clock: Monotonic time source used for the recovery window
    """

    config: WebhookProviderConfig
    http_client: HTTPClient
    clock: Callable[[], float] = time.monotonic
    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _last_failure_at: float = field(default=0.0, init=False, repr=False)
    _last_check: datetime = field(default_factory=utc_now, init=False, repr=False)
    _logger: logging.Logger = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._logger = logging.getLogger(__name__)

    @property
    def channel(self) -> str:
        return self.config.channel

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    async def send(self, payload: object, context: NotificationContext) -> NotificationResult:
        body: dict[str, object] = {
            "event": {
                "eventId": context.event_id,
                "correlationId": context.correlation_id,
                "eventType": context.event_type,
                "attempt": context.attempt,
                "metadata": dict(context.metadata),
            },
            "payload": payload,
        }
        start = time.perf_counter()
        try:
            response = await self.http_client.post(
                self.config.url,
                body,
                timeout=self.config.timeout,
                headers=self.config.headers,
            )
        except Exception as exc:
            return self._failure(
                sanitize_exception(exc),
                start,
                {"retryable": is_retryable_error(exc)},
            )

        if not response.ok:
            return self._failure(
                f"Webhook responded with HTTP {response.status}",
                start,
                {"status_code": response.status, "retryable": is_retryable_error(f"HTTP {response.status}")},
            )

        self._consecutive_failures = 0
        self._last_check = utc_now()
        delivery_ms = (time.perf_counter() - start) * 1000.0
        log_with_context(
            self._logger,
            logging.DEBUG,
            "Webhook delivered",
            extra={"provider": self.name, "url": sanitize_url(self.config.url), "status_code": response.status},
        )
        return NotificationResult(
            channel=self.channel,
            provider=self.name,
            status=DeliveryStatus.SENT,
            attempts=context.attempt,
            metadata={"status_code": response.status, "delivery_time_ms": round(delivery_ms, 2)},
        )

    async def health_check(self) -> bool:
        return self.health_status().is_healthy

    def health_status(self) -> HealthStatus:
        """Return passive health derived from recent deliveries."""
        is_healthy = not self._circuit_open()
        error_message = None
        if not is_healthy:
            error_message = f"Webhook provider unhealthy after {self._consecutive_failures} consecutive failures"
        elif self._consecutive_failures >= self.config.unhealthy_threshold:
            error_message = "Webhook provider half-open, next delivery is a trial"
        return HealthStatus(
            is_healthy=is_healthy,
            last_check=self._last_check,
            consecutive_failures=self._consecutive_failures,
            error_message=error_message,
        )

    def validate_config(self, config: Mapping[str, object]) -> bool | list[str]:
        """Validate a webhook provider configuration mapping."""
        try:
            _ = WebhookProviderConfig.model_validate(config)
        except ValidationError as exc:
            return [
                f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            ]
        return True

    def _circuit_open(self) -> bool:
        if self._consecutive_failures < self.config.unhealthy_threshold:
            return False
        return self.clock() - self._last_failure_at < self.config.recovery_timeout

    def _failure(self, error: str, start: float, metadata: dict[str, object]) -> NotificationResult:
        self._consecutive_failures += 1
        self._last_failure_at = self.clock()
        self._last_check = utc_now()
        metadata["delivery_time_ms"] = round((time.perf_counter() - start) * 1000.0, 2)
        log_with_context(
            self._logger,
            logging.WARNING,
            "Webhook delivery failed",
            extra={
                "provider": self.name,
                "url": sanitize_url(self.config.url),
                "consecutive_failures": self._consecutive_failures,
                "error": error,
            },
        )
        return NotificationResult(
            channel=self.channel,
            provider=self.name,
            status=DeliveryStatus.FAILED,
            error=error,
            metadata=metadata,
        )


def create_provider(*, config: WebhookProviderConfig, http_client: HTTPClient) -> WebhookProvider:
    """Factory for WebhookProvider instances."""
    return WebhookProvider(config=config, http_client=http_client)
