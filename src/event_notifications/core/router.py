"""Channel router fanning one event out to its configured channels.

For every channel of an event type the router selects the first registered
provider whose health check passes and delivers through the retry executor.
Channels are processed concurrently with ``asyncio.TaskGroup``; a failure on
one channel is captured as a ``failed`` result and never affects the
others. Exactly one result is returned per configured channel, in
configuration order.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Mapping

from event_notifications.config.exceptions import InvalidEventTypeConfigError, UnknownEventTypeError
from event_notifications.config.models import EventTypeConfig
from event_notifications.core.registry import ChannelProviderRegistry
from event_notifications.core.retry import RetryExecutor, RetryPolicy
from event_notifications.types import ChannelProvider, DeliveryStatus, NotificationContext, NotificationResult
from event_notifications.utils.logging import (
    get_logger,
    log_with_context,
    reset_correlation_id,
    set_correlation_id,
)
from event_notifications.utils.sanitization import sanitize_exception

__all__ = ["NO_HEALTHY_PROVIDER", "ChannelRouter"]

NO_HEALTHY_PROVIDER = "no healthy provider"


class ChannelRouter:
    """Route events to channel providers with per-channel retry."""

    def __init__(
        self,
        event_types: Mapping[str, EventTypeConfig],
        *,
        registry: ChannelProviderRegistry | None = None,
        retry_executor: RetryExecutor | None = None,
        retry_policy: RetryPolicy | None = None,
        default_retry_attempts: int = 3,
        provider_timeout_seconds: float | None = None,
        health_check_timeout_seconds: float = 5.0,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        if provider_timeout_seconds is not None and provider_timeout_seconds <= 0:
            msg = "provider_timeout_seconds must be greater than zero"
            raise ValueError(msg)

        self._event_types: Mapping[str, EventTypeConfig] = event_types
        self._registry: ChannelProviderRegistry = registry if registry is not None else ChannelProviderRegistry()
        self._retry_policy: RetryPolicy = retry_policy or RetryPolicy()
        self._retry: RetryExecutor = retry_executor or RetryExecutor(self._retry_policy)
        self._default_retry_attempts: int = default_retry_attempts
        self._provider_timeout_seconds: float | None = provider_timeout_seconds
        self._health_check_timeout_seconds: float = health_check_timeout_seconds
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    @property
    def registry(self) -> ChannelProviderRegistry:
        return self._registry

    def register_provider(self, provider: ChannelProvider) -> None:
        """Register a provider for its channel."""
        self._registry.register(provider)
        log_with_context(
            self._logger,
            logging.INFO,
            "Channel provider registered",
            extra={"channel": provider.channel, "provider": provider.name},
        )

    def unregister_provider(self, channel: str, name: str) -> bool:
        """Remove a provider; return whether it was registered."""
        removed = self._registry.unregister(channel, name)
        if removed:
            log_with_context(
                self._logger,
                logging.INFO,
                "Channel provider unregistered",
                extra={"channel": channel, "provider": name},
            )
        return removed

    def get_event_type_config(self, event_type: str) -> EventTypeConfig:
        """Return the configuration of ``event_type``.

        Raises:
            UnknownEventTypeError: If the event type is not configured
            InvalidEventTypeConfigError: If it has no channels
        """
        config = self._event_types.get(event_type)
        if config is None:
            raise UnknownEventTypeError(event_type)
        if not config.channels:
            raise InvalidEventTypeConfigError(event_type, "no channels configured")
        return config

    async def route(
        self,
        event_type: str,
        payload: object,
        context: NotificationContext,
        *,
        retry_attempts: int | None = None,
    ) -> list[NotificationResult]:
        """Deliver ``payload`` to every channel configured for ``event_type``.

        Args:
            event_type: Configured event type name
            payload: Opaque payload handed to each provider
            context: Event identifiers and metadata
            retry_attempts: Per-call override of the configured attempt count

        Returns:
            One terminal result per configured channel, in configured order
        """
        config = self.get_event_type_config(event_type)
        attempts = self._resolve_attempts(config, retry_attempts)
        channels = list(config.channels)

        token = set_correlation_id(context.correlation_id)
        try:
            log_with_context(
                self._logger,
                logging.INFO,
                "Routing event",
                extra={
                    "event_id": context.event_id,
                    "event_type": event_type,
                    "channels": channels,
                    "max_attempts": attempts,
                },
            )

            results: list[NotificationResult | None] = [None] * len(channels)

            async def _route_single(index: int, channel: str) -> None:
                results[index] = await self._route_channel(channel, payload, context, attempts)

            async with asyncio.TaskGroup() as task_group:
                for index, channel in enumerate(channels):
                    _ = task_group.create_task(_route_single(index, channel))

            ordered = [result for result in results if result is not None]
            sent = sum(1 for result in ordered if result.succeeded)
            log_with_context(
                self._logger,
                logging.INFO if sent == len(ordered) else logging.WARNING,
                "Event routed",
                extra={
                    "event_id": context.event_id,
                    "event_type": event_type,
                    "sent": sent,
                    "failed": len(ordered) - sent,
                },
            )
            return ordered
        finally:
            reset_correlation_id(token)

    async def health_check(self) -> bool:
        """Return True when at least one registered provider is healthy."""
        health = await self.provider_health()
        return any(healthy for providers in health.values() for healthy in providers.values())

    async def provider_health(self) -> dict[str, dict[str, bool]]:
        """Return the current health check outcome of every provider, per channel."""
        providers = self._registry.get_all()
        outcomes: list[bool] = [False] * len(providers)

        async def _check(index: int, provider: ChannelProvider) -> None:
            outcomes[index] = await self._is_healthy(provider)

        async with asyncio.TaskGroup() as task_group:
            for index, provider in enumerate(providers):
                _ = task_group.create_task(_check(index, provider))

        report: dict[str, dict[str, bool]] = {}
        for provider, healthy in zip(providers, outcomes, strict=True):
            report.setdefault(provider.channel, {})[provider.name] = healthy
        return report

    def _resolve_attempts(self, config: EventTypeConfig, override: int | None) -> int:
        if override is not None:
            return max(1, override)
        if config.retry_attempts is not None:
            return max(1, config.retry_attempts)
        return max(1, self._default_retry_attempts)

    async def _route_channel(
        self,
        channel: str,
        payload: object,
        context: NotificationContext,
        attempts: int,
    ) -> NotificationResult:
        try:
            provider = await self._select_provider(channel)
            if provider is None:
                log_with_context(
                    self._logger,
                    logging.WARNING,
                    "No healthy provider for channel",
                    extra={"event_id": context.event_id, "channel": channel},
                )
                return NotificationResult(
                    channel=channel,
                    provider="none",
                    status=DeliveryStatus.FAILED,
                    error=NO_HEALTHY_PROVIDER,
                    attempts=0,
                )

            async def _attempt(attempt: int) -> NotificationResult:
                return await self._send(provider, payload, context, attempt)

            result = await self._retry.execute_with_result(
                _attempt,
                attempts,
                self._retry_policy,
                channel=channel,
                provider=provider.name,
            )
            self._record_outcome(provider, result)
            return result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = sanitize_exception(exc)
            log_with_context(
                self._logger,
                logging.ERROR,
                "Channel routing raised unexpectedly",
                extra={"event_id": context.event_id, "channel": channel, "error": error},
            )
            return NotificationResult(
                channel=channel,
                provider="unknown",
                status=DeliveryStatus.FAILED,
                error=error,
            )

    async def _send(
        self,
        provider: ChannelProvider,
        payload: object,
        context: NotificationContext,
        attempt: int,
    ) -> NotificationResult:
        attempt_context = dataclasses.replace(context, attempt=attempt, metadata=dict(context.metadata))
        if self._provider_timeout_seconds is None:
            result = await provider.send(payload, attempt_context)
        else:
            async with asyncio.timeout(self._provider_timeout_seconds):
                result = await provider.send(payload, attempt_context)
        result.channel = provider.channel
        return result

    async def _select_provider(self, channel: str) -> ChannelProvider | None:
        for provider in self._registry.providers_for(channel):
            if await self._is_healthy(provider):
                return provider
        return None

    async def _is_healthy(self, provider: ChannelProvider) -> bool:
        try:
            async with asyncio.timeout(self._health_check_timeout_seconds):
                return bool(await provider.health_check())
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log_with_context(
                self._logger,
                logging.WARNING,
                "Provider health check failed",
                extra={
                    "channel": provider.channel,
                    "provider": provider.name,
                    "error": sanitize_exception(exc),
                },
            )
            return False

    def _record_outcome(self, provider: ChannelProvider, result: NotificationResult) -> None:
        if self._registry.get(provider.channel, provider.name) is None:
            return
        if result.succeeded:
            _ = self._registry.record_success(provider.channel, provider.name)
            log_with_context(
                self._logger,
                logging.INFO,
                "Channel delivery succeeded",
                extra={"channel": provider.channel, "provider": provider.name, "attempts": result.attempts},
            )
        else:
            _ = self._registry.record_failure(provider.channel, provider.name, error_message=result.error)
