"""Application wiring.

Builds the registry, router, file broker, result store and emitter from an
``AppConfig``, registers the configured providers explicitly and registers
the job processor on the queue.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Self

from event_notifications.config.loader import load_app_config
from event_notifications.config.models import AppConfig
from event_notifications.core.emitter import EventEmitter
from event_notifications.core.registry import ChannelProviderRegistry
from event_notifications.core.results import ResultStore
from event_notifications.core.retry import RetryPolicy
from event_notifications.core.router import ChannelRouter
from event_notifications.core.worker import EventJobProcessor
from event_notifications.plugins.webhook import HTTPClient, WebhookHTTPClient, WebhookProvider
from event_notifications.queue.broker import FileBroker
from event_notifications.queue.models import CleanupPolicy
from event_notifications.types import ChannelProvider, EmitOptions, EventEmissionResult
from event_notifications.utils.logging import get_logger, log_with_context

__all__ = ["NotificationSystem"]


class NotificationSystem:
    """Complete event notification stack built from configuration.

    Args:
        config: Validated application configuration
        providers: Additional providers registered before any webhook provider
        http_client: HTTP client for webhook providers; created on ``start`` when omitted
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        providers: Sequence[ChannelProvider] = (),
        http_client: HTTPClient | None = None,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self.config: AppConfig = config
        self._logger: logging.Logger = logger_obj or get_logger(__name__)
        self._http_client: HTTPClient | None = http_client
        self._owned_client: WebhookHTTPClient | None = None
        self._webhook_providers: list[WebhookProvider] = []
        self._purge_task: asyncio.Task[None] | None = None
        self._started: bool = False

        notifications = config.notifications
        queue_config = config.queue

        self.result_store: ResultStore = ResultStore(notifications.result_ttl)
        self.registry: ChannelProviderRegistry = ChannelProviderRegistry()
        self.router: ChannelRouter = ChannelRouter(
            config.event_types,
            registry=self.registry,
            retry_policy=RetryPolicy.from_config(notifications.retry),
            default_retry_attempts=notifications.default_retry_attempts,
        )
        self.queue: FileBroker = FileBroker(
            queue_config.name,
            queue_config.data_dir,
            concurrency=queue_config.concurrency,
            poll_interval=queue_config.poll_interval,
            max_attempts=queue_config.max_attempts,
            retry_policy=RetryPolicy.from_config(queue_config.retry),
            cleanup_policy=CleanupPolicy(
                completed_age=queue_config.completed_retention,
                failed_age=queue_config.failed_retention,
            ),
            cleanup_interval=queue_config.cleanup_interval,
        )
        self.processor: EventJobProcessor = EventJobProcessor(self.router, self.result_store)
        self.queue.set_processor(self.processor)
        self.emitter: EventEmitter = EventEmitter(
            self.router,
            self.queue,
            self.result_store,
            default_timeout=notifications.default_timeout,
        )

        for provider in providers:
            self.router.register_provider(provider)

    @classmethod
    def from_config_file(cls, config_path: Path, **kwargs: object) -> Self:
        """Load configuration from YAML and build the system."""
        return cls(load_app_config(config_path), **kwargs)  # pyright: ignore[reportArgumentType]

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.stop()

    async def start(self, *, workers: bool = True) -> None:
        """Register webhook providers and optionally start the queue workers."""
        if self._started:
            return

        enabled = [cfg for cfg in self.config.providers.webhooks if cfg.enabled]
        if enabled and self._http_client is None:
            self._owned_client = WebhookHTTPClient()
            self._http_client = await self._owned_client.__aenter__()
        for webhook_config in enabled:
            assert self._http_client is not None
            provider = WebhookProvider(config=webhook_config, http_client=self._http_client)
            self.router.register_provider(provider)
            self._webhook_providers.append(provider)

        if workers:
            await self.queue.start()
            self._purge_task = asyncio.create_task(self._purge_results_loop(), name="result-store-purge")

        self._started = True
        log_with_context(
            self._logger,
            logging.INFO,
            "Notification system started",
            extra={
                "event_types": len(self.config.event_types),
                "providers": len(self.registry),
                "workers": self.config.queue.concurrency if workers else 0,
            },
        )

    async def stop(self, timeout: float = 10.0) -> None:
        """Stop workers, release the HTTP session and unregister webhook providers."""
        if not self._started:
            return

        await self.queue.close(timeout)
        if self._purge_task is not None:
            _ = self._purge_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._purge_task
            self._purge_task = None

        for provider in self._webhook_providers:
            _ = self.router.unregister_provider(provider.channel, provider.name)
        self._webhook_providers.clear()

        if self._owned_client is not None:
            await self._owned_client.close()
            self._owned_client = None
            self._http_client = None

        self._started = False
        log_with_context(self._logger, logging.INFO, "Notification system stopped")

    async def emit(
        self,
        event_type: str,
        payload: object,
        options: EmitOptions | None = None,
    ) -> EventEmissionResult:
        return await self.emitter.emit(event_type, payload, options)

    async def health_check(self) -> dict[str, object]:
        return await self.emitter.health_check()

    def unprovided_channels(self) -> set[str]:
        """Return configured channels that no registered provider serves."""
        return self.config.configured_channels() - set(self.registry.get_channels())

    async def _purge_results_loop(self) -> None:
        interval = max(1.0, self.config.notifications.result_ttl / 2)
        while True:
            await asyncio.sleep(interval)
            _ = self.result_store.purge_expired()
