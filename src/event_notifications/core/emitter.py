"""Event emitter: the public entry point for publishing events.

The emitter validates the event type, assigns the event and correlation
ids, resolves the processing mode and then either routes the event inline
(``sync``) or enqueues it on the durable queue (``async``). In async mode a
caller may wait for the outcome; the wait is bounded by a timeout and never
cancels the queued job.

Mode resolution, first match wins:

1. an explicit ``options.mode`` other than ``"auto"``
2. ``sync`` when ``options.wait_for_result`` is set
3. the event type's ``default_processing``
4. ``async``
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Literal
from uuid import uuid4

from event_notifications.config.models import EventTypeConfig
from event_notifications.core.results import ResultStore
from event_notifications.core.router import ChannelRouter
from event_notifications.core.worker import build_job_data
from event_notifications.queue.models import JobOptions
from event_notifications.types import (
    DeliveryStatus,
    EmitOptions,
    EventEmissionResult,
    NotificationContext,
    NotificationResult,
    ProcessingMode,
    utc_now,
)
from event_notifications.utils.logging import (
    get_logger,
    log_with_context,
    reset_correlation_id,
    set_correlation_id,
)
from event_notifications.utils.sanitization import sanitize_exception

if TYPE_CHECKING:
    from event_notifications.queue.backend import QueueBackend

__all__ = ["DEFAULT_WAIT_TIMEOUT_SECONDS", "EventEmitter", "resolve_processing_mode"]

DEFAULT_WAIT_TIMEOUT_SECONDS = 30.0

type IdFactory = Callable[[], str]
type HealthState = Literal["healthy", "degraded", "unhealthy"]


def resolve_processing_mode(config: EventTypeConfig, options: EmitOptions) -> ProcessingMode:
    """Resolve how an emission is processed."""
    if options.mode != "auto":
        return ProcessingMode(options.mode)
    if options.wait_for_result:
        return ProcessingMode.SYNC
    if config.default_processing is not None:
        return config.default_processing
    return ProcessingMode.ASYNC


class EventEmitter:
    """Emit events synchronously or through the durable queue.

    Args:
        router: Channel router; also the source of event type configuration
        queue: Queue backend used for asynchronous processing
        result_store: Store the queue worker publishes results to
        default_timeout: Wait timeout when neither the call nor the event type sets one
        id_factory: Generates event and correlation ids
    """

    def __init__(
        self,
        router: ChannelRouter,
        queue: QueueBackend,
        result_store: ResultStore,
        *,
        default_timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        id_factory: IdFactory | None = None,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self._router: ChannelRouter = router
        self._queue: QueueBackend = queue
        self._results: ResultStore = result_store
        self._default_timeout: float = default_timeout
        self._id_factory: IdFactory = id_factory or (lambda: str(uuid4()))
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    async def emit(
        self,
        event_type: str,
        payload: object,
        options: EmitOptions | None = None,
    ) -> EventEmissionResult:
        """Emit an event.

        Raises:
            UnknownEventTypeError: If the event type is not configured
            InvalidEventTypeConfigError: If the event type has no channels
            QueueUnavailableError: If the queue rejects an async submission
        """
        opts = options or EmitOptions()
        config = self._router.get_event_type_config(event_type)
        started = time.perf_counter()

        event_id = self._id_factory()
        correlation_id = opts.correlation_id or self._id_factory()
        mode = resolve_processing_mode(config, opts)

        result = EventEmissionResult(
            event_id=event_id,
            correlation_id=correlation_id,
            mode=mode,
            metadata={"event_type": event_type, **opts.metadata},
        )

        token = set_correlation_id(correlation_id)
        try:
            log_with_context(
                self._logger,
                logging.INFO,
                "Emitting event",
                extra={"event_id": event_id, "event_type": event_type, "mode": mode.value},
            )
            if mode is ProcessingMode.SYNC:
                await self._process_sync(result, event_type, payload, opts)
            else:
                await self._process_async(result, event_type, payload, config, opts)
        finally:
            reset_correlation_id(token)

        result.processing_duration_ms = (time.perf_counter() - started) * 1000.0
        return result

    async def emit_sync(
        self,
        event_type: str,
        payload: object,
        options: EmitOptions | None = None,
    ) -> EventEmissionResult:
        """Emit and route inline, returning the delivery results."""
        opts = dataclasses.replace(options or EmitOptions(), mode=ProcessingMode.SYNC)
        return await self.emit(event_type, payload, opts)

    async def emit_async(
        self,
        event_type: str,
        payload: object,
        options: EmitOptions | None = None,
    ) -> EventEmissionResult:
        """Emit through the queue without waiting for results."""
        opts = dataclasses.replace(options or EmitOptions(), mode=ProcessingMode.ASYNC, wait_for_result=False)
        return await self.emit(event_type, payload, opts)

    async def emit_and_wait(
        self,
        event_type: str,
        payload: object,
        timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        options: EmitOptions | None = None,
    ) -> EventEmissionResult:
        """Emit through the queue and wait up to ``timeout`` seconds for results.

        An explicit ``mode`` in ``options`` still takes precedence.
        """
        base = options or EmitOptions()
        mode = base.mode if base.mode != "auto" else ProcessingMode.ASYNC
        opts = dataclasses.replace(base, mode=mode, wait_for_result=True, timeout=timeout)
        return await self.emit(event_type, payload, opts)

    async def health_check(self) -> dict[str, object]:
        """Aggregate queue and routing health.

        Returns:
            ``{"status": "healthy" | "degraded" | "unhealthy", "checks": {...}}``
        """
        checks: dict[str, bool] = {}
        try:
            checks["queue"] = await self._queue.is_healthy()
        except Exception as exc:
            log_with_context(
                self._logger,
                logging.WARNING,
                "Queue health check raised",
                extra={"error": sanitize_exception(exc)},
            )
            checks["queue"] = False
        try:
            checks["routing"] = await self._router.health_check()
        except Exception as exc:
            log_with_context(
                self._logger,
                logging.WARNING,
                "Routing health check raised",
                extra={"error": sanitize_exception(exc)},
            )
            checks["routing"] = False

        healthy = sum(1 for ok in checks.values() if ok)
        status: HealthState
        if healthy == len(checks):
            status = "healthy"
        elif healthy > 0:
            status = "degraded"
        else:
            status = "unhealthy"
        return {"status": status, "checks": checks}

    async def _process_sync(
        self,
        result: EventEmissionResult,
        event_type: str,
        payload: object,
        options: EmitOptions,
    ) -> None:
        context = NotificationContext(
            event_id=result.event_id,
            correlation_id=result.correlation_id,
            event_type=event_type,
            metadata=dict(options.metadata),
        )
        try:
            result.results = await self._router.route(
                event_type,
                payload,
                context,
                retry_attempts=options.retry_attempts,
            )
        except Exception as exc:
            error = sanitize_exception(exc)
            log_with_context(
                self._logger,
                logging.ERROR,
                "Synchronous routing failed",
                extra={"event_id": result.event_id, "event_type": event_type, "error": error},
            )
            result.results = [
                NotificationResult(
                    channel="unknown",
                    provider="unknown",
                    status=DeliveryStatus.FAILED,
                    error=error,
                )
            ]
        result.waited_for_result = True
        result.processed_at = utc_now()

    async def _process_async(
        self,
        result: EventEmissionResult,
        event_type: str,
        payload: object,
        config: EventTypeConfig,
        options: EmitOptions,
    ) -> None:
        priority = options.priority or config.priority
        delay = options.delay if options.delay is not None else (config.delay or 0.0)
        queued_at = utc_now()
        data = build_job_data(
            event_id=result.event_id,
            event_type=event_type,
            correlation_id=result.correlation_id,
            payload=payload,
            metadata=options.metadata,
            retry_attempts=options.retry_attempts,
            queued_at=queued_at.isoformat(),
        )

        # Queue failures propagate: an unavailable queue is not a delivery outcome
        job = await self._queue.add(
            event_type,
            data,
            JobOptions(job_id=result.event_id, priority=priority.weight, delay=delay),
        )
        result.queued_at = queued_at
        result.metadata["job_id"] = job.id
        log_with_context(
            self._logger,
            logging.INFO,
            "Event queued",
            extra={"event_id": result.event_id, "event_type": event_type, "priority": priority.value},
        )

        if not options.wait_for_result:
            return

        timeout = next(
            (value for value in (options.timeout, config.timeout) if value is not None),
            self._default_timeout,
        )
        results = await self._results.wait_for(result.event_id, timeout)
        result.waited_for_result = True
        if results is None:
            log_with_context(
                self._logger,
                logging.WARNING,
                "Timed out waiting for event results",
                extra={"event_id": result.event_id, "timeout_seconds": timeout},
            )
            result.results = [
                NotificationResult(
                    channel="unknown",
                    provider="unknown",
                    status=DeliveryStatus.PENDING,
                    error="timeout",
                )
            ]
            return
        result.results = results
        result.processed_at = utc_now()
