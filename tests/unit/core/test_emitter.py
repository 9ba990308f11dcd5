"""Tests for EventEmitter mode resolution and sync/async processing."""

from __future__ import annotations

from collections.abc import Mapping
from itertools import count

import pytest

from event_notifications.config.exceptions import (
    ConfigurationError,
    InvalidEventTypeConfigError,
    UnknownEventTypeError,
)
from event_notifications.config.models import EventTypeConfig
from event_notifications.core.emitter import EventEmitter, resolve_processing_mode
from event_notifications.core.results import ResultStore
from event_notifications.core.router import ChannelRouter
from event_notifications.queue.broker import FileBroker
from event_notifications.queue.exceptions import QueueUnavailableError
from event_notifications.queue.models import Job, JobOptions, JobStatus
from event_notifications.types import (
    DeliveryStatus,
    EmitOptions,
    EventPriority,
    NotificationResult,
    ProcessingMode,
)
from tests.fixtures.providers import StubProvider


class IdSequence:
    """Deterministic id factory: id-1, id-2, ..."""

    def __init__(self) -> None:
        self._counter = count(1)

    def __call__(self) -> str:
        return f"id-{next(self._counter)}"


class UnavailableQueue:
    """Queue double whose store cannot be written."""

    name: str = "broken"

    async def add(self, name: str, data: Mapping[str, object], options: JobOptions | None = None) -> Job:
        _ = (name, data, options)
        raise QueueUnavailableError("Failed to write queue store", path="/nowhere")

    async def is_healthy(self) -> bool:
        return False


@pytest.fixture
def emitter(router: ChannelRouter, broker: FileBroker, result_store: ResultStore) -> EventEmitter:
    return EventEmitter(router, broker, result_store, default_timeout=0.05, id_factory=IdSequence())


class TestResolveProcessingMode:
    @pytest.mark.parametrize(
        ("config", "options", "expected"),
        [
            (EventTypeConfig(channels=("email",)), EmitOptions(), ProcessingMode.ASYNC),
            (
                EventTypeConfig(channels=("email",), default_processing=ProcessingMode.SYNC),
                EmitOptions(),
                ProcessingMode.SYNC,
            ),
            (EventTypeConfig(channels=("email",)), EmitOptions(wait_for_result=True), ProcessingMode.SYNC),
            (
                EventTypeConfig(channels=("email",), default_processing=ProcessingMode.SYNC),
                EmitOptions(mode=ProcessingMode.ASYNC),
                ProcessingMode.ASYNC,
            ),
            (
                EventTypeConfig(channels=("email",)),
                EmitOptions(mode=ProcessingMode.ASYNC, wait_for_result=True),
                ProcessingMode.ASYNC,
            ),
        ],
    )
    def test_resolution_order(
        self,
        config: EventTypeConfig,
        options: EmitOptions,
        expected: ProcessingMode,
    ) -> None:
        assert resolve_processing_mode(config, options) is expected


class TestValidation:
    @pytest.mark.asyncio
    async def test_unknown_event_type_creates_no_job(self, emitter: EventEmitter, broker: FileBroker) -> None:
        with pytest.raises(UnknownEventTypeError):
            _ = await emitter.emit("no.such.event", {})
        assert (await broker.get_stats()).total == 0

    @pytest.mark.asyncio
    async def test_event_type_without_channels(self, emitter: EventEmitter) -> None:
        with pytest.raises(InvalidEventTypeConfigError):
            _ = await emitter.emit("audit.empty", {})

    @pytest.mark.asyncio
    async def test_configuration_errors_share_base_class(self, emitter: EventEmitter) -> None:
        with pytest.raises(ConfigurationError):
            _ = await emitter.emit_sync("no.such.event", {})


class TestSyncEmission:
    @pytest.mark.asyncio
    async def test_sync_returns_results(self, emitter: EventEmitter, router: ChannelRouter) -> None:
        router.register_provider(StubProvider("email"))

        result = await emitter.emit("payment.failed", {"amount": 10})

        assert result.mode is ProcessingMode.SYNC
        assert result.waited_for_result is True
        assert result.results is not None
        assert [r.status for r in result.results] == [DeliveryStatus.SENT]
        assert result.processed_at is not None
        assert result.queued_at is None
        assert result.processing_duration_ms is not None

    @pytest.mark.asyncio
    async def test_ids_assigned(self, emitter: EventEmitter, router: ChannelRouter) -> None:
        router.register_provider(StubProvider("email"))

        generated = await emitter.emit_sync("user.welcome", {})
        supplied = await emitter.emit_sync("user.welcome", {}, EmitOptions(correlation_id="corr-7"))

        assert (generated.event_id, generated.correlation_id) == ("id-1", "id-2")
        assert (supplied.event_id, supplied.correlation_id) == ("id-3", "corr-7")

    @pytest.mark.asyncio
    async def test_metadata_passed_through(self, emitter: EventEmitter, router: ChannelRouter) -> None:
        provider = StubProvider("email")
        router.register_provider(provider)

        result = await emitter.emit_sync("user.welcome", {}, EmitOptions(metadata={"tenant": "acme"}))

        assert result.metadata == {"event_type": "user.welcome", "tenant": "acme"}
        assert provider.calls[0].context.metadata == {"tenant": "acme"}

    @pytest.mark.asyncio
    async def test_router_failure_becomes_failed_result(self, result_store: ResultStore, broker: FileBroker) -> None:
        class ExplodingRouter(ChannelRouter):
            async def route(self, *args: object, **kwargs: object) -> list[NotificationResult]:  # pyright: ignore[reportIncompatibleMethodOverride, reportImplicitOverride]
                raise RuntimeError("routing exploded")

        router = ExplodingRouter({"ping": EventTypeConfig(channels=("email",))})
        emitter = EventEmitter(router, broker, result_store)

        result = await emitter.emit_sync("ping", {})

        assert result.results is not None
        assert result.results[0].status is DeliveryStatus.FAILED
        assert result.results[0].error == "RuntimeError: routing exploded"


class TestAsyncEmission:
    @pytest.mark.asyncio
    async def test_enqueues_job_keyed_by_event_id(self, emitter: EventEmitter, broker: FileBroker) -> None:
        result = await emitter.emit("user.welcome", {"userId": 123})

        assert result.mode is ProcessingMode.ASYNC
        assert result.waited_for_result is False
        assert result.results is None
        assert result.queued_at is not None
        assert result.metadata["job_id"] == result.event_id

        job = await broker.get_job(result.event_id)
        assert job is not None
        assert job.name == "user.welcome"
        assert job.status is JobStatus.WAITING
        assert job.priority == EventPriority.NORMAL.weight
        assert job.data["payload"] == {"userId": 123}
        assert job.data["correlationId"] == result.correlation_id

    @pytest.mark.asyncio
    async def test_priority_and_delay_options(self, emitter: EventEmitter, broker: FileBroker) -> None:
        result = await emitter.emit_async(
            "user.welcome",
            {},
            EmitOptions(priority=EventPriority.CRITICAL, delay=60, retry_attempts=1),
        )

        job = await broker.get_job(result.event_id)
        assert job is not None
        assert job.priority == 20
        assert job.available_at > job.created_at
        assert job.data["retryAttempts"] == 1
        assert (await broker.get_stats()).delayed == 1

    @pytest.mark.asyncio
    async def test_event_type_priority_used(self, broker: FileBroker, result_store: ResultStore) -> None:
        router = ChannelRouter({"alert": EventTypeConfig(channels=("sms",), priority=EventPriority.HIGH)})
        emitter = EventEmitter(router, broker, result_store)

        result = await emitter.emit("alert", {})

        job = await broker.get_job(result.event_id)
        assert job is not None and job.priority == 10

    @pytest.mark.asyncio
    async def test_wait_timeout_returns_pending(self, emitter: EventEmitter) -> None:
        result = await emitter.emit_and_wait("user.welcome", {}, timeout=0.05)

        assert result.mode is ProcessingMode.ASYNC
        assert result.waited_for_result is True
        assert result.results is not None
        assert len(result.results) == 1
        assert result.results[0].status is DeliveryStatus.PENDING
        assert result.results[0].error == "timeout"
        assert result.processed_at is None

    @pytest.mark.asyncio
    async def test_wait_returns_published_results(
        self,
        emitter: EventEmitter,
        result_store: ResultStore,
    ) -> None:
        result_store.store(
            "id-1",
            [NotificationResult(channel="email", provider="smtp", status=DeliveryStatus.SENT)],
        )

        result = await emitter.emit_and_wait("user.welcome", {}, timeout=1.0)

        assert result.event_id == "id-1"
        assert result.results is not None
        assert result.results[0].status is DeliveryStatus.SENT
        assert result.processed_at is not None

    @pytest.mark.asyncio
    async def test_queue_unavailable_propagates(self, router: ChannelRouter, result_store: ResultStore) -> None:
        emitter = EventEmitter(router, UnavailableQueue(), result_store)  # pyright: ignore[reportArgumentType]

        with pytest.raises(QueueUnavailableError):
            _ = await emitter.emit("user.welcome", {})


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy(self, emitter: EventEmitter, router: ChannelRouter) -> None:
        router.register_provider(StubProvider("email"))
        assert await emitter.health_check() == {"status": "healthy", "checks": {"queue": True, "routing": True}}

    @pytest.mark.asyncio
    async def test_degraded_without_healthy_provider(self, emitter: EventEmitter) -> None:
        health = await emitter.health_check()
        assert health["status"] == "degraded"
        assert health["checks"] == {"queue": True, "routing": False}

    @pytest.mark.asyncio
    async def test_unhealthy(self, router: ChannelRouter, result_store: ResultStore) -> None:
        emitter = EventEmitter(router, UnavailableQueue(), result_store)  # pyright: ignore[reportArgumentType]
        assert (await emitter.health_check())["status"] == "unhealthy"
