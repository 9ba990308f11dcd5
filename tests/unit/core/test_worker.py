"""Tests for the queue job processor."""

from __future__ import annotations

import pytest

from event_notifications.config.models import EventTypeConfig
from event_notifications.core.results import ResultStore
from event_notifications.core.router import ChannelRouter
from event_notifications.core.worker import EventJobProcessor, build_job_data
from event_notifications.queue.models import Job, JobStatus
from event_notifications.types import DeliveryStatus, NotificationResult, utc_now
from tests.fixtures.providers import StubProvider


def _job(*, attempts: int = 1, max_attempts: int = 3, event_type: str = "user.welcome", **data: object) -> Job:
    record = build_job_data(
        event_id="evt-1",
        event_type=event_type,
        correlation_id="corr-1",
        payload={"userId": 123},
        metadata={"tenant": "acme"},
        retry_attempts=None,
        queued_at="2026-01-01T00:00:00+00:00",
    )
    record.update(data)
    return Job(
        id="evt-1",
        name=event_type,
        data=record,
        status=JobStatus.ACTIVE,
        attempts=attempts,
        max_attempts=max_attempts,
        processing_started_at=utc_now(),
    )


class RaisingRouter(ChannelRouter):
    async def route(self, *args: object, **kwargs: object) -> list[NotificationResult]:  # pyright: ignore[reportIncompatibleMethodOverride, reportImplicitOverride]
        raise RuntimeError("router crashed")


def test_build_job_data_layout() -> None:
    data = build_job_data(
        event_id="evt-1",
        event_type="user.welcome",
        correlation_id="corr-1",
        payload=[1, 2],
        metadata={},
        retry_attempts=2,
        queued_at="ts",
    )
    assert data == {
        "eventId": "evt-1",
        "eventType": "user.welcome",
        "correlationId": "corr-1",
        "payload": [1, 2],
        "metadata": {},
        "retryAttempts": 2,
        "queuedAt": "ts",
    }


@pytest.mark.asyncio
async def test_routes_job_and_publishes_results(router: ChannelRouter, result_store: ResultStore) -> None:
    provider = StubProvider("email")
    router.register_provider(provider)
    processor = EventJobProcessor(router, result_store)

    records = await processor(_job())

    stored = result_store.get("evt-1")
    assert stored is not None
    assert [r.status for r in stored] == [DeliveryStatus.SENT]
    assert records == [stored[0].to_dict()]

    context = provider.calls[0].context
    assert context.event_id == "evt-1"
    assert context.correlation_id == "corr-1"
    assert context.metadata["tenant"] == "acme"
    assert context.metadata["job_id"] == "evt-1"
    assert context.metadata["job_attempt"] == 1
    assert context.metadata["queued_at"] == "2026-01-01T00:00:00+00:00"
    assert provider.calls[0].payload == {"userId": 123}


@pytest.mark.asyncio
async def test_retry_attempts_override_from_job(router: ChannelRouter, result_store: ResultStore) -> None:
    provider = StubProvider("email", outcomes=[False, False, False])
    router.register_provider(provider)
    processor = EventJobProcessor(router, result_store)

    _ = await processor(_job(retryAttempts=1))

    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_router_error_before_last_attempt_stores_nothing(result_store: ResultStore) -> None:
    processor = EventJobProcessor(RaisingRouter({"user.welcome": EventTypeConfig(channels=("email",))}), result_store)

    with pytest.raises(RuntimeError, match="router crashed"):
        _ = await processor(_job(attempts=1, max_attempts=3))
    assert result_store.get("evt-1") is None


@pytest.mark.asyncio
async def test_router_error_on_last_attempt_releases_waiters(result_store: ResultStore) -> None:
    processor = EventJobProcessor(RaisingRouter({"user.welcome": EventTypeConfig(channels=("email",))}), result_store)

    with pytest.raises(RuntimeError):
        _ = await processor(_job(attempts=3, max_attempts=3))

    stored = result_store.get("evt-1")
    assert stored is not None
    assert len(stored) == 1
    assert stored[0].status is DeliveryStatus.FAILED
    assert stored[0].channel == "unknown"
    assert stored[0].metadata["final_failure"] is True
