"""Pytest configuration and shared fixtures."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from hypothesis import HealthCheck, settings

from event_notifications.config.models import EventTypeConfig
from event_notifications.core.registry import ChannelProviderRegistry
from event_notifications.core.results import ResultStore
from event_notifications.core.router import ChannelRouter
from event_notifications.queue.broker import FileBroker
from event_notifications.types import ProcessingMode
from event_notifications.utils.logging import clear_correlation_id
from tests.fixtures.providers import FAST_QUEUE_POLICY, SleepRecorder, instant_retry_executor

settings.register_profile("default", max_examples=100, deadline=None)
settings.register_profile(
    "thorough",
    max_examples=1000,
    deadline=None,
    suppress_health_check=[HealthCheck.too_slow],
)
settings.load_profile("default")


@pytest.fixture(autouse=True)
def reset_correlation() -> Generator[None, None, None]:
    """Ensure no correlation id leaks between tests."""
    clear_correlation_id()
    yield
    clear_correlation_id()


@pytest.fixture
def event_types() -> dict[str, EventTypeConfig]:
    """Event type map used across core tests."""
    return {
        "user.welcome": EventTypeConfig(
            description="Welcome email",
            channels=("email",),
            default_processing=ProcessingMode.ASYNC,
        ),
        "order.shipped": EventTypeConfig(channels=("email", "sms", "webhook")),
        "payment.failed": EventTypeConfig(
            channels=("email",),
            default_processing=ProcessingMode.SYNC,
            retry_attempts=3,
        ),
        "audit.empty": EventTypeConfig(),
    }


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def registry() -> ChannelProviderRegistry:
    return ChannelProviderRegistry()


@pytest.fixture
def router(event_types: dict[str, EventTypeConfig], registry: ChannelProviderRegistry) -> ChannelRouter:
    """Router whose retry executor does not sleep."""
    executor, _ = instant_retry_executor()
    return ChannelRouter(event_types, registry=registry, retry_executor=executor)


@pytest.fixture
def result_store() -> ResultStore:
    return ResultStore()


@pytest.fixture
def queue_dir(tmp_path: Path) -> Path:
    return tmp_path / "queue-data"


@pytest.fixture
def broker(queue_dir: Path) -> FileBroker:
    """Broker with a short poll interval and immediate requeue."""
    return FileBroker(
        "test",
        queue_dir,
        concurrency=2,
        poll_interval=0.02,
        retry_policy=FAST_QUEUE_POLICY,
    )
