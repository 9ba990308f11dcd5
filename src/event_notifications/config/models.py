"""Configuration schema for event-notifications.

Pydantic models validate the YAML configuration at startup. All durations
are expressed in seconds.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from event_notifications.types.models import EventPriority, ProcessingMode


class EventTypeConfig(BaseModel):
    """Delivery configuration of one event type.

    Immutable once loaded. An empty ``channels`` list is accepted here and
    rejected at emission time so that a single bad entry does not prevent
    the remaining event types from loading.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    description: Annotated[str, Field(description="Human readable description")] = ""
    channels: Annotated[
        tuple[str, ...],
        Field(description="Channel identifiers the event fans out to, in order"),
    ] = ()
    default_processing: Annotated[
        ProcessingMode | None,
        Field(description="Processing mode used when the caller does not choose one"),
    ] = None
    wait_for_result: Annotated[
        bool,
        Field(description="Whether callers usually wait for delivery results"),
    ] = False
    retry_attempts: Annotated[
        int | None,
        Field(ge=0, description="Delivery attempts per channel; unset means the global default"),
    ] = None
    priority: Annotated[
        EventPriority,
        Field(description="Queue priority for asynchronously processed events"),
    ] = EventPriority.NORMAL
    delay: Annotated[
        float | None,
        Field(ge=0, description="Seconds before a queued event becomes visible to workers"),
    ] = None
    timeout: Annotated[
        float | None,
        Field(gt=0, description="Seconds to wait for results when waiting is requested"),
    ] = None

    @field_validator("channels", mode="after")
    @classmethod
    def validate_channel_identifiers(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Reject blank and duplicate channel identifiers."""
        seen: set[str] = set()
        for channel in v:
            if not channel.strip():
                msg = "Channel identifiers must not be blank"
                raise ValueError(msg)
            if channel in seen:
                msg = f"Channel '{channel}' is listed more than once"
                raise ValueError(msg)
            seen.add(channel)
        return v


class RetryPolicyConfig(BaseModel):
    """Backoff policy: ``min(initial_delay * backoff_factor**(n-1) * (1 + jitter), max_delay)``."""

    model_config = ConfigDict(extra="forbid")

    max_attempts: Annotated[int, Field(ge=1, le=10, description="Maximum attempts")] = 3
    initial_delay: Annotated[
        float,
        Field(ge=0.0, le=60.0, description="Delay before the second attempt in seconds"),
    ] = 1.0
    backoff_factor: Annotated[
        float,
        Field(ge=1.0, le=5.0, description="Multiplier applied per attempt"),
    ] = 2.0
    max_delay: Annotated[
        float,
        Field(ge=0.0, le=300.0, description="Upper bound for any single delay in seconds"),
    ] = 30.0
    jitter: Annotated[
        float,
        Field(ge=0.0, le=1.0, description="Upper bound of the random jitter fraction"),
    ] = 0.1

    @model_validator(mode="after")
    def validate_delay_bounds(self) -> RetryPolicyConfig:
        """Ensure the initial delay does not exceed the cap."""
        if self.initial_delay > self.max_delay:
            msg = "initial_delay cannot be greater than max_delay"
            raise ValueError(msg)
        return self


class QueueConfig(BaseModel):
    """File broker settings."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, pattern=r"^[A-Za-z0-9_.-]+$", description="Queue name")] = (
        "notifications"
    )
    data_dir: Annotated[Path, Field(description="Directory holding the queue store")] = Path("queue-data")
    concurrency: Annotated[int, Field(ge=1, le=100, description="Concurrent workers")] = 5
    poll_interval: Annotated[
        float,
        Field(gt=0, description="Idle wait between dequeue attempts in seconds"),
    ] = 0.5
    max_attempts: Annotated[int, Field(ge=1, description="Processing attempts per job")] = 3
    completed_retention: Annotated[
        float,
        Field(gt=0, description="Seconds completed jobs are kept"),
    ] = 24 * 60 * 60
    failed_retention: Annotated[
        float,
        Field(gt=0, description="Seconds failed jobs are kept"),
    ] = 7 * 24 * 60 * 60
    cleanup_interval: Annotated[
        float,
        Field(gt=0, description="Seconds between retention sweeps"),
    ] = 60 * 60
    retry: Annotated[
        RetryPolicyConfig,
        Field(description="Backoff applied when a job is requeued after a failure"),
    ] = RetryPolicyConfig(initial_delay=2.0)


class NotificationsConfig(BaseModel):
    """Global emission defaults."""

    model_config = ConfigDict(extra="forbid")

    default_timeout: Annotated[
        float,
        Field(gt=0, description="Seconds to wait for async results when no timeout is configured"),
    ] = 30.0
    default_retry_attempts: Annotated[
        int,
        Field(ge=1, description="Delivery attempts per channel when the event type sets none"),
    ] = 3
    result_ttl: Annotated[
        float,
        Field(gt=0, description="Seconds delivery results are kept for waiting callers"),
    ] = 300.0
    retry: Annotated[
        RetryPolicyConfig,
        Field(description="Backoff between channel delivery attempts"),
    ] = RetryPolicyConfig()


class LoggingConfig(BaseModel):
    """Logging settings."""

    model_config = ConfigDict(extra="forbid")

    level: Annotated[
        str,
        Field(pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$", description="Logging level"),
    ] = "INFO"
    syslog_enabled: Annotated[bool, Field(description="Enable syslog integration")] = False
    syslog_address: Annotated[str, Field(description="Syslog socket address")] = "/dev/log"
    console_enabled: Annotated[bool, Field(description="Log to stdout")] = True


class WebhookProviderConfig(BaseModel):
    """A webhook channel provider."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(pattern=r"^[a-z][a-z0-9_-]*$", description="Provider name")]
    channel: Annotated[str, Field(min_length=1, description="Channel served")] = "webhook"
    url: Annotated[str, Field(pattern=r"^https?://", description="Target URL")]
    headers: Annotated[
        dict[str, str],
        Field(description="Extra request headers"),
    ] = {}
    timeout: Annotated[float, Field(gt=0, le=120, description="Request timeout in seconds")] = 10.0
    enabled: Annotated[bool, Field(description="Register this provider at startup")] = True
    unhealthy_threshold: Annotated[
        int,
        Field(ge=1, description="Consecutive failures before the provider reports unhealthy"),
    ] = 3
    recovery_timeout: Annotated[
        float,
        Field(ge=0, le=3600, description="Seconds after the last failure before a trial delivery is allowed"),
    ] = 30.0


class ProvidersConfig(BaseModel):
    """Channel providers registered at startup."""

    model_config = ConfigDict(extra="forbid")

    webhooks: Annotated[
        list[WebhookProviderConfig],
        Field(description="Webhook providers"),
    ] = []

    @field_validator("webhooks", mode="after")
    @classmethod
    def validate_unique_names(cls, v: list[WebhookProviderConfig]) -> list[WebhookProviderConfig]:
        """Provider names must be unique per channel."""
        seen: set[tuple[str, str]] = set()
        for provider in v:
            key = (provider.channel, provider.name)
            if key in seen:
                msg = f"Provider '{provider.name}' is defined twice for channel '{provider.channel}'"
                raise ValueError(msg)
            seen.add(key)
        return v


class AppConfig(BaseModel):
    """Top-level configuration.

    Aggregates the event type map (the configuration source consumed by the
    emitter and router), queue settings, emission defaults, logging and the
    providers to register.
    """

    model_config = ConfigDict(extra="forbid")

    event_types: Annotated[
        dict[str, EventTypeConfig],
        Field(description="Event type configurations keyed by event type name"),
    ] = {}
    queue: Annotated[QueueConfig, Field(description="Durable queue settings")] = QueueConfig()
    notifications: Annotated[
        NotificationsConfig,
        Field(description="Emission defaults"),
    ] = NotificationsConfig()
    logging: Annotated[LoggingConfig, Field(description="Logging settings")] = LoggingConfig()
    providers: Annotated[ProvidersConfig, Field(description="Channel providers")] = ProvidersConfig()

    def configured_channels(self) -> set[str]:
        """Return every channel referenced by an event type."""
        return {channel for cfg in self.event_types.values() for channel in cfg.channels}

    def provided_channels(self) -> set[str]:
        """Return every channel served by an enabled configured provider."""
        return {p.channel for p in self.providers.webhooks if p.enabled}


def event_types_from_mapping(data: Mapping[str, Mapping[str, object]]) -> dict[str, EventTypeConfig]:
    """Validate a plain mapping of event type definitions."""
    return {name: EventTypeConfig.model_validate(cfg) for name, cfg in data.items()}
