"""Data models for event-notifications.

This module defines the dataclasses and enumerations passed between the
emitter, router, retry executor and queue worker. Models that cross the
queue boundary expose ``to_dict``/``from_dict`` helpers producing
JSON-ready records.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal, Self


def utc_now() -> datetime:
    """Return the current timezone-aware UTC datetime."""
    return datetime.now(tz=UTC)


class ProcessingMode(StrEnum):
    """How an emitted event is processed."""

    SYNC = "sync"
    ASYNC = "async"


class EventPriority(StrEnum):
    """Relative priority of an event type."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        """Numeric broker weight; higher is dequeued first."""
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS: dict[EventPriority, int] = {
    EventPriority.LOW: 1,
    EventPriority.NORMAL: 5,
    EventPriority.HIGH: 10,
    EventPriority.CRITICAL: 20,
}


class DeliveryStatus(StrEnum):
    """Outcome of a channel delivery."""

    SENT = "sent"
    FAILED = "failed"
    PENDING = "pending"
    RETRYING = "retrying"
    SKIPPED = "skipped"


@dataclass(slots=True, frozen=True)
class Event:
    """Immutable record of one emitted event."""

    event_id: str
    correlation_id: str
    event_type: str
    payload: object
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class NotificationContext:
    """Context handed to a channel provider alongside the payload."""

    event_id: str
    correlation_id: str
    event_type: str
    attempt: int = 1
    metadata: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class NotificationResult:
    """Result of delivering one event to one channel.

    The router produces exactly one terminal result per configured channel.
    ``status`` is ``retrying`` only while the retry executor still owns the
    result.
    """

    channel: str
    provider: str
    status: DeliveryStatus
    error: str | None = None
    sent_at: datetime = field(default_factory=utc_now)
    attempts: int = 1
    next_retry_at: datetime | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status is DeliveryStatus.SENT

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready representation."""
        return {
            "channel": self.channel,
            "provider": self.provider,
            "status": self.status.value,
            "error": self.error,
            "sentAt": self.sent_at.isoformat(),
            "attempts": self.attempts,
            "nextRetryAt": self.next_retry_at.isoformat() if self.next_retry_at else None,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Self:
        """Rebuild a result from :meth:`to_dict` output."""
        next_retry_at = data.get("nextRetryAt")
        metadata = data.get("metadata")
        attempts = data.get("attempts", 1)
        return cls(
            channel=str(data["channel"]),
            provider=str(data["provider"]),
            status=DeliveryStatus(str(data["status"])),
            error=None if data.get("error") is None else str(data["error"]),
            sent_at=datetime.fromisoformat(str(data["sentAt"])),
            attempts=attempts if isinstance(attempts, int) else 1,
            next_retry_at=(
                datetime.fromisoformat(next_retry_at) if isinstance(next_retry_at, str) else None
            ),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else {},  # pyright: ignore[reportUnknownArgumentType]
        )


@dataclass(slots=True)
class EmitOptions:
    """Per-call emission options.

    ``mode="auto"`` defers to ``wait_for_result`` and then to the event
    type's ``default_processing``. ``timeout`` and ``delay`` are seconds.
    """

    mode: ProcessingMode | Literal["auto"] = "auto"
    wait_for_result: bool = False
    correlation_id: str | None = None
    timeout: float | None = None
    priority: EventPriority | None = None
    delay: float | None = None
    retry_attempts: int | None = None
    metadata: dict[str, object] = field(default_factory=dict)


@dataclass(slots=True)
class EventEmissionResult:
    """Outcome of a single ``emit`` call returned to the caller."""

    event_id: str
    correlation_id: str
    mode: ProcessingMode
    waited_for_result: bool = False
    results: list[NotificationResult] | None = None
    queued_at: datetime | None = None
    processed_at: datetime | None = None
    processing_duration_ms: float | None = None
    metadata: dict[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-ready representation."""
        return {
            "eventId": self.event_id,
            "correlationId": self.correlation_id,
            "mode": self.mode.value,
            "waitedForResult": self.waited_for_result,
            "results": [r.to_dict() for r in self.results] if self.results is not None else None,
            "queuedAt": self.queued_at.isoformat() if self.queued_at else None,
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "processingDurationMs": self.processing_duration_ms,
            "metadata": dict(self.metadata),
        }


@dataclass(slots=True)
class HealthStatus:
    """Tracked delivery health of a registered provider."""

    is_healthy: bool
    last_check: datetime
    consecutive_failures: int
    error_message: str | None
