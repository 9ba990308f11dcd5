"""Queue job records and broker value types.

Jobs are persisted with camelCase keys so the store file stays readable by
operators and by tooling written for other runtimes::

    {"id": "...", "name": "user.welcome", "data": {...}, "status": "waiting",
     "attempts": 0, "maxAttempts": 3, "priority": 5,
     "createdAt": "...", "availableAt": "...", ...}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from event_notifications.types.models import EventPriority, utc_now


class JobStatus(StrEnum):
    """Job lifecycle states; ``completed`` and ``failed`` are terminal."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Job(BaseModel):
    """A durable unit of queued work."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )

    id: Annotated[str, Field(min_length=1, description="Job id; the event id for emitted events")]
    name: Annotated[str, Field(description="Job name; the event type for emitted events")]
    data: Annotated[dict[str, Any], Field(description="JSON payload handed to the processor")] = {}  # pyright: ignore[reportExplicitAny]
    status: JobStatus = JobStatus.WAITING
    attempts: Annotated[int, Field(ge=0, description="Processing attempts started so far")] = 0
    max_attempts: Annotated[int, Field(ge=1, description="Attempts before the job fails")] = 3
    priority: Annotated[int, Field(description="Dequeue weight; higher first")] = EventPriority.NORMAL.weight
    created_at: datetime = Field(default_factory=utc_now)
    available_at: datetime = Field(default_factory=utc_now)
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    result: Any = None  # pyright: ignore[reportExplicitAny]
    error: str | None = None

    def is_eligible(self, now: datetime) -> bool:
        """Return True when the job is waiting and its delay has elapsed."""
        return self.status is JobStatus.WAITING and self.available_at <= now

    def to_record(self) -> dict[str, object]:
        """Return the JSON-ready store record."""
        return self.model_dump(mode="json", by_alias=True)


@dataclass(slots=True, frozen=True)
class JobOptions:
    """Options accepted by ``add``.

    Attributes:
        job_id: Idempotency key; generated when omitted
        priority: Dequeue weight, higher first
        delay: Seconds before the job becomes visible to workers
        max_attempts: Processing attempts; the broker default when omitted
    """

    job_id: str | None = None
    priority: int = EventPriority.NORMAL.weight
    delay: float = 0.0
    max_attempts: int | None = None


class QueueStats(BaseModel):
    """Snapshot of job counts taken from a single read of the store.

    ``waiting`` counts jobs eligible now; ``delayed`` counts waiting jobs
    whose delay has not elapsed yet.
    """

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    paused: bool = False

    @property
    def total(self) -> int:
        return self.waiting + self.active + self.completed + self.failed + self.delayed


@dataclass(slots=True, frozen=True)
class CleanupPolicy:
    """Retention windows in seconds for terminal jobs."""

    completed_age: float = 24 * 60 * 60
    failed_age: float = 7 * 24 * 60 * 60
