"""Queue backend protocol.

The emitter and application wiring depend on this interface only. The file
broker is the reference implementation; a backend providing real
cross-process locking can be substituted without touching the core.
"""

from collections.abc import Mapping
from typing import Protocol, runtime_checkable

from event_notifications.queue.broker import JobProcessor
from event_notifications.queue.models import CleanupPolicy, Job, JobOptions, JobStatus, QueueStats


@runtime_checkable
class QueueBackend(Protocol):
    """Durable job queue with a registered per-job processor."""

    @property
    def name(self) -> str: ...

    async def add(self, name: str, data: Mapping[str, object], options: JobOptions | None = None) -> Job:
        """Enqueue a job, idempotently on ``options.job_id``."""
        ...

    def set_processor(self, processor: JobProcessor) -> None: ...

    async def start(self) -> None: ...

    async def close(self, timeout: float = 10.0) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    async def get_stats(self) -> QueueStats: ...

    async def clean(self, policy: CleanupPolicy | None = None) -> int: ...

    async def is_healthy(self) -> bool: ...

    async def get_job(self, job_id: str) -> Job | None: ...

    async def list_jobs(self, status: JobStatus | None = None) -> list[Job]: ...

    async def retry_job(self, job_id: str) -> Job: ...
