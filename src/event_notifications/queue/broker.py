"""File-backed durable queue broker.

Job lifecycle::

    waiting -> active -> completed
    waiting -> active -> waiting (attempts < max_attempts, after a backoff delay)
    waiting -> active -> failed  (attempts exhausted)

Every mutation is a load, modify, atomic-save cycle performed under a single
``asyncio.Lock``, so concurrent workers never interleave writes. File I/O
runs in a thread through ``asyncio.to_thread``. The broker assumes it is the
only process owning its store file.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from pydantic_core import PydanticSerializationError, to_jsonable_python

from event_notifications.core.retry import RetryPolicy, compute_delay
from event_notifications.queue.exceptions import InvalidJobStateError, JobNotFoundError, QueueUnavailableError
from event_notifications.queue.models import CleanupPolicy, Job, JobOptions, JobStatus, QueueStats
from event_notifications.queue.store import JobStore
from event_notifications.types.models import utc_now
from event_notifications.utils.logging import get_logger, log_with_context
from event_notifications.utils.sanitization import sanitize_exception

__all__ = ["FileBroker", "JobProcessor"]

type JobProcessor = Callable[[Job], Awaitable[object]]
type Clock = Callable[[], datetime]

DEFAULT_QUEUE_RETRY_POLICY = RetryPolicy(initial_delay=2.0)


class FileBroker:
    """Durable job queue persisted to a JSON file with a bounded worker pool.

    Args:
        name: Queue name; also names the store file
        data_dir: Directory holding the store file
        concurrency: Number of concurrent workers
        poll_interval: Idle wait in seconds when no job is eligible
        max_attempts: Default processing attempts per job
        retry_policy: Backoff applied before a failed job becomes visible again
        cleanup_policy: Retention windows used by the periodic sweep
        cleanup_interval: Seconds between retention sweeps
        clock: UTC clock, injectable for tests
        rng: Random source for backoff jitter, injectable for tests
    """

    def __init__(
        self,
        name: str,
        data_dir: Path,
        *,
        concurrency: int = 5,
        poll_interval: float = 0.5,
        max_attempts: int = 3,
        retry_policy: RetryPolicy = DEFAULT_QUEUE_RETRY_POLICY,
        cleanup_policy: CleanupPolicy | None = None,
        cleanup_interval: float = 60 * 60,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        if concurrency < 1:
            msg = "concurrency must be >= 1"
            raise ValueError(msg)
        if poll_interval <= 0:
            msg = "poll_interval must be greater than zero"
            raise ValueError(msg)
        if max_attempts < 1:
            msg = "max_attempts must be >= 1"
            raise ValueError(msg)

        self._name: str = name
        self._store: JobStore = JobStore(data_dir, name)
        self._concurrency: int = concurrency
        self._poll_interval: float = poll_interval
        self._max_attempts: int = max_attempts
        self._retry_policy: RetryPolicy = retry_policy
        self._cleanup_policy: CleanupPolicy = cleanup_policy or CleanupPolicy()
        self._cleanup_interval: float = cleanup_interval
        self._clock: Clock = clock
        self._rng: random.Random = rng or random.Random()
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

        self._lock: asyncio.Lock = asyncio.Lock()
        self._wakeup: asyncio.Event = asyncio.Event()
        self._stopping: asyncio.Event = asyncio.Event()
        self._processor: JobProcessor | None = None
        self._paused: bool = False
        self._workers: list[asyncio.Task[None]] = []
        self._cleanup_task: asyncio.Task[None] | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def is_paused(self) -> bool:
        return self._paused

    def set_processor(self, processor: JobProcessor) -> None:
        """Register the callback invoked for every dequeued job."""
        self._processor = processor

    async def add(
        self,
        name: str,
        data: Mapping[str, object],
        options: JobOptions | None = None,
    ) -> Job:
        """Enqueue a job.

        Adding a job whose id already exists in a non-terminal state returns
        the existing job unchanged. A terminal job with the same id is
        replaced.

        Raises:
            QueueUnavailableError: If the store cannot be read or written
            ValueError: If ``data`` is not JSON serializable
        """
        opts = options or JobOptions()
        job_id = opts.job_id or uuid4().hex
        try:
            json_data = to_jsonable_python(dict(data))
        except PydanticSerializationError as exc:
            msg = f"Job data for '{name}' is not JSON serializable: {exc}"
            raise ValueError(msg) from exc

        def _add(jobs: list[Job]) -> tuple[tuple[Job, bool], bool]:
            for index, existing in enumerate(jobs):
                if existing.id != job_id:
                    continue
                if not existing.status.is_terminal:
                    return (existing, False), False
                del jobs[index]
                break

            now = self._clock()
            job = Job(
                id=job_id,
                name=name,
                data=json_data,
                max_attempts=opts.max_attempts or self._max_attempts,
                priority=opts.priority,
                created_at=now,
                available_at=now + timedelta(seconds=max(0.0, opts.delay)),
            )
            jobs.append(job)
            return (job, True), True

        job, created = await self._mutate(_add)
        if created:
            self._wakeup.set()
            log_with_context(
                self._logger,
                logging.INFO,
                "Job enqueued",
                extra={
                    "queue": self._name,
                    "job_id": job.id,
                    "job_name": job.name,
                    "priority": job.priority,
                    "delay_seconds": opts.delay,
                },
            )
        else:
            log_with_context(
                self._logger,
                logging.INFO,
                "Job already queued, enqueue ignored",
                extra={"queue": self._name, "job_id": job.id, "status": job.status.value},
            )
        return job

    async def start(self) -> None:
        """Recover interrupted jobs and start the worker pool and cleanup sweep."""
        if self._workers:
            return
        if self._processor is None:
            msg = f"No processor registered for queue '{self._name}'"
            raise RuntimeError(msg)

        recovered = await self._recover_active_jobs()
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"{self._name}-worker-{index}")
            for index in range(self._concurrency)
        ]
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name=f"{self._name}-cleanup")
        log_with_context(
            self._logger,
            logging.INFO,
            "Queue workers started",
            extra={"queue": self._name, "concurrency": self._concurrency, "recovered_jobs": recovered},
        )

    async def close(self, timeout: float = 10.0) -> None:
        """Stop dequeuing, wait up to ``timeout`` for in-flight jobs, then cancel workers.

        Jobs cancelled here stay ``active`` in the store and are requeued by
        the next ``start``.
        """
        if not self._workers and self._cleanup_task is None:
            return

        self._stopping.set()
        self._wakeup.set()

        workers = list(self._workers)
        if workers:
            _, pending = await asyncio.wait(workers, timeout=timeout)
            for task in pending:
                _ = task.cancel()
        if self._cleanup_task is not None:
            _ = self._cleanup_task.cancel()
            workers.append(self._cleanup_task)

        _ = await asyncio.gather(*workers, return_exceptions=True)
        self._workers = []
        self._cleanup_task = None
        log_with_context(self._logger, logging.INFO, "Queue workers stopped", extra={"queue": self._name})

    def pause(self) -> None:
        """Stop dequeuing new jobs; active jobs run to completion."""
        self._paused = True
        log_with_context(self._logger, logging.INFO, "Queue paused", extra={"queue": self._name})

    def resume(self) -> None:
        self._paused = False
        self._wakeup.set()
        log_with_context(self._logger, logging.INFO, "Queue resumed", extra={"queue": self._name})

    async def get_stats(self) -> QueueStats:
        """Count jobs per state from one consistent read of the store."""
        jobs = await self._read()
        now = self._clock()
        stats = QueueStats(paused=self._paused)
        for job in jobs:
            match job.status:
                case JobStatus.WAITING if job.available_at > now:
                    stats.delayed += 1
                case JobStatus.WAITING:
                    stats.waiting += 1
                case JobStatus.ACTIVE:
                    stats.active += 1
                case JobStatus.COMPLETED:
                    stats.completed += 1
                case JobStatus.FAILED:
                    stats.failed += 1
        return stats

    async def clean(self, policy: CleanupPolicy | None = None) -> int:
        """Remove terminal jobs older than the retention windows; return the count removed."""
        effective = policy or self._cleanup_policy
        now = self._clock()
        completed_cutoff = now - timedelta(seconds=effective.completed_age)
        failed_cutoff = now - timedelta(seconds=effective.failed_age)

        def _is_expired(job: Job) -> bool:
            if job.status is JobStatus.COMPLETED:
                return (job.completed_at or job.created_at) < completed_cutoff
            if job.status is JobStatus.FAILED:
                return (job.failed_at or job.created_at) < failed_cutoff
            return False

        def _clean(jobs: list[Job]) -> tuple[int, bool]:
            kept = [job for job in jobs if not _is_expired(job)]
            removed = len(jobs) - len(kept)
            jobs[:] = kept
            return removed, removed > 0

        removed = await self._mutate(_clean)
        if removed:
            log_with_context(
                self._logger,
                logging.INFO,
                "Queue cleanup removed jobs",
                extra={"queue": self._name, "removed": removed},
            )
        return removed

    async def is_healthy(self) -> bool:
        """Return True when the store is readable and writable."""
        return await asyncio.to_thread(self._store.is_writable)

    async def get_job(self, job_id: str) -> Job | None:
        for job in await self._read():
            if job.id == job_id:
                return job
        return None

    async def list_jobs(self, status: JobStatus | None = None) -> list[Job]:
        """Return jobs, optionally filtered by status, oldest first."""
        jobs = await self._read()
        selected = [job for job in jobs if status is None or job.status is status]
        return sorted(selected, key=lambda job: job.created_at)

    async def retry_job(self, job_id: str) -> Job:
        """Move a failed job back to ``waiting`` with a fresh attempt budget.

        Raises:
            JobNotFoundError: If no job has this id
            InvalidJobStateError: If the job is not ``failed``
        """

        def _retry(jobs: list[Job]) -> tuple[Job, bool]:
            for job in jobs:
                if job.id != job_id:
                    continue
                if job.status is not JobStatus.FAILED:
                    raise InvalidJobStateError(job_id, job.status.value, "retry")
                job.status = JobStatus.WAITING
                job.attempts = 0
                job.available_at = self._clock()
                job.processing_started_at = None
                job.failed_at = None
                job.error = None
                job.result = None
                return job, True
            raise JobNotFoundError(job_id)

        job = await self._mutate(_retry)
        self._wakeup.set()
        log_with_context(self._logger, logging.INFO, "Failed job requeued", extra={"queue": self._name, "job_id": job_id})
        return job

    async def _read(self) -> list[Job]:
        async with self._lock:
            return await asyncio.to_thread(self._store.load)

    async def _mutate[R](self, mutation: Callable[[list[Job]], tuple[R, bool]]) -> R:
        """Apply ``mutation`` to the loaded jobs and save when it reports a change."""
        async with self._lock:
            jobs = await asyncio.to_thread(self._store.load)
            value, changed = mutation(jobs)
            if changed:
                await asyncio.to_thread(self._store.save, jobs)
            return value

    async def _recover_active_jobs(self) -> int:
        def _recover(jobs: list[Job]) -> tuple[int, bool]:
            now = self._clock()
            recovered = 0
            for job in jobs:
                if job.status is not JobStatus.ACTIVE:
                    continue
                # The interrupted attempt stays charged so a job that keeps
                # crashing the process still runs out of attempts
                job.processing_started_at = None
                if job.attempts < job.max_attempts:
                    job.status = JobStatus.WAITING
                    job.available_at = now
                else:
                    error = "processing interrupted on the final attempt"
                    job.status = JobStatus.FAILED
                    job.error = error
                    job.result = {"error": error, "attempts": job.attempts}
                    job.failed_at = now
                recovered += 1
            return recovered, recovered > 0

        return await self._mutate(_recover)

    async def _claim_next(self) -> Job | None:
        def _claim(jobs: list[Job]) -> tuple[Job | None, bool]:
            if self._paused:
                return None, False
            now = self._clock()
            eligible = [job for job in jobs if job.is_eligible(now)]
            if not eligible:
                return None, False
            job = min(eligible, key=lambda j: (-j.priority, j.available_at, j.created_at))
            job.status = JobStatus.ACTIVE
            job.attempts += 1
            job.processing_started_at = now
            return job.model_copy(deep=True), True

        return await self._mutate(_claim)

    async def _wait_for_work(self) -> None:
        if self._stopping.is_set():
            return
        try:
            async with asyncio.timeout(self._poll_interval):
                _ = await self._wakeup.wait()
        except TimeoutError:
            return
        if not self._stopping.is_set():
            self._wakeup.clear()

    async def _worker_loop(self, worker_index: int) -> None:
        while not self._stopping.is_set():
            if self._paused:
                await self._wait_for_work()
                continue
            try:
                job = await self._claim_next()
            except QueueUnavailableError as exc:
                log_with_context(
                    self._logger,
                    logging.ERROR,
                    "Worker could not dequeue job",
                    extra={"queue": self._name, "worker": worker_index, "error": str(exc)},
                )
                await self._wait_for_work()
                continue

            if job is None:
                await self._wait_for_work()
                continue

            await self._process(job, worker_index)

    async def _process(self, job: Job, worker_index: int) -> None:
        processor = self._processor
        assert processor is not None
        log_with_context(
            self._logger,
            logging.INFO,
            "Processing job",
            extra={
                "queue": self._name,
                "worker": worker_index,
                "job_id": job.id,
                "job_name": job.name,
                "attempt": job.attempts,
                "max_attempts": job.max_attempts,
            },
        )
        try:
            result = await processor(job)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._finish(job, error=sanitize_exception(exc))
        else:
            await self._finish(job, result=to_jsonable_python(result, fallback=repr))

    async def _finish(self, claimed: Job, *, result: object = None, error: str | None = None) -> None:
        def _apply(jobs: list[Job]) -> tuple[Job | None, bool]:
            job = next((j for j in jobs if j.id == claimed.id), None)
            if job is None or job.status is not JobStatus.ACTIVE:
                return None, False
            now = self._clock()
            if error is None:
                job.status = JobStatus.COMPLETED
                job.result = result
                job.error = None
                job.completed_at = now
            elif job.attempts < job.max_attempts:
                delay = compute_delay(job.attempts, self._retry_policy, self._rng.uniform(0.0, self._retry_policy.jitter))
                job.status = JobStatus.WAITING
                job.error = error
                job.processing_started_at = None
                job.available_at = now + timedelta(seconds=delay)
            else:
                job.status = JobStatus.FAILED
                job.error = error
                job.result = {"error": error, "attempts": job.attempts}
                job.failed_at = now
            return job.model_copy(), True

        try:
            updated = await self._mutate(_apply)
        except QueueUnavailableError as exc:
            # Job stays active in the store and is requeued on the next start
            log_with_context(
                self._logger,
                logging.ERROR,
                "Could not record job outcome",
                extra={"queue": self._name, "job_id": claimed.id, "error": str(exc)},
            )
            return

        if updated is None:
            log_with_context(
                self._logger,
                logging.WARNING,
                "Job disappeared before its outcome was recorded",
                extra={"queue": self._name, "job_id": claimed.id},
            )
            return

        extra: dict[str, object] = {
            "queue": self._name,
            "job_id": updated.id,
            "status": updated.status.value,
            "attempts": updated.attempts,
        }
        if updated.status is JobStatus.COMPLETED:
            log_with_context(self._logger, logging.INFO, "Job completed", extra=extra)
        elif updated.status is JobStatus.WAITING:
            extra["available_at"] = updated.available_at.isoformat()
            extra["error"] = error
            log_with_context(self._logger, logging.WARNING, "Job failed, requeued", extra=extra)
        else:
            extra["error"] = error
            log_with_context(self._logger, logging.ERROR, "Job failed permanently", extra=extra)

    async def _cleanup_loop(self) -> None:
        while not self._stopping.is_set():
            try:
                async with asyncio.timeout(self._cleanup_interval):
                    _ = await self._stopping.wait()
                return
            except TimeoutError:
                pass
            try:
                _ = await self.clean()
            except QueueUnavailableError as exc:
                log_with_context(
                    self._logger,
                    logging.ERROR,
                    "Queue cleanup failed",
                    extra={"queue": self._name, "error": str(exc)},
                )
