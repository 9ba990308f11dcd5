"""Queue error hierarchy."""

from __future__ import annotations


class QueueError(Exception):
    """Base exception for queue failures."""


class QueueUnavailableError(QueueError):
    """Raised when the queue store cannot be read or written.

    Surfaced to callers on enqueue. During processing the affected job stays
    in the store and is picked up again instead of being lost.
    """

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path: str | None = path


class JobNotFoundError(QueueError):
    """Raised when an operation targets a job id that is not in the store."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job '{job_id}' not found")
        self.job_id: str = job_id


class InvalidJobStateError(QueueError):
    """Raised when a job is not in a state that allows the requested operation."""

    def __init__(self, job_id: str, status: str, operation: str) -> None:
        super().__init__(f"Cannot {operation} job '{job_id}' in status '{status}'")
        self.job_id: str = job_id
        self.status: str = status
