"""Durable job queue: file broker, job models and the backend protocol."""

from event_notifications.queue.backend import QueueBackend
from event_notifications.queue.broker import FileBroker, JobProcessor
from event_notifications.queue.exceptions import (
    InvalidJobStateError,
    JobNotFoundError,
    QueueError,
    QueueUnavailableError,
)
from event_notifications.queue.models import CleanupPolicy, Job, JobOptions, JobStatus, QueueStats
from event_notifications.queue.store import JobStore, store_path_for

__all__ = [
    "CleanupPolicy",
    "FileBroker",
    "InvalidJobStateError",
    "Job",
    "JobNotFoundError",
    "JobOptions",
    "JobProcessor",
    "JobStatus",
    "JobStore",
    "QueueBackend",
    "QueueError",
    "QueueStats",
    "QueueUnavailableError",
    "store_path_for",
]
