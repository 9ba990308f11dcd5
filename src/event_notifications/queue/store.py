"""Durable JSON file store for queue jobs.

The full job list of a queue lives in ``<data_dir>/<queue>-queue.json``.
Every save writes a temporary file in the same directory, fsyncs it and
renames it over the store, so readers only ever see a complete previous or
complete new version.
"""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Sequence
from pathlib import Path
from typing import Final

from pydantic import TypeAdapter, ValidationError

from event_notifications.queue.exceptions import QueueUnavailableError
from event_notifications.queue.models import Job
from event_notifications.utils.logging import get_logger, log_with_context

__all__ = ["JobStore", "store_path_for"]

_JOBS_ADAPTER: Final[TypeAdapter[list[Job]]] = TypeAdapter(list[Job])

logger = get_logger(__name__)


def store_path_for(data_dir: Path, queue_name: str) -> Path:
    """Return the store file path of a queue."""
    return data_dir / f"{queue_name}-queue.json"


class JobStore:
    """Reads and atomically rewrites the job list of one queue.

    Not safe for concurrent writers; the broker serializes access.
    """

    def __init__(self, data_dir: Path, queue_name: str) -> None:
        self._data_dir: Path = data_dir
        self._path: Path = store_path_for(data_dir, queue_name)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[Job]:
        """Read every job from the store.

        A missing file is an empty queue.

        Raises:
            QueueUnavailableError: If the file cannot be read or is corrupt
        """
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as exc:
            msg = f"Failed to read queue store {self._path}: {exc}"
            raise QueueUnavailableError(msg, path=str(self._path)) from exc

        if not raw.strip():
            return []

        try:
            return _JOBS_ADAPTER.validate_json(raw)
        except ValidationError as exc:
            msg = f"Queue store {self._path} is corrupt: {exc.error_count()} validation error(s)"
            raise QueueUnavailableError(msg, path=str(self._path)) from exc

    def save(self, jobs: Sequence[Job]) -> None:
        """Atomically replace the store contents with ``jobs``.

        Raises:
            QueueUnavailableError: If the store cannot be written
        """
        data = _JOBS_ADAPTER.dump_json(list(jobs), by_alias=True, indent=2)
        try:
            self._atomic_write(data)
        except OSError as exc:
            msg = f"Failed to write queue store {self._path}: {exc}"
            raise QueueUnavailableError(msg, path=str(self._path)) from exc

    def is_writable(self) -> bool:
        """Return True when the store can be read and its directory written."""
        try:
            self._data_dir.mkdir(parents=True, exist_ok=True)
            _ = self.load()
        except (OSError, QueueUnavailableError) as exc:
            log_with_context(
                logger,
                logging.WARNING,
                "Queue store health check failed",
                extra={"path": str(self._path), "error": str(exc)},
            )
            return False
        return os.access(self._data_dir, os.W_OK)

    def _atomic_write(self, data: bytes) -> None:
        self._data_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=self._data_dir,
            prefix=f".{self._path.name}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            try:
                _ = tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                temp_path.unlink(missing_ok=True)
                raise
        try:
            os.replace(temp_path, self._path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
