"""Short-lived store of delivery results keyed by event id.

Workers publish results when an event finishes processing; callers that
asked to wait block on a future for that event id instead of polling.
Entries expire after a TTL (five minutes by default).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from event_notifications.types import NotificationResult
from event_notifications.utils.logging import get_logger, log_with_context

__all__ = ["DEFAULT_RESULT_TTL_SECONDS", "ResultStore"]

DEFAULT_RESULT_TTL_SECONDS = 300.0

type Clock = Callable[[], float]


@dataclass(slots=True)
class _StoredResults:
    results: list[NotificationResult]
    expires_at: float


class ResultStore:
    """In-process TTL cache mapping event ids to delivery results.

    Args:
        ttl_seconds: Lifetime of a stored entry
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_RESULT_TTL_SECONDS,
        *,
        clock: Clock = time.monotonic,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            msg = "ttl_seconds must be greater than zero"
            raise ValueError(msg)
        self._ttl_seconds: float = ttl_seconds
        self._clock: Clock = clock
        self._entries: dict[str, _StoredResults] = {}
        self._waiters: dict[str, list[asyncio.Future[list[NotificationResult]]]] = {}
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, event_id: str) -> bool:
        return self.get(event_id) is not None

    def store(self, event_id: str, results: Sequence[NotificationResult]) -> None:
        """Store results for ``event_id`` and wake every waiter."""
        stored = list(results)
        self._entries[event_id] = _StoredResults(results=stored, expires_at=self._clock() + self._ttl_seconds)
        for waiter in self._waiters.pop(event_id, []):
            if not waiter.done():
                waiter.set_result(list(stored))
        log_with_context(
            self._logger,
            logging.DEBUG,
            "Stored event results",
            extra={"event_id": event_id, "result_count": len(stored)},
        )

    def get(self, event_id: str) -> list[NotificationResult] | None:
        """Return the stored results, or None when absent or expired."""
        entry = self._entries.get(event_id)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[event_id]
            return None
        return list(entry.results)

    def discard(self, event_id: str) -> None:
        _ = self._entries.pop(event_id, None)

    async def wait_for(self, event_id: str, timeout: float) -> list[NotificationResult] | None:
        """Wait up to ``timeout`` seconds for results of ``event_id``.

        Returns None on timeout. Timing out only ends this wait; the event
        keeps processing and its results are still stored.
        """
        existing = self.get(event_id)
        if existing is not None or timeout <= 0:
            return existing

        waiter: asyncio.Future[list[NotificationResult]] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(event_id, []).append(waiter)
        try:
            async with asyncio.timeout(timeout):
                return await waiter
        except TimeoutError:
            return None
        finally:
            self._remove_waiter(event_id, waiter)

    def purge_expired(self) -> int:
        """Drop expired entries; return how many were removed."""
        now = self._clock()
        expired = [event_id for event_id, entry in self._entries.items() if entry.expires_at <= now]
        for event_id in expired:
            del self._entries[event_id]
        if expired:
            log_with_context(
                self._logger,
                logging.DEBUG,
                "Purged expired event results",
                extra={"purged": len(expired)},
            )
        return len(expired)

    def _remove_waiter(self, event_id: str, waiter: asyncio.Future[list[NotificationResult]]) -> None:
        waiters = self._waiters.get(event_id)
        if not waiters:
            return
        if waiter in waiters:
            waiters.remove(waiter)
        if not waiters:
            del self._waiters[event_id]
        if not waiter.done():
            _ = waiter.cancel()
