"""Queue job processor that routes queued events to their channels."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from event_notifications.core.results import ResultStore
from event_notifications.core.router import ChannelRouter
from event_notifications.queue.models import Job
from event_notifications.types import DeliveryStatus, NotificationContext, NotificationResult
from event_notifications.utils.logging import (
    get_logger,
    log_with_context,
    reset_correlation_id,
    set_correlation_id,
)
from event_notifications.utils.sanitization import sanitize_exception

__all__ = ["EventJobProcessor", "build_job_data"]


def build_job_data(
    *,
    event_id: str,
    event_type: str,
    correlation_id: str,
    payload: object,
    metadata: Mapping[str, object],
    retry_attempts: int | None,
    queued_at: str,
) -> dict[str, object]:
    """Return the job data record for a queued event."""
    return {
        "eventId": event_id,
        "eventType": event_type,
        "correlationId": correlation_id,
        "payload": payload,
        "metadata": dict(metadata),
        "retryAttempts": retry_attempts,
        "queuedAt": queued_at,
    }


class EventJobProcessor:
    """Processes one queued event job.

    Routes the event, publishes the results to the result store and returns
    them as JSON-ready records for the job's ``result``. When routing raises
    on the job's last attempt, a synthetic ``failed`` result is published so
    that waiting callers are released; the error is then re-raised for the
    broker to record.
    """

    def __init__(
        self,
        router: ChannelRouter,
        result_store: ResultStore,
        *,
        logger_obj: logging.Logger | None = None,
    ) -> None:
        self._router: ChannelRouter = router
        self._results: ResultStore = result_store
        self._logger: logging.Logger = logger_obj or get_logger(__name__)

    async def __call__(self, job: Job) -> list[dict[str, object]]:
        data = job.data
        event_id = str(data.get("eventId") or job.id)
        event_type = str(data.get("eventType") or job.name)
        correlation_id = str(data.get("correlationId") or event_id)
        raw_metadata = data.get("metadata")
        metadata: dict[str, object] = dict(raw_metadata) if isinstance(raw_metadata, Mapping) else {}  # pyright: ignore[reportUnknownArgumentType]
        metadata.update(
            {
                "job_id": job.id,
                "job_attempt": job.attempts,
                "queued_at": data.get("queuedAt"),
                "started_at": job.processing_started_at.isoformat() if job.processing_started_at else None,
            }
        )
        retry_attempts = data.get("retryAttempts")

        context = NotificationContext(
            event_id=event_id,
            correlation_id=correlation_id,
            event_type=event_type,
            metadata=metadata,
        )

        token = set_correlation_id(correlation_id)
        try:
            results = await self._router.route(
                event_type,
                data.get("payload"),
                context,
                retry_attempts=retry_attempts if isinstance(retry_attempts, int) else None,
            )
        except Exception as exc:
            final = job.attempts >= job.max_attempts
            log_with_context(
                self._logger,
                logging.ERROR,
                "Queued event processing failed",
                extra={
                    "event_id": event_id,
                    "event_type": event_type,
                    "job_attempt": job.attempts,
                    "final_attempt": final,
                    "error": sanitize_exception(exc),
                },
            )
            if final:
                self._results.store(
                    event_id,
                    [
                        NotificationResult(
                            channel="unknown",
                            provider="unknown",
                            status=DeliveryStatus.FAILED,
                            error=sanitize_exception(exc),
                            attempts=job.attempts,
                            metadata={"final_failure": True, "job_id": job.id},
                        )
                    ],
                )
            raise
        finally:
            reset_correlation_id(token)

        self._results.store(event_id, results)
        return [result.to_dict() for result in results]
