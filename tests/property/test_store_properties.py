"""Property-based tests for queue store persistence and enqueue idempotency."""

from __future__ import annotations

import asyncio
import tempfile
from datetime import UTC
from pathlib import Path
from unittest.mock import patch

import pytest
from hypothesis import given, strategies as st

from event_notifications.queue.broker import FileBroker
from event_notifications.queue.exceptions import QueueUnavailableError
from event_notifications.queue.models import Job, JobOptions, JobStatus
from event_notifications.queue.store import JobStore

pytestmark = pytest.mark.property

identifiers = st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-", min_size=1, max_size=12)

json_values = st.recursive(
    st.none() | st.booleans() | st.integers(min_value=-(2**53), max_value=2**53) | st.text(max_size=20),
    lambda children: st.lists(children, max_size=4) | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=10,
)

timestamps = st.datetimes(timezones=st.just(UTC))


@st.composite
def jobs(draw: st.DrawFn) -> Job:
    created_at = draw(timestamps)
    return Job(
        id=draw(identifiers),
        name=draw(st.sampled_from(["user.welcome", "order.shipped", "payment.failed"])),
        data=draw(st.dictionaries(st.text(max_size=8), json_values, max_size=5)),
        status=draw(st.sampled_from(list(JobStatus))),
        attempts=draw(st.integers(min_value=0, max_value=5)),
        max_attempts=draw(st.integers(min_value=1, max_value=5)),
        priority=draw(st.sampled_from([1, 5, 10, 20])),
        created_at=created_at,
        available_at=draw(timestamps),
        error=draw(st.none() | st.text(max_size=30)),
    )


class TestStoreInvariants:
    @given(st.lists(jobs(), max_size=8))
    def test_saved_jobs_load_unchanged(self, stored: list[Job]) -> None:
        """Property: the store returns exactly what was saved."""
        with tempfile.TemporaryDirectory() as directory:
            store = JobStore(Path(directory), "prop")
            store.save(stored)

            assert store.load() == stored

    @given(st.lists(jobs(), max_size=5), st.lists(jobs(), min_size=1, max_size=5))
    def test_failed_replace_keeps_previous_version(self, before: list[Job], after: list[Job]) -> None:
        """Property: a write interrupted before the rename leaves the old store intact."""
        with tempfile.TemporaryDirectory() as directory:
            store = JobStore(Path(directory), "prop")
            store.save(before)

            with patch("event_notifications.queue.store.os.replace", side_effect=OSError("disk full")):
                with pytest.raises(QueueUnavailableError):
                    store.save(after)

            assert store.load() == before
            assert [p.name for p in Path(directory).iterdir()] == [store.path.name]


class TestEnqueueInvariants:
    @given(st.lists(identifiers, max_size=12))
    def test_duplicate_ids_are_enqueued_once(self, job_ids: list[str]) -> None:
        """Property: re-adding a pending id never creates a second job."""

        async def _enqueue(directory: Path) -> list[Job]:
            broker = FileBroker("prop", directory)
            for job_id in job_ids:
                _ = await broker.add("user.welcome", {"eventId": job_id}, JobOptions(job_id=job_id))
            return await broker.list_jobs()

        with tempfile.TemporaryDirectory() as directory:
            stored = asyncio.run(_enqueue(Path(directory)))

        assert sorted(job.id for job in stored) == sorted(set(job_ids))
        assert all(job.status is JobStatus.WAITING and job.attempts == 0 for job in stored)
