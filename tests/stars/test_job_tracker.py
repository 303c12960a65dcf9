from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, datetime

import pytest

from starsync.crawlers.stars.contracts import SyncProgress
from starsync.crawlers.stars.sync_engine import SyncResult
from starsync.errors import SyncStageError, UpstreamUnavailable
from starsync.jobs.tracker import JobRegistry, JobState, JobTracker

REPOSITORY_ID = uuid.uuid4()


class FakeEngine:
    """Reports the given page sizes, then finishes or raises `error`."""

    def __init__(self, pages=(100, 5), error=None, gate=None):
        self.pages = pages
        self.error = error
        self.gate = gate
        self.calls = []

    async def sync_repository(self, owner, name, *, progress=None):
        self.calls.append((owner, name))
        if self.gate is not None:
            await self.gate.wait()
        total = 0
        for number, size in enumerate(self.pages, start=1):
            total += size
            if progress is not None:
                progress(SyncProgress(page_number=number, events_in_page=size, events_so_far=total))
        if self.error is not None:
            raise self.error
        return SyncResult(repository_id=REPOSITORY_ID, pages=len(self.pages), events=total)


class RecordingNotifier:
    def __init__(self, error=None):
        self.error = error
        self.deliveries = []

    async def notify(self, endpoint, status):
        self.deliveries.append((endpoint, status.notification_payload()))
        if self.error is not None:
            raise self.error
        return True


def _tracker(engine, notifier=None, registry=None) -> JobTracker:
    return JobTracker(
        engine,
        registry=registry if registry is not None else JobRegistry(),
        notifier=notifier,
        clock=lambda: datetime(2026, 3, 1, tzinfo=UTC),
    )


@pytest.mark.asyncio
async def test_new_job_is_pending_until_its_task_runs() -> None:
    gate = asyncio.Event()
    tracker = _tracker(FakeEngine(gate=gate))

    job_id = tracker.create("acme", "rocket")

    assert tracker.get(job_id).state is JobState.PENDING
    await asyncio.sleep(0)
    assert tracker.get(job_id).state is JobState.RUNNING
    gate.set()
    await tracker.join(job_id)


@pytest.mark.asyncio
async def test_successful_run_completes_with_accumulated_progress() -> None:
    notifier = RecordingNotifier()
    tracker = _tracker(FakeEngine(), notifier=notifier)

    job_id = tracker.create("acme", "rocket", "https://hooks.example.test/done")
    status = await tracker.join(job_id)

    assert status.state is JobState.COMPLETED
    assert status.pages_processed == 2
    assert status.events_processed == 105
    assert status.repository_id == REPOSITORY_ID
    assert status.error is None
    assert notifier.deliveries == [
        (
            "https://hooks.example.test/done",
            {"job_id": job_id, "final_state": "completed", "pages_processed": 2, "events_processed": 105},
        )
    ]


@pytest.mark.asyncio
async def test_failed_run_records_a_description_of_the_error() -> None:
    error = SyncStageError(SyncStageError.FETCH, 2, UpstreamUnavailable("connection reset"))
    notifier = RecordingNotifier()
    tracker = _tracker(FakeEngine(pages=(100,), error=error), notifier=notifier)

    job_id = tracker.create("acme", "rocket", "https://hooks.example.test/done")
    status = await tracker.join(job_id)

    assert status.state is JobState.FAILED
    assert status.error == "fetch failed on page 2: connection reset"
    assert status.pages_processed == 1
    assert notifier.deliveries[0][1]["final_state"] == "failed"
    assert notifier.deliveries[0][1]["error"] == status.error


@pytest.mark.asyncio
async def test_unexpected_exceptions_also_fail_the_job() -> None:
    tracker = _tracker(FakeEngine(error=RuntimeError("boom")))

    status = await tracker.join(tracker.create("acme", "rocket"))

    assert status.state is JobState.FAILED
    assert status.error == "boom"


@pytest.mark.asyncio
async def test_terminal_transitions_are_idempotent_and_notify_once() -> None:
    notifier = RecordingNotifier()
    tracker = _tracker(FakeEngine(), notifier=notifier)
    job_id = tracker.create("acme", "rocket", "https://hooks.example.test/done")
    await tracker.join(job_id)

    again = tracker.fail(job_id, RuntimeError("late failure"))
    tracker.complete(job_id)
    await tracker.join(job_id)

    assert again.state is JobState.COMPLETED
    assert again.error is None
    assert len(notifier.deliveries) == 1


@pytest.mark.asyncio
async def test_notifier_errors_do_not_change_the_final_state() -> None:
    notifier = RecordingNotifier(error=RuntimeError("webhook exploded"))
    tracker = _tracker(FakeEngine(), notifier=notifier)

    status = await tracker.join(tracker.create("acme", "rocket", "https://hooks.example.test/done"))

    assert status.state is JobState.COMPLETED
    assert len(notifier.deliveries) == 1


@pytest.mark.asyncio
async def test_jobs_without_endpoint_are_not_notified() -> None:
    notifier = RecordingNotifier()
    tracker = _tracker(FakeEngine(), notifier=notifier)

    status = await tracker.join(tracker.create("acme", "rocket"))

    assert status.state is JobState.COMPLETED
    assert notifier.deliveries == []


@pytest.mark.asyncio
async def test_default_endpoint_applies_when_job_has_none() -> None:
    notifier = RecordingNotifier()
    tracker = JobTracker(
        FakeEngine(),
        registry=JobRegistry(),
        notifier=notifier,
        default_notify_endpoint="https://hooks.example.test/default",
    )

    await tracker.join(tracker.create("acme", "rocket"))

    assert [endpoint for endpoint, _ in notifier.deliveries] == ["https://hooks.example.test/default"]


@pytest.mark.asyncio
async def test_progress_moves_pending_to_running_and_ignores_stale_reports() -> None:
    gate = asyncio.Event()
    tracker = _tracker(FakeEngine(gate=gate))
    job_id = tracker.create("acme", "rocket")

    first = tracker.report_progress(job_id, 1, 100, estimated_total=300)
    stale = tracker.report_progress(job_id, 1, 100)
    older = tracker.report_progress(job_id, 0, 50)

    assert first.state is JobState.RUNNING
    assert first.estimated_total == 300
    assert stale == first
    assert older.events_processed == 100
    gate.set()
    await tracker.join(job_id)


@pytest.mark.asyncio
async def test_progress_after_completion_is_ignored() -> None:
    tracker = _tracker(FakeEngine())
    job_id = tracker.create("acme", "rocket")
    final = await tracker.join(job_id)

    after = tracker.report_progress(job_id, 3, 10)

    assert after == final


def test_unknown_jobs_have_no_status() -> None:
    tracker = _tracker(FakeEngine())

    assert tracker.get("missing") is None
    assert tracker.report_progress("missing", 1, 1) is None
    assert tracker.complete("missing") is None


@pytest.mark.asyncio
async def test_registries_are_isolated_between_trackers() -> None:
    first = _tracker(FakeEngine())
    second = _tracker(FakeEngine())

    job_id = first.create("acme", "rocket")
    await first.join(job_id)

    assert second.get(job_id) is None
    assert first.get(job_id).state is JobState.COMPLETED


@pytest.mark.asyncio
async def test_concurrent_jobs_finish_independently() -> None:
    registry = JobRegistry()
    tracker = _tracker(FakeEngine(), registry=registry)

    job_ids = [tracker.create("acme", f"repo-{index}") for index in range(5)]
    statuses = await asyncio.gather(*(tracker.join(job_id) for job_id in job_ids))

    assert len(registry) == 5
    assert {status.state for status in statuses} == {JobState.COMPLETED}
    assert {status.name for status in statuses} == {f"repo-{index}" for index in range(5)}
