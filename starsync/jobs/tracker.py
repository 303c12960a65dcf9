"""In-memory lifecycle tracking for background stargazer sync jobs."""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
import uuid
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Callable, Optional

from starsync.config.settings import settings
from starsync.crawlers.stars.client import sanitize_for_log, sanitize_log_extra
from starsync.crawlers.stars.contracts import SyncProgress
from starsync.errors import StarSyncError

logger = logging.getLogger(__name__)


class JobState(str, enum.Enum):
    """pending -> running -> completed | failed"""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


@dataclass(frozen=True, slots=True)
class JobStatus:
    """Immutable snapshot of one sync job."""

    job_id: str
    owner: str
    name: str
    state: JobState
    created_at: datetime
    updated_at: datetime
    pages_processed: int = 0
    events_processed: int = 0
    estimated_total: Optional[int] = None
    error: Optional[str] = None
    notify_endpoint: Optional[str] = None
    repository_id: Optional[uuid.UUID] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "repository": f"{self.owner}/{self.name}",
            "state": self.state.value,
            "pages_processed": self.pages_processed,
            "events_processed": self.events_processed,
            "estimated_total": self.estimated_total,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "error": self.error,
            "repository_id": str(self.repository_id) if self.repository_id else None,
        }

    def notification_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "job_id": self.job_id,
            "final_state": self.state.value,
            "pages_processed": self.pages_processed,
            "events_processed": self.events_processed,
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


class JobRegistry:
    """Job id -> latest snapshot, guarded by one registry-wide lock."""

    def __init__(self) -> None:
        self._jobs: dict[str, JobStatus] = {}
        self._lock = threading.Lock()

    def add(self, status: JobStatus) -> None:
        with self._lock:
            if status.job_id in self._jobs:
                raise ValueError(f"job {status.job_id} already registered")
            self._jobs[status.job_id] = status

    def get(self, job_id: str) -> Optional[JobStatus]:
        with self._lock:
            return self._jobs.get(job_id)

    def update(
        self,
        job_id: str,
        mutate: Callable[[JobStatus], Optional[JobStatus]],
    ) -> tuple[Optional[JobStatus], bool]:
        """Apply `mutate` atomically; it returns None to leave the job unchanged.

        Returns the resulting snapshot (None for unknown jobs) and whether it changed.
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None, False
            updated = mutate(current)
            if updated is None:
                return current, False
            self._jobs[job_id] = updated
            return updated, True

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class JobTracker:
    """Creates sync jobs, runs each on its own task and records every transition.

    Terminal transitions are idempotent and notify the job's endpoint at most once.
    """

    def __init__(
        self,
        engine: Any,
        *,
        registry: JobRegistry,
        notifier: Any = None,
        default_notify_endpoint: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._notifier = notifier
        self._default_notify_endpoint = default_notify_endpoint or settings.STAR_SYNC_DEFAULT_NOTIFY_URL
        self._clock = clock
        self._runs: dict[str, asyncio.Task] = {}
        self._notifications: dict[str, asyncio.Task] = {}

    def create(self, owner: str, name: str, notify_endpoint: Optional[str] = None) -> str:
        """Register a pending job and start its sync in the background."""

        job_id = uuid.uuid4().hex
        now = self._clock()
        self._registry.add(
            JobStatus(
                job_id=job_id,
                owner=owner,
                name=name,
                state=JobState.PENDING,
                created_at=now,
                updated_at=now,
                notify_endpoint=notify_endpoint or self._default_notify_endpoint,
            )
        )
        run = asyncio.get_running_loop().create_task(self._run(job_id, owner, name), name=f"star-sync-{job_id}")
        self._runs[job_id] = run
        run.add_done_callback(lambda _task: self._runs.pop(job_id, None))
        logger.info("Star sync job created", extra=sanitize_log_extra(job_id=job_id, repo=f"{owner}/{name}"))
        return job_id

    def get(self, job_id: str) -> Optional[JobStatus]:
        return self._registry.get(job_id)

    async def join(self, job_id: str) -> Optional[JobStatus]:
        """Wait for a job's run and its notification, then return the final snapshot."""

        run = self._runs.get(job_id)
        if run is not None:
            await run
        notification = self._notifications.get(job_id)
        if notification is not None:
            await notification
        return self.get(job_id)

    def report_progress(
        self,
        job_id: str,
        page_number: int,
        events_in_page: int,
        estimated_total: Optional[int] = None,
    ) -> Optional[JobStatus]:
        def _mutate(current: JobStatus) -> Optional[JobStatus]:
            if current.state.is_terminal or page_number <= current.pages_processed:
                return None
            return replace(
                current,
                state=JobState.RUNNING,
                pages_processed=page_number,
                events_processed=current.events_processed + max(events_in_page, 0),
                estimated_total=estimated_total if estimated_total is not None else current.estimated_total,
                updated_at=self._clock(),
            )

        snapshot, changed = self._registry.update(job_id, _mutate)
        if snapshot is not None and not changed:
            logger.warning(
                "Ignored stale progress report",
                extra=sanitize_log_extra(job_id=job_id, page=page_number, state=snapshot.state.value),
            )
        return snapshot

    def complete(self, job_id: str, *, repository_id: Optional[uuid.UUID] = None) -> Optional[JobStatus]:
        return self._finish(job_id, JobState.COMPLETED, repository_id=repository_id)

    def fail(self, job_id: str, error: Any) -> Optional[JobStatus]:
        return self._finish(job_id, JobState.FAILED, error=sanitize_for_log(str(error)) or error.__class__.__name__)

    def _mark_running(self, job_id: str) -> None:
        def _mutate(current: JobStatus) -> Optional[JobStatus]:
            if current.state is not JobState.PENDING:
                return None
            return replace(current, state=JobState.RUNNING, updated_at=self._clock())

        self._registry.update(job_id, _mutate)

    def _finish(
        self,
        job_id: str,
        state: JobState,
        *,
        error: Optional[str] = None,
        repository_id: Optional[uuid.UUID] = None,
    ) -> Optional[JobStatus]:
        def _mutate(current: JobStatus) -> Optional[JobStatus]:
            if current.state.is_terminal:
                return None
            return replace(
                current,
                state=state,
                error=error,
                repository_id=repository_id or current.repository_id,
                updated_at=self._clock(),
            )

        snapshot, changed = self._registry.update(job_id, _mutate)
        if snapshot is None or not changed:
            return snapshot

        logger.info(
            "Star sync job finished",
            extra=sanitize_log_extra(
                job_id=job_id,
                state=state.value,
                pages=snapshot.pages_processed,
                events=snapshot.events_processed,
                error=error,
            ),
        )
        if snapshot.notify_endpoint and self._notifier is not None:
            self._dispatch(snapshot)
        return snapshot

    async def _run(self, job_id: str, owner: str, name: str) -> None:
        self._mark_running(job_id)

        def _on_progress(progress: SyncProgress) -> None:
            self.report_progress(job_id, progress.page_number, progress.events_in_page, progress.estimated_total)

        try:
            result = await self._engine.sync_repository(owner, name, progress=_on_progress)
        except StarSyncError as exc:
            self.fail(job_id, exc)
            return
        except Exception as exc:
            logger.exception(
                "Star sync job crashed",
                extra=sanitize_log_extra(job_id=job_id, repo=f"{owner}/{name}"),
            )
            self.fail(job_id, exc)
            return

        self.complete(job_id, repository_id=result.repository_id)

    def _dispatch(self, snapshot: JobStatus) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._deliver(snapshot))
            return
        job_id = snapshot.job_id
        task = loop.create_task(self._deliver(snapshot), name=f"star-sync-notify-{job_id}")
        self._notifications[job_id] = task
        task.add_done_callback(lambda _task: self._notifications.pop(job_id, None))

    async def _deliver(self, snapshot: JobStatus) -> None:
        try:
            await self._notifier.notify(snapshot.notify_endpoint, snapshot)
        except Exception:
            logger.exception(
                "Job notification raised",
                extra=sanitize_log_extra(job_id=snapshot.job_id, endpoint=snapshot.notify_endpoint),
            )
