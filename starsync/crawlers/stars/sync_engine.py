"""Full-history stargazer sync: fetch, persist and report one page at a time."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any, Awaitable, Callable, Optional

from starsync.config.settings import settings
from starsync.crawlers.stars.client import sanitize_log_extra
from starsync.crawlers.stars.contracts import StarEvent, StargazerPage, SyncProgress
from starsync.errors import MalformedResponse, StarSyncError, SyncStageError

logger = logging.getLogger(__name__)

ProgressSink = Callable[[SyncProgress], None]


@dataclass(slots=True)
class SyncResult:
    """Result metadata for one repository sync run."""

    repository_id: uuid.UUID
    pages: int
    events: int
    latest_event_date: Optional[date] = None


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StarSyncEngine:
    """Drives the stargazer client to exhaustion for one repository.

    Each page is persisted before the next one is requested. Any fetch or
    store error aborts the run as a `SyncStageError`; earlier pages stay
    committed, and re-running is safe because writes are idempotent.
    """

    def __init__(
        self,
        fetcher: Any,
        store: Any,
        *,
        page_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._page_delay_seconds = (
            settings.STAR_SYNC_PAGE_DELAY_SECONDS if page_delay_seconds is None else page_delay_seconds
        )
        self._sleep = sleep
        self._clock = clock

    async def sync_repository(
        self,
        owner: str,
        name: str,
        *,
        progress: Optional[ProgressSink] = None,
    ) -> SyncResult:
        repo = f"{owner}/{name}"
        cursor: Optional[str] = None
        repository_id: Optional[uuid.UUID] = None
        pages = 0
        events_so_far = 0

        while True:
            page_number = pages + 1
            if page_number > 1 and self._page_delay_seconds > 0:
                await self._sleep(self._page_delay_seconds)

            page = await self._fetch(owner, name, cursor, page_number)
            observed_at = self._clock()

            try:
                if repository_id is None:
                    repository_id = self._store.upsert_repository(owner, name)
                self._store.upsert_star_events(repository_id, self._to_events(page, observed_at))
            except StarSyncError as exc:
                raise SyncStageError(SyncStageError.PERSIST, page_number, exc) from exc

            pages = page_number
            events_so_far += len(page.items)
            logger.info(
                "Stargazer page persisted",
                extra=sanitize_log_extra(repo=repo, page=page_number, events=len(page.items), total=events_so_far),
            )
            if progress is not None:
                progress(
                    SyncProgress(
                        page_number=page_number,
                        events_in_page=len(page.items),
                        events_so_far=events_so_far,
                        estimated_total=page.total_count,
                    )
                )

            if not page.has_next:
                break
            if not page.next_cursor:
                raise SyncStageError(
                    SyncStageError.FETCH,
                    page_number,
                    MalformedResponse("page reports more results but no end cursor"),
                )
            if page.next_cursor == cursor:
                raise SyncStageError(
                    SyncStageError.FETCH,
                    page_number,
                    MalformedResponse(f"end cursor {cursor!r} did not advance"),
                )
            cursor = page.next_cursor

        try:
            latest = self._store.get_latest_event_date(repository_id)
        except StarSyncError as exc:
            raise SyncStageError(SyncStageError.PERSIST, pages, exc) from exc

        return SyncResult(repository_id=repository_id, pages=pages, events=events_so_far, latest_event_date=latest)

    async def _fetch(self, owner: str, name: str, cursor: Optional[str], page_number: int) -> StargazerPage:
        try:
            return await self._fetcher.fetch_page(owner, name, cursor)
        except StarSyncError as exc:
            logger.warning(
                "Stargazer page fetch failed",
                extra=sanitize_log_extra(repo=f"{owner}/{name}", page=page_number, error=str(exc)),
            )
            raise SyncStageError(SyncStageError.FETCH, page_number, exc) from exc

    @staticmethod
    def _to_events(page: StargazerPage, observed_at: datetime) -> list[StarEvent]:
        # An event can never be observed before it happened.
        return [
            StarEvent(
                stargazer=item.stargazer,
                starred_at=item.starred_at,
                observed_at=max(observed_at, item.starred_at),
            )
            for item in page.items
        ]
