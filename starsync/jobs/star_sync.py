"""Batch stargazer sync entrypoints."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Optional

from starsync.config.database import SessionLocal
from starsync.crawlers.stars.client import GitHubStargazerClient
from starsync.crawlers.stars.sync_engine import StarSyncEngine
from starsync.errors import InvalidRequest
from starsync.jobs.notifier import WebhookNotifier
from starsync.jobs.tracker import JobRegistry, JobState, JobTracker
from starsync.services.stars.analytics import parse_repository_spec
from starsync.services.stars.star_store import StarStore

logger = logging.getLogger(__name__)


def parse_repository_specs(raw: Any) -> list[tuple[str, str]] | None:
    """Parse `"owner/name"` specs from event payloads or query params.

    Accepts a comma separated string or a list; invalid entries are skipped
    and duplicates collapse onto their first occurrence.
    """
    if raw is None:
        return None

    if isinstance(raw, str):
        values: Iterable[Any] = [part.strip() for part in raw.split(",")]
    elif isinstance(raw, (list, tuple, set)):
        values = raw
    else:
        values = [raw]

    parsed: list[tuple[str, str]] = []
    seen: set[tuple[str, str]] = set()
    for value in values:
        if isinstance(value, str) and not value.strip():
            continue
        try:
            spec = parse_repository_spec(value.strip() if isinstance(value, str) else value)
        except InvalidRequest:
            logger.warning("Skipping invalid repository spec", extra={"spec": str(value)})
            continue
        if spec in seen:
            continue
        seen.add(spec)
        parsed.append(spec)
    return parsed or None


def build_star_sync_tracker(
    fetcher: Any,
    *,
    session_factory: Callable[[], Any] = SessionLocal,
    registry: Optional[JobRegistry] = None,
    notifier: Any = None,
) -> JobTracker:
    engine = StarSyncEngine(fetcher, StarStore(session_factory))
    return JobTracker(
        engine,
        registry=registry or JobRegistry(),
        notifier=notifier or WebhookNotifier(),
    )


async def run_star_sync(
    repositories: Any,
    *,
    tracker: Optional[JobTracker] = None,
    notify_endpoint: Optional[str] = None,
) -> dict[str, Any]:
    """Sync every repository on its own job and wait for all of them."""
    specs = parse_repository_specs(repositories)
    if not specs:
        raise InvalidRequest("no valid repositories to sync")

    if tracker is not None:
        return await _run_jobs(tracker, specs, notify_endpoint)

    async with GitHubStargazerClient() as client:
        return await _run_jobs(build_star_sync_tracker(client), specs, notify_endpoint)


async def _run_jobs(
    tracker: JobTracker,
    specs: list[tuple[str, str]],
    notify_endpoint: Optional[str],
) -> dict[str, Any]:
    job_ids = {f"{owner}/{name}": tracker.create(owner, name, notify_endpoint) for owner, name in specs}

    results: dict[str, Any] = {}
    for repo, job_id in job_ids.items():
        status = await tracker.join(job_id)
        results[repo] = status.to_dict() if status else {"job_id": job_id, "state": None}

    success = all(result.get("state") == JobState.COMPLETED.value for result in results.values())
    logger.info("Star sync batch finished", extra={"success": success, "repositories": list(results)})
    return {"success": success, "repositories": results}
