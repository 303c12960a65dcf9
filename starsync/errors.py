"""Error taxonomy for star-history ingestion and analytics."""

from __future__ import annotations

from typing import Optional

_BODY_PREVIEW_CHARS = 500


class StarSyncError(Exception):
    """Base class for every error raised by the sync core."""


class UpstreamUnavailable(StarSyncError):
    """Transport-level failure talking to the upstream API."""


class UpstreamRejected(StarSyncError):
    """Upstream answered with an explicit error status or error payload."""

    def __init__(self, status_code: Optional[int], body: str = "", message: Optional[str] = None) -> None:
        self.status_code = status_code
        self.body = body[:_BODY_PREVIEW_CHARS]
        super().__init__(message or f"upstream rejected request (status={status_code}): {self.body}")


class MalformedResponse(StarSyncError):
    """Upstream page could not be decoded."""


class RepositoryNotFound(StarSyncError):
    """Target repository does not exist upstream."""

    def __init__(self, owner: str, name: str) -> None:
        self.owner = owner
        self.name = name
        super().__init__(f"repository {owner}/{name} not found")


class PersistenceFailure(StarSyncError):
    """Star store could not commit a write or answer a query."""


class InvalidRequest(StarSyncError):
    """Caller input rejected before any work starts."""


class SyncStageError(StarSyncError):
    """Failure of one sync run, tagged with the stage and page that failed."""

    FETCH = "fetch"
    PERSIST = "persist"

    def __init__(self, stage: str, page_number: int, cause: Exception) -> None:
        self.stage = stage
        self.page_number = page_number
        self.cause = cause
        super().__init__(f"{stage} failed on page {page_number}: {cause}")
