"""Resilient async GitHub GraphQL client for stargazer pagination."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from datetime import UTC
from typing import Any, Optional

import httpx
from dateutil import parser as date_parser
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from starsync.config.settings import settings
from starsync.crawlers.stars.contracts import StargazerItem, StargazerPage
from starsync.errors import MalformedResponse, RepositoryNotFound, UpstreamRejected, UpstreamUnavailable

logger = logging.getLogger(__name__)

STARGAZERS_QUERY = """
query getRepoStargazers($owner: String!, $name: String!, $cursor: String, $first: Int!) {
  repository(owner: $owner, name: $name) {
    stargazers(first: $first, after: $cursor, orderBy: {field: STARRED_AT, direction: ASC}) {
      totalCount
      edges {
        starredAt
        node {
          login
        }
      }
      pageInfo {
        hasNextPage
        endCursor
      }
    }
  }
}
"""

_REDACTED_VALUE = "***REDACTED***"
_SENSITIVE_KEYS = (
    "authorization",
    "token",
    "api_key",
    "apikey",
    "secret",
    "password",
    "cookie",
    "session",
)
_PAYLOAD_KEYS = ("body", "raw", "content", "payload", "response")
_TOKEN_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[^\s,;]+"),
    re.compile(r"(?i)(token\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"(?i)(access_token=)[^&\s]+"),
    re.compile(r"(?i)(gh[pousr]_)[A-Za-z0-9]+"),
)


def sanitize_for_log(value: Any, *, key: Optional[str] = None) -> Any:
    """Return a recursively sanitized copy of log payloads."""

    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            field = str(raw_key)
            if _contains_keyword(field, _SENSITIVE_KEYS):
                sanitized[field] = _REDACTED_VALUE
                continue
            if _contains_keyword(field, _PAYLOAD_KEYS) and isinstance(raw_value, str):
                sanitized[field] = _redact_payload(raw_value)
                continue
            sanitized[field] = sanitize_for_log(raw_value, key=field)
        return sanitized

    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item, key=key) for item in value]

    if isinstance(value, str):
        redacted = _redact_text(value)
        if key and _contains_keyword(key, _PAYLOAD_KEYS):
            return _redact_payload(redacted)
        return redacted

    return value


def sanitize_log_extra(**kwargs: Any) -> dict[str, Any]:
    """Helper for `extra=` payloads in structured logging."""

    return {key: sanitize_for_log(value, key=key) for key, value in kwargs.items()}


def _contains_keyword(field_name: str, keywords: tuple[str, ...]) -> bool:
    lowered = field_name.lower()
    return any(keyword in lowered for keyword in keywords)


def _redact_payload(raw: str) -> str:
    trimmed = raw.strip()
    if not trimmed:
        return ""
    return f"<redacted payload ({len(raw)} chars)>"


def _redact_text(raw: str) -> str:
    redacted = raw
    for pattern in _TOKEN_PATTERNS:
        redacted = pattern.sub(rf"\1{_REDACTED_VALUE}", redacted)
    return redacted


class _RateLimitRetryableError(Exception):
    """Retryable rate-limit signal for tenacity."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"GitHub rate limit encountered ({status_code})")
        self.status_code = status_code
        self.body = body


class GitHubStargazerClient:
    """Fetches one stargazer page per call via cursor pagination."""

    GRAPHQL_URL = "https://api.github.com/graphql"
    API_VERSION = "2022-11-28"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        rate_limit_buffer_seconds: Optional[int] = None,
        rate_limit_max_wait_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
        graphql_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._token = token if token is not None else settings.GITHUB_TOKEN
        self._timeout_seconds = _pick(timeout_seconds, settings.STAR_SYNC_TIMEOUT_SECONDS)
        self._max_retries = max(int(_pick(max_retries, settings.STAR_SYNC_MAX_RETRIES)), 1)
        self._backoff_base_seconds = _pick(backoff_base_seconds, settings.STAR_SYNC_BACKOFF_BASE_SECONDS)
        self._backoff_max_seconds = _pick(backoff_max_seconds, settings.STAR_SYNC_BACKOFF_MAX_SECONDS)
        self._rate_limit_buffer_seconds = _pick(rate_limit_buffer_seconds, settings.STAR_SYNC_RATE_LIMIT_BUFFER_SECONDS)
        self._rate_limit_max_wait_seconds = _pick(
            rate_limit_max_wait_seconds, settings.STAR_SYNC_RATE_LIMIT_MAX_WAIT_SECONDS
        )
        # Upstream never serves more than 100 edges per page.
        self._page_size = min(int(_pick(page_size, settings.STAR_SYNC_PAGE_SIZE)), 100)
        self._graphql_url = graphql_url or settings.GITHUB_GRAPHQL_URL or self.GRAPHQL_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubStargazerClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def fetch_page(self, owner: str, name: str, cursor: Optional[str] = None) -> StargazerPage:
        """Fetch the stargazer page after `cursor` (`None` for the first page).

        Raises UpstreamUnavailable, UpstreamRejected, MalformedResponse or
        RepositoryNotFound.
        """

        payload = {
            "query": STARGAZERS_QUERY,
            "variables": {"owner": owner, "name": name, "cursor": cursor, "first": self._page_size},
        }
        response = await self._post(payload, owner=owner, name=name, cursor=cursor)
        return self._parse_page(response, owner=owner, name=name)

    async def _post(
        self,
        payload: dict[str, Any],
        *,
        owner: str,
        name: str,
        cursor: Optional[str],
    ) -> httpx.Response:
        client = await self._ensure_client()
        repo = f"{owner}/{name}"

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries),
                wait=wait_exponential(multiplier=self._backoff_base_seconds, max=self._backoff_max_seconds),
                retry=retry_if_exception_type(_RateLimitRetryableError),
                reraise=True,
            ):
                with attempt:
                    response = await client.post(self._graphql_url, json=payload)

                    if self._is_rate_limited(response):
                        wait_seconds = self._compute_rate_limit_wait(response.headers)
                        logger.warning(
                            "GitHub API rate limit encountered",
                            extra=sanitize_log_extra(
                                repo=repo,
                                cursor=cursor,
                                status_code=response.status_code,
                                retry_after_seconds=wait_seconds,
                            ),
                        )
                        # The final attempt fails without waiting.
                        if wait_seconds > 0 and attempt.retry_state.attempt_number < self._max_retries:
                            await asyncio.sleep(wait_seconds)
                        raise _RateLimitRetryableError(response.status_code, response.text)

                    if not response.is_success:
                        logger.warning(
                            "GitHub request rejected",
                            extra=sanitize_log_extra(repo=repo, cursor=cursor, status_code=response.status_code),
                        )
                        raise UpstreamRejected(response.status_code, response.text)

                    return response
        except _RateLimitRetryableError as exc:
            logger.warning(
                "GitHub request failed after rate-limit retries",
                extra=sanitize_log_extra(repo=repo, cursor=cursor, error=str(exc), status_code=exc.status_code),
            )
            raise UpstreamRejected(exc.status_code, exc.body, message=f"{exc}; retries exhausted") from exc
        except httpx.RequestError as exc:
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(repo=repo, cursor=cursor, error=str(exc)),
            )
            raise UpstreamUnavailable(f"GitHub request failed: {exc.__class__.__name__}: {exc}") from exc

        raise UpstreamUnavailable("Unknown GitHub request failure")

    @staticmethod
    def _parse_page(response: httpx.Response, *, owner: str, name: str) -> StargazerPage:
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponse(f"response body is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedResponse("response body is not a JSON object")

        data = payload.get("data")
        errors = payload.get("errors")
        if errors and not isinstance(data, dict):
            messages = [str(error.get("message", error)) if isinstance(error, dict) else str(error) for error in errors]
            raise UpstreamRejected(
                response.status_code,
                response.text,
                message=f"upstream returned errors: {'; '.join(messages)}",
            )
        if not isinstance(data, dict) or "repository" not in data:
            raise MalformedResponse("response is missing data.repository")

        repository = data["repository"]
        if repository is None:
            raise RepositoryNotFound(owner, name)

        stargazers = repository.get("stargazers") if isinstance(repository, dict) else None
        if not isinstance(stargazers, dict):
            raise MalformedResponse("response is missing repository.stargazers")

        edges = stargazers.get("edges")
        page_info = stargazers.get("pageInfo")
        if not isinstance(edges, list) or not isinstance(page_info, dict):
            raise MalformedResponse("stargazers connection is missing edges or pageInfo")

        has_next = page_info.get("hasNextPage")
        end_cursor = page_info.get("endCursor")
        if not isinstance(has_next, bool):
            raise MalformedResponse("pageInfo.hasNextPage is not a boolean")
        if end_cursor is not None and not isinstance(end_cursor, str):
            raise MalformedResponse("pageInfo.endCursor is not a string")

        total_count = stargazers.get("totalCount")
        if not isinstance(total_count, int) or isinstance(total_count, bool):
            total_count = None

        return StargazerPage(
            items=[_parse_edge(edge) for edge in edges],
            has_next=has_next,
            next_cursor=end_cursor,
            total_count=total_count,
        )

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        headers = {
            "Accept": "application/json",
            "User-Agent": settings.USER_AGENT,
            "X-GitHub-Api-Version": self.API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        return self._client

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        if response.status_code != 403:
            return False
        return response.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in response.headers

    def _compute_rate_limit_wait(self, headers: httpx.Headers) -> float:
        """Seconds to wait before retrying, capped at the configured maximum."""
        return min(self._requested_rate_limit_wait(headers), float(self._rate_limit_max_wait_seconds))

    def _requested_rate_limit_wait(self, headers: httpx.Headers) -> float:
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass

        reset_raw = headers.get("x-ratelimit-reset")
        if reset_raw is not None:
            try:
                reset_epoch = int(reset_raw)
                wait_seconds = reset_epoch - int(time.time()) + self._rate_limit_buffer_seconds
                return float(max(wait_seconds, 0))
            except ValueError:
                pass

        return self._backoff_base_seconds


def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


def _parse_edge(edge: Any) -> StargazerItem:
    if not isinstance(edge, dict):
        raise MalformedResponse("stargazer edge is not an object")

    node = edge.get("node")
    login = node.get("login") if isinstance(node, dict) else None
    raw_starred_at = edge.get("starredAt")
    if not isinstance(login, str) or not login:
        raise MalformedResponse("stargazer edge is missing node.login")
    if not isinstance(raw_starred_at, str):
        raise MalformedResponse(f"stargazer {login} is missing starredAt")

    try:
        starred_at = date_parser.isoparse(raw_starred_at)
    except (TypeError, ValueError) as exc:
        raise MalformedResponse(f"invalid starredAt for {login}: {raw_starred_at!r}") from exc

    if starred_at.tzinfo is None:
        starred_at = starred_at.replace(tzinfo=UTC)
    return StargazerItem(stargazer=login, starred_at=starred_at.astimezone(UTC))
