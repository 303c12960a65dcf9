from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime

import httpx
import pytest

from starsync.crawlers.stars.client import GitHubStargazerClient, sanitize_for_log, sanitize_log_extra
from starsync.errors import MalformedResponse, RepositoryNotFound, UpstreamRejected, UpstreamUnavailable


def _page_body(edges, has_next=False, end_cursor=None, total_count=None):
    return {
        "data": {
            "repository": {
                "stargazers": {
                    "totalCount": total_count,
                    "edges": edges,
                    "pageInfo": {"hasNextPage": has_next, "endCursor": end_cursor},
                }
            }
        }
    }


def _edge(login, starred_at):
    return {"starredAt": starred_at, "node": {"login": login}}


class ScriptedTransport:
    """Replays queued responses and records every request body."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _client(script: ScriptedTransport, **kwargs) -> GitHubStargazerClient:
    kwargs.setdefault("max_retries", 3)
    return GitHubStargazerClient(
        token="ghp_testtoken",
        backoff_base_seconds=0,
        backoff_max_seconds=0,
        transport=httpx.MockTransport(script),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_fetch_page_decodes_edges_and_page_info() -> None:
    script = ScriptedTransport(
        [
            httpx.Response(
                200,
                json=_page_body(
                    [_edge("alice", "2026-02-01T10:00:00Z"), _edge("bob", "2026-02-01T12:30:00+02:00")],
                    has_next=True,
                    end_cursor="Y3Vyc29yOjI=",
                    total_count=42,
                ),
            )
        ]
    )

    async with _client(script, page_size=50) as client:
        page = await client.fetch_page("acme", "rocket", cursor="Y3Vyc29yOjA=")

    assert [item.stargazer for item in page.items] == ["alice", "bob"]
    assert page.items[0].starred_at == datetime(2026, 2, 1, 10, tzinfo=UTC)
    assert page.items[1].starred_at == datetime(2026, 2, 1, 10, 30, tzinfo=UTC)
    assert page.has_next is True
    assert page.next_cursor == "Y3Vyc29yOjI="
    assert page.total_count == 42
    assert script.requests[0]["variables"] == {
        "owner": "acme",
        "name": "rocket",
        "cursor": "Y3Vyc29yOjA=",
        "first": 50,
    }


@pytest.mark.asyncio
async def test_page_size_is_capped_at_upstream_maximum() -> None:
    script = ScriptedTransport([httpx.Response(200, json=_page_body([]))])

    async with _client(script, page_size=500) as client:
        page = await client.fetch_page("acme", "rocket")

    assert page.items == []
    assert page.has_next is False
    assert script.requests[0]["variables"]["first"] == 100


@pytest.mark.asyncio
async def test_null_repository_is_not_found() -> None:
    script = ScriptedTransport([httpx.Response(200, json={"data": {"repository": None}})])

    async with _client(script) as client:
        with pytest.raises(RepositoryNotFound) as excinfo:
            await client.fetch_page("acme", "ghost")

    assert str(excinfo.value) == "repository acme/ghost not found"


@pytest.mark.asyncio
async def test_server_error_is_rejected_without_retry() -> None:
    script = ScriptedTransport([httpx.Response(502, text="bad gateway")])

    async with _client(script) as client:
        with pytest.raises(UpstreamRejected) as excinfo:
            await client.fetch_page("acme", "rocket")

    assert excinfo.value.status_code == 502
    assert excinfo.value.body == "bad gateway"
    assert len(script.requests) == 1


@pytest.mark.asyncio
async def test_error_payload_without_data_is_rejected() -> None:
    script = ScriptedTransport([httpx.Response(200, json={"errors": [{"message": "Bad credentials"}]})])

    async with _client(script) as client:
        with pytest.raises(UpstreamRejected, match="Bad credentials"):
            await client.fetch_page("acme", "rocket")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, text="<html>oops</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"data": {}}),
        httpx.Response(200, json={"data": {"repository": {"stargazers": {"edges": []}}}}),
        httpx.Response(200, json=_page_body([{"starredAt": "2026-02-01T00:00:00Z", "node": {}}])),
        httpx.Response(200, json=_page_body([_edge("alice", "yesterday")])),
        httpx.Response(200, json=_page_body([], has_next="yes")),
    ],
)
async def test_undecodable_pages_are_malformed(response: httpx.Response) -> None:
    async with _client(ScriptedTransport([response])) as client:
        with pytest.raises(MalformedResponse):
            await client.fetch_page("acme", "rocket")


@pytest.mark.asyncio
async def test_transport_failure_is_unavailable() -> None:
    script = ScriptedTransport([httpx.ConnectError("connection refused")])

    async with _client(script) as client:
        with pytest.raises(UpstreamUnavailable):
            await client.fetch_page("acme", "rocket")


@pytest.mark.asyncio
async def test_rate_limit_is_retried_until_success() -> None:
    script = ScriptedTransport(
        [
            httpx.Response(429, headers={"retry-after": "0"}, text="slow down"),
            httpx.Response(403, headers={"x-ratelimit-remaining": "0"}, text="limit"),
            httpx.Response(200, json=_page_body([_edge("alice", "2026-02-01T00:00:00Z")])),
        ]
    )

    async with _client(script) as client:
        page = await client.fetch_page("acme", "rocket")

    assert len(script.requests) == 3
    assert [item.stargazer for item in page.items] == ["alice"]


@pytest.mark.asyncio
async def test_rate_limit_retries_are_bounded() -> None:
    script = ScriptedTransport([httpx.Response(429, headers={"retry-after": "0"}) for _ in range(2)])

    async with _client(script, max_retries=2) as client:
        with pytest.raises(UpstreamRejected, match="retries exhausted") as excinfo:
            await client.fetch_page("acme", "rocket")

    assert excinfo.value.status_code == 429
    assert len(script.requests) == 2


@pytest.mark.asyncio
async def test_plain_forbidden_is_not_treated_as_rate_limit() -> None:
    script = ScriptedTransport([httpx.Response(403, text="forbidden")])

    async with _client(script) as client:
        with pytest.raises(UpstreamRejected):
            await client.fetch_page("acme", "rocket")

    assert len(script.requests) == 1


def test_sanitize_for_log_redacts_tokens_and_payloads() -> None:
    sanitized = sanitize_for_log(
        {
            "Authorization": "Bearer abc",
            "message": "failed with token=abc123 for ghp_SECRETVALUE",
            "body": '{"data": 1}',
        }
    )

    assert sanitized["Authorization"] == "***REDACTED***"
    assert "abc123" not in sanitized["message"]
    assert "SECRETVALUE" not in sanitized["message"]
    assert sanitized["body"].startswith("<redacted payload")
    assert sanitize_log_extra(repo="acme/rocket", page=2) == {"repo": "acme/rocket", "page": 2}


@pytest.mark.asyncio
async def test_rate_limit_wait_is_capped_and_skipped_after_the_last_attempt(monkeypatch) -> None:
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    monkeypatch.setattr(asyncio, "sleep", record_sleep)
    script = ScriptedTransport([httpx.Response(429, headers={"retry-after": "86400"}) for _ in range(2)])

    async with _client(script, max_retries=2, rate_limit_max_wait_seconds=5) as client:
        with pytest.raises(UpstreamRejected, match="retries exhausted"):
            await client.fetch_page("acme", "rocket")

    assert [seconds for seconds in sleeps if seconds > 0] == [5.0]
    assert len(script.requests) == 2
