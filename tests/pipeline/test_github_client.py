from __future__ import annotations

import base64
from datetime import datetime

import httpx
import pytest

from commit_translator.config.settings import settings
from commit_translator.crawlers.contracts import FetchState
from commit_translator.crawlers.github_client import GitHubClient, sanitize_log_extra


def _client(handler, **kwargs) -> GitHubClient:
    return GitHubClient(
        token=kwargs.pop("token", "ghp_testtoken"),
        transport=httpx.MockTransport(handler),
        backoff_base_seconds=0.001,
        backoff_max_seconds=0.01,
        **kwargs,
    )


def _commit(sha: str) -> dict:
    return {"sha": sha, "commit": {"message": f"commit {sha}", "author": {"name": "Mona", "date": "2024-05-01T00:00:00Z"}}}


@pytest.mark.asyncio
async def test_fetch_all_commits_walks_pages_until_empty_page() -> None:
    pages = {1: [_commit("a"), _commit("b")], 2: [_commit("c"), _commit("d")], 3: [_commit("e")]}
    requested: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        requested.append(page)
        assert request.url.params["per_page"] == "2"
        return httpx.Response(200, json=pages.get(page, []))

    async with _client(handler) as client:
        commits = await client.fetch_all_commits("octocat/demo", per_page=2)

    assert [commit["sha"] for commit in commits] == ["a", "b", "c", "d", "e"]
    assert requested == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_fetch_all_commits_keeps_partial_list_when_later_page_fails() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if page == 1:
            return httpx.Response(200, json=[_commit("a"), _commit("b")])
        return httpx.Response(500, json={"message": "boom"})

    async with _client(handler) as client:
        commits = await client.fetch_all_commits("octocat/demo", per_page=2)

    assert [commit["sha"] for commit in commits] == ["a", "b"]


@pytest.mark.asyncio
async def test_fetch_all_commits_honors_page_cap() -> None:
    requested: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(int(request.url.params["page"]))
        return httpx.Response(200, json=[_commit(request.url.params["page"])])

    async with _client(handler) as client:
        commits = await client.fetch_all_commits("octocat/demo", per_page=1, max_pages=2)

    assert len(commits) == 2
    assert requested == [1, 2]


@pytest.mark.asyncio
async def test_list_commits_sends_since_in_github_format() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(dict(request.url.params))
        return httpx.Response(200, json=[])

    async with _client(handler) as client:
        result = await client.list_commits("octocat/demo", per_page=10, since=datetime(2024, 5, 1, 8, 30, 0))

    assert result.state == FetchState.EMPTY
    assert seen["since"] == "2024-05-01T08:30:00Z"
    assert seen["per_page"] == "10"
    assert seen["page"] == "1"


@pytest.mark.asyncio
async def test_requests_carry_user_agent_and_bearer_token() -> None:
    headers: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        headers.update(request.headers)
        return httpx.Response(200, json={"full_name": "octocat/demo"})

    async with _client(handler, token="ghp_secretvalue") as client:
        result = await client.get_repo("octocat/demo")

    assert result.is_ok
    assert result.data == {"full_name": "octocat/demo"}
    assert headers["user-agent"] == settings.USER_AGENT
    assert headers["authorization"] == "Bearer ghp_secretvalue"
    assert headers["accept"] == GitHubClient.ACCEPT_JSON


@pytest.mark.asyncio
async def test_get_repo_not_found_is_failed_result() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})

    async with _client(handler) as client:
        result = await client.get_repo("octocat/missing")

    assert result.is_failed
    assert result.status_code == 404


@pytest.mark.asyncio
async def test_get_readme_decodes_content_and_missing_readme_is_empty() -> None:
    encoded = base64.b64encode("# Demo\n\nHello".encode("utf-8")).decode("ascii")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/repos/octocat/demo/readme":
            return httpx.Response(200, json={"content": encoded, "encoding": "base64"})
        return httpx.Response(404, json={"message": "Not Found"})

    async with _client(handler) as client:
        readme = await client.get_readme("octocat/demo")
        missing = await client.get_readme("octocat/bare")

    assert readme == "# Demo\n\nHello"
    assert missing == ""


@pytest.mark.asyncio
async def test_rate_limited_request_is_retried() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] == 1:
            return httpx.Response(429, headers={"retry-after": "0"}, json={"message": "slow down"})
        return httpx.Response(200, json={"full_name": "octocat/demo"})

    async with _client(handler, max_retries=3) as client:
        result = await client.get_repo("octocat/demo")

    assert result.is_ok
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_rate_limit_gives_up_after_max_retries() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(403, headers={"x-ratelimit-remaining": "0"}, json={"message": "rate limited"})

    async with _client(handler, max_retries=2) as client:
        result = await client.get_repo("octocat/demo")

    assert result.is_failed
    assert result.status_code == 429
    assert calls["count"] == 2


def test_sanitize_log_extra_redacts_credentials_and_bulky_text() -> None:
    extra = sanitize_log_extra(
        token="ghp_abcdefghijklmnopqrstuvwxyz",
        error="401 for Bearer ghp_abcdefghijklmnopqrstuvwxyz",
        readme="x" * 50,
        page=2,
    )

    assert extra["token"] == "***REDACTED***"
    assert "ghp_abcdefghijklmnopqrstuvwxyz" not in extra["error"]
    assert extra["readme"] == "<omitted text (50 chars)>"
    assert extra["page"] == 2
