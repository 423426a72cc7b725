"""Async GitHub REST client for repository metadata, commits and README."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
import time
from datetime import datetime
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from commit_translator.config.settings import settings
from commit_translator.crawlers.contracts import (
    CommitPageContract,
    FetchResult,
    FetchState,
    ReadmeContract,
    RepoContract,
)

logger = logging.getLogger(__name__)

_REDACTED = "***REDACTED***"
_SECRET_KEYS = ("authorization", "token", "credential", "api_key", "apikey", "secret", "password")
_BULKY_KEYS = ("readme", "content", "prompt", "response", "raw")
_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[^\s,;]+"),
    re.compile(r"(?i)(token\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"(?i)(api[_-]?key\s*[=:]\s*)[^\s,;]+"),
    re.compile(r"\b(gh[pousr]_)[A-Za-z0-9]{20,}"),
    re.compile(r"\b(sk-(?:ant-)?)[A-Za-z0-9_\-]{16,}"),
)


def sanitize_for_log(value: Any, *, key: Optional[str] = None) -> Any:
    """Return a copy of a log payload with credentials and bulky text removed."""

    if isinstance(value, dict):
        return {str(k): _sanitize_field(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(item, key=key) for item in value]
    if isinstance(value, str):
        return _sanitize_field(key, value) if key else _redact_secrets(value)
    return value


def sanitize_log_extra(**kwargs: Any) -> dict[str, Any]:
    """Helper for `extra=` payloads in structured logging."""

    return {key: _sanitize_field(key, value) for key, value in kwargs.items()}


def _sanitize_field(field: str, value: Any) -> Any:
    lowered = field.lower()
    if any(marker in lowered for marker in _SECRET_KEYS):
        return _REDACTED
    if isinstance(value, str):
        if any(marker in lowered for marker in _BULKY_KEYS) and value.strip():
            return f"<omitted text ({len(value)} chars)>"
        return _redact_secrets(value)
    return sanitize_for_log(value, key=field) if isinstance(value, (dict, list, tuple, set)) else value


def _redact_secrets(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(rf"\1{_REDACTED}", text)
    return text


class _RateLimited(Exception):
    """Retryable rate-limit signal for tenacity."""


class GitHubClient:
    """Typed GitHub API client; every call returns a FetchResult."""

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    ACCEPT_JSON = "application/vnd.github+json"

    def __init__(
        self,
        *,
        token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base_seconds: Optional[float] = None,
        backoff_max_seconds: Optional[float] = None,
        base_url: Optional[str] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._token = token or settings.GITHUB_TOKEN
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._max_retries = max_retries or settings.GITHUB_MAX_RETRIES
        self._backoff_base_seconds = backoff_base_seconds or settings.GITHUB_BACKOFF_BASE_SECONDS
        self._backoff_max_seconds = backoff_max_seconds or settings.GITHUB_BACKOFF_MAX_SECONDS
        self._base_url = base_url or self.BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_repo(self, full_name: str) -> RepoContract:
        return await self._fetch_json(f"/repos/{full_name}")

    async def list_commits(
        self,
        full_name: str,
        *,
        page: int = 1,
        per_page: int = 100,
        since: Optional[datetime] = None,
    ) -> CommitPageContract:
        params: dict[str, Any] = {"per_page": per_page, "page": page}
        if since is not None:
            params["since"] = since.strftime("%Y-%m-%dT%H:%M:%SZ")
        return await self._fetch_json(f"/repos/{full_name}/commits", params=params)

    async def fetch_all_commits(
        self,
        full_name: str,
        *,
        since: Optional[datetime] = None,
        per_page: Optional[int] = None,
        max_pages: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """Walk the commits endpoint page by page until an empty page.

        The first failed page ends the walk; whatever was collected before it
        is returned as-is.
        """

        page_size = per_page or settings.GITHUB_COMMITS_PER_PAGE
        page_cap = max_pages if max_pages is not None else settings.GITHUB_MAX_COMMIT_PAGES
        commits: list[dict[str, Any]] = []
        page = 1

        while page_cap is None or page <= page_cap:
            result = await self.list_commits(full_name, page=page, per_page=page_size, since=since)
            if result.is_failed:
                logger.warning(
                    "Stopping commit pagination after failed page",
                    extra=sanitize_log_extra(
                        repo=full_name,
                        page=page,
                        status_code=result.status_code,
                        error=result.error,
                        collected=len(commits),
                    ),
                )
                break
            if not result.data:
                break

            commits.extend(item for item in result.data if isinstance(item, dict))
            logger.info(
                "Fetched commit page",
                extra=sanitize_log_extra(repo=full_name, page=page, page_size=len(result.data), total=len(commits)),
            )
            page += 1

        return commits

    async def get_readme(self, full_name: str) -> str:
        """Return decoded README text, or an empty string when there is none."""

        result = await self._read_readme(full_name)
        if not result.is_ok:
            if result.is_failed and result.status_code != 404:
                logger.info(
                    "README unavailable",
                    extra=sanitize_log_extra(repo=full_name, status_code=result.status_code, error=result.error),
                )
            return ""
        return result.data or ""

    async def _read_readme(self, full_name: str) -> ReadmeContract:
        response = await self._request(f"/repos/{full_name}/readme")
        if response.state != FetchState.OK:
            return FetchResult(state=response.state, status_code=response.status_code, error=response.error)

        payload = response.data if isinstance(response.data, dict) else {}
        encoded = payload.get("content") if isinstance(payload.get("content"), str) else ""
        if not encoded:
            return FetchResult(state=FetchState.EMPTY, data="", status_code=response.status_code)

        if payload.get("encoding", "base64") == "base64":
            try:
                decoded = base64.b64decode(encoded).decode("utf-8", errors="replace")
            except ValueError as exc:
                return FetchResult(
                    state=FetchState.FAILED,
                    error=f"Failed to decode README: {exc}",
                    status_code=response.status_code,
                )
        else:
            decoded = encoded

        if not decoded.strip():
            return FetchResult(state=FetchState.EMPTY, data="", status_code=response.status_code)
        return FetchResult(state=FetchState.OK, data=decoded, status_code=response.status_code)

    async def _fetch_json(self, path: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        response = await self._request(path, params=params)
        if response.state != FetchState.OK:
            return response

        payload = response.data
        if payload is None or (isinstance(payload, (list, dict)) and len(payload) == 0):
            return FetchResult(state=FetchState.EMPTY, data=payload, status_code=response.status_code)
        return response

    async def _request(self, path: str, *, params: Optional[dict[str, Any]] = None) -> FetchResult[Any]:
        client = await self._ensure_client()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries),
                wait=wait_exponential(multiplier=self._backoff_base_seconds, max=self._backoff_max_seconds),
                retry=retry_if_exception_type(_RateLimited),
                reraise=True,
            ):
                with attempt:
                    response = await client.get(path, params=params)

                    if response.status_code in (403, 429) and self._is_rate_limited(response):
                        wait_seconds = self._rate_limit_wait(response.headers)
                        logger.warning(
                            "GitHub API rate limit encountered",
                            extra=sanitize_log_extra(
                                path=path,
                                status_code=response.status_code,
                                retry_after_seconds=wait_seconds,
                            ),
                        )
                        if wait_seconds > 0:
                            await asyncio.sleep(wait_seconds)
                        raise _RateLimited(f"GitHub rate limit encountered ({response.status_code})")

                    response.raise_for_status()
                    return FetchResult(
                        state=FetchState.OK,
                        data=response.json(),
                        etag=response.headers.get("etag"),
                        status_code=response.status_code,
                    )
        except _RateLimited as exc:
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=429)
        except httpx.HTTPError as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc), status_code=status_code),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=status_code)
        except ValueError as exc:
            logger.warning("GitHub returned a non-JSON body", extra=sanitize_log_extra(path=path, error=str(exc)))
            return FetchResult(state=FetchState.FAILED, error=f"Invalid JSON from GitHub: {exc}")

        return FetchResult(state=FetchState.FAILED, error="Unknown GitHub request failure")

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client

        headers = {
            "Accept": self.ACCEPT_JSON,
            "User-Agent": settings.USER_AGENT,
            "X-GitHub-Api-Version": self.API_VERSION,
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )
        return self._client

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        return response.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in response.headers

    def _rate_limit_wait(self, headers: httpx.Headers) -> float:
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return min(max(float(retry_after), 0.0), self._backoff_max_seconds)
            except ValueError:
                pass

        reset_raw = headers.get("x-ratelimit-reset")
        if reset_raw is not None:
            try:
                wait_seconds = int(reset_raw) - int(time.time()) + settings.GITHUB_RATE_LIMIT_BUFFER_SECONDS
                return float(min(max(wait_seconds, 0), self._backoff_max_seconds))
            except ValueError:
                pass

        return 0.0
