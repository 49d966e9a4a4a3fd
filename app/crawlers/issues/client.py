"""Resilient async GitHub client for issue retrieval."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config.settings import settings
from app.crawlers.issues.contracts import (
    FetchResult,
    FetchState,
    IssueContract,
    IssueListContract,
    RepoContract,
)
from app.services.log_redaction import sanitize_log_extra

logger = logging.getLogger(__name__)


class _RateLimitRetryableError(Exception):
    """Retryable rate-limit signal for tenacity."""


class _TransientRetryableError(Exception):
    """Retryable 5xx signal for tenacity."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubIssueClient:
    """Typed GitHub API client for repository, issue listing, search and single-issue lookups."""

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
        rate_limit_buffer_seconds: Optional[int] = None,
        base_url: Optional[str] = None,
        transport: Optional[Any] = None,
    ) -> None:
        self._token = token or settings.GITHUB_TOKEN
        self._timeout_seconds = timeout_seconds or settings.GITHUB_TIMEOUT_SECONDS
        self._max_retries = max_retries or settings.GITHUB_MAX_RETRIES
        self._backoff_base_seconds = backoff_base_seconds or settings.GITHUB_BACKOFF_BASE_SECONDS
        self._backoff_max_seconds = backoff_max_seconds or settings.GITHUB_BACKOFF_MAX_SECONDS
        self._rate_limit_buffer_seconds = rate_limit_buffer_seconds or settings.GITHUB_RATE_LIMIT_BUFFER_SECONDS
        self._base_url = base_url or self.BASE_URL
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "GitHubIssueClient":
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_repo(self, owner: str, repo: str) -> RepoContract:
        return await self._fetch_json_contract(f"/repos/{owner}/{repo}")

    async def list_issues(
        self,
        owner: str,
        repo: str,
        *,
        state: str = "all",
        page: int = 1,
        per_page: int = 30,
        sort: str = "created",
        direction: str = "desc",
    ) -> IssueListContract:
        """List issues (GitHub includes pull requests here) with a next-page signal."""

        return await self._fetch_json_contract(
            f"/repos/{owner}/{repo}/issues",
            params={
                "state": state,
                "page": page,
                "per_page": per_page,
                "sort": sort,
                "direction": direction,
            },
        )

    async def search_issues(
        self,
        query: str,
        *,
        page: int = 1,
        per_page: int = 30,
        sort: Optional[str] = "updated",
        order: str = "desc",
    ) -> IssueListContract:
        """Search issues using qualifier syntax.

        Returns the `items` payload from `/search/issues` with `total_count` attached.
        """

        params: dict[str, Any] = {"q": query, "page": page, "per_page": per_page}
        if sort:
            params["sort"] = sort
            params["order"] = order

        response = await self._request("/search/issues", params=params)
        if response.state != FetchState.OK:
            return response

        payload = response.data if isinstance(response.data, dict) else {}
        items = payload.get("items") if isinstance(payload.get("items"), list) else []
        total_count = payload.get("total_count") if isinstance(payload.get("total_count"), int) else len(items)
        if not items:
            return FetchResult(
                state=FetchState.EMPTY,
                data=[],
                status_code=response.status_code,
                total_count=total_count,
            )

        return FetchResult(
            state=FetchState.OK,
            data=items,
            status_code=response.status_code,
            has_next=response.has_next,
            total_count=total_count,
        )

    async def get_issue(self, owner: str, repo: str, number: int) -> IssueContract:
        return await self._fetch_json_contract(f"/repos/{owner}/{repo}/issues/{number}")

    async def _fetch_json_contract(
        self,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> FetchResult[Any]:
        response = await self._request(path, params=params)
        if response.state != FetchState.OK:
            return response

        payload = response.data
        if payload is None or (isinstance(payload, (list, dict, str)) and len(payload) == 0):
            return FetchResult(
                state=FetchState.EMPTY,
                data=payload,
                status_code=response.status_code,
            )

        return response

    async def _request(
        self,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
    ) -> FetchResult[Any]:
        client = await self._ensure_client()

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_retries),
                wait=wait_exponential(multiplier=self._backoff_base_seconds, max=self._backoff_max_seconds),
                retry=retry_if_exception_type(
                    (_RateLimitRetryableError, _TransientRetryableError, httpx.TransportError)
                ),
                reraise=True,
            ):
                with attempt:
                    response = await client.get(path, params=params)

                    if response.status_code == 404:
                        return FetchResult(
                            state=FetchState.NOT_FOUND,
                            status_code=404,
                            error=f"Not found: {path}",
                        )

                    if self._is_rate_limited(response):
                        wait_seconds = self._compute_rate_limit_wait(response.headers)
                        logger.warning(
                            "GitHub API rate limit encountered",
                            extra=sanitize_log_extra(
                                path=path,
                                params=params,
                                status_code=response.status_code,
                                retry_after_seconds=wait_seconds,
                            ),
                        )
                        if wait_seconds > 0:
                            await asyncio.sleep(wait_seconds)
                        raise _RateLimitRetryableError(
                            f"GitHub rate limit encountered ({response.status_code})"
                        )

                    if response.status_code >= 500:
                        raise _TransientRetryableError(
                            f"GitHub transient failure ({response.status_code})",
                            response.status_code,
                        )

                    response.raise_for_status()
                    return FetchResult(
                        state=FetchState.OK,
                        data=response.json(),
                        status_code=response.status_code,
                        has_next="next" in response.links,
                    )
        except _RateLimitRetryableError as exc:
            logger.warning(
                "GitHub request failed after rate-limit retries",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc), status_code=429),
            )
            return FetchResult(state=FetchState.RATE_LIMITED, error=str(exc), status_code=429)
        except _TransientRetryableError as exc:
            logger.warning(
                "GitHub request failed after transient retries",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc), status_code=exc.status_code),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=exc.status_code)
        except httpx.HTTPError as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            logger.warning(
                "GitHub request failed",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc), status_code=status_code),
            )
            return FetchResult(state=FetchState.FAILED, error=str(exc), status_code=status_code)
        except ValueError as exc:
            logger.warning(
                "GitHub response was not valid JSON",
                extra=sanitize_log_extra(path=path, params=params, error=str(exc)),
            )
            return FetchResult(state=FetchState.FAILED, error=f"Invalid JSON: {exc}")

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
        if response.status_code != 403:
            return False
        return response.headers.get("x-ratelimit-remaining") == "0" or "retry-after" in response.headers

    def _compute_rate_limit_wait(self, headers: httpx.Headers) -> float:
        max_wait = settings.GITHUB_RATE_LIMIT_MAX_WAIT_SECONDS

        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return min(max(float(retry_after), 0.0), max_wait)
            except ValueError:
                pass

        reset_raw = headers.get("x-ratelimit-reset")
        if reset_raw is not None:
            try:
                reset_epoch = int(reset_raw)
                wait_seconds = reset_epoch - int(time.time()) + self._rate_limit_buffer_seconds
                return float(min(max(wait_seconds, 0), max_wait))
            except ValueError:
                pass

        return self._backoff_base_seconds
