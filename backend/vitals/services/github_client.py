from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import httpx

from vitals.config import settings
from vitals.services import graphql_queries as gql

logger = logging.getLogger(__name__)


class GitHubError(Exception):
    """Base class for every failure raised by the fetch client."""


class TransientError(GitHubError):
    """5xx, timeout, transport failure or an empty response. Retryable."""


class RateLimitError(GitHubError):
    def __init__(self, message: str, reset_after: float | None = None) -> None:
        super().__init__(message)
        self.reset_after = reset_after


class GitHubAPIError(GitHubError):
    """A request GitHub rejected for a reason retrying will not fix."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FetchFailedError(GitHubError):
    def __init__(self, message: str, attempts: int, last_error: GitHubError) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class RateLimitTracker:
    def __init__(self) -> None:
        self.remaining: int = -1
        self.limit: int = -1
        self.reset_at: datetime | None = None

    def update(self, headers: httpx.Headers) -> None:
        if "x-ratelimit-remaining" in headers:
            self.remaining = int(headers["x-ratelimit-remaining"])
        if "x-ratelimit-limit" in headers:
            self.limit = int(headers["x-ratelimit-limit"])
        if "x-ratelimit-reset" in headers:
            ts = int(headers["x-ratelimit-reset"])
            self.reset_at = datetime.fromtimestamp(ts, tz=timezone.utc)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    def to_dict(self) -> dict:
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": self.reset_at.isoformat() if self.reset_at else None,
        }


_RATE_LIMIT_MARKERS = ("rate limit", "abuse detection")


class FetchClient:
    """Process-wide serializer for GitHub GraphQL calls.

    Only one request is in flight at a time. Consecutive requests are spaced
    by ``request_delay`` seconds. A rate-limit signal puts the client into a
    cooldown that every queued call waits out. Transient failures back off
    exponentially up to ``max_attempts`` tries in total.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        api_url: str | None = None,
        request_delay: float | None = None,
        max_attempts: int | None = None,
        backoff_base: float | None = None,
        backoff_max: float | None = None,
        jitter: float | None = None,
        cooldown: float | None = None,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.api_url = api_url or settings.github_graphql_url
        self.request_delay = (
            settings.request_delay_ms / 1000 if request_delay is None else request_delay
        )
        self.max_attempts = max_attempts or settings.max_fetch_attempts
        self.backoff_base = settings.retry_base_delay if backoff_base is None else backoff_base
        self.backoff_max = settings.retry_max_delay if backoff_max is None else backoff_max
        self.jitter = settings.retry_jitter if jitter is None else jitter
        self.cooldown = settings.rate_limit_cooldown if cooldown is None else cooldown
        self.timeout = timeout or settings.request_timeout
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout)
        self._clock = clock
        self._sleep = sleep
        self._wall_clock = wall_clock
        self._lock = asyncio.Lock()
        self._last_request_at: float | None = None
        self._cooldown_until = 0.0
        self.rate_limit = RateLimitTracker()

    @property
    def cooldown_remaining(self) -> float:
        return max(0.0, self._cooldown_until - self._clock())

    def backoff_delay(self, attempt: int) -> float:
        delay = self.backoff_base * (2**attempt)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return min(delay, self.backoff_max)

    async def fetch(self, query: str, variables: dict | None = None, *, token: str) -> dict:
        async with self._lock:
            return await self._fetch_with_retry(query, variables or {}, token)

    async def _fetch_with_retry(self, query: str, variables: dict, token: str) -> dict:
        attempt = 0
        while True:
            await self._wait_for_slot()
            try:
                return await self._send(query, variables, token)
            except RateLimitError as exc:
                self._enter_cooldown(exc.reset_after)
                error: GitHubError = exc
            except TransientError as exc:
                error = exc

            attempt += 1
            if attempt >= self.max_attempts:
                logger.error("GitHub request failed after %d attempts: %s", attempt, error)
                raise FetchFailedError(
                    f"GitHub request failed after {attempt} attempts: {error}",
                    attempts=attempt,
                    last_error=error,
                ) from error

            if isinstance(error, TransientError):
                delay = self.backoff_delay(attempt - 1)
                logger.warning(
                    "Transient GitHub error (attempt %d/%d), retrying in %.1fs: %s",
                    attempt, self.max_attempts, delay, error,
                )
                await self._sleep(delay)
            else:
                logger.warning(
                    "GitHub rate limit hit (attempt %d/%d), cooling down %.1fs",
                    attempt, self.max_attempts, self.cooldown_remaining,
                )

    async def _wait_for_slot(self) -> None:
        now = self._clock()
        wait = max(0.0, self._cooldown_until - now)
        if self._last_request_at is not None:
            wait = max(wait, self._last_request_at + self.request_delay - now)
        if wait > 0:
            await self._sleep(wait)
        self._last_request_at = self._clock()

    def _enter_cooldown(self, reset_after: float | None) -> None:
        duration = self.cooldown if reset_after is None else max(0.0, reset_after)
        self._cooldown_until = max(self._cooldown_until, self._clock() + duration)

    def _reset_hint(self, headers: httpx.Headers) -> float | None:
        retry_after = headers.get("retry-after")
        if retry_after is not None:
            try:
                return float(retry_after)
            except ValueError:
                pass
        reset = headers.get("x-ratelimit-reset")
        if reset is not None:
            try:
                return max(0.0, float(reset) - self._wall_clock())
            except ValueError:
                pass
        return None

    async def _send(self, query: str, variables: dict, token: str) -> dict:
        try:
            resp = await self._http.post(
                self.api_url,
                json={"query": query, "variables": variables},
                headers={
                    "Authorization": f"bearer {token}",
                    "Accept": "application/vnd.github+json",
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientError(f"request timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientError(f"network error: {exc}") from exc

        self.rate_limit.update(resp.headers)
        status = resp.status_code

        if status == 429 or (status == 403 and self._is_rate_limited(resp)):
            raise RateLimitError(
                f"rate limited (HTTP {status})", reset_after=self._reset_hint(resp.headers)
            )
        if status >= 500:
            raise TransientError(f"GitHub returned HTTP {status}")
        if status >= 400:
            raise GitHubAPIError(_error_message(resp), status_code=status)

        try:
            payload = resp.json()
        except ValueError as exc:
            raise TransientError(f"GitHub returned a non-JSON body (HTTP {status})") from exc
        if not isinstance(payload, dict):
            raise TransientError("GitHub returned an unexpected response body")
        errors = payload.get("errors") or []
        if any(err.get("type") == "RATE_LIMITED" for err in errors):
            raise RateLimitError(
                "GraphQL rate limit exceeded", reset_after=self._reset_hint(resp.headers)
            )
        if errors:
            raise GitHubAPIError(
                "; ".join(err.get("message", "unknown error") for err in errors),
                status_code=status,
            )

        data = payload.get("data")
        if data is None:
            raise TransientError("GitHub returned an empty response")

        if self.rate_limit.exhausted:
            self._enter_cooldown(self._reset_hint(resp.headers))
        return data

    def _is_rate_limited(self, resp: httpx.Response) -> bool:
        if resp.headers.get("x-ratelimit-remaining") == "0":
            return True
        text = resp.text.lower()
        return any(marker in text for marker in _RATE_LIMIT_MARKERS)

    async def close(self) -> None:
        await self._http.aclose()


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}: {resp.text[:200]}"
    message = body.get("message") if isinstance(body, dict) else None
    return f"HTTP {resp.status_code}: {message or resp.text[:200]}"


class GitHubClient:
    """Typed GitHub queries for one access token, routed through a FetchClient."""

    def __init__(self, token: str, fetcher: FetchClient | None = None) -> None:
        self._token = token
        self._fetcher = fetcher or fetch_client

    async def query(self, document: str, variables: dict | None = None) -> dict:
        return await self._fetcher.fetch(document, variables, token=self._token)

    async def get_repository(self, owner: str, repo: str) -> dict:
        data = await self.query(gql.REPOSITORY, {"owner": owner, "repo": repo})
        if data.get("repository") is None:
            raise GitHubAPIError(f"Repository {owner}/{repo} not found", status_code=404)
        return data["repository"]

    async def fetch_issues_page(
        self,
        owner: str,
        repo: str,
        after: str | None = None,
        since: str | None = None,
        first: int | None = None,
    ) -> dict:
        states = None if since else ["OPEN"]
        data = await self.query(
            gql.ISSUES_PAGE,
            {
                "owner": owner,
                "repo": repo,
                "first": first or settings.page_size,
                "after": after,
                "states": states,
                "since": since,
            },
        )
        return _connection(data, owner, repo, "issues")

    async def fetch_pull_requests_page(
        self,
        owner: str,
        repo: str,
        after: str | None = None,
        include_closed: bool = False,
        newest_first: bool = False,
        first: int | None = None,
    ) -> dict:
        """One page of pull requests ordered by last update.

        Full walks go oldest first, so a PR updated mid-walk lands behind the
        cursor. Incremental walks go newest first and stop at the first older row.
        """
        states = ["OPEN", "CLOSED", "MERGED"] if include_closed else ["OPEN"]
        data = await self.query(
            gql.PULL_REQUESTS_PAGE,
            {
                "owner": owner,
                "repo": repo,
                "first": first or settings.page_size,
                "after": after,
                "states": states,
                "direction": "DESC" if newest_first else "ASC",
            },
        )
        return _connection(data, owner, repo, "pullRequests")

    async def fetch_item(self, owner: str, repo: str, number: int) -> dict:
        data = await self.query(
            gql.SINGLE_ITEM, {"owner": owner, "repo": repo, "number": number}
        )
        node = (data.get("repository") or {}).get("issueOrPullRequest")
        if node is None:
            raise GitHubAPIError(f"{owner}/{repo}#{number} not found", status_code=404)
        return node

    async def fetch_team_members(self, org: str, slug: str) -> list[str]:
        logins: list[str] = []
        after: str | None = None
        while True:
            data = await self.query(gql.TEAM_MEMBERS, {"org": org, "slug": slug, "after": after})
            team = ((data.get("organization") or {}).get("team")) or None
            if team is None:
                raise GitHubAPIError(f"Team {org}/{slug} not found", status_code=404)
            members = team["members"]
            logins.extend(n["login"] for n in members["nodes"] if n and n.get("login"))
            if not members["pageInfo"]["hasNextPage"]:
                return logins
            after = members["pageInfo"]["endCursor"]


def _connection(data: dict, owner: str, repo: str, field: str) -> dict:
    repository = data.get("repository")
    if repository is None:
        raise GitHubAPIError(f"Repository {owner}/{repo} not found", status_code=404)
    return repository[field]


# Singleton
fetch_client = FetchClient()
