from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, Union

from vitals.db import queries
from vitals.models.db_models import (
    CommentRow,
    FetchStatus,
    IssueRow,
    ItemKind,
    JobKind,
    PullRequestRow,
    Repository,
)
from vitals.services import repo_settings
from vitals.services.errors import InvalidRequestError, RepositoryNotFoundError
from vitals.services.github_client import FetchClient, GitHubClient, GitHubError, fetch_client
from vitals.utils.dates import parse_datetime, shift_iso, utcnow_iso

logger = logging.getLogger(__name__)

# Overlap for incremental syncs so items updated mid-sync are not missed.
SINCE_OVERLAP_SECONDS = 60
INTERRUPTED_MESSAGE = "interrupted by restart"

_REACTION_CONTENT = {
    "THUMBS_UP": "thumbs_up",
    "THUMBS_DOWN": "thumbs_down",
    "LAUGH": "laugh",
    "HOORAY": "hooray",
    "CONFUSED": "confused",
    "HEART": "heart",
    "ROCKET": "rocket",
    "EYES": "eyes",
}

ProgressCallback = Callable[[int, int], Awaitable[None]]
SentimentJob = Callable[[ProgressCallback], Awaitable[None]]


# -- GraphQL node parsing ---------------------------------------------------------


def _login(actor: dict | None) -> str | None:
    return (actor or {}).get("login")


def _names(connection: dict | None, field: str) -> list[str]:
    seen: dict[str, None] = {}
    for node in (connection or {}).get("nodes") or []:
        value = (node or {}).get(field)
        if value:
            seen.setdefault(value, None)
    return list(seen)


def _reactions(groups: list[dict] | None) -> dict[str, int]:
    counts: dict[str, int] = {}
    for group in groups or []:
        key = _REACTION_CONTENT.get(group.get("content", ""))
        if key:
            counts[key] = (group.get("reactors") or {}).get("totalCount", 0)
    return counts


def _comments(connection: dict | None) -> tuple[list[CommentRow], int]:
    connection = connection or {}
    rows = [
        CommentRow(
            author_login=_login(node.get("author")),
            author_association=node.get("authorAssociation"),
            body=node.get("body") or "",
            created_at=node.get("createdAt"),
            github_id=node.get("databaseId"),
        )
        for node in connection.get("nodes") or []
        if node
    ]
    return rows, connection.get("totalCount", len(rows))


def parse_issue(node: dict, repo_id: int) -> IssueRow:
    comments, total = _comments(node.get("comments"))
    return IssueRow(
        issue_id=node["databaseId"],
        repo_id=repo_id,
        number=node["number"],
        title=node.get("title") or "",
        body=node.get("body") or "",
        url=node.get("url") or "",
        state=(node.get("state") or "OPEN").lower(),
        author_login=_login(node.get("author")),
        author_association=node.get("authorAssociation"),
        issue_type=(node.get("issueType") or {}).get("name"),
        labels=_names(node.get("labels"), "name"),
        assignees=_names(node.get("assignees"), "login"),
        milestone=(node.get("milestone") or {}).get("title"),
        reactions=_reactions(node.get("reactionGroups")),
        comments_count=total,
        created_at=node.get("createdAt"),
        updated_at=node.get("updatedAt"),
        closed_at=node.get("closedAt"),
        comments=comments,
    )


def parse_pull_request(node: dict, repo_id: int) -> PullRequestRow:
    comments, total = _comments(node.get("comments"))
    reviewers: dict[str, None] = {}
    for request in (node.get("reviewRequests") or {}).get("nodes") or []:
        reviewer = (request or {}).get("requestedReviewer") or {}
        name = reviewer.get("login") or reviewer.get("slug")
        if name:
            reviewers.setdefault(name, None)
    return PullRequestRow(
        pr_id=node["databaseId"],
        repo_id=repo_id,
        number=node["number"],
        title=node.get("title") or "",
        body=node.get("body") or "",
        url=node.get("url") or "",
        state=(node.get("state") or "OPEN").lower(),
        is_draft=bool(node.get("isDraft")),
        author_login=_login(node.get("author")),
        author_association=node.get("authorAssociation"),
        labels=_names(node.get("labels"), "name"),
        assignees=_names(node.get("assignees"), "login"),
        reviewers=list(reviewers),
        review_decision=node.get("reviewDecision"),
        mergeable=node.get("mergeable"),
        additions=node.get("additions") or 0,
        deletions=node.get("deletions") or 0,
        changed_files=node.get("changedFiles") or 0,
        reactions=_reactions(node.get("reactionGroups")),
        comments_count=total,
        created_at=node.get("createdAt"),
        updated_at=node.get("updatedAt"),
        closed_at=node.get("closedAt"),
        merged_at=node.get("mergedAt"),
        comments=comments,
    )


# -- orchestration ---------------------------------------------------------------


class SyncOrchestrator:
    """Runs at most one background job per repository.

    A fetch job syncs issues then pull requests. A sentiment job backfills AI
    sentiment for a viewed page and only starts when the repository is idle.
    A fetch requested while a sentiment job runs is queued behind it.
    """

    def __init__(
        self,
        fetcher: FetchClient | None = None,
        client_factory: Callable[[str, FetchClient], GitHubClient] | None = None,
    ) -> None:
        self._fetcher = fetcher or fetch_client
        self._client_factory = client_factory or (lambda token, f: GitHubClient(token, f))
        self._active: dict[int, JobKind] = {}
        self._pending: dict[int, tuple[Repository, str, bool]] = {}
        self._tasks: dict[int, asyncio.Task] = {}

    def is_active(self, repo_id: int) -> bool:
        return repo_id in self._active

    def is_fetching(self, repo_id: int) -> bool:
        return self._active.get(repo_id) in (JobKind.ISSUE_FETCH, JobKind.PR_FETCH) or (
            repo_id in self._pending
        )

    def is_analyzing(self, repo_id: int) -> bool:
        return self._active.get(repo_id) == JobKind.SENTIMENT

    async def _get_repo(self, owner: str, name: str) -> Repository:
        repo = await queries.get_repo_by_name(owner, name)
        if repo is None:
            raise RepositoryNotFoundError(owner, name)
        return repo

    async def _get_github_repo(self, owner: str, name: str) -> Repository:
        repo = await self._get_repo(owner, name)
        if not repo.is_github:
            raise InvalidRequestError(
                f"{repo.full_name} is a local-only repository and cannot be synced"
            )
        return repo

    async def start_fetch(self, owner: str, name: str, token: str, *, incremental: bool = False) -> bool:
        """Start a background sync. Returns False if one is already running or queued."""
        repo = await self._get_github_repo(owner, name)
        # No await between the check and the registration below.
        active = self._active.get(repo.repo_id)
        if active is not None:
            if active == JobKind.SENTIMENT and repo.repo_id not in self._pending:
                self._pending[repo.repo_id] = (repo, token, incremental)
                logger.info("Queued fetch for %s behind sentiment job", repo.full_name)
                return True
            logger.info("Fetch for %s already in progress", repo.full_name)
            return False
        self._launch_fetch(repo, token, incremental)
        return True

    async def refresh(self, owner: str, name: str, token: str) -> bool:
        return await self.start_fetch(owner, name, token, incremental=True)

    def _launch_fetch(self, repo: Repository, token: str, incremental: bool) -> None:
        self._active[repo.repo_id] = JobKind.ISSUE_FETCH
        self._spawn(repo.repo_id, self._run_fetch(repo, token, incremental))

    def start_sentiment(self, repo: Repository, job: SentimentJob) -> bool:
        """Run a sentiment backfill if the repository has no job at all."""
        if repo.repo_id in self._active:
            return False
        self._active[repo.repo_id] = JobKind.SENTIMENT
        self._spawn(repo.repo_id, self._run_sentiment(repo, job))
        return True

    def _spawn(self, repo_id: int, coro: Coroutine[Any, Any, None]) -> None:
        self._tasks[repo_id] = asyncio.create_task(coro)

    def _release(self, repo_id: int) -> None:
        self._active.pop(repo_id, None)
        self._tasks.pop(repo_id, None)
        pending = self._pending.pop(repo_id, None)
        if pending is not None:
            repo, token, incremental = pending
            self._launch_fetch(repo, token, incremental)

    async def wait(self, repo_id: int) -> None:
        """Wait until the repository has no running or queued job."""
        while (task := self._tasks.get(repo_id)) is not None:
            await task

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._pending.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_fetch(self, repo: Repository, token: str, incremental: bool) -> None:
        client = self._client_factory(token, self._fetcher)
        try:
            await queries.update_repo_status(repo.repo_id, FetchStatus.IN_PROGRESS)
            # Re-read so queued fetches see timestamps from the previous run.
            repo = await queries.get_repo(repo.repo_id) or repo
            self._active[repo.repo_id] = JobKind.ISSUE_FETCH
            await self._sync_issues(repo, client, incremental)
            self._active[repo.repo_id] = JobKind.PR_FETCH
            await self._sync_pull_requests(repo, client, incremental)
            await queries.update_repo_status(repo.repo_id, FetchStatus.COMPLETED)
            logger.info("Sync finished for %s", repo.full_name)
        except asyncio.CancelledError:
            await queries.update_repo_status(repo.repo_id, FetchStatus.FAILED)
            raise
        except Exception:
            logger.exception("Sync failed for %s", repo.full_name)
            await queries.update_repo_status(repo.repo_id, FetchStatus.FAILED)
        finally:
            self._release(repo.repo_id)

    async def _sync_issues(self, repo: Repository, client: GitHubClient, incremental: bool) -> None:
        job = await queries.create_job(repo.repo_id, JobKind.ISSUE_FETCH)
        since = None
        if incremental and repo.last_fetched:
            since = shift_iso(repo.last_fetched, -SINCE_OVERLAP_SECONDS)
        started_at = utcnow_iso()
        seen: set[int] = set()
        count = 0
        after = None
        try:
            while True:
                page = await client.fetch_issues_page(repo.owner, repo.name, after=after, since=since)
                rows = [parse_issue(node, repo.repo_id) for node in page.get("nodes") or [] if node]
                await queries.replace_issues(rows)
                seen.update(row.issue_id for row in rows)
                count += len(rows)
                await queries.update_job_progress(job.job_id, count, page.get("totalCount", count))
                logger.info("Synced %d issues for %s", count, repo.full_name)
                info = page["pageInfo"]
                if not info["hasNextPage"]:
                    break
                after = info["endCursor"]
        except Exception as exc:
            await queries.finish_job(job.job_id, FetchStatus.FAILED, str(exc))
            raise

        if since is None:
            closed = await queries.close_missing_items(ItemKind.ISSUE, repo.repo_id, seen)
            if closed:
                logger.info("Closed %d issues no longer open in %s", closed, repo.full_name)
        await queries.update_last_fetched(repo.repo_id, issues_at=started_at, prs_at=None)
        await queries.finish_job(job.job_id, FetchStatus.COMPLETED, f"Synced {count} issues")
        await self._sync_maintainers(repo, client)

    async def _sync_pull_requests(
        self, repo: Repository, client: GitHubClient, incremental: bool
    ) -> None:
        job = await queries.create_job(repo.repo_id, JobKind.PR_FETCH)
        since = None
        if incremental and repo.last_pr_fetched:
            since = parse_datetime(shift_iso(repo.last_pr_fetched, -SINCE_OVERLAP_SECONDS))
        started_at = utcnow_iso()
        seen: set[int] = set()
        count = 0
        after = None
        try:
            while True:
                page = await client.fetch_pull_requests_page(
                    repo.owner,
                    repo.name,
                    after=after,
                    include_closed=since is not None,
                    newest_first=since is not None,
                )
                rows = [
                    parse_pull_request(node, repo.repo_id)
                    for node in page.get("nodes") or []
                    if node
                ]
                # Pages come newest first, so the first older row ends the walk.
                fresh = [r for r in rows if since is None or _updated_after(r, since)]
                await queries.replace_pull_requests(fresh)
                seen.update(row.pr_id for row in fresh)
                count += len(fresh)
                total = page.get("totalCount", count) if since is None else count
                await queries.update_job_progress(job.job_id, count, total)
                logger.info("Synced %d pull requests for %s", count, repo.full_name)
                info = page["pageInfo"]
                if len(fresh) < len(rows) or not info["hasNextPage"]:
                    break
                after = info["endCursor"]
        except Exception as exc:
            await queries.finish_job(job.job_id, FetchStatus.FAILED, str(exc))
            raise

        if since is None:
            await queries.close_missing_items(ItemKind.PULL_REQUEST, repo.repo_id, seen)
        await queries.update_last_fetched(repo.repo_id, issues_at=None, prs_at=started_at)
        await queries.finish_job(job.job_id, FetchStatus.COMPLETED, f"Synced {count} pull requests")

    async def _sync_maintainers(self, repo: Repository, client: GitHubClient) -> None:
        config = await repo_settings.load_settings(repo.repo_id)
        team = config.general.maintainer_team
        if team is None:
            return
        try:
            logins = await client.fetch_team_members(team.org, team.team_slug)
        except GitHubError as exc:
            logger.warning(
                "Could not fetch maintainer team %s/%s for %s: %s",
                team.org, team.team_slug, repo.full_name, exc,
            )
            return
        await queries.update_maintainer_logins(repo.repo_id, logins)
        logger.info("Stored %d maintainers for %s", len(logins), repo.full_name)

    async def _run_sentiment(self, repo: Repository, job: SentimentJob) -> None:
        record = await queries.create_job(repo.repo_id, JobKind.SENTIMENT)

        async def on_progress(current: int, total: int) -> None:
            await queries.update_job_progress(record.job_id, current, total)

        try:
            await job(on_progress)
            await queries.finish_job(record.job_id, FetchStatus.COMPLETED)
        except asyncio.CancelledError:
            await queries.finish_job(record.job_id, FetchStatus.FAILED, "cancelled")
            raise
        except Exception as exc:
            logger.exception("Sentiment job failed for %s", repo.full_name)
            await queries.finish_job(record.job_id, FetchStatus.FAILED, str(exc))
        finally:
            self._release(repo.repo_id)

    async def refresh_single(
        self, owner: str, name: str, number: int, token: str
    ) -> Union[IssueRow, PullRequestRow]:
        """Fetch one issue or PR now and overwrite the cached copy."""
        repo = await self._get_github_repo(owner, name)
        client = self._client_factory(token, self._fetcher)
        node = await client.fetch_item(repo.owner, repo.name, number)
        if node.get("__typename") == "PullRequest":
            pr = parse_pull_request(node, repo.repo_id)
            await queries.replace_pull_requests([pr])
            return pr
        issue = parse_issue(node, repo.repo_id)
        await queries.replace_issues([issue])
        return issue

    async def get_status(self, owner: str, name: str) -> dict:
        repo = await self._get_repo(owner, name)
        job = await queries.get_latest_job(repo.repo_id)
        status = repo.fetch_status
        if self.is_fetching(repo.repo_id):
            status = FetchStatus.IN_PROGRESS
        return {
            "status": status.value,
            "current_job": job.kind.value if job and not job.status.is_terminal else None,
            "queued": repo.repo_id in self._pending,
            "progress": {
                "current": job.progress_current if job else 0,
                "total": job.progress_total if job else 0,
            },
            "message": job.message if job else None,
            "last_fetched": repo.last_fetched,
            "last_pr_fetched": repo.last_pr_fetched,
        }


def _updated_after(pr: PullRequestRow, since) -> bool:
    updated = parse_datetime(pr.updated_at)
    return updated is None or updated >= since


async def recover_interrupted() -> int:
    count = await queries.fail_interrupted_repos(INTERRUPTED_MESSAGE)
    if count:
        logger.warning("Marked %d interrupted syncs as failed", count)
    return count


# Singleton
orchestrator = SyncOrchestrator()
