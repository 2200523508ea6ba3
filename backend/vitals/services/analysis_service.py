from __future__ import annotations

import logging
from datetime import datetime

from vitals.db import queries
from vitals.models.db_models import IssueRow, ItemKind, PullRequestRow, Repository
from vitals.models.schemas import (
    IssueListParams,
    IssueListResponse,
    LevelStats,
    PRListParams,
    PRListResponse,
    ScoredIssue,
    ScoredPullRequest,
)
from vitals.models.settings import RepoSettings
from vitals.services import repo_settings
from vitals.services.errors import InvalidRequestError, RepositoryNotFoundError
from vitals.services.score_engine import (
    ScoreFamily,
    ScoreResult,
    SentimentLookup,
    bucket,
    family_thresholds,
    is_bug,
    is_feature_request,
    score_item,
    uses_sentiment,
)
from vitals.services.sentiment_service import (
    SentimentAugmenter,
    augmenter as default_augmenter,
    item_hash,
    load_cached_sentiment,
)
from vitals.services.sync_service import SyncOrchestrator, orchestrator as default_orchestrator
from vitals.utils.dates import utcnow
from vitals.utils.issue_filters import (
    calculate_stats,
    filter_by_labels,
    filter_by_level,
    filter_by_search,
    paginate,
    sort_by_score,
)

logger = logging.getLogger(__name__)


async def get_repository(owner: str, name: str) -> Repository:
    repo = await queries.get_repo_by_name(owner, name)
    if repo is None:
        raise RepositoryNotFoundError(owner, name)
    return repo


def _score(
    family: ScoreFamily,
    item: IssueRow | PullRequestRow,
    repo: Repository,
    config: RepoSettings,
    cache: SentimentLookup,
    now: datetime,
) -> ScoreResult:
    digest = item_hash(item)
    result = score_item(
        family,
        item,
        config,
        now=now,
        sentiment=cache.get_sentiment(item.kind, item.item_id, digest),
        maintainer_logins=repo.maintainer_logins,
    )
    if uses_sentiment(family, config) and cache.is_unavailable(item.kind, item.item_id, digest):
        result.metadata["sentiment_unavailable"] = True
    return result


def _common_fields(item: IssueRow | PullRequestRow, result: ScoreResult, thresholds) -> dict:
    return {
        "id": item.item_id,
        "number": item.number,
        "title": item.title,
        "url": item.url,
        "state": item.state,
        "author_login": item.author_login,
        "author_association": item.author_association,
        "labels": item.labels,
        "assignees": item.assignees,
        "reactions": item.reactions,
        "comments_count": item.comments_count,
        "created_at": item.created_at,
        "updated_at": item.updated_at,
        "score": result.score,
        "level": bucket(result.score, thresholds).value,
        "score_metadata": result.metadata,
        "reasons": result.reasons,
    }


async def _schedule_sentiment(
    family: ScoreFamily,
    repo: Repository,
    rows: list,
    config: RepoSettings,
    augmenter: SentimentAugmenter,
    orchestrator: SyncOrchestrator,
) -> None:
    if not rows or not uses_sentiment(family, config):
        return
    try:
        if await augmenter.schedule(repo, rows, config, orchestrator):
            logger.info("Scheduled sentiment backfill for %d items in %s", len(rows), repo.full_name)
    except Exception:
        # Reads must not fail because sentiment could not be scheduled.
        logger.exception("Could not schedule sentiment for %s", repo.full_name)


async def list_issues(
    owner: str,
    name: str,
    params: IssueListParams,
    *,
    now: datetime | None = None,
    augmenter: SentimentAugmenter | None = None,
    orchestrator: SyncOrchestrator | None = None,
) -> IssueListResponse:
    repo = await get_repository(owner, name)
    config = await repo_settings.load_settings(repo.repo_id)
    now = now or utcnow()
    family = params.score_type

    issues = await queries.get_open_issues(repo.repo_id)
    if params.issue_type == "bugs":
        issues = [i for i in issues if is_bug(i, config.general)]
    elif params.issue_type == "features":
        issues = [i for i in issues if is_feature_request(i, config.general)]

    thresholds = family_thresholds(config, family, ItemKind.ISSUE)
    cache = await load_cached_sentiment(issues)
    rows_by_id = {i.issue_id: i for i in issues}
    scored = []
    for issue in issues:
        result = _score(family, issue, repo, config, cache, now)
        scored.append(
            ScoredIssue(
                **_common_fields(issue, result, thresholds),
                issue_type=issue.issue_type,
                milestone=issue.milestone,
            )
        )

    stats = calculate_stats(scored, thresholds)
    filtered = filter_by_search(scored, params.search)
    filtered = filter_by_labels(filtered, params.labels)
    filtered = filter_by_level(filtered, params.effective_level, thresholds)
    page_items, total, total_pages = paginate(sort_by_score(filtered), params.page, params.per_page)

    await _schedule_sentiment(
        family, repo, [rows_by_id[i.id] for i in page_items], config,
        augmenter or default_augmenter, orchestrator or default_orchestrator,
    )
    return IssueListResponse(
        issues=page_items,
        total_items=total,
        total_pages=total_pages,
        stats=LevelStats(**stats),
        thresholds=thresholds,
        fetch_status=repo.fetch_status.value,
    )


async def list_prs(
    owner: str,
    name: str,
    params: PRListParams,
    *,
    now: datetime | None = None,
    augmenter: SentimentAugmenter | None = None,
    orchestrator: SyncOrchestrator | None = None,
) -> PRListResponse:
    if params.score_type == ScoreFamily.BUGS:
        raise InvalidRequestError("scoreType 'bugs' applies to issues only")
    repo = await get_repository(owner, name)
    config = await repo_settings.load_settings(repo.repo_id)
    now = now or utcnow()
    family = params.score_type

    prs = await queries.get_open_pull_requests(repo.repo_id)
    thresholds = family_thresholds(config, family, ItemKind.PULL_REQUEST)
    cache = await load_cached_sentiment(prs)
    rows_by_id = {p.pr_id: p for p in prs}
    scored = []
    for pr in prs:
        result = _score(family, pr, repo, config, cache, now)
        scored.append(
            ScoredPullRequest(
                **_common_fields(pr, result, thresholds),
                is_draft=pr.is_draft,
                reviewers=pr.reviewers,
                review_decision=pr.review_decision,
                mergeable=pr.mergeable,
                additions=pr.additions,
                deletions=pr.deletions,
                changed_files=pr.changed_files,
            )
        )

    stats = calculate_stats(scored, thresholds)
    filtered = filter_by_search(scored, params.search)
    filtered = filter_by_level(filtered, params.effective_level, thresholds)
    page_items, total, total_pages = paginate(sort_by_score(filtered), params.page, params.per_page)

    await _schedule_sentiment(
        family, repo, [rows_by_id[p.id] for p in page_items], config,
        augmenter or default_augmenter, orchestrator or default_orchestrator,
    )
    return PRListResponse(
        prs=page_items,
        total_items=total,
        total_pages=total_pages,
        stats=LevelStats(**stats),
        thresholds=thresholds,
        fetch_status=repo.fetch_status.value,
    )
