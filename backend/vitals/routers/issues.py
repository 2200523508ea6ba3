from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from vitals.models.schemas import (
    IssueListParams,
    IssueListResponse,
    LevelFilter,
    PRListParams,
    PRListResponse,
    RefreshItemResponse,
)
from vitals.routers.deps import github_token
from vitals.services import analysis_service
from vitals.services.errors import InvalidRequestError, RepositoryNotFoundError
from vitals.services.github_client import GitHubAPIError, GitHubError
from vitals.services.score_engine import ScoreFamily
from vitals.services.sync_service import orchestrator

router = APIRouter()


@router.get("/repos/{owner}/{repo}/issues", response_model=IssueListResponse)
async def list_issues(
    owner: str,
    repo: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage"),
    score_type: ScoreFamily = Query(ScoreFamily.BUGS, alias="scoreType"),
    level: LevelFilter | None = Query(None),
    priority: LevelFilter | None = Query(None),
    issue_type: str = Query("all", alias="issueType", pattern="^(all|bugs|features)$"),
    search: str | None = Query(None, max_length=200),
    labels: list[str] = Query(default=[]),
) -> IssueListResponse:
    params = IssueListParams(
        page=page,
        per_page=per_page,
        score_type=score_type,
        level=level,
        priority=priority,
        issue_type=issue_type,
        search=search,
        labels=labels,
    )
    try:
        return await analysis_service.list_issues(owner, repo, params)
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/repos/{owner}/{repo}/prs", response_model=PRListResponse)
async def list_prs(
    owner: str,
    repo: str,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100, alias="perPage"),
    score_type: ScoreFamily = Query(ScoreFamily.STALE, alias="scoreType"),
    level: LevelFilter | None = Query(None),
    search: str | None = Query(None, max_length=200),
) -> PRListResponse:
    params = PRListParams(
        page=page, per_page=per_page, score_type=score_type, level=level, search=search
    )
    try:
        return await analysis_service.list_prs(owner, repo, params)
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        raise HTTPException(status_code=422, detail=str(e))


async def _refresh_item(owner: str, repo: str, number: int, token: str) -> RefreshItemResponse:
    try:
        item = await orchestrator.refresh_single(owner, repo, number, token)
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except GitHubAPIError as e:
        raise HTTPException(status_code=e.status_code if e.status_code == 404 else 502, detail=str(e))
    except GitHubError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return RefreshItemResponse(kind=item.kind.value, number=item.number, updated_at=item.updated_at)


@router.post("/repos/{owner}/{repo}/issues/{number}/refresh", response_model=RefreshItemResponse)
async def refresh_issue(
    owner: str, repo: str, number: int, token: str = Depends(github_token)
) -> RefreshItemResponse:
    return await _refresh_item(owner, repo, number, token)


@router.post("/repos/{owner}/{repo}/prs/{number}/refresh", response_model=RefreshItemResponse)
async def refresh_pr(
    owner: str, repo: str, number: int, token: str = Depends(github_token)
) -> RefreshItemResponse:
    return await _refresh_item(owner, repo, number, token)
