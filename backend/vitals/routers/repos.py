from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, HTTPException

from vitals.db import queries
from vitals.models.db_models import Repository
from vitals.models.schemas import (
    AddRepositoryRequest,
    RepositoryInfo,
    StartResponse,
    SyncStatus,
)
from vitals.routers.deps import github_token
from vitals.services.errors import InvalidRequestError, RepositoryNotFoundError
from vitals.services.github_client import GitHubAPIError, GitHubClient, GitHubError
from vitals.services.sync_service import orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


async def _info(repo: Repository) -> RepositoryInfo:
    counts = await queries.count_items(repo.repo_id)
    return RepositoryInfo(
        owner=repo.owner,
        name=repo.name,
        full_name=repo.full_name,
        github_id=repo.github_id,
        is_github=repo.is_github,
        fetch_status=repo.fetch_status.value,
        last_fetched=repo.last_fetched,
        last_pr_fetched=repo.last_pr_fetched,
        open_issues=counts["issues"],
        open_prs=counts["prs"],
    )


@router.get("/repos", response_model=list[RepositoryInfo])
async def list_repos() -> list[RepositoryInfo]:
    return [await _info(repo) for repo in await queries.get_all_repos()]


@router.post("/repos", response_model=RepositoryInfo, status_code=201)
async def add_repo(
    req: AddRepositoryRequest, authorization: str | None = Header(default=None)
) -> RepositoryInfo:
    if not req.is_github:
        repo = await queries.create_repo(req.owner, req.name, is_github=False)
        logger.info("Added local-only repository %s", repo.full_name)
        return await _info(repo)

    client = GitHubClient(await github_token(authorization))
    try:
        data = await client.get_repository(req.owner, req.name)
    except GitHubAPIError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail=str(e))
        raise HTTPException(status_code=502, detail=str(e))
    except GitHubError as e:
        raise HTTPException(status_code=502, detail=str(e))

    owner, _, name = (data.get("nameWithOwner") or f"{req.owner}/{req.name}").partition("/")
    repo = await queries.create_repo(owner, name, github_id=data.get("databaseId"))
    logger.info("Added repository %s", repo.full_name)
    return await _info(repo)


@router.get("/repos/{owner}/{repo}", response_model=RepositoryInfo)
async def get_repo(owner: str, repo: str) -> RepositoryInfo:
    found = await queries.get_repo_by_name(owner, repo)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Repository {owner}/{repo} not found")
    return await _info(found)


@router.delete("/repos/{owner}/{repo}", status_code=204)
async def delete_repo(owner: str, repo: str) -> None:
    found = await queries.get_repo_by_name(owner, repo)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Repository {owner}/{repo} not found")
    if orchestrator.is_active(found.repo_id):
        raise HTTPException(status_code=409, detail="A sync job is running for this repository")
    await queries.delete_repo(found.repo_id)


@router.post("/repos/{owner}/{repo}/fetch", response_model=StartResponse)
async def start_fetch(owner: str, repo: str, token: str = Depends(github_token)) -> StartResponse:
    try:
        started = await orchestrator.start_fetch(owner, repo, token)
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return StartResponse(started=started)


@router.post("/repos/{owner}/{repo}/refresh", response_model=StartResponse)
async def refresh(owner: str, repo: str, token: str = Depends(github_token)) -> StartResponse:
    try:
        started = await orchestrator.refresh(owner, repo, token)
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidRequestError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return StartResponse(started=started)


@router.get("/repos/{owner}/{repo}/status", response_model=SyncStatus)
async def status(owner: str, repo: str) -> SyncStatus:
    try:
        return SyncStatus(**await orchestrator.get_status(owner, repo))
    except RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/repos/{owner}/{repo}/labels", response_model=list[str])
async def labels(owner: str, repo: str) -> list[str]:
    found = await queries.get_repo_by_name(owner, repo)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Repository {owner}/{repo} not found")
    return await queries.get_distinct_labels(found.repo_id)
