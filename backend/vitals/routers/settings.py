from __future__ import annotations

from fastapi import APIRouter, HTTPException

from vitals.db import queries
from vitals.models.db_models import Repository
from vitals.models.schemas import ApiKeyCheckRequest, KeyTestResult, SentimentStatus
from vitals.models.settings import AIProviderConfig, RepoSettings
from vitals.services import repo_settings, sentiment_service
from vitals.services.sync_service import orchestrator

router = APIRouter()


async def _repo(owner: str, repo: str) -> Repository:
    found = await queries.get_repo_by_name(owner, repo)
    if found is None:
        raise HTTPException(status_code=404, detail=f"Repository {owner}/{repo} not found")
    return found


@router.get("/repos/{owner}/{repo}/settings", response_model=RepoSettings)
async def get_settings(owner: str, repo: str) -> RepoSettings:
    config = await repo_settings.load_settings((await _repo(owner, repo)).repo_id)
    return repo_settings.masked(config)


@router.put("/repos/{owner}/{repo}/settings", response_model=RepoSettings)
async def put_settings(owner: str, repo: str, config: RepoSettings) -> RepoSettings:
    saved = await repo_settings.save_settings((await _repo(owner, repo)).repo_id, config)
    return repo_settings.masked(saved)


@router.delete("/repos/{owner}/{repo}/settings", response_model=RepoSettings)
async def reset_settings(owner: str, repo: str) -> RepoSettings:
    defaults = await repo_settings.reset_settings((await _repo(owner, repo)).repo_id)
    return repo_settings.masked(defaults)


@router.get("/repos/{owner}/{repo}/sentiment/status", response_model=SentimentStatus)
async def sentiment_status(owner: str, repo: str) -> SentimentStatus:
    found = await _repo(owner, repo)
    return SentimentStatus(**await sentiment_service.sentiment_status(found, orchestrator))


@router.post("/sentiment/test-key", response_model=KeyTestResult)
async def test_key(req: ApiKeyCheckRequest) -> KeyTestResult:
    config = AIProviderConfig(provider=req.provider, api_key=req.api_key, model=req.model)
    return KeyTestResult(**await sentiment_service.test_api_key(config))
