from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from vitals.models.settings import Thresholds
from vitals.services.score_engine import ScoreFamily

LevelFilter = Literal["all", "critical", "high", "medium", "none"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -- requests -----------------------------------------------------------------


class AddRepositoryRequest(CamelModel):
    owner: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=100)
    # local-only repositories are tracked without any GitHub lookup or sync
    is_github: bool = True

    @field_validator("owner", "name")
    @classmethod
    def _no_slashes(cls, v: str) -> str:
        v = v.strip()
        if not v or "/" in v:
            raise ValueError("must be a single path segment")
        return v


class ListParams(BaseModel):
    page: int = Field(1, ge=1)
    per_page: int = Field(20, ge=1, le=100)
    level: LevelFilter | None = None
    priority: LevelFilter | None = None
    search: str | None = None

    @property
    def effective_level(self) -> str:
        return self.level or self.priority or "all"


class IssueListParams(ListParams):
    score_type: ScoreFamily = ScoreFamily.BUGS
    issue_type: Literal["all", "bugs", "features"] = "all"
    labels: list[str] = Field(default_factory=list)


class PRListParams(ListParams):
    score_type: ScoreFamily = ScoreFamily.STALE


class ApiKeyCheckRequest(BaseModel):
    provider: Literal["anthropic", "openai"] = "anthropic"
    api_key: str = ""
    model: str | None = None


# -- responses ----------------------------------------------------------------


class ScoredItem(CamelModel):
    id: int
    number: int
    title: str
    url: str
    state: str
    author_login: str | None = None
    author_association: str | None = None
    labels: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)
    reactions: dict[str, int] = Field(default_factory=dict)
    comments_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    score: float = 0.0
    level: str = "none"
    score_metadata: dict = Field(default_factory=dict)
    reasons: list[str] = Field(default_factory=list)


class ScoredIssue(ScoredItem):
    issue_type: str | None = None
    milestone: str | None = None


class ScoredPullRequest(ScoredItem):
    is_draft: bool = False
    reviewers: list[str] = Field(default_factory=list)
    review_decision: str | None = None
    mergeable: str | None = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0


class LevelStats(CamelModel):
    all: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0


class IssueListResponse(CamelModel):
    issues: list[ScoredIssue] = Field(default_factory=list)
    total_items: int = 0
    total_pages: int = 0
    stats: LevelStats = Field(default_factory=LevelStats)
    thresholds: Thresholds
    fetch_status: str


class PRListResponse(CamelModel):
    prs: list[ScoredPullRequest] = Field(default_factory=list)
    total_items: int = 0
    total_pages: int = 0
    stats: LevelStats = Field(default_factory=LevelStats)
    thresholds: Thresholds
    fetch_status: str


class RepositoryInfo(CamelModel):
    owner: str
    name: str
    full_name: str
    github_id: int | None = None
    is_github: bool = True
    fetch_status: str
    last_fetched: str | None = None
    last_pr_fetched: str | None = None
    open_issues: int = 0
    open_prs: int = 0


class JobProgress(CamelModel):
    current: int = 0
    total: int = 0


class SyncStatus(CamelModel):
    status: str
    current_job: str | None = None
    queued: bool = False
    progress: JobProgress = Field(default_factory=JobProgress)
    message: str | None = None
    last_fetched: str | None = None
    last_pr_fetched: str | None = None


class StartResponse(CamelModel):
    started: bool


class RefreshItemResponse(CamelModel):
    kind: str
    number: int
    updated_at: str | None = None


class SentimentStatus(CamelModel):
    analyzed: int = 0
    total: int = 0
    processing: bool = False


class KeyTestResult(CamelModel):
    ok: bool
    message: str
