from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class FetchStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FetchStatus.COMPLETED, FetchStatus.FAILED)


class JobKind(str, Enum):
    ISSUE_FETCH = "issue-fetch"
    PR_FETCH = "pr-fetch"
    SENTIMENT = "sentiment"


class ItemKind(str, Enum):
    ISSUE = "issue"
    PULL_REQUEST = "pull_request"


REACTION_KEYS = (
    "thumbs_up",
    "thumbs_down",
    "laugh",
    "hooray",
    "confused",
    "heart",
    "rocket",
    "eyes",
)


@dataclass
class Repository:
    repo_id: int = 0
    owner: str = ""
    name: str = ""
    github_id: int | None = None
    is_github: bool = True
    fetch_status: FetchStatus = FetchStatus.NOT_STARTED
    last_fetched: str | None = None
    last_pr_fetched: str | None = None
    maintainer_logins: list[str] = field(default_factory=list)
    created_at: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass
class SyncJob:
    job_id: str = ""
    repo_id: int = 0
    kind: JobKind = JobKind.ISSUE_FETCH
    status: FetchStatus = FetchStatus.NOT_STARTED
    progress_current: int = 0
    progress_total: int = 0
    message: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    completed_at: str | None = None


@dataclass
class CommentRow:
    author_login: str | None = None
    author_association: str | None = None
    body: str = ""
    created_at: str | None = None
    github_id: int | None = None


@dataclass
class IssueRow:
    issue_id: int = 0
    repo_id: int = 0
    number: int = 0
    title: str = ""
    body: str = ""
    url: str = ""
    state: str = "open"
    author_login: str | None = None
    author_association: str | None = None
    issue_type: str | None = None
    labels: list[str] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    milestone: str | None = None
    reactions: dict[str, int] = field(default_factory=dict)
    comments_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    comments: list[CommentRow] = field(default_factory=list)

    kind = ItemKind.ISSUE

    @property
    def item_id(self) -> int:
        return self.issue_id


@dataclass
class PullRequestRow:
    pr_id: int = 0
    repo_id: int = 0
    number: int = 0
    title: str = ""
    body: str = ""
    url: str = ""
    state: str = "open"
    is_draft: bool = False
    author_login: str | None = None
    author_association: str | None = None
    labels: list[str] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    reviewers: list[str] = field(default_factory=list)
    review_decision: str | None = None
    mergeable: str | None = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    reactions: dict[str, int] = field(default_factory=dict)
    comments_count: int = 0
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None
    merged_at: str | None = None
    comments: list[CommentRow] = field(default_factory=list)

    kind = ItemKind.PULL_REQUEST

    @property
    def item_id(self) -> int:
        return self.pr_id


@dataclass
class SentimentRecord:
    item_kind: ItemKind = ItemKind.ISSUE
    item_id: int = 0
    repo_id: int = 0
    content_hash: str = ""
    score: float | None = None
    metadata: dict = field(default_factory=dict)
    error: str | None = None
    analyzed_at: str | None = None
