"""Per-repository scoring configuration.

Every score family carries its own rule table, its own reaction weights and
its own thresholds. Defaults apply wherever a repository has not saved
settings of its own.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator


class Thresholds(BaseModel):
    critical: float
    high: float
    medium: float

    @model_validator(mode="after")
    def _strictly_increasing(self) -> "Thresholds":
        if self.medium < 0:
            raise ValueError("thresholds.medium must be >= 0")
        if not self.medium < self.high < self.critical:
            raise ValueError("thresholds must satisfy medium < high < critical")
        return self


class ReactionWeights(BaseModel):
    thumbs_up: float = 1.0
    thumbs_down: float = 1.0
    laugh: float = 1.0
    hooray: float = 1.0
    confused: float = 1.0
    heart: float = 1.0
    rocket: float = 1.0
    eyes: float = 1.0


class Rule(BaseModel):
    enabled: bool = True
    points: int = Field(0, ge=-200, le=200)


class DayRule(Rule):
    days: int = Field(30, ge=0, le=3650)


class ActivityRange(BaseModel):
    name: str
    days: int = Field(..., ge=0)
    points: int = Field(..., ge=0, le=200)


class ReactionRule(BaseModel):
    enabled: bool = True
    points_per_unit: float = Field(1.0, ge=0)
    max_points: int = Field(25, ge=0, le=200)


class CommentRule(BaseModel):
    enabled: bool = True
    base_threshold: int = Field(0, ge=0, le=100)
    points_per_comment: float = Field(1.0, ge=0)
    max_points: int = Field(20, ge=0, le=200)


class SentimentRule(BaseModel):
    enabled: bool = True
    max_points: int = Field(30, ge=0, le=50)


class LongstandingRule(Rule):
    age_days: int = Field(30, ge=1, le=3650)
    activity_days: int = Field(14, ge=1, le=3650)


class HighInterestRule(Rule):
    reaction_threshold: float = Field(5, ge=0)
    comments_threshold: int = Field(10, ge=0)
    days: int = Field(30, ge=0)


# -- bugs -------------------------------------------------------------------


class BugRules(BaseModel):
    bug_label: Rule = Field(default_factory=lambda: Rule(points=10))
    priority_labels: Rule = Field(default_factory=lambda: Rule(points=30))
    reactions: ReactionRule = Field(default_factory=ReactionRule)
    comments: CommentRule = Field(default_factory=CommentRule)
    recent_activity: DayRule = Field(default_factory=lambda: DayRule(points=10, days=7))
    assigned: Rule = Field(default_factory=lambda: Rule(points=5))
    milestone: Rule = Field(default_factory=lambda: Rule(points=10))
    longstanding_but_active: LongstandingRule = Field(
        default_factory=lambda: LongstandingRule(points=10)
    )
    sentiment: SentimentRule = Field(default_factory=SentimentRule)


class BugSettings(BaseModel):
    rules: BugRules = Field(default_factory=BugRules)
    reaction_weights: ReactionWeights = Field(
        default_factory=lambda: ReactionWeights(
            thumbs_up=1, thumbs_down=2, laugh=0, hooray=0.5,
            confused=2, heart=0.5, rocket=0.5, eyes=1,
        )
    )
    thresholds: Thresholds = Field(
        default_factory=lambda: Thresholds(critical=80, high=50, medium=25)
    )


# -- stale ------------------------------------------------------------------


def _default_activity_ranges() -> list[ActivityRange]:
    return [
        ActivityRange(name="over a year", days=365, points=40),
        ActivityRange(name="over six months", days=180, points=30),
        ActivityRange(name="over three months", days=90, points=20),
        ActivityRange(name="over a month", days=30, points=10),
    ]


class StaleIssueRules(BaseModel):
    no_maintainer_response: DayRule = Field(
        default_factory=lambda: DayRule(points=15, days=14)
    )
    waiting_for_response: Rule = Field(default_factory=lambda: Rule(points=10))
    abandoned_by_assignee: DayRule = Field(
        default_factory=lambda: DayRule(points=15, days=30)
    )
    never_addressed: DayRule = Field(default_factory=lambda: DayRule(points=20, days=30))
    high_interest_but_stale: HighInterestRule = Field(
        default_factory=lambda: HighInterestRule(points=15)
    )


class StaleSettings(BaseModel):
    activity_ranges: list[ActivityRange] = Field(default_factory=_default_activity_ranges)
    rules: StaleIssueRules = Field(default_factory=StaleIssueRules)
    reaction_weights: ReactionWeights = Field(default_factory=ReactionWeights)
    thresholds: Thresholds = Field(
        default_factory=lambda: Thresholds(critical=60, high=40, medium=20)
    )


class ReviewStatusRule(BaseModel):
    enabled: bool = True
    changes_requested_points: int = 15
    approved_not_merged_points: int = 20
    no_reviews_points: int = 10


class StalePRRules(BaseModel):
    review_status: ReviewStatusRule = Field(default_factory=ReviewStatusRule)
    draft_penalty: Rule = Field(default_factory=lambda: Rule(points=-10))
    merge_conflicts: Rule = Field(default_factory=lambda: Rule(points=15))
    abandoned_by_contributor: DayRule = Field(
        default_factory=lambda: DayRule(points=15, days=30)
    )
    high_interest_but_stale: HighInterestRule = Field(
        default_factory=lambda: HighInterestRule(points=10)
    )


class StalePRSettings(BaseModel):
    activity_ranges: list[ActivityRange] = Field(
        default_factory=lambda: [
            ActivityRange(name="over three months", days=90, points=40),
            ActivityRange(name="over a month", days=30, points=25),
            ActivityRange(name="over two weeks", days=14, points=15),
            ActivityRange(name="over a week", days=7, points=5),
        ]
    )
    rules: StalePRRules = Field(default_factory=StalePRRules)
    reaction_weights: ReactionWeights = Field(default_factory=ReactionWeights)
    thresholds: Thresholds = Field(
        default_factory=lambda: Thresholds(critical=60, high=40, medium=20)
    )


# -- community ----------------------------------------------------------------


class MeTooRule(Rule):
    minimum_count: int = Field(3, ge=1)


class CommunityRules(BaseModel):
    first_time_contributor: Rule = Field(default_factory=lambda: Rule(points=20))
    me_too_comments: MeTooRule = Field(default_factory=lambda: MeTooRule(points=15))
    reactions: ReactionRule = Field(
        default_factory=lambda: ReactionRule(points_per_unit=0.5, max_points=20)
    )
    comment_velocity: ReactionRule = Field(
        default_factory=lambda: ReactionRule(points_per_unit=2, max_points=10)
    )
    distinct_authors: ReactionRule = Field(
        default_factory=lambda: ReactionRule(points_per_unit=2, max_points=20)
    )
    sentiment: SentimentRule = Field(default_factory=lambda: SentimentRule(max_points=20))


class CommunitySettings(BaseModel):
    rules: CommunityRules = Field(default_factory=CommunityRules)
    reaction_weights: ReactionWeights = Field(
        default_factory=lambda: ReactionWeights(
            thumbs_up=2, thumbs_down=1, laugh=0.5, hooray=1.5,
            confused=1, heart=1.5, rocket=1.5, eyes=1,
        )
    )
    thresholds: Thresholds = Field(
        default_factory=lambda: Thresholds(critical=50, high=30, medium=15)
    )


# -- general ------------------------------------------------------------------


class MaintainerTeam(BaseModel):
    org: str
    team_slug: str


class AIProviderConfig(BaseModel):
    provider: Literal["anthropic", "openai"] = "anthropic"
    api_key: str = ""
    model: str | None = None


class GeneralSettings(BaseModel):
    bug_labels: list[str] = Field(
        default_factory=lambda: ["bug", "defect", "error", "crash", "broken", "regression"]
    )
    feature_labels: list[str] = Field(
        default_factory=lambda: ["enhancement", "feature", "feature request", "proposal"]
    )
    priority_labels: list[str] = Field(
        default_factory=lambda: [
            "critical", "high priority", "urgent", "severity: high",
            "p0", "p1", "blocker", "showstopper",
        ]
    )
    waiting_labels: list[str] = Field(
        default_factory=lambda: ["waiting", "needs more info", "needs-info", "awaiting response"]
    )
    maintainer_logins: list[str] = Field(default_factory=list)
    maintainer_team: MaintainerTeam | None = None
    ai: AIProviderConfig | None = None


class RepoSettings(BaseModel):
    general: GeneralSettings = Field(default_factory=GeneralSettings)
    bugs: BugSettings = Field(default_factory=BugSettings)
    stale: StaleSettings = Field(default_factory=StaleSettings)
    stale_prs: StalePRSettings = Field(default_factory=StalePRSettings)
    community: CommunitySettings = Field(default_factory=CommunitySettings)
