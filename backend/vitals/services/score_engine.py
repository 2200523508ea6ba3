"""Pure scoring functions for bug importance, staleness and community health.

Nothing here does I/O. ``now`` is always passed in and sentiment arrives as a
plain number, so the same inputs always give the same score. Each scorer
returns the total plus a metadata dict and a list of human readable reasons
in the ``"+10 bug label"`` form.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Protocol, Union

from vitals.models.db_models import REACTION_KEYS, IssueRow, ItemKind, PullRequestRow
from vitals.models.settings import (
    ActivityRange,
    GeneralSettings,
    HighInterestRule,
    ReactionRule,
    ReactionWeights,
    RepoSettings,
    SentimentRule,
    Thresholds,
)
from vitals.utils.dates import days_since, parse_datetime
from vitals.utils.text_analysis import (
    count_me_too,
    has_maintainer_response,
    is_maintainer,
    label_matches,
)

Item = Union[IssueRow, PullRequestRow]

SENTIMENT_RAW_MAX = 30

EXTERNAL_ASSOCIATIONS = {"CONTRIBUTOR", "FIRST_TIME_CONTRIBUTOR", "FIRST_TIMER", "NONE"}
FIRST_TIME_ASSOCIATIONS = {"FIRST_TIME_CONTRIBUTOR", "FIRST_TIMER"}


class ScoreFamily(str, Enum):
    BUGS = "bugs"
    STALE = "stale"
    COMMUNITY = "community"


class Level(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    NONE = "none"


class SentimentLookup(Protocol):
    """Cached sentiment keyed by item and content hash."""

    def get_sentiment(self, kind: ItemKind, item_id: int, content_hash: str) -> float | None:
        ...

    def is_unavailable(self, kind: ItemKind, item_id: int, content_hash: str) -> bool:
        ...


@dataclass
class ScoreResult:
    score: float = 0.0
    metadata: dict = field(default_factory=dict)
    reasons: list[str] = field(default_factory=list)

    def add(self, points: float, reason: str, key: str | None = None) -> None:
        if not points:
            return
        self.score += points
        sign = "+" if points > 0 else ""
        self.reasons.append(f"{sign}{_fmt(points)} {reason}")
        if key:
            self.metadata[key] = points


def _fmt(points: float) -> str:
    return str(int(points)) if float(points).is_integer() else f"{points:g}"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def scale_sentiment_score(raw: float, max_points: float, raw_max: float = SENTIMENT_RAW_MAX) -> int:
    """Linearly map a raw 0..raw_max sentiment score onto 0..max_points."""
    if raw_max <= 0:
        raise ValueError("raw_max must be positive")
    raw = min(max(raw, 0.0), raw_max)
    return round_half_up(raw * (max_points / raw_max))


def weighted_reactions(reactions: dict[str, int], weights: ReactionWeights) -> float:
    return sum((reactions.get(key) or 0) * getattr(weights, key) for key in REACTION_KEYS)


def bucket(score: float, thresholds: Thresholds) -> Level:
    if score >= thresholds.critical:
        return Level.CRITICAL
    if score >= thresholds.high:
        return Level.HIGH
    if score >= thresholds.medium:
        return Level.MEDIUM
    return Level.NONE


def is_bug(issue: IssueRow, general: GeneralSettings) -> bool:
    if issue.issue_type and issue.issue_type.lower() == "bug":
        return True
    return label_matches(issue.labels, general.bug_labels)


def is_feature_request(issue: IssueRow, general: GeneralSettings) -> bool:
    if issue.issue_type and issue.issue_type.lower() in ("feature", "enhancement"):
        return True
    return label_matches(issue.labels, general.feature_labels)


def family_thresholds(config: RepoSettings, family: ScoreFamily, kind: ItemKind) -> Thresholds:
    if family == ScoreFamily.BUGS:
        return config.bugs.thresholds
    if family == ScoreFamily.COMMUNITY:
        return config.community.thresholds
    if kind == ItemKind.PULL_REQUEST:
        return config.stale_prs.thresholds
    return config.stale.thresholds


# -- shared signals -----------------------------------------------------------


def _capped(units: float, rule: ReactionRule) -> float:
    return min(units * rule.points_per_unit, rule.max_points)


def _add_sentiment(result: ScoreResult, sentiment: float | None, rule: SentimentRule) -> None:
    if not rule.enabled or sentiment is None:
        return
    points = scale_sentiment_score(sentiment, rule.max_points)
    result.metadata["sentiment_raw"] = sentiment
    result.add(points, "negative sentiment", "sentiment")


def _add_activity_range(
    result: ScoreResult, ranges: list[ActivityRange], days_idle: float
) -> None:
    # Only the longest matching range counts.
    for r in sorted(ranges, key=lambda r: r.days, reverse=True):
        if days_idle > r.days:
            result.metadata["activity_range"] = r.name
            result.add(r.points, f"no activity {r.name}", "activity_points")
            return


def _add_high_interest(
    result: ScoreResult,
    rule: HighInterestRule,
    reaction_total: float,
    comments: int,
    days_idle: float,
) -> None:
    if not rule.enabled:
        return
    interested = reaction_total > rule.reaction_threshold or comments > rule.comments_threshold
    if interested and days_idle > rule.days:
        result.add(rule.points, "high interest but stale", "high_interest_but_stale")


def _finish(result: ScoreResult) -> ScoreResult:
    result.score = round(result.score, 2)
    return result


# -- bugs ---------------------------------------------------------------------


def score_bug(
    issue: IssueRow,
    config: RepoSettings,
    *,
    now: datetime,
    sentiment: float | None = None,
) -> ScoreResult:
    rules = config.bugs.rules
    general = config.general
    result = ScoreResult()
    idle = days_since(issue.updated_at, now)
    age = days_since(issue.created_at, now)
    result.metadata.update(days_since_update=math.floor(idle), days_since_creation=math.floor(age))

    if rules.bug_label.enabled and is_bug(issue, general):
        result.add(rules.bug_label.points, "bug label", "bug_label")

    if rules.priority_labels.enabled and label_matches(issue.labels, general.priority_labels):
        result.add(rules.priority_labels.points, "priority label", "priority_label")

    if rules.reactions.enabled:
        weighted = weighted_reactions(issue.reactions, config.bugs.reaction_weights)
        result.metadata["weighted_reactions"] = weighted
        result.add(_capped(weighted, rules.reactions), "reactions", "reaction_points")

    comments = rules.comments
    if comments.enabled and issue.comments_count > comments.base_threshold:
        extra = issue.comments_count - comments.base_threshold
        points = min(extra * comments.points_per_comment, comments.max_points)
        result.add(points, "active discussion", "comment_points")

    if rules.recent_activity.enabled and parse_datetime(issue.updated_at) is not None:
        if idle <= rules.recent_activity.days:
            result.add(rules.recent_activity.points, "recent activity", "recent_activity")

    if rules.assigned.enabled and issue.assignees:
        result.add(rules.assigned.points, "assigned", "assigned")

    if rules.milestone.enabled and issue.milestone:
        result.add(rules.milestone.points, "milestone", "milestone")

    lsa = rules.longstanding_but_active
    if lsa.enabled and age > lsa.age_days and idle <= lsa.activity_days:
        result.add(lsa.points, "long-standing but active", "longstanding_but_active")

    _add_sentiment(result, sentiment, rules.sentiment)
    return _finish(result)


# -- stale --------------------------------------------------------------------


def score_stale_issue(
    issue: IssueRow,
    config: RepoSettings,
    *,
    now: datetime,
    maintainer_logins: list[str] | None = None,
) -> ScoreResult:
    stale = config.stale
    rules = stale.rules
    maintainers = list(maintainer_logins or []) + config.general.maintainer_logins
    result = ScoreResult()
    idle = days_since(issue.updated_at, now)
    age = days_since(issue.created_at, now)
    result.metadata.update(days_since_update=math.floor(idle), days_since_creation=math.floor(age))

    _add_activity_range(result, stale.activity_ranges, idle)

    nmr = rules.no_maintainer_response
    if (
        nmr.enabled
        and age > nmr.days
        and not is_maintainer(issue.author_login, issue.author_association, maintainers)
        and not has_maintainer_response(issue.comments, maintainers)
    ):
        result.add(nmr.points, "no maintainer response", "no_maintainer_response")

    if rules.waiting_for_response.enabled and label_matches(
        issue.labels, config.general.waiting_labels
    ):
        result.add(rules.waiting_for_response.points, "waiting for response", "waiting_for_response")

    abandoned = rules.abandoned_by_assignee
    if abandoned.enabled and issue.assignees and idle > abandoned.days:
        result.add(abandoned.points, "abandoned by assignee", "abandoned_by_assignee")

    never = rules.never_addressed
    if never.enabled and age > never.days and issue.comments_count == 0:
        result.add(never.points, "never addressed", "never_addressed")

    reactions = weighted_reactions(issue.reactions, stale.reaction_weights)
    _add_high_interest(result, rules.high_interest_but_stale, reactions, issue.comments_count, idle)
    return _finish(result)


def score_stale_pr(pr: PullRequestRow, config: RepoSettings, *, now: datetime) -> ScoreResult:
    stale = config.stale_prs
    rules = stale.rules
    result = ScoreResult()
    idle = days_since(pr.updated_at, now)
    result.metadata.update(
        days_since_update=math.floor(idle),
        days_since_creation=math.floor(days_since(pr.created_at, now)),
    )

    _add_activity_range(result, stale.activity_ranges, idle)

    review = rules.review_status
    if review.enabled:
        if pr.review_decision == "CHANGES_REQUESTED":
            result.add(review.changes_requested_points, "changes requested", "review_status")
        elif pr.review_decision == "APPROVED" and pr.state == "open":
            result.add(review.approved_not_merged_points, "approved but not merged", "review_status")
        elif pr.review_decision in (None, "", "REVIEW_REQUIRED"):
            result.add(review.no_reviews_points, "no reviews", "review_status")

    if rules.draft_penalty.enabled and pr.is_draft:
        result.add(rules.draft_penalty.points, "draft", "draft_penalty")

    if rules.merge_conflicts.enabled and pr.mergeable == "CONFLICTING":
        result.add(rules.merge_conflicts.points, "merge conflicts", "merge_conflicts")

    abandoned = rules.abandoned_by_contributor
    if (
        abandoned.enabled
        and (pr.author_association or "").upper() in EXTERNAL_ASSOCIATIONS
        and idle > abandoned.days
    ):
        result.add(abandoned.points, "abandoned by contributor", "abandoned_by_contributor")

    reactions = weighted_reactions(pr.reactions, stale.reaction_weights)
    _add_high_interest(result, rules.high_interest_but_stale, reactions, pr.comments_count, idle)
    return _finish(result)


# -- community ----------------------------------------------------------------


def score_community(
    item: Item,
    config: RepoSettings,
    *,
    now: datetime,
    sentiment: float | None = None,
    maintainer_logins: list[str] | None = None,
) -> ScoreResult:
    community = config.community
    rules = community.rules
    maintainers = list(maintainer_logins or []) + config.general.maintainer_logins
    result = ScoreResult()
    responded = has_maintainer_response(item.comments, maintainers)
    result.metadata.update(
        has_maintainer_response=responded,
        days_since_update=math.floor(days_since(item.updated_at, now)),
        author_association=item.author_association,
    )

    first_time = (item.author_association or "").upper() in FIRST_TIME_ASSOCIATIONS
    if rules.first_time_contributor.enabled and first_time and not responded:
        result.add(rules.first_time_contributor.points, "first-time contributor", "first_time_contributor")

    me_too = count_me_too(item.comments)
    result.metadata["me_too_count"] = me_too
    if rules.me_too_comments.enabled and me_too >= rules.me_too_comments.minimum_count and not responded:
        result.add(rules.me_too_comments.points, "me-too pile-on", "me_too_comments")

    if rules.reactions.enabled:
        weighted = weighted_reactions(item.reactions, community.reaction_weights)
        result.metadata["weighted_reactions"] = weighted
        result.add(_capped(weighted, rules.reactions), "reaction demand", "reaction_points")

    if rules.comment_velocity.enabled:
        recent = sum(1 for c in item.comments if days_since(c.created_at, now) <= 7)
        result.metadata["comments_last_week"] = recent
        result.add(_capped(recent, rules.comment_velocity), "comment velocity", "comment_velocity")

    if rules.distinct_authors.enabled:
        authors = {
            c.author_login
            for c in item.comments
            if c.author_login
            and c.author_login != item.author_login
            and not is_maintainer(c.author_login, c.author_association, maintainers)
        }
        result.metadata["distinct_author_count"] = len(authors)
        result.add(_capped(len(authors), rules.distinct_authors), "distinct participants", "distinct_authors")

    _add_sentiment(result, sentiment, rules.sentiment)
    return _finish(result)


def score_item(
    family: ScoreFamily,
    item: Item,
    config: RepoSettings,
    *,
    now: datetime,
    sentiment: float | None = None,
    maintainer_logins: list[str] | None = None,
) -> ScoreResult:
    if family == ScoreFamily.BUGS:
        if not isinstance(item, IssueRow):
            raise ValueError("bug scores apply to issues only")
        return score_bug(item, config, now=now, sentiment=sentiment)
    if family == ScoreFamily.STALE:
        if isinstance(item, PullRequestRow):
            return score_stale_pr(item, config, now=now)
        return score_stale_issue(item, config, now=now, maintainer_logins=maintainer_logins)
    return score_community(
        item, config, now=now, sentiment=sentiment, maintainer_logins=maintainer_logins
    )


def uses_sentiment(family: ScoreFamily, config: RepoSettings) -> bool:
    if family == ScoreFamily.BUGS:
        return config.bugs.rules.sentiment.enabled
    if family == ScoreFamily.COMMUNITY:
        return config.community.rules.sentiment.enabled
    return False
