import pytest
import pytest_asyncio

from factories import NOW, make_issue, make_pr
from vitals.db import queries
from vitals.models.db_models import ItemKind, SentimentRecord
from vitals.models.schemas import IssueListParams, PRListParams
from vitals.models.settings import RepoSettings, Thresholds
from vitals.services import analysis_service, repo_settings
from vitals.services.errors import InvalidRequestError, RepositoryNotFoundError
from vitals.services.score_engine import ScoreFamily
from vitals.services.sentiment_service import item_hash


class RecordingAugmenter:
    def __init__(self):
        self.scheduled: list[list[int]] = []

    async def schedule(self, repo, items, config, orchestrator):
        self.scheduled.append([i.number for i in items])
        return False


@pytest.fixture
def augmenter():
    return RecordingAugmenter()


@pytest_asyncio.fixture
async def seeded(repo):
    config = RepoSettings()
    config.bugs.thresholds = Thresholds(critical=50, high=30, medium=10)
    await repo_settings.save_settings(repo.repo_id, config)
    await queries.replace_issues([
        make_issue(1, labels=["bug"], reactions={"thumbs_down": 10}, comments_count=5),
        make_issue(2, labels=["question"], reactions={"thumbs_up": 1}),
        make_issue(3, labels=["enhancement"], reactions={"thumbs_up": 12}),
        make_issue(4, labels=["bug"], state="closed"),
    ])
    await queries.replace_pull_requests([make_pr(1), make_pr(2, is_draft=True)])
    return repo


async def _issues(augmenter, **params):
    return await analysis_service.list_issues(
        "octo", "widgets", IssueListParams(**params), now=NOW, augmenter=augmenter
    )


@pytest.mark.asyncio
async def test_issues_are_scored_sorted_and_bucketed(seeded, augmenter):
    result = await _issues(augmenter)

    assert [(i.number, i.score, i.level) for i in result.issues] == [
        (1, 35, "high"),
        (3, 12, "medium"),
        (2, 1, "none"),
    ]
    assert result.stats.model_dump() == {"all": 3, "critical": 0, "high": 1, "medium": 1}
    assert result.thresholds == Thresholds(critical=50, high=30, medium=10)
    assert result.fetch_status == "not_started"
    assert "+10 bug label" in result.issues[0].reasons


@pytest.mark.asyncio
async def test_level_filter_keeps_stats_over_all_items(seeded, augmenter):
    critical = await _issues(augmenter, level="critical")
    high = await _issues(augmenter, priority="high")

    assert critical.issues == []
    assert critical.total_items == 0
    assert [i.number for i in high.issues] == [1]
    assert high.stats.all == 3


@pytest.mark.asyncio
async def test_issue_type_and_label_filters(seeded, augmenter):
    bugs = await _issues(augmenter, issue_type="bugs")
    features = await _issues(augmenter, issue_type="features")
    labelled = await _issues(augmenter, labels=["question"])

    assert [i.number for i in bugs.issues] == [1]
    assert bugs.stats.all == 1
    assert [i.number for i in features.issues] == [3]
    assert [i.number for i in labelled.issues] == [2]


@pytest.mark.asyncio
async def test_search_and_pagination(seeded, augmenter):
    found = await _issues(augmenter, search="#3")
    second_page = await _issues(augmenter, page=2, per_page=2)

    assert [i.number for i in found.issues] == [3]
    assert [i.number for i in second_page.issues] == [2]
    assert (second_page.total_items, second_page.total_pages) == (3, 2)


@pytest.mark.asyncio
async def test_only_the_returned_page_is_scheduled_for_sentiment(seeded, augmenter):
    await _issues(augmenter, per_page=2)
    assert augmenter.scheduled == [[1, 3]]


@pytest.mark.asyncio
async def test_sentiment_disabled_family_schedules_nothing(seeded, augmenter):
    await _issues(augmenter, score_type=ScoreFamily.STALE)
    assert augmenter.scheduled == []


@pytest.mark.asyncio
async def test_cached_sentiment_raises_score(seeded, augmenter):
    issue = make_issue(1, labels=["bug"], reactions={"thumbs_down": 10}, comments_count=5)
    await queries.upsert_sentiment(SentimentRecord(
        item_kind=ItemKind.ISSUE, item_id=issue.issue_id, repo_id=seeded.repo_id,
        content_hash=item_hash(issue), score=30,
    ))

    result = await _issues(augmenter, level="critical")

    assert [(i.number, i.score) for i in result.issues] == [(1, 65)]
    assert result.issues[0].score_metadata["sentiment"] == 30


@pytest.mark.asyncio
async def test_failed_sentiment_is_flagged_not_fatal(seeded, augmenter):
    issue = make_issue(2, labels=["question"], reactions={"thumbs_up": 1})
    await queries.upsert_sentiment(SentimentRecord(
        item_kind=ItemKind.ISSUE, item_id=issue.issue_id, repo_id=seeded.repo_id,
        content_hash=item_hash(issue), error="rate limited",
    ))

    result = await _issues(augmenter, search="question")

    assert result.issues[0].score == 1
    assert result.issues[0].score_metadata["sentiment_unavailable"] is True


@pytest.mark.asyncio
async def test_response_serializes_camel_case(seeded, augmenter):
    body = (await _issues(augmenter, per_page=1)).model_dump(by_alias=True)

    assert body["totalItems"] == 3
    assert body["fetchStatus"] == "not_started"
    assert {"scoreMetadata", "commentsCount", "authorLogin"} <= set(body["issues"][0])


@pytest.mark.asyncio
async def test_pull_requests_use_their_own_thresholds(seeded, augmenter):
    result = await analysis_service.list_prs(
        "octo", "widgets", PRListParams(), now=NOW, augmenter=augmenter
    )

    assert {p.number for p in result.prs} == {1, 2}
    assert result.thresholds == RepoSettings().stale_prs.thresholds
    draft = next(p for p in result.prs if p.number == 2)
    assert draft.is_draft is True
    assert "-10 draft" in draft.reasons


@pytest.mark.asyncio
async def test_pull_requests_reject_bug_family(seeded, augmenter):
    with pytest.raises(InvalidRequestError):
        await analysis_service.list_prs(
            "octo", "widgets", PRListParams(score_type=ScoreFamily.BUGS), now=NOW,
            augmenter=augmenter,
        )


@pytest.mark.asyncio
async def test_unknown_repository(db, augmenter):
    with pytest.raises(RepositoryNotFoundError):
        await _issues(augmenter)


@pytest.mark.asyncio
async def test_reset_settings_restores_defaults(repo):
    config = RepoSettings()
    config.bugs.thresholds = Thresholds(critical=90, high=60, medium=20)
    await repo_settings.save_settings(repo.repo_id, config)

    reset = await repo_settings.reset_settings(repo.repo_id)

    assert reset == RepoSettings()
    assert await queries.get_repo_settings(repo.repo_id) is None
    assert (await repo_settings.load_settings(repo.repo_id)).bugs.thresholds == RepoSettings().bugs.thresholds


class StubLookup:
    def __init__(self, score=None, unavailable=False):
        self.score = score
        self.unavailable = unavailable
        self.keys: list[tuple] = []

    def get_sentiment(self, kind, item_id, content_hash):
        self.keys.append((kind, item_id, content_hash))
        return self.score

    def is_unavailable(self, kind, item_id, content_hash):
        return self.unavailable


@pytest.mark.asyncio
async def test_score_reads_any_sentiment_lookup(repo):
    issue = make_issue(1, labels=["bug"], reactions={"thumbs_down": 10}, comments_count=5)
    lookup = StubLookup(score=30)

    result = analysis_service._score(ScoreFamily.BUGS, issue, repo, RepoSettings(), lookup, NOW)

    assert lookup.keys == [(ItemKind.ISSUE, issue.issue_id, item_hash(issue))]
    assert result.metadata["sentiment"] == 30
    assert "sentiment_unavailable" not in result.metadata

    flagged = analysis_service._score(
        ScoreFamily.BUGS, issue, repo, RepoSettings(), StubLookup(unavailable=True), NOW
    )
    assert flagged.metadata["sentiment_unavailable"] is True
