import asyncio

import httpx
import pytest

from factories import issue_node, page, pr_node, request_json
from vitals.db import queries
from vitals.models.db_models import FetchStatus, JobKind
from vitals.models.settings import MaintainerTeam, RepoSettings
from vitals.services import repo_settings
from vitals.services.errors import InvalidRequestError, RepositoryNotFoundError
from vitals.services.sync_service import (
    INTERRUPTED_MESSAGE,
    SyncOrchestrator,
    parse_issue,
    parse_pull_request,
    recover_interrupted,
)


def _issue_pages(count: int, per_page: int = 2) -> list[dict]:
    pages = []
    for i in range(count):
        nodes = [issue_node(i * per_page + n + 1) for n in range(per_page)]
        cursor = f"c{i + 1}" if i < count - 1 else None
        pages.append(page(nodes, cursor, count * per_page))
    return pages


class FakeGitHub:
    """Answers GraphQL requests by looking at which connection the query asks for."""

    def __init__(self, issue_pages=None, pr_pages=None, team=None, item=None, fail_issue_page=None):
        self.issue_pages = issue_pages or [page([], None, 0)]
        self.pr_pages = pr_pages or [page([], None, 0, "pullRequests")]
        self.team = team
        self.item = item
        self.fail_issue_page = fail_issue_page
        self.calls: list[dict] = []

    def requests(self, marker: str) -> list[dict]:
        return [c["variables"] for c in self.calls if marker in c["query"]]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = request_json(request)
        self.calls.append(body)
        query, variables = body["query"], body["variables"]
        index = int((variables.get("after") or "c0")[1:])
        if "issueOrPullRequest" in query:
            return httpx.Response(200, json={"data": {"repository": {"issueOrPullRequest": self.item}}})
        if "team(" in query:
            team = None
            if self.team is not None:
                team = {
                    "members": {
                        "pageInfo": {"hasNextPage": False, "endCursor": None},
                        "nodes": [{"login": login} for login in self.team],
                    }
                }
            return httpx.Response(200, json={"data": {"organization": {"team": team}}})
        if "issues(" in query:
            if index == self.fail_issue_page:
                return httpx.Response(401, json={"message": "Bad credentials"})
            return httpx.Response(200, json=self.issue_pages[index])
        if "pullRequests(" in query:
            return httpx.Response(200, json=self.pr_pages[index])
        return httpx.Response(400, json={"message": "unexpected query"})


@pytest.fixture
def orchestrator_for(make_fetcher):
    def _make(github: FakeGitHub) -> SyncOrchestrator:
        return SyncOrchestrator(fetcher=make_fetcher(github))

    return _make


def test_parse_issue_maps_graphql_node():
    issue = parse_issue(
        issue_node(
            3,
            issueType={"name": "Bug"},
            milestone={"title": "v1"},
            labels={"nodes": [{"name": "bug"}, {"name": "bug"}, {"name": "ui"}]},
        ),
        repo_id=1,
    )
    assert issue.issue_id == 1003
    assert issue.state == "open"
    assert issue.issue_type == "Bug"
    assert issue.milestone == "v1"
    assert issue.labels == ["bug", "ui"]
    assert issue.reactions == {"thumbs_up": 2, "thumbs_down": 1}
    assert issue.comments_count == 1
    assert issue.comments[0].author_login == "fan"


def test_parse_pull_request_collects_reviewers():
    pr = parse_pull_request(
        pr_node(
            4,
            state="MERGED",
            reviewRequests={
                "nodes": [
                    {"requestedReviewer": {"login": "alice"}},
                    {"requestedReviewer": {"slug": "core-team"}},
                    {"requestedReviewer": None},
                ]
            },
        ),
        repo_id=1,
    )
    assert pr.state == "merged"
    assert pr.reviewers == ["alice", "core-team"]
    assert pr.author_login == "contributor"


@pytest.mark.asyncio
async def test_full_sync_stores_issues_and_prs(repo, orchestrator_for):
    github = FakeGitHub(
        issue_pages=_issue_pages(2),
        pr_pages=[page([pr_node(1)], None, 1, "pullRequests")],
    )
    orch = orchestrator_for(github)

    assert await orch.start_fetch("octo", "widgets", "tok") is True
    await orch.wait(repo.repo_id)

    stored = await queries.get_repo(repo.repo_id)
    assert stored.fetch_status == FetchStatus.COMPLETED
    assert stored.last_fetched is not None
    assert stored.last_pr_fetched is not None
    assert await queries.count_items(repo.repo_id) == {"issues": 4, "prs": 1}

    jobs = await queries.get_jobs_for_repo(repo.repo_id)
    assert [(j.kind, j.status) for j in jobs] == [
        (JobKind.ISSUE_FETCH, FetchStatus.COMPLETED),
        (JobKind.PR_FETCH, FetchStatus.COMPLETED),
    ]
    assert (jobs[0].progress_current, jobs[0].progress_total) == (4, 4)
    assert github.requests("issues(")[0]["states"] == ["OPEN"]


@pytest.mark.asyncio
async def test_full_sync_closes_items_that_left_the_open_set(repo, orchestrator_for):
    await queries.replace_issues([parse_issue(issue_node(99), repo.repo_id)])
    orch = orchestrator_for(FakeGitHub(issue_pages=_issue_pages(1)))

    await orch.start_fetch("octo", "widgets", "tok")
    await orch.wait(repo.repo_id)

    assert [i.number for i in await queries.get_open_issues(repo.repo_id)] == [1, 2]


@pytest.mark.asyncio
async def test_concurrent_starts_run_a_single_sync(repo, orchestrator_for):
    orch = orchestrator_for(FakeGitHub(issue_pages=_issue_pages(1)))

    results = await asyncio.gather(
        orch.start_fetch("octo", "widgets", "tok"),
        orch.start_fetch("octo", "widgets", "tok"),
    )
    assert sorted(results) == [False, True]
    await orch.wait(repo.repo_id)

    jobs = await queries.get_jobs_for_repo(repo.repo_id)
    assert [j.kind for j in jobs].count(JobKind.ISSUE_FETCH) == 1
    assert not orch.is_active(repo.repo_id)


@pytest.mark.asyncio
async def test_failure_mid_sync_keeps_earlier_pages(repo, orchestrator_for):
    github = FakeGitHub(issue_pages=_issue_pages(5), fail_issue_page=3)
    orch = orchestrator_for(github)

    await orch.start_fetch("octo", "widgets", "tok")
    await orch.wait(repo.repo_id)

    stored = await queries.get_repo(repo.repo_id)
    assert stored.fetch_status == FetchStatus.FAILED
    assert stored.last_fetched is None
    assert (await queries.count_items(repo.repo_id))["issues"] == 6

    jobs = await queries.get_jobs_for_repo(repo.repo_id)
    assert [j.kind for j in jobs] == [JobKind.ISSUE_FETCH]
    assert jobs[0].status == FetchStatus.FAILED
    assert "Bad credentials" in jobs[0].message
    assert github.requests("pullRequests(") == []


@pytest.mark.asyncio
async def test_incremental_sync_uses_since_and_stops_at_older_prs(repo, orchestrator_for):
    await queries.update_last_fetched(repo.repo_id, "2026-02-01T00:00:00Z", "2026-02-01T00:00:00Z")
    await queries.replace_pull_requests([parse_pull_request(pr_node(2), repo.repo_id)])
    github = FakeGitHub(
        issue_pages=[page([issue_node(1)], None, 1)],
        pr_pages=[
            page(
                [
                    pr_node(1, updated_at="2026-02-10T00:00:00Z"),
                    pr_node(2, updated_at="2026-02-05T00:00:00Z", state="MERGED"),
                    pr_node(3, updated_at="2026-01-01T00:00:00Z"),
                ],
                "c1",
                40,
                "pullRequests",
            ),
            page([pr_node(4)], None, 40, "pullRequests"),
        ],
    )
    orch = orchestrator_for(github)

    assert await orch.refresh("octo", "widgets", "tok") is True
    await orch.wait(repo.repo_id)

    assert github.requests("issues(")[0]["since"] == "2026-01-31T23:59:00Z"
    pr_requests = github.requests("pullRequests(")
    assert len(pr_requests) == 1
    assert "MERGED" in pr_requests[0]["states"]
    assert pr_requests[0]["direction"] == "DESC"

    open_prs = [p.number for p in await queries.get_open_pull_requests(repo.repo_id)]
    assert open_prs == [1]
    assert (await queries.get_repo(repo.repo_id)).fetch_status == FetchStatus.COMPLETED


@pytest.mark.asyncio
async def test_incremental_without_previous_sync_is_full(repo, orchestrator_for):
    github = FakeGitHub(issue_pages=_issue_pages(1))
    orch = orchestrator_for(github)

    await orch.refresh("octo", "widgets", "tok")
    await orch.wait(repo.repo_id)

    assert github.requests("issues(")[0]["since"] is None


@pytest.mark.asyncio
async def test_maintainer_team_is_stored(repo, orchestrator_for):
    config = RepoSettings()
    config.general.maintainer_team = MaintainerTeam(org="octo", team_slug="core")
    await repo_settings.save_settings(repo.repo_id, config)
    orch = orchestrator_for(FakeGitHub(team=["zed", "amy"]))

    await orch.start_fetch("octo", "widgets", "tok")
    await orch.wait(repo.repo_id)

    assert (await queries.get_repo(repo.repo_id)).maintainer_logins == ["amy", "zed"]


@pytest.mark.asyncio
async def test_missing_maintainer_team_does_not_fail_sync(repo, orchestrator_for):
    config = RepoSettings()
    config.general.maintainer_team = MaintainerTeam(org="octo", team_slug="ghosts")
    await repo_settings.save_settings(repo.repo_id, config)
    orch = orchestrator_for(FakeGitHub(issue_pages=_issue_pages(1), team=None))

    await orch.start_fetch("octo", "widgets", "tok")
    await orch.wait(repo.repo_id)

    stored = await queries.get_repo(repo.repo_id)
    assert stored.fetch_status == FetchStatus.COMPLETED
    assert stored.maintainer_logins == []


@pytest.mark.asyncio
async def test_unknown_repository(db, orchestrator_for):
    orch = orchestrator_for(FakeGitHub())
    with pytest.raises(RepositoryNotFoundError):
        await orch.start_fetch("octo", "missing", "tok")


@pytest.mark.asyncio
async def test_refresh_single_pull_request(repo, orchestrator_for):
    node = dict(pr_node(7, title="Renamed"), __typename="PullRequest")
    orch = orchestrator_for(FakeGitHub(item=node))

    row = await orch.refresh_single("octo", "widgets", 7, "tok")

    assert row.number == 7
    stored = await queries.get_pull_request_by_number(repo.repo_id, 7)
    assert stored.title == "Renamed"


@pytest.mark.asyncio
async def test_refresh_single_issue(repo, orchestrator_for):
    node = dict(issue_node(8), __typename="Issue")
    orch = orchestrator_for(FakeGitHub(item=node))

    await orch.refresh_single("octo", "widgets", 8, "tok")

    assert (await queries.get_issue_by_number(repo.repo_id, 8)).issue_id == 1008


@pytest.mark.asyncio
async def test_fetch_waits_behind_sentiment_job(repo, orchestrator_for):
    orch = orchestrator_for(FakeGitHub(issue_pages=_issue_pages(1)))
    release = asyncio.Event()
    progress = []

    async def sentiment_job(on_progress):
        await release.wait()
        await on_progress(1, 1)
        progress.append(True)

    assert orch.start_sentiment(repo, sentiment_job) is True
    assert await orch.start_fetch("octo", "widgets", "tok") is True
    assert await orch.start_fetch("octo", "widgets", "tok") is False
    assert orch.start_sentiment(repo, sentiment_job) is False

    status = await orch.get_status("octo", "widgets")
    assert status["queued"] is True
    assert status["status"] == "in_progress"

    release.set()
    await orch.wait(repo.repo_id)

    jobs = await queries.get_jobs_for_repo(repo.repo_id)
    assert [j.kind for j in jobs] == [JobKind.SENTIMENT, JobKind.ISSUE_FETCH, JobKind.PR_FETCH]
    assert all(j.status == FetchStatus.COMPLETED for j in jobs)
    assert progress == [True]


@pytest.mark.asyncio
async def test_failed_sentiment_job_is_recorded(repo, orchestrator_for):
    orch = orchestrator_for(FakeGitHub())

    async def broken(on_progress):
        raise RuntimeError("provider down")

    orch.start_sentiment(repo, broken)
    await orch.wait(repo.repo_id)

    job = await queries.get_latest_job(repo.repo_id)
    assert job.status == FetchStatus.FAILED
    assert job.message == "provider down"
    assert not orch.is_active(repo.repo_id)


@pytest.mark.asyncio
async def test_recover_interrupted(repo):
    await queries.update_repo_status(repo.repo_id, FetchStatus.IN_PROGRESS)
    await queries.create_job(repo.repo_id, JobKind.ISSUE_FETCH)

    assert await recover_interrupted() == 1

    assert (await queries.get_repo(repo.repo_id)).fetch_status == FetchStatus.FAILED
    job = await queries.get_latest_job(repo.repo_id)
    assert job.status == FetchStatus.FAILED
    assert job.message == INTERRUPTED_MESSAGE


@pytest.mark.asyncio
async def test_full_pr_walk_keeps_prs_updated_mid_walk_open(repo, orchestrator_for):
    await queries.replace_pull_requests([parse_pull_request(pr_node(4), repo.repo_id)])
    # oldest first: a PR touched during the walk shows up again at the end
    github = FakeGitHub(
        pr_pages=[
            page([pr_node(1), pr_node(2)], "c1", 4, "pullRequests"),
            page([pr_node(3), pr_node(4, updated_at="2026-03-01T11:59:00Z")], None, 4, "pullRequests"),
        ],
    )
    orch = orchestrator_for(github)

    await orch.start_fetch("octo", "widgets", "tok")
    await orch.wait(repo.repo_id)

    assert (await queries.get_pull_request_by_number(repo.repo_id, 4)).state == "open"
    assert [v["direction"] for v in github.requests("pullRequests(")] == ["ASC", "ASC"]
    assert (await queries.count_items(repo.repo_id))["prs"] == 4


@pytest.mark.asyncio
async def test_local_only_repository_is_never_synced(db, orchestrator_for):
    github = FakeGitHub(issue_pages=_issue_pages(1))
    orch = orchestrator_for(github)
    local = await queries.create_repo("octo", "notes", is_github=False)

    with pytest.raises(InvalidRequestError):
        await orch.start_fetch("octo", "notes", "tok")
    with pytest.raises(InvalidRequestError):
        await orch.refresh("octo", "notes", "tok")
    with pytest.raises(InvalidRequestError):
        await orch.refresh_single("octo", "notes", 1, "tok")

    assert github.requests("issues(") == []
    assert not orch.is_active(local.repo_id)
    status = await orch.get_status("octo", "notes")
    assert status["status"] == FetchStatus.NOT_STARTED.value
