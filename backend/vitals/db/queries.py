from __future__ import annotations

import json
import uuid
from collections.abc import Iterable

import aiosqlite

from vitals.db.connection import snapshot, transaction
from vitals.models.db_models import (
    CommentRow,
    FetchStatus,
    IssueRow,
    ItemKind,
    JobKind,
    PullRequestRow,
    Repository,
    SentimentRecord,
    SyncJob,
)
from vitals.utils.dates import utcnow_iso

# -- repos ---------------------------------------------------------------------


def _repo_from_row(row: aiosqlite.Row) -> Repository:
    return Repository(
        repo_id=row["repo_id"],
        owner=row["owner"],
        name=row["name"],
        github_id=row["github_id"],
        is_github=bool(row["is_github"]),
        fetch_status=FetchStatus(row["fetch_status"]),
        last_fetched=row["last_fetched"],
        last_pr_fetched=row["last_pr_fetched"],
        maintainer_logins=json.loads(row["maintainer_logins"] or "[]"),
        created_at=row["created_at"],
    )


async def create_repo(
    owner: str, name: str, github_id: int | None = None, is_github: bool = True
) -> Repository:
    async with transaction() as db:
        await db.execute(
            """INSERT INTO repos (owner, name, github_id, is_github, created_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(owner, name) DO UPDATE SET
                   github_id=COALESCE(excluded.github_id, repos.github_id),
                   is_github=excluded.is_github""",
            (owner, name, github_id, int(is_github), utcnow_iso()),
        )
    repo = await get_repo_by_name(owner, name)
    assert repo is not None
    return repo


async def get_repo_by_name(owner: str, name: str) -> Repository | None:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT * FROM repos WHERE owner = ? COLLATE NOCASE AND name = ? COLLATE NOCASE",
            (owner, name),
        )
        row = await cursor.fetchone()
    return _repo_from_row(row) if row else None


async def get_repo(repo_id: int) -> Repository | None:
    async with snapshot() as db:
        cursor = await db.execute("SELECT * FROM repos WHERE repo_id = ?", (repo_id,))
        row = await cursor.fetchone()
    return _repo_from_row(row) if row else None


async def get_all_repos() -> list[Repository]:
    async with snapshot() as db:
        cursor = await db.execute("SELECT * FROM repos ORDER BY owner, name")
        rows = await cursor.fetchall()
    return [_repo_from_row(row) for row in rows]


async def delete_repo(repo_id: int) -> None:
    async with transaction() as db:
        await db.execute("DELETE FROM repos WHERE repo_id = ?", (repo_id,))


async def update_repo_status(repo_id: int, status: FetchStatus) -> None:
    async with transaction() as db:
        await db.execute(
            "UPDATE repos SET fetch_status = ? WHERE repo_id = ?", (status.value, repo_id)
        )


async def update_last_fetched(repo_id: int, issues_at: str | None, prs_at: str | None) -> None:
    async with transaction() as db:
        await db.execute(
            """UPDATE repos SET
                   last_fetched = COALESCE(?, last_fetched),
                   last_pr_fetched = COALESCE(?, last_pr_fetched)
               WHERE repo_id = ?""",
            (issues_at, prs_at, repo_id),
        )


async def update_maintainer_logins(repo_id: int, logins: list[str]) -> None:
    async with transaction() as db:
        await db.execute(
            "UPDATE repos SET maintainer_logins = ? WHERE repo_id = ?",
            (json.dumps(sorted(set(logins))), repo_id),
        )


async def fail_interrupted_repos(message: str) -> int:
    """Mark repos and jobs left in_progress by a previous process as failed."""
    now = utcnow_iso()
    async with transaction() as db:
        cursor = await db.execute(
            "UPDATE repos SET fetch_status = ? WHERE fetch_status = ?",
            (FetchStatus.FAILED.value, FetchStatus.IN_PROGRESS.value),
        )
        count = cursor.rowcount
        await db.execute(
            """UPDATE sync_jobs SET status = ?, message = ?, completed_at = ?
               WHERE status IN (?, ?)""",
            (FetchStatus.FAILED.value, message, now,
             FetchStatus.IN_PROGRESS.value, FetchStatus.NOT_STARTED.value),
        )
    return count


# -- jobs ------------------------------------------------------------------------


def _job_from_row(row: aiosqlite.Row) -> SyncJob:
    return SyncJob(
        job_id=row["job_id"],
        repo_id=row["repo_id"],
        kind=JobKind(row["kind"]),
        status=FetchStatus(row["status"]),
        progress_current=row["progress_current"],
        progress_total=row["progress_total"],
        message=row["message"],
        created_at=row["created_at"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
    )


async def create_job(repo_id: int, kind: JobKind) -> SyncJob:
    job_id = str(uuid.uuid4())
    now = utcnow_iso()
    async with transaction() as db:
        await db.execute(
            """INSERT INTO sync_jobs (job_id, repo_id, kind, status, created_at, started_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (job_id, repo_id, kind.value, FetchStatus.IN_PROGRESS.value, now, now),
        )
    return SyncJob(
        job_id=job_id,
        repo_id=repo_id,
        kind=kind,
        status=FetchStatus.IN_PROGRESS,
        created_at=now,
        started_at=now,
    )


async def update_job_progress(job_id: str, current: int, total: int) -> None:
    # MAX() keeps progress monotonic even if a page reports a smaller total
    async with transaction() as db:
        await db.execute(
            """UPDATE sync_jobs SET
                   progress_current = MAX(progress_current, ?),
                   progress_total = MAX(progress_total, ?, ?)
               WHERE job_id = ?""",
            (current, total, current, job_id),
        )


async def finish_job(job_id: str, status: FetchStatus, message: str | None = None) -> None:
    async with transaction() as db:
        await db.execute(
            "UPDATE sync_jobs SET status = ?, message = ?, completed_at = ? WHERE job_id = ?",
            (status.value, message, utcnow_iso(), job_id),
        )


async def get_latest_job(repo_id: int, kinds: Iterable[JobKind] | None = None) -> SyncJob | None:
    sql = "SELECT * FROM sync_jobs WHERE repo_id = ?"
    params: list = [repo_id]
    if kinds is not None:
        kinds = list(kinds)
        sql += f" AND kind IN ({','.join('?' for _ in kinds)})"
        params.extend(k.value for k in kinds)
    sql += " ORDER BY created_at DESC, rowid DESC LIMIT 1"
    async with snapshot() as db:
        cursor = await db.execute(sql, params)
        row = await cursor.fetchone()
    return _job_from_row(row) if row else None


async def get_jobs_for_repo(repo_id: int) -> list[SyncJob]:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT * FROM sync_jobs WHERE repo_id = ? ORDER BY created_at, rowid", (repo_id,)
        )
        rows = await cursor.fetchall()
    return [_job_from_row(row) for row in rows]


# -- issues & pull requests ------------------------------------------------------


async def _replace_comments(
    db: aiosqlite.Connection,
    repo_id: int,
    kind: ItemKind,
    item_id: int,
    comments: list[CommentRow],
) -> None:
    await db.execute(
        "DELETE FROM comments WHERE item_kind = ? AND item_id = ?", (kind.value, item_id)
    )
    await db.executemany(
        """INSERT INTO comments (repo_id, item_kind, item_id, github_id, author_login,
                                 author_association, body, created_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        [
            (repo_id, kind.value, item_id, c.github_id, c.author_login,
             c.author_association, c.body, c.created_at)
            for c in comments
        ],
    )


async def _write_issue(db: aiosqlite.Connection, issue: IssueRow, synced_at: str) -> None:
    # A number can move to a new GitHub id (transferred issues); the old row goes.
    await db.execute(
        "DELETE FROM issues WHERE repo_id = ? AND number = ? AND issue_id != ?",
        (issue.repo_id, issue.number, issue.issue_id),
    )
    await db.execute(
        """INSERT INTO issues (issue_id, repo_id, number, title, body, url, state,
                               author_login, author_association, issue_type, labels,
                               assignees, milestone, reactions, comments_count,
                               created_at, updated_at, closed_at, synced_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(issue_id) DO UPDATE SET
               repo_id=excluded.repo_id, number=excluded.number, title=excluded.title,
               body=excluded.body, url=excluded.url, state=excluded.state,
               author_login=excluded.author_login,
               author_association=excluded.author_association,
               issue_type=excluded.issue_type, labels=excluded.labels,
               assignees=excluded.assignees, milestone=excluded.milestone,
               reactions=excluded.reactions, comments_count=excluded.comments_count,
               created_at=excluded.created_at, updated_at=excluded.updated_at,
               closed_at=excluded.closed_at, synced_at=excluded.synced_at""",
        (issue.issue_id, issue.repo_id, issue.number, issue.title, issue.body,
         issue.url, issue.state, issue.author_login, issue.author_association,
         issue.issue_type, json.dumps(issue.labels), json.dumps(issue.assignees),
         issue.milestone, json.dumps(issue.reactions), issue.comments_count,
         issue.created_at, issue.updated_at, issue.closed_at, synced_at),
    )
    await _replace_comments(db, issue.repo_id, ItemKind.ISSUE, issue.issue_id, issue.comments)


async def _write_pull_request(
    db: aiosqlite.Connection, pr: PullRequestRow, synced_at: str
) -> None:
    await db.execute(
        "DELETE FROM pull_requests WHERE repo_id = ? AND number = ? AND pr_id != ?",
        (pr.repo_id, pr.number, pr.pr_id),
    )
    await db.execute(
        """INSERT INTO pull_requests (pr_id, repo_id, number, title, body, url, state,
                                      is_draft, author_login, author_association, labels,
                                      assignees, reviewers, review_decision, mergeable,
                                      additions, deletions, changed_files, reactions,
                                      comments_count, created_at, updated_at, closed_at,
                                      merged_at, synced_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
           ON CONFLICT(pr_id) DO UPDATE SET
               repo_id=excluded.repo_id, number=excluded.number, title=excluded.title,
               body=excluded.body, url=excluded.url, state=excluded.state,
               is_draft=excluded.is_draft, author_login=excluded.author_login,
               author_association=excluded.author_association, labels=excluded.labels,
               assignees=excluded.assignees, reviewers=excluded.reviewers,
               review_decision=excluded.review_decision, mergeable=excluded.mergeable,
               additions=excluded.additions, deletions=excluded.deletions,
               changed_files=excluded.changed_files, reactions=excluded.reactions,
               comments_count=excluded.comments_count, created_at=excluded.created_at,
               updated_at=excluded.updated_at, closed_at=excluded.closed_at,
               merged_at=excluded.merged_at, synced_at=excluded.synced_at""",
        (pr.pr_id, pr.repo_id, pr.number, pr.title, pr.body, pr.url, pr.state,
         int(pr.is_draft), pr.author_login, pr.author_association,
         json.dumps(pr.labels), json.dumps(pr.assignees), json.dumps(pr.reviewers),
         pr.review_decision, pr.mergeable, pr.additions, pr.deletions,
         pr.changed_files, json.dumps(pr.reactions), pr.comments_count,
         pr.created_at, pr.updated_at, pr.closed_at, pr.merged_at, synced_at),
    )
    await _replace_comments(db, pr.repo_id, ItemKind.PULL_REQUEST, pr.pr_id, pr.comments)


async def replace_issues(issues: list[IssueRow]) -> None:
    """Overwrite each issue row and its comments; all or nothing."""
    synced_at = utcnow_iso()
    async with transaction() as db:
        for issue in issues:
            await _write_issue(db, issue, synced_at)


async def replace_pull_requests(prs: list[PullRequestRow]) -> None:
    synced_at = utcnow_iso()
    async with transaction() as db:
        for pr in prs:
            await _write_pull_request(db, pr, synced_at)


async def close_missing_items(kind: ItemKind, repo_id: int, seen_ids: set[int]) -> int:
    """Close cached open items a full sync did not return; they closed upstream."""
    table, key = (
        ("issues", "issue_id") if kind == ItemKind.ISSUE else ("pull_requests", "pr_id")
    )
    async with transaction() as db:
        cursor = await db.execute(
            f"SELECT {key} FROM {table} WHERE repo_id = ? AND state = 'open'", (repo_id,)
        )
        stale = [row[0] for row in await cursor.fetchall() if row[0] not in seen_ids]
        if stale:
            placeholders = ",".join("?" for _ in stale)
            await db.execute(
                f"UPDATE {table} SET state = 'closed' WHERE {key} IN ({placeholders})", stale
            )
    return len(stale)


async def _load_comments(
    db: aiosqlite.Connection, kind: ItemKind, item_ids: list[int]
) -> dict[int, list[CommentRow]]:
    result: dict[int, list[CommentRow]] = {item_id: [] for item_id in item_ids}
    if not item_ids:
        return result
    placeholders = ",".join("?" for _ in item_ids)
    cursor = await db.execute(
        f"""SELECT item_id, github_id, author_login, author_association, body, created_at
            FROM comments WHERE item_kind = ? AND item_id IN ({placeholders})
            ORDER BY created_at, id""",
        [kind.value, *item_ids],
    )
    for row in await cursor.fetchall():
        result[row["item_id"]].append(
            CommentRow(
                author_login=row["author_login"],
                author_association=row["author_association"],
                body=row["body"] or "",
                created_at=row["created_at"],
                github_id=row["github_id"],
            )
        )
    return result


def _issue_from_row(row: aiosqlite.Row) -> IssueRow:
    return IssueRow(
        issue_id=row["issue_id"],
        repo_id=row["repo_id"],
        number=row["number"],
        title=row["title"],
        body=row["body"] or "",
        url=row["url"],
        state=row["state"],
        author_login=row["author_login"],
        author_association=row["author_association"],
        issue_type=row["issue_type"],
        labels=json.loads(row["labels"] or "[]"),
        assignees=json.loads(row["assignees"] or "[]"),
        milestone=row["milestone"],
        reactions=json.loads(row["reactions"] or "{}"),
        comments_count=row["comments_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        closed_at=row["closed_at"],
    )


def _pull_request_from_row(row: aiosqlite.Row) -> PullRequestRow:
    return PullRequestRow(
        pr_id=row["pr_id"],
        repo_id=row["repo_id"],
        number=row["number"],
        title=row["title"],
        body=row["body"] or "",
        url=row["url"],
        state=row["state"],
        is_draft=bool(row["is_draft"]),
        author_login=row["author_login"],
        author_association=row["author_association"],
        labels=json.loads(row["labels"] or "[]"),
        assignees=json.loads(row["assignees"] or "[]"),
        reviewers=json.loads(row["reviewers"] or "[]"),
        review_decision=row["review_decision"],
        mergeable=row["mergeable"],
        additions=row["additions"],
        deletions=row["deletions"],
        changed_files=row["changed_files"],
        reactions=json.loads(row["reactions"] or "{}"),
        comments_count=row["comments_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        closed_at=row["closed_at"],
        merged_at=row["merged_at"],
    )


async def get_open_issues(repo_id: int) -> list[IssueRow]:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT * FROM issues WHERE repo_id = ? AND state = 'open' ORDER BY number",
            (repo_id,),
        )
        issues = [_issue_from_row(row) for row in await cursor.fetchall()]
        comments = await _load_comments(db, ItemKind.ISSUE, [i.issue_id for i in issues])
    for issue in issues:
        issue.comments = comments[issue.issue_id]
    return issues


async def get_open_pull_requests(repo_id: int) -> list[PullRequestRow]:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT * FROM pull_requests WHERE repo_id = ? AND state = 'open' ORDER BY number",
            (repo_id,),
        )
        prs = [_pull_request_from_row(row) for row in await cursor.fetchall()]
        comments = await _load_comments(db, ItemKind.PULL_REQUEST, [p.pr_id for p in prs])
    for pr in prs:
        pr.comments = comments[pr.pr_id]
    return prs


async def get_issue_by_number(repo_id: int, number: int) -> IssueRow | None:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT * FROM issues WHERE repo_id = ? AND number = ?", (repo_id, number)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        issue = _issue_from_row(row)
        issue.comments = (await _load_comments(db, ItemKind.ISSUE, [issue.issue_id]))[
            issue.issue_id
        ]
    return issue


async def get_pull_request_by_number(repo_id: int, number: int) -> PullRequestRow | None:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT * FROM pull_requests WHERE repo_id = ? AND number = ?", (repo_id, number)
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        pr = _pull_request_from_row(row)
        pr.comments = (await _load_comments(db, ItemKind.PULL_REQUEST, [pr.pr_id]))[pr.pr_id]
    return pr


async def count_items(repo_id: int) -> dict[str, int]:
    async with snapshot() as db:
        cursor = await db.execute(
            """SELECT
                   (SELECT COUNT(*) FROM issues WHERE repo_id = ? AND state = 'open') AS issues,
                   (SELECT COUNT(*) FROM pull_requests WHERE repo_id = ? AND state = 'open') AS prs""",
            (repo_id, repo_id),
        )
        row = await cursor.fetchone()
    return {"issues": row["issues"], "prs": row["prs"]}


async def get_distinct_labels(repo_id: int) -> list[str]:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT labels FROM issues WHERE repo_id = ? AND state = 'open'", (repo_id,)
        )
        rows = await cursor.fetchall()
    labels: set[str] = set()
    for row in rows:
        labels.update(json.loads(row["labels"] or "[]"))
    return sorted(labels)


# -- sentiment -------------------------------------------------------------------


async def get_sentiment_records(
    kind: ItemKind, item_ids: list[int]
) -> dict[int, SentimentRecord]:
    if not item_ids:
        return {}
    placeholders = ",".join("?" for _ in item_ids)
    async with snapshot() as db:
        cursor = await db.execute(
            f"""SELECT * FROM item_sentiment
                WHERE item_kind = ? AND item_id IN ({placeholders})""",
            [kind.value, *item_ids],
        )
        rows = await cursor.fetchall()
    return {
        row["item_id"]: SentimentRecord(
            item_kind=ItemKind(row["item_kind"]),
            item_id=row["item_id"],
            repo_id=row["repo_id"],
            content_hash=row["content_hash"],
            score=row["score"],
            metadata=json.loads(row["metadata"] or "{}"),
            error=row["error"],
            analyzed_at=row["analyzed_at"],
        )
        for row in rows
    }


async def upsert_sentiment(record: SentimentRecord) -> None:
    async with transaction() as db:
        await db.execute(
            """INSERT INTO item_sentiment (item_kind, item_id, repo_id, content_hash, score,
                                           metadata, error, analyzed_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(item_kind, item_id) DO UPDATE SET
                   repo_id=excluded.repo_id, content_hash=excluded.content_hash,
                   score=excluded.score, metadata=excluded.metadata,
                   error=excluded.error, analyzed_at=excluded.analyzed_at""",
            (record.item_kind.value, record.item_id, record.repo_id, record.content_hash,
             record.score, json.dumps(record.metadata), record.error,
             record.analyzed_at or utcnow_iso()),
        )


async def count_sentiment(repo_id: int) -> int:
    """Open issues and PRs of a repo that carry a sentiment score."""
    async with snapshot() as db:
        cursor = await db.execute(
            """SELECT COUNT(*) FROM item_sentiment s
               WHERE s.repo_id = ? AND s.score IS NOT NULL AND (
                   (s.item_kind = ? AND EXISTS (
                       SELECT 1 FROM issues i WHERE i.issue_id = s.item_id AND i.state = 'open'))
                   OR (s.item_kind = ? AND EXISTS (
                       SELECT 1 FROM pull_requests p WHERE p.pr_id = s.item_id AND p.state = 'open'))
               )""",
            (repo_id, ItemKind.ISSUE.value, ItemKind.PULL_REQUEST.value),
        )
        row = await cursor.fetchone()
    return row[0] if row else 0


# -- settings --------------------------------------------------------------------


async def get_repo_settings(repo_id: int) -> str | None:
    async with snapshot() as db:
        cursor = await db.execute(
            "SELECT settings FROM repo_settings WHERE repo_id = ?", (repo_id,)
        )
        row = await cursor.fetchone()
    return row["settings"] if row else None


async def save_repo_settings(repo_id: int, settings_json: str) -> None:
    async with transaction() as db:
        await db.execute(
            """INSERT INTO repo_settings (repo_id, settings, updated_at) VALUES (?, ?, ?)
               ON CONFLICT(repo_id) DO UPDATE SET
                   settings=excluded.settings, updated_at=excluded.updated_at""",
            (repo_id, settings_json, utcnow_iso()),
        )


async def delete_repo_settings(repo_id: int) -> bool:
    async with transaction() as db:
        cursor = await db.execute("DELETE FROM repo_settings WHERE repo_id = ?", (repo_id,))
    return cursor.rowcount > 0
