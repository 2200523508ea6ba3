from __future__ import annotations

import asyncio
import logging

import typer

from vitals.config import settings

app = typer.Typer(help="Repo Vitals sync jobs")
logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(message)s")


async def _init() -> None:
    from vitals.db.connection import init_db
    await init_db()


async def _close() -> None:
    from vitals.db.connection import close_db
    from vitals.services.github_client import fetch_client
    await close_db()
    await fetch_client.close()


def _split(full_name: str) -> tuple[str, str]:
    owner, _, name = full_name.partition("/")
    if not owner or not name:
        raise typer.BadParameter("expected OWNER/NAME")
    return owner, name


def _token(token: str | None) -> str:
    token = token or settings.github_token
    if not token:
        raise typer.BadParameter("pass --token or set GITHUB_TOKEN")
    return token


@app.command()
def add(
    repo: str,
    token: str | None = None,
    local: bool = typer.Option(False, "--local", help="Track without GitHub lookups or syncs."),
) -> None:
    """Register a repository."""
    owner, name = _split(repo)

    async def _run() -> None:
        await _init()
        from vitals.db import queries
        from vitals.services.github_client import GitHubClient
        try:
            if local:
                created = await queries.create_repo(owner, name, is_github=False)
                typer.echo(f"Added local-only {created.full_name}")
                return
            data = await GitHubClient(_token(token)).get_repository(owner, name)
            created = await queries.create_repo(owner, name, github_id=data.get("databaseId"))
            typer.echo(f"Added {created.full_name}")
        finally:
            await _close()

    asyncio.run(_run())


async def _sync(repo: str, token: str | None, incremental: bool) -> None:
    owner, name = _split(repo)
    await _init()
    from vitals.db import queries
    from vitals.services.sync_service import orchestrator
    try:
        started = await orchestrator.start_fetch(owner, name, _token(token), incremental=incremental)
        if not started:
            typer.echo("A sync is already running")
            return
        found = await queries.get_repo_by_name(owner, name)
        await orchestrator.wait(found.repo_id)
        info = await orchestrator.get_status(owner, name)
        typer.echo(f"Sync {info['status']}: {info['message'] or ''}")
    finally:
        await _close()


@app.command()
def sync(repo: str, token: str | None = None) -> None:
    """Full sync of open issues and pull requests."""
    asyncio.run(_sync(repo, token, incremental=False))


@app.command()
def refresh(repo: str, token: str | None = None) -> None:
    """Incremental sync of items updated since the last run."""
    asyncio.run(_sync(repo, token, incremental=True))


@app.command()
def status(repo: str) -> None:
    """Show the sync status of a repository."""
    owner, name = _split(repo)

    async def _run() -> None:
        await _init()
        from vitals.services.sync_service import orchestrator
        try:
            info = await orchestrator.get_status(owner, name)
            progress = info["progress"]
            typer.echo(
                f"{owner}/{name}: {info['status']} "
                f"({progress['current']}/{progress['total']}) {info['message'] or ''}"
            )
        finally:
            await _close()

    asyncio.run(_run())


@app.command()
def serve(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    """Run the HTTP API."""
    import uvicorn
    uvicorn.run("vitals.main:app", host=host, port=port, reload=reload, log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
