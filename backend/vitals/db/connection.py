from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from vitals.config import settings

_db: aiosqlite.Connection | None = None
_lock: asyncio.Lock | None = None
_SCHEMA_PATH = Path(__file__).parent / "schema.sql"


async def init_db() -> None:
    global _db, _lock
    db_path = Path(settings.db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    _db = await aiosqlite.connect(str(db_path))
    _db.row_factory = aiosqlite.Row
    _lock = asyncio.Lock()
    await _db.execute("PRAGMA journal_mode=WAL")
    await _db.execute("PRAGMA foreign_keys=ON")
    schema_sql = _SCHEMA_PATH.read_text()
    await _db.executescript(schema_sql)
    await _db.commit()


async def get_db() -> aiosqlite.Connection:
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db


@asynccontextmanager
async def transaction() -> AsyncIterator[aiosqlite.Connection]:
    """Run a group of writes as one commit, rolled back on error.

    Holds the connection lock so no snapshot read interleaves with it.
    """
    db = await get_db()
    assert _lock is not None
    async with _lock:
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()


@asynccontextmanager
async def snapshot() -> AsyncIterator[aiosqlite.Connection]:
    """Read several related rows without observing a half-applied transaction."""
    db = await get_db()
    assert _lock is not None
    async with _lock:
        yield db


async def close_db() -> None:
    global _db, _lock
    if _db is not None:
        await _db.close()
        _db = None
        _lock = None
