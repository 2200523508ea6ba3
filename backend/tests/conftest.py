from unittest.mock import patch

import httpx
import pytest
import pytest_asyncio

from factories import FakeClock
from vitals.config import settings
from vitals.db import queries
from vitals.db.connection import init_db, close_db, get_db
from vitals.services.github_client import FetchClient


@pytest_asyncio.fixture
async def db():
    """Initialize an in-memory SQLite DB for tests."""
    test_settings = settings.model_copy(update={"db_path": ":memory:", "github_token": ""})
    with patch("vitals.config.settings", test_settings):
        with patch("vitals.db.connection.settings", test_settings):
            await init_db()
            conn = await get_db()
            yield conn
            await close_db()


@pytest_asyncio.fixture
async def repo(db):
    return await queries.create_repo("octo", "widgets", github_id=555)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_fetcher(clock):
    """Build a FetchClient wired to a request handler and the fake clock."""
    def _make(handler, **kwargs) -> FetchClient:
        options = {
            "api_url": "https://api.github.test/graphql",
            "request_delay": 0.75,
            "max_attempts": 3,
            "backoff_base": 5.0,
            "backoff_max": 30.0,
            "jitter": 0.0,
            "cooldown": 120.0,
            "timeout": 5.0,
            "clock": clock,
            "sleep": clock.sleep,
            "wall_clock": lambda: 1_700_000_000.0,
        }
        options.update(kwargs)
        return FetchClient(httpx.AsyncClient(transport=httpx.MockTransport(handler)), **options)

    return _make
