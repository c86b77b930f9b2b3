"""Shared fixtures: a real SQLite store, an in-memory Redis store and a controllable clock."""

import fakeredis
import pytest

from politecrawler.crawler.url_frontier import URLFrontier
from politecrawler.storage.database import RedisStorageBackend, SQLiteStorageBackend


class FakeClock:
    """Clock returning a settable time, in seconds."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def store(tmp_path):
    backend = SQLiteStorageBackend(str(tmp_path / "urlsDB.sqlite3"))
    await backend.initialize()
    yield backend
    await backend.close()


@pytest.fixture
def frontier(store, clock):
    return URLFrontier(store, politeness_delay=5.0, clock=clock)


@pytest.fixture
async def redis_store():
    backend = RedisStorageBackend({'key_prefix': 'test'})
    backend.client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield backend
    await backend.close()
