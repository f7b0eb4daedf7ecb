"""Shared fixtures: a controllable clock, throwaway SQLite databases and stores."""

from datetime import datetime, timedelta

import pytest
import pytest_asyncio

from shortlink.core.setting import Settings
from shortlink.db.event_store import SQLEventStore
from shortlink.db.link_store import SQLLinkStore
from shortlink.db.memory import InMemoryEventStore, InMemoryLinkStore
from shortlink.db.session import build_engine, build_session_maker, create_schema


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database_url(tmp_path) -> str:
    # File-backed: every NullPool connection must see the same database
    return f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"


@pytest_asyncio.fixture
async def database(database_url):
    """(adapter, engine, session_maker) for a fresh schema."""
    adapter, engine = build_engine(database_url)
    await create_schema(engine)
    yield adapter, engine, build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def session_maker(database):
    return database[2]


@pytest.fixture
def adapter(database):
    return database[0]


@pytest.fixture
def sql_link_store(session_maker, clock) -> SQLLinkStore:
    return SQLLinkStore(session_maker, timeout=10.0, retry_attempts=0, clock=clock)


@pytest.fixture
def sql_event_store(session_maker) -> SQLEventStore:
    return SQLEventStore(session_maker)


@pytest.fixture(params=["memory", "sql"])
def link_store(request, clock, sql_link_store):
    """Every LinkStore implementation, so both honour the same contract."""
    if request.param == "memory":
        return InMemoryLinkStore(clock=clock)
    return sql_link_store


@pytest.fixture(params=["memory", "sql"])
def event_store(request, sql_event_store):
    if request.param == "memory":
        return InMemoryEventStore()
    return sql_event_store


@pytest.fixture
def test_settings(database_url) -> Settings:
    return Settings(
        DATABASE_URL=database_url,
        BASE_URL="http://sho.rt",
        EDGE_RATE_LIMITS_ENABLED=False,
        EVENT_FLUSH_INTERVAL=0.05,
        EVENT_BATCH_SIZE=10,
        EVENT_FLUSH_BACKOFF=0.01,
        STORE_TIMEOUT_SECONDS=10.0,
    )
