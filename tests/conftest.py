"""Shared fixtures: a throwaway SQLite database per test and a wired ModerationCore."""

import pytest
import pytest_asyncio

from modcore.config import Settings
from modcore.core import ModerationCore
from modcore.database import build_engine, build_session_factory, create_schema
from modcore.services.analysis_cache import MemoryAnalysisCache
from modcore.store import ModerationStore
from tests.factories import make_profile


@pytest.fixture
def app_settings(tmp_path):
    return Settings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'modcore.db'}", redis_url="")


@pytest_asyncio.fixture
async def engine(app_settings):
    engine = build_engine(app_settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(engine):
    return ModerationStore(build_session_factory(engine))


@pytest_asyncio.fixture
async def core(store, app_settings):
    core = ModerationCore(store, MemoryAnalysisCache(100, 3600), app_settings)
    await core.start()
    yield core
    await core.aclose()


@pytest.fixture
def seed_profile(store):
    """Store a freshly computed profile so get_profile() returns it unchanged."""

    async def seed(user_id: str, score: float, account_age_days: float = 365, **overrides):
        profile = make_profile(score, user_id, account_age_days, **overrides)
        await store.upsert_profile(profile)
        return profile

    return seed
