import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./parameter_lab_test.db")
os.environ.setdefault("STORAGE_ANON_KEY", "test-anon-key-for-token-verification")
os.environ.setdefault("STORAGE_SERVICE_KEY", "test-service-key")
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("AUTO_CREATE_DB_SCHEMA", "false")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from database import Base
from main import app


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'parameter_lab.db'}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield maker
    await engine.dispose()


@pytest.fixture(autouse=True)
def disable_route_rate_limits():
    """Keep route-level rate-limit state out of the way between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    yield
    app.state.disable_rate_limits = previous
