"""
Async database engine and session helpers.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import settings


def build_database_url(raw_url: str, service_key: str = ""):
    """Return the engine URL, applying the elevated storage credential to networked databases."""
    url = make_url(raw_url)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+asyncpg")
    elif url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    if url.host and not url.password and service_key:
        url = url.set(password=service_key)
    return url


engine = create_async_engine(
    build_database_url(settings.DATABASE_URL, settings.STORAGE_SERVICE_KEY),
    pool_pre_ping=True,
)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    """FastAPI dependency yielding a request-scoped session."""
    async with async_session_maker() as session:
        yield session
