"""Async database engine for the local cache."""

from pathlib import Path

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from thefit.core.config import get_settings


class Base(DeclarativeBase):
    """Declarative base for local cache tables."""

    pass


def create_cache_engine(database_url: str | None = None, echo: bool | None = None) -> AsyncEngine:
    """Create the async engine backing the local cache.

    For file-based SQLite URLs the parent directory is created first.
    """
    settings = get_settings()
    database_url = database_url or settings.cache_database_url
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_async_engine(
        database_url,
        echo=settings.database_echo if echo is None else echo,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the given engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_models(engine: AsyncEngine) -> None:
    """Create cache tables if they do not exist yet."""
    # Register models on Base.metadata
    from thefit.models import cache  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)