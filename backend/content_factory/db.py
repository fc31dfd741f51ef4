"""
Engine and session plumbing shared by the API, the publish ticker and
Celery workers. Each process builds its own engine from DATABASE_URL.
"""
from __future__ import annotations

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .settings import get_settings


class Base(DeclarativeBase):
    """Declarative base for content-factory tables."""


def build_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    url = url or get_settings().async_database_url
    if url.startswith("postgresql"):
        # Ticker and workers hold connections across long idle gaps.
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, echo=False, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Objects stay readable after commit without a lazy refresh.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    async with AsyncSessionLocal() as session:
        yield session
