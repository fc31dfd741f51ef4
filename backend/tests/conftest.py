from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("CELERY_ENABLED", "false")

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from content_factory.db import Base, build_engine, build_session_factory
from content_factory.models import Project
from content_factory.services.dataset_store import ParsedDataset, replace_dataset
from content_factory.settings import get_settings


@pytest.fixture
def settings():
    """Process settings with per-test overrides via ``settings.<field> = ...``."""
    current = get_settings()
    snapshot = current.model_dump()
    yield current
    for key, value in snapshot.items():
        setattr(current, key, value)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_project(session: AsyncSession) -> Callable[..., Awaitable[Project]]:
    async def _make(**fields: Any) -> Project:
        fields.setdefault("name", "Shirts")
        fields.setdefault("template", "<p>{{size}} {{color}}</p>")
        project = Project(**fields)
        session.add(project)
        await session.commit()
        await session.refresh(project)
        return project

    return _make


@pytest.fixture
def load_rows(session: AsyncSession) -> Callable[..., Awaitable[dict]]:
    async def _load(project_id: int, headers: list[str], rows: list[list[str]]) -> dict:
        dataset = ParsedDataset(headers=headers, rows=[dict(zip(headers, r)) for r in rows])
        return await replace_dataset(session, project_id, dataset)

    return _load
