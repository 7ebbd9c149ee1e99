"""Shared pytest fixtures for test suite."""

import os
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

# Set test environment variables BEFORE any package imports
# This ensures tracing is disabled while decorators are applied
os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["OTEL_ENABLED"] = "false"

import pytest
import pytest_asyncio
from sqlalchemy import Engine
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import Session, sessionmaker

from clean_template.core.config import Settings
from clean_template.core.context import AsyncDataContext, DataContext
from clean_template.core.database import create_async_engine, create_engine
from clean_template.core.logging import configure_logging
from clean_template.models.base import Base
from clean_template.repositories.unit_of_work import AsyncUnitOfWork, UnitOfWork
from factories import ranked_books

configure_logging()


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    """File-backed SQLite database so independent sessions use separate connections."""
    return tmp_path / "test.db"


# ===== Synchronous Fixtures =====


@pytest.fixture
def engine(database_path: Path) -> Generator[Engine, None, None]:
    """Create a test engine and the schema for the test catalog."""
    engine = create_engine(Settings(database_url=f"sqlite:///{database_path}"))
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
def uow(session_factory: sessionmaker[Session]) -> Generator[UnitOfWork, None, None]:
    """Unit of work on a fresh session, disposed after the test."""
    unit = UnitOfWork(DataContext(session_factory()))
    yield unit
    unit.dispose()


@pytest.fixture
def ranked(session_factory: sessionmaker[Session]) -> None:
    """Seed ten books with ids 1..10 and rank = 11 - id."""
    with session_factory() as session:
        session.add_all(ranked_books())
        session.commit()


# ===== Async Fixtures =====


@pytest_asyncio.fixture
async def async_engine(database_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(Settings(async_database_url=f"sqlite+aiosqlite:///{database_path}"))

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def async_session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def async_uow(
    async_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncUnitOfWork, None]:
    unit = AsyncUnitOfWork(AsyncDataContext(async_session_factory()))
    yield unit
    await unit.dispose()


@pytest_asyncio.fixture
async def async_ranked(async_session_factory: async_sessionmaker[AsyncSession]) -> None:
    async with async_session_factory() as session:
        session.add_all(ranked_books())
        await session.commit()
