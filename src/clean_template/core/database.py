"""Database engine, session factories and unit-of-work scopes.

Engines are built lazily from settings, one sync and one async, and cached
until ``close_database()``. Every session is created with
``autoflush=False`` so staged changes stay in memory until commit.
"""

from collections.abc import AsyncGenerator, Generator
from typing import Any, Optional

from sqlalchemy import Engine, create_engine as sa_create_engine, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine as sa_create_async_engine,
)
from sqlalchemy.orm import Session, sessionmaker

from clean_template.core.config import Settings, settings as default_settings
from clean_template.core.context import AsyncDataContext, DataContext
from clean_template.core.logging import get_logger
from clean_template.repositories.unit_of_work import AsyncUnitOfWork, UnitOfWork

logger = get_logger(__name__)


class DBErrorMessage:
    """Standardized database error messages."""
    CREATE_ENGINE_NO_URL = "Database URL is not configured"
    CREATE_ENGINE_MIN_DB_POOL_SIZE = "DATABASE_POOL_SIZE must be at least 1"
    CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW = "DATABASE_MAX_OVERFLOW must be non-negative"
    CREATE_ENGINE_FAILED = "Failed to create database engine"

    CLOSE_DATABASE_FAILED = "Failed to close database connections"


def _engine_options(url: str, config: Settings) -> dict[str, Any]:
    """Validate pool settings and build engine keyword arguments.

    Raises:
        ValueError: If the URL is empty or pool settings are out of range
    """
    if not url:
        raise ValueError(DBErrorMessage.CREATE_ENGINE_NO_URL)

    if config.database_pool_size < 1:
        raise ValueError(DBErrorMessage.CREATE_ENGINE_MIN_DB_POOL_SIZE)

    if config.database_max_overflow < 0:
        raise ValueError(DBErrorMessage.CREATE_ENGINE_NEGATIVE_MAX_OVERFLOW)

    options: dict[str, Any] = {"echo": config.database_echo}
    # SQLite does not pool connections the same way
    if not url.startswith("sqlite"):
        options.update(
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow,
            pool_pre_ping=True,  # Test connections before using them
            pool_recycle=3600,  # Recycle connections after 1 hour
        )
    return options


def _redacted(url: str) -> str:
    return url.split("@")[1] if "@" in url else "***"


def create_engine(config: Optional[Settings] = None) -> Engine:
    """Create the synchronous Engine from settings.

    Raises:
        ValueError: If database URL is invalid or settings are misconfigured
    """
    config = config or default_settings
    try:
        options = _engine_options(config.database_url, config)
        logger.info("Creating database engine", url=_redacted(config.database_url))
        return sa_create_engine(config.database_url, **options)
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Failed to create database engine, due to configuration error: {e}")
        raise ValueError(DBErrorMessage.CREATE_ENGINE_FAILED) from e


def create_async_engine(config: Optional[Settings] = None) -> AsyncEngine:
    """Create the AsyncEngine from settings.

    Raises:
        ValueError: If database URL is invalid or settings are misconfigured
    """
    config = config or default_settings
    try:
        options = _engine_options(config.async_database_url, config)
        logger.info("Creating async database engine", url=_redacted(config.async_database_url))
        return sa_create_async_engine(config.async_database_url, **options)
    except ValueError:
        raise
    except Exception as e:
        logger.error(f"Failed to create async database engine, due to configuration error: {e}")
        raise ValueError(DBErrorMessage.CREATE_ENGINE_FAILED) from e


# Lazily created engines and session factories
_engine: Optional[Engine] = None
_async_engine: Optional[AsyncEngine] = None
_session_maker: Optional[sessionmaker[Session]] = None
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_async_engine() -> AsyncEngine:
    global _async_engine
    if _async_engine is None:
        _async_engine = create_async_engine()
    return _async_engine


def session_maker() -> sessionmaker[Session]:
    """Session factory bound to the shared engine."""
    global _session_maker
    if _session_maker is None:
        _session_maker = sessionmaker(
            get_engine(),
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_maker


def async_session_maker() -> async_sessionmaker[AsyncSession]:
    """AsyncSession factory bound to the shared async engine."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            get_async_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _async_session_maker


def get_unit_of_work(
    factory: Optional[sessionmaker[Session]] = None,
) -> Generator[UnitOfWork, None, None]:
    """Yield a unit of work on a fresh session and always dispose it.

    Usable as a framework dependency or wrapped with ``contextlib.contextmanager``.

    Example:
        scope = contextmanager(get_unit_of_work)
        with scope() as uow:
            uow.repository(Book).add(book)
            uow.commit()
    """
    uow = UnitOfWork(DataContext((factory or session_maker())()))
    try:
        yield uow
    finally:
        uow.dispose()


async def get_async_unit_of_work(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncGenerator[AsyncUnitOfWork, None]:
    """Async twin of ``get_unit_of_work``."""
    uow = AsyncUnitOfWork(AsyncDataContext((factory or async_session_maker())()))
    try:
        yield uow
    finally:
        await uow.dispose()


async def check_database_connection() -> bool:
    """Check if the database is reachable.

    Used for health checks and diagnostics.

    Returns:
        bool: True if connection successful, False otherwise
    """
    try:
        async with get_async_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.debug("Database connection check passed")
        return True
    except Exception as e:
        logger.error(f"Database connection check failed with error: {e}")
        return False


async def close_database() -> None:
    """Dispose both engines and forget the cached factories.

    Should be called during application shutdown.

    Raises:
        RuntimeError: If graceful shutdown fails
    """
    global _engine, _async_engine, _session_maker, _async_session_maker
    try:
        logger.info("Closing database connections")
        if _async_engine is not None:
            await _async_engine.dispose()
        if _engine is not None:
            _engine.dispose()
    except Exception as e:
        logger.error(f"Error closing database connections: {e}")
        raise RuntimeError(DBErrorMessage.CLOSE_DATABASE_FAILED) from e
    finally:
        _engine = _async_engine = None
        _session_maker = _async_session_maker = None
