"""ORM data context: one SQLAlchemy session per logical transaction.

The context is glue over the session. It hands out a base ``select()`` per
entity type, reports the staged change set and flushes it in one
``commit()``. Sessions handed to a context must be created with
``autoflush=False`` (see ``clean_template.core.database``) so staged writes
stay in memory until ``save_changes()``.
"""

from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from clean_template.core.logging import get_logger

logger = get_logger(__name__)


def _count_pending(session: Any) -> int:
    # dirty also lists objects whose attributes were set back to their loaded values
    modified = sum(1 for obj in session.dirty if session.is_modified(obj))
    return len(session.new) + modified + len(session.deleted)


class DataContext:
    """Owns a synchronous ``Session`` and releases it exactly once."""

    def __init__(self, session: Session) -> None:
        self._session = session
        self._disposed = False

    @property
    def session(self) -> Session:
        return self._session

    @property
    def disposed(self) -> bool:
        return self._disposed

    def set(self, model: type[Any]) -> Select[Any]:
        """Base query over every row of ``model``."""
        return select(model)

    def pending_changes(self) -> int:
        """Number of entities staged for insert, update or delete."""
        return _count_pending(self._session)

    def save_changes(self) -> int:
        """Flush and commit the staged change set; return the number of entities written."""
        affected = self.pending_changes()
        self._session.commit()
        return affected

    def rollback(self) -> None:
        self._session.rollback()

    def dispose(self) -> None:
        """Close the session. Later calls are no-ops."""
        if self._disposed:
            return
        self._disposed = True
        self._session.close()
        logger.debug("Data context disposed")


class AsyncDataContext:
    """Owns an ``AsyncSession`` and releases it exactly once."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._disposed = False

    @property
    def session(self) -> AsyncSession:
        return self._session

    @property
    def disposed(self) -> bool:
        return self._disposed

    def set(self, model: type[Any]) -> Select[Any]:
        """Base query over every row of ``model``."""
        return select(model)

    def pending_changes(self) -> int:
        """Number of entities staged for insert, update or delete."""
        return _count_pending(self._session)

    async def save_changes(self) -> int:
        """Flush and commit the staged change set; return the number of entities written."""
        affected = self.pending_changes()
        await self._session.commit()
        return affected

    async def rollback(self) -> None:
        await self._session.rollback()

    async def dispose(self) -> None:
        """Close the session. Later calls are no-ops."""
        if self._disposed:
            return
        self._disposed = True
        await self._session.close()
        logger.debug("Async data context disposed")
