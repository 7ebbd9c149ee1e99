"""Unit of Work: one place to get repositories, one place to commit.

The unit of work owns its data context exclusively. Repositories are created
lazily, one per entity class, and cached for the lifetime of the unit of
work. ``commit()`` flushes every change staged through any of them in a
single transaction; ``dispose()`` (or leaving the ``with`` block) closes the
context exactly once.

To expose a typed accessor for a new entity, subclass and add a property:

    class AppUnitOfWork(UnitOfWork):
        @property
        def categories(self) -> BaseRepository[Category]:
            return self.repository(Category)

    with AppUnitOfWork(DataContext(session_maker())) as uow:
        category = uow.categories.get_by_id(category_id)
        uow.categories.add(Category(name="Books"))
        uow.commit()

Leaving the block without ``commit()`` discards the staged changes.
"""

import asyncio
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from clean_template.core.context import AsyncDataContext, DataContext
from clean_template.core.logging import get_logger
from clean_template.core.tracing import create_span, get_tracer
from clean_template.repositories.base import AsyncBaseRepository, BaseRepository
from clean_template.repositories.exceptions import UnitOfWorkDisposedError, translate_error
from clean_template.repositories.interfaces import IAsyncUnitOfWork, IUnitOfWork, ModelType

logger = get_logger(__name__)
tracer = get_tracer(__name__)


class _RepositoryRegistry:
    """Per-unit-of-work repository cache keyed by entity class."""

    def __init__(self, default_class: type) -> None:
        self._default_class = default_class
        self._classes: dict[type, type] = {}
        self._repositories: dict[type, Any] = {}

    def register(self, model: type, repository_class: type) -> None:
        if model in self._repositories:
            raise ValueError(f"Repository for {model.__name__} already created; register it before first use")
        self._classes[model] = repository_class

    def get(self, model: type, context: Any) -> Any:
        repository = self._repositories.get(model)
        if repository is None:
            repository_class = self._classes.get(model, self._default_class)
            repository = repository_class(context, model)
            self._repositories[model] = repository
            logger.debug("Repository created", model=model.__name__, repository=repository_class.__name__)
        return repository


class UnitOfWork(IUnitOfWork):
    """Synchronous unit of work over a ``DataContext``.

    Not safe for concurrent use; scope one instance per request/transaction.
    """

    def __init__(self, context: Optional[DataContext] = None) -> None:
        if context is None:
            raise ValueError("Data context must be provided. Use get_unit_of_work() or pass a DataContext explicitly.")

        self._context = context
        self._registry = _RepositoryRegistry(BaseRepository)
        self._disposed = False

    @property
    def context(self) -> DataContext:
        return self._context

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _ensure_active(self) -> None:
        if self._disposed:
            raise UnitOfWorkDisposedError("Unit of work has already been disposed")

    def register(self, model: type[ModelType], repository_class: type[BaseRepository[Any]]) -> None:
        """Use ``repository_class`` instead of ``BaseRepository`` for ``model``."""
        self._ensure_active()
        self._registry.register(model, repository_class)

    def repository(self, model: type[ModelType]) -> BaseRepository[ModelType]:
        """Return the repository for ``model``, creating it on first access."""
        self._ensure_active()
        return self._registry.get(model, self._context)

    def commit(self) -> int:
        """Persist every staged change in one transaction.

        Returns:
            Number of entities inserted, updated or deleted

        Raises:
            ConstraintViolationError: If a constraint rejected the transaction
            ConcurrencyConflictError: If an optimistic-concurrency check failed
            DataAccessError: For other database errors; nothing was applied
        """
        self._ensure_active()
        with create_span(tracer, "uow.commit", component="database") as span:
            try:
                affected = self._context.save_changes()
            except SQLAlchemyError as e:
                logger.error("Failed to commit unit of work", error=str(e))
                self._context.rollback()
                raise translate_error(e, "commit unit of work") from e
            span.set_attribute("db.affected", affected)

        logger.info("Unit of work committed", affected=affected)
        return affected

    def rollback(self) -> None:
        """Discard every staged change."""
        self._ensure_active()
        try:
            self._context.rollback()
        except SQLAlchemyError as e:
            logger.error("Failed to rollback unit of work", error=str(e))
            raise translate_error(e, "rollback unit of work") from e
        logger.debug("Unit of work rolled back")

    def dispose(self) -> None:
        """Release the data context. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        self._context.dispose()

    def __enter__(self) -> "UnitOfWork":
        self._ensure_active()
        return self


class AsyncUnitOfWork(IAsyncUnitOfWork):
    """Asyncio unit of work over an ``AsyncDataContext``.

    Must be used by one task at a time. A cancelled ``commit()`` rolls the
    session back before the cancellation propagates.
    """

    def __init__(self, context: Optional[AsyncDataContext] = None) -> None:
        if context is None:
            raise ValueError(
                "Data context must be provided. Use get_async_unit_of_work() or pass an AsyncDataContext explicitly."
            )

        self._context = context
        self._registry = _RepositoryRegistry(AsyncBaseRepository)
        self._disposed = False

    @property
    def context(self) -> AsyncDataContext:
        return self._context

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _ensure_active(self) -> None:
        if self._disposed:
            raise UnitOfWorkDisposedError("Unit of work has already been disposed")

    def register(self, model: type[ModelType], repository_class: type[AsyncBaseRepository[Any]]) -> None:
        self._ensure_active()
        self._registry.register(model, repository_class)

    def repository(self, model: type[ModelType]) -> AsyncBaseRepository[ModelType]:
        self._ensure_active()
        return self._registry.get(model, self._context)

    async def commit(self) -> int:
        """Persist every staged change in one transaction; see ``UnitOfWork.commit``."""
        self._ensure_active()
        with create_span(tracer, "uow.commit", component="database") as span:
            try:
                affected = await self._context.save_changes()
            except SQLAlchemyError as e:
                logger.error("Failed to commit unit of work", error=str(e))
                await self._context.rollback()
                raise translate_error(e, "commit unit of work") from e
            except asyncio.CancelledError:
                logger.warning("Commit cancelled, rolling back")
                await asyncio.shield(self._context.rollback())
                raise
            span.set_attribute("db.affected", affected)

        logger.info("Unit of work committed", affected=affected)
        return affected

    async def rollback(self) -> None:
        self._ensure_active()
        try:
            await self._context.rollback()
        except SQLAlchemyError as e:
            logger.error("Failed to rollback unit of work", error=str(e))
            raise translate_error(e, "rollback unit of work") from e
        logger.debug("Unit of work rolled back")

    async def dispose(self) -> None:
        """Release the data context. Safe to call more than once."""
        if self._disposed:
            return
        self._disposed = True
        await self._context.dispose()

    async def __aenter__(self) -> "AsyncUnitOfWork":
        self._ensure_active()
        return self
